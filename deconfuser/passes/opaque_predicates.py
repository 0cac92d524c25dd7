"""
Opaque predicates.

Template:

    var P = (function () {
      var state = ...;
      return { get a() { ... }, b: function () { ... }, c: [1, 2, 3] };
    })();
    ...
    if (P.a > 3) { ... }                  // always true
    x = P["b"]() === "..." ? y : z;

Every reference to ``P`` sits inside the test of an ``if`` or a
conditional. The predicate around each reference (the member/call chain
and the operators applied to it with constant or ``P``-only operands) is
evaluated in a sandbox seeded with ``P`` and replaced by its value; the
branch pruner then keeps the taken branch.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from deconfuser.analysis.closure import DependencyClosure
from deconfuser.analysis.scope import Binding, BindingTracker, is_reference_position
from deconfuser.compiler.nodes import FUNCTION_TYPES, Node, NodePath, literal, walk
from deconfuser.errors import OracleFailure
from deconfuser.passes.base import Pass
from deconfuser.recursive.purity_analyzer import is_constant_expression

logger = logging.getLogger(__name__)

_TEST_HOLDERS = ('IfStatement', 'ConditionalExpression')


@dataclass(frozen=True)
class OpaquePredicateMatch:
    name: str
    declarator: Node
    predicates: List[NodePath]


def _is_factory_call(node: Optional[Node]) -> bool:
    """``(function () { ...; return {...}; })()``."""
    if node is None or node.type != 'CallExpression' or node.arguments:
        return False
    function = node.callee
    if function.type not in FUNCTION_TYPES or function.body.type != 'BlockStatement':
        return False
    body = function.body.body
    return bool(body) and body[-1].type == 'ReturnStatement' \
        and body[-1].argument is not None and body[-1].argument.type == 'ObjectExpression'


def _only_reads(node: Node, name: str) -> bool:
    """Constant, or built from ``name`` and constants without assignments."""
    if is_constant_expression(node):
        return True
    for path in walk(node):
        child = path.node
        if child.type in ('AssignmentExpression', 'UpdateExpression', 'NewExpression') \
                or child.type in FUNCTION_TYPES:
            return False
        if child.type == 'Identifier' and is_reference_position(path) and child.name != name:
            return False
    return True


def predicate_of(ref: NodePath, name: str) -> NodePath:
    """Largest expression around ``ref`` that depends on nothing but ``name``."""
    path = ref
    while path.parent_path is not None:
        parent = path.parent
        key = path.key
        if parent.type == 'MemberExpression' and key == 'object':
            if parent.computed and not _only_reads(parent.property, name):
                break
        elif parent.type == 'CallExpression' and key == 'callee':
            if not all(_only_reads(arg, name) for arg in parent.arguments):
                break
        elif parent.type == 'BinaryExpression':
            other = parent.right if key == 'left' else parent.left
            if not _only_reads(other, name):
                break
        elif parent.type == 'UnaryExpression':
            if parent.operator == 'delete':
                break
        else:
            break
        path = path.parent_path
    return path


def _in_test(path: NodePath) -> bool:
    """``path`` reaches the test of an if / conditional through logical and unary operators."""
    while path.parent_path is not None:
        parent = path.parent
        if parent.type in _TEST_HOLDERS:
            return path.key == 'test'
        if parent.type not in ('LogicalExpression', 'UnaryExpression'):
            return False
        path = path.parent_path
    return False


def match_opaque_predicates(binding: Binding) -> Optional[OpaquePredicateMatch]:
    if binding.kind not in ('var', 'let', 'const') or not binding.constant:
        return None
    declarator = binding.path.node
    if declarator.type != 'VariableDeclarator' or not _is_factory_call(declarator.init):
        return None
    if not binding.reference_paths:
        return None

    predicates: Dict[int, NodePath] = {}
    for ref in binding.reference_paths:
        predicate = predicate_of(ref, binding.name)
        if predicate is ref or not _in_test(predicate):
            return None
        predicates.setdefault(id(predicate.node), predicate)
    return OpaquePredicateMatch(binding.name, declarator, list(predicates.values()))


class OpaquePredicatesPass(Pass):
    name = 'opaque_predicates'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            binding = tracker.binding_for_declaration(binding.path.node, binding.name)
            if binding is None:
                continue
            match = match_opaque_predicates(binding)
            if match is None:
                continue
            logger.info('Opaque predicate object: %s (%d predicates)', match.name, len(match.predicates))
            closure = DependencyClosure.build(tracker.index, [binding])
            for predicate in sorted(match.predicates, key=lambda p: p.node.start, reverse=True):
                if self._resolve(closure, predicate):
                    rewritten += 1
            self.delete(tracker, match.name, match.declarator, keep_side_effects=False)

        self.stats['predicates_resolved'] += rewritten
        return rewritten

    def _resolve(self, closure: DependencyClosure, predicate: NodePath) -> bool:
        try:
            result = self.oracle.evaluate_or_raise(closure, predicate.node)
        except OracleFailure as e:
            logger.warning('Predicate at offset %s left as is: %s', predicate.node.start, e)
            self.stats['sites_failed'] += 1
            return False
        if result.is_primitive and result.node is not None:
            predicate.replace_with(result.node)
        else:
            # objects and functions are truthy
            predicate.replace_with(literal(True))
        self.stats['sites_evaluated'] += 1
        return True
