"""
Stateless control-object flattening.

Control-flow flattening moves constants into an object that only the
dispatch ``switch`` uses:

    var C = { a: 12, b: "log", c: 0 };
    while (s) switch (s) {
      case 1: x = C.a + 1; C.c = 5; s = 2; break;    // -> x = 12 + 1; s = 2;
      ...
    }

Reads of literal properties that are never written are inlined; writes of
properties that are never read are dropped; the object is deleted when
nothing reads it any more.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from deconfuser.analysis.scope import Binding, BindingTracker
from deconfuser.compiler.jsvalues import NOT_CONSTANT
from deconfuser.compiler.nodes import (
    FUNCTION_TYPES, Node, NodePath, expression_statement, property_key, property_name,
    static_value, walk_nodes,
)
from deconfuser.passes.base import Pass
from deconfuser.recursive.purity_analyzer import is_side_effect_free

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlattenObjectMatch:
    name: str
    declarator: Node
    values: Dict[str, Node]
    reads: List[Tuple[str, NodePath]]
    writes: List[Tuple[str, NodePath]]

    @property
    def read_keys(self) -> FrozenSet[str]:
        return frozenset(key for key, _ in self.reads)

    @property
    def written_keys(self) -> FrozenSet[str]:
        return frozenset(key for key, _ in self.writes)


def _object_literal(binding: Binding) -> Optional[Node]:
    declarator = binding.path.node
    if declarator.type != 'VariableDeclarator':
        return None
    if declarator.init is not None:
        if binding.constant_violations:
            return None
        return declarator.init if declarator.init.type == 'ObjectExpression' else None
    if len(binding.constant_violations) != 1:
        return None
    violation = binding.constant_violations[0]
    write = violation.node
    if write.type != 'AssignmentExpression' or write.operator != '=' \
            or violation.parent is None or violation.parent.type != 'ExpressionStatement':
        return None
    return write.right if write.right.type == 'ObjectExpression' else None


def _uses_this(node: Node) -> bool:
    return any(n.type == 'ThisExpression' for n in walk_nodes(node))


def _in_switch_case(path: NodePath) -> bool:
    return path.find_parent(lambda p: p.type == 'SwitchCase') is not None


def _is_write(member_path: NodePath) -> bool:
    parent = member_path.parent
    if parent.type == 'AssignmentExpression' and member_path.key == 'left':
        return True
    if parent.type == 'UpdateExpression':
        return True
    if parent.type == 'UnaryExpression' and parent.operator == 'delete':
        return True
    return parent.type in ('ForInStatement', 'ForOfStatement') and member_path.key == 'left'


def match_flatten_object(binding: Binding) -> Optional[FlattenObjectMatch]:
    if binding.kind not in ('var', 'let', 'const'):
        return None
    obj = _object_literal(binding)
    if obj is None or not binding.reference_paths:
        return None

    values: Dict[str, Node] = {}
    for prop in obj.properties:
        if prop.type != 'Property' or prop.get('kind', 'init') != 'init' or prop.get('method'):
            return None
        key = property_key(prop)
        if key is None or (prop.get('computed') and prop.key.type != 'Literal'):
            return None
        if prop.value.type in FUNCTION_TYPES and _uses_this(prop.value):
            return None
        values[key] = prop.value

    reads: List[Tuple[str, NodePath]] = []
    writes: List[Tuple[str, NodePath]] = []
    for ref in binding.reference_paths:
        if ref.key != 'object' or ref.parent.type != 'MemberExpression':
            return None
        key = property_name(ref.parent)
        if key is None or not _in_switch_case(ref):
            return None
        member_path = ref.parent_path
        (writes if _is_write(member_path) else reads).append((key, member_path))
    return FlattenObjectMatch(binding.name, binding.path.node, values, reads, writes)


class FlattenObjectPass(Pass):
    name = 'flatten_object'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            binding = tracker.binding_for_declaration(binding.path.node, binding.name)
            if binding is None:
                continue
            match = match_flatten_object(binding)
            if match is None:
                continue
            logger.info('Flattening object: %s (%d properties)', match.name, len(match.values))
            changed = self._inline_reads(match) + self._drop_decoy_writes(match)
            if changed:
                self.delete(tracker, match.name, match.declarator)
            rewritten += changed

        self.stats['properties_inlined'] += rewritten
        return rewritten

    def _inline_reads(self, match: FlattenObjectMatch) -> int:
        written = match.written_keys
        inlined = 0
        for key, member_path in sorted(match.reads, key=lambda r: r[1].node.start, reverse=True):
            value = match.values.get(key)
            if value is None or key in written or static_value(value) is NOT_CONSTANT:
                continue
            if member_path.key == 'callee':
                continue
            member_path.replace_with(value.clone())
            inlined += 1
        return inlined

    def _drop_decoy_writes(self, match: FlattenObjectMatch) -> int:
        read = match.read_keys
        dropped = 0
        for key, member_path in sorted(match.writes, key=lambda w: w[1].node.start, reverse=True):
            assignment_path = member_path.parent_path
            if key in read or assignment_path.type != 'AssignmentExpression' \
                    or assignment_path.node.operator != '=':
                continue
            holder = assignment_path.parent_path
            if holder is None or holder.type != 'ExpressionStatement':
                continue
            rhs = assignment_path.node.right
            if is_side_effect_free(rhs):
                holder.remove()
            else:
                holder.replace_with(expression_statement(rhs))
            dropped += 1
        return dropped
