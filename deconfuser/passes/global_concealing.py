"""
Concealed globals.

Template:

    function getGlobal() { ... }
    var realm = getGlobal() || {};
    function globalAt(key) {
      var value;
      switch (key) {
        case 4102: value = realm["console"]; break;
        case 781:  return realm["Math"];
      }
      return value;
    }

``globalAt(4102)`` becomes ``console`` wherever ``console`` is not shadowed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from deconfuser.analysis.scope import BindingTracker
from deconfuser.compiler.jsvalues import NOT_CONSTANT
from deconfuser.compiler.nodes import (
    Node, NodePath, identifier, is_identifier, property_name, static_value, walk_nodes,
)
from deconfuser.passes.base import Pass, is_identifier_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GlobalConcealingMatch:
    name: str
    function: Node
    realm_name: str
    mapping: Dict[Any, str]


def _realm_read(node: Optional[Node]) -> Optional[tuple]:
    """``X["name"]`` -> (X, name)."""
    if node is None or node.type != 'MemberExpression' or not is_identifier(node.object):
        return None
    name = property_name(node)
    if name is None:
        return None
    return node.object.name, name


def _case_target(case: Node, result: Optional[str]) -> Optional[tuple]:
    body = [s for s in case.consequent if s.type != 'EmptyStatement']
    if len(body) == 1 and body[0].type == 'ReturnStatement':
        return _realm_read(body[0].argument)
    if result is None or len(body) != 2 or body[1].type != 'BreakStatement' \
            or body[1].label is not None or body[0].type != 'ExpressionStatement':
        return None
    assignment = body[0].expression
    if assignment.type != 'AssignmentExpression' or assignment.operator != '=' \
            or not is_identifier(assignment.left, result):
        return None
    return _realm_read(assignment.right)


def match_global_concealing(function: Node) -> Optional[GlobalConcealingMatch]:
    if function.type != 'FunctionDeclaration' or function.id is None:
        return None
    if len(function.params) != 1 or not is_identifier(function.params[0]):
        return None
    key = function.params[0].name
    body = list(function.body.body)

    result = None
    if body and body[0].type == 'VariableDeclaration' and len(body[0].declarations) == 1:
        declarator = body[0].declarations[0]
        if not is_identifier(declarator.id) or declarator.init is not None:
            return None
        result = declarator.id.name
        body = body[1:]
    if result is not None:
        if not body or body[-1].type != 'ReturnStatement' \
                or not is_identifier(body[-1].argument, result):
            return None
        body = body[:-1]
    if len(body) != 1 or body[0].type != 'SwitchStatement' \
            or not is_identifier(body[0].discriminant, key):
        return None

    realm = None
    mapping: Dict[Any, str] = {}
    for case in body[0].cases:
        if case.test is None:
            return None
        case_key = static_value(case.test)
        if case_key is NOT_CONSTANT or isinstance(case_key, bool):
            return None
        target = _case_target(case, result)
        if target is None:
            return None
        if realm is not None and target[0] != realm:
            return None
        realm = target[0]
        mapping[case_key] = target[1]
    if realm is None or realm in (key, result):
        return None
    return GlobalConcealingMatch(function.id.name, function, realm, mapping)


class GlobalConcealingPass(Pass):
    name = 'global_concealing'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            if binding.kind != 'function':
                continue
            match = match_global_concealing(binding.path.node)
            if match is None:
                continue
            binding = tracker.binding_for_declaration(match.function, match.name)
            if binding is None:
                continue
            logger.info('Global accessor: %s (%d globals via %s)', match.name,
                        len(match.mapping), match.realm_name)
            realm = tracker.index.resolve(match.realm_name, binding.path)
            sites = self.call_sites(binding, 'global accessor')
            for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
                if self._reveal(call_path, match, tracker):
                    rewritten += 1
            self.delete(tracker, match.name, match.function)
            if realm is not None:
                self._remove_realm(realm.name, realm.path.node, tracker)

        self.stats['globals_revealed'] += rewritten
        return rewritten

    def _reveal(self, call_path: NodePath, match: GlobalConcealingMatch,
                tracker: BindingTracker) -> bool:
        arguments = call_path.node.arguments
        if len(arguments) != 1:
            return False
        key = static_value(arguments[0])
        if key is NOT_CONSTANT or key not in match.mapping:
            logger.warning('Global accessor %s called with unknown key at offset %s',
                           match.name, call_path.node.start)
            return False
        name = match.mapping[key]
        if not is_identifier_name(name):
            return False
        if tracker.index.resolve(name, call_path) is not None:
            logger.debug('%s is shadowed at offset %s', name, call_path.node.start)
            return False
        call_path.replace_with(identifier(name))
        return True

    def _remove_realm(self, name: str, declarator: Node, tracker: BindingTracker) -> None:
        factories = []
        if declarator.type == 'VariableDeclarator' and declarator.init is not None:
            for node in walk_nodes(declarator.init):
                if node.type == 'CallExpression' and is_identifier(node.callee):
                    binding = tracker.index.resolve(node.callee.name, declarator)
                    if binding is not None:
                        factories.append(binding)
        if not self.delete(tracker, name, declarator, keep_side_effects=False):
            return
        for factory in factories:
            self.delete(tracker, factory.name, factory.path.node)
