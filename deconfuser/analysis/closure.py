"""
Dependency closures.

The set of declarations a code fragment needs in order to run on its own.
Items are kept unique by name and are serialized in ascending source
position, so helpers appear in the order the original program defined them.
Declarations that do not exist in the source as a standalone statement (a
``var`` whose only value comes from one later assignment) are synthesized
and placed at the position of the assignment that gives them their value.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from deconfuser.analysis.scope import Binding, ScopeIndex, is_reference_position
from deconfuser.compiler.codegen import generate
from deconfuser.compiler.nodes import Node, walk, walk_nodes

logger = logging.getLogger(__name__)


@dataclass
class ClosureItem:
    name: str
    node: Node
    position: float


def declaration_for(binding: Binding) -> Optional[ClosureItem]:
    """
    A standalone statement (re)creating ``binding``, or ``None`` when the
    binding cannot be declared on its own (parameters, catch clauses).
    """
    if binding.kind in ('param', 'catch', 'local'):
        return None
    node = binding.path.node
    if node.type == 'FunctionDeclaration':
        return ClosureItem(binding.name, node, node.start)

    if node.type == 'ClassDeclaration':
        expression = Node('ClassExpression', id=node.id, superClass=node.get('superClass'),
                          body=node.body)
        statement = Node('VariableDeclaration', kind='var', declarations=[
            Node('VariableDeclarator', id=Node('Identifier', name=binding.name), init=expression)])
        return ClosureItem(binding.name, statement, node.start)

    if node.type != 'VariableDeclarator' or node.id.type != 'Identifier':
        return None

    init, position = node.init, node.start
    if init is None and len(binding.constant_violations) == 1:
        write = binding.constant_violations[0].node
        if write.type == 'AssignmentExpression' and write.operator == '=' \
                and write.left.type == 'Identifier':
            init, position = write.right, write.start
    statement = Node('VariableDeclaration', kind='var', declarations=[
        Node('VariableDeclarator', id=Node('Identifier', name=binding.name), init=init)])
    return ClosureItem(binding.name, statement, position)


def _subtree_ids(roots: Iterable[Node]) -> Set[int]:
    return {id(n) for root in roots for n in walk_nodes(root)}


def free_bindings(node: Node, index: ScopeIndex) -> List[Binding]:
    """Bindings referenced inside ``node`` but declared outside it."""
    inside = _subtree_ids([node])
    found: Dict[int, Binding] = {}
    for path in walk(node):
        if path.node.type != 'Identifier' or not is_reference_position(path):
            continue
        binding = index.ref_binding.get(id(path.node))
        if binding is None or id(binding.path.node) in inside:
            continue
        found.setdefault(id(binding), binding)
    return list(found.values())


def free_names(node: Node, index: ScopeIndex) -> Set[str]:
    """Names referenced in ``node`` that it does not declare (globals included)."""
    names = {b.name for b in free_bindings(node, index)}
    unresolved = {id(p.node) for paths in index.globals.values() for p in paths}
    for child in walk_nodes(node):
        if id(child) in unresolved:
            names.add(child.name)
    return names


class DependencyClosure:
    """
    Ordered, duplicate-free set of declarations.

    Usage:
        >>> closure = DependencyClosure.build(index, [accessor])
        >>> oracle.evaluate(closure, call_node)
    """

    def __init__(self, items: Iterable[ClosureItem] = ()):
        self._items: Dict[str, ClosureItem] = {}
        for item in items:
            self.add(item)

    def __contains__(self, name: str) -> bool:
        return name in self._items

    def __len__(self) -> int:
        return len(self._items)

    def names(self) -> List[str]:
        return [item.name for item in self.items()]

    def add(self, item: ClosureItem) -> bool:
        """Insert ``item``; ``False`` when its name is already present."""
        if item.name in self._items:
            return False
        self._items[item.name] = item
        return True

    def add_binding(self, binding: Binding) -> bool:
        item = declaration_for(binding)
        if item is None:
            return False
        return self.add(item)

    def copy(self) -> 'DependencyClosure':
        return DependencyClosure(self._items.values())

    def items(self) -> List[ClosureItem]:
        # sorted() is stable: equal positions keep insertion order
        return sorted(self._items.values(), key=lambda item: item.position)

    def statements(self) -> List[Node]:
        return [item.node for item in self.items()]

    def source(self) -> str:
        return '\n'.join(generate(node) for node in self.statements())

    def grow(self, index: ScopeIndex, roots: Iterable[Node]) -> int:
        """
        Add, breadth-first, every declaration ``roots`` transitively reference.

        Returns the number of items added.
        """
        added = 0
        queue = deque(roots)
        seen: Set[int] = set()
        while queue:
            node = queue.popleft()
            if id(node) in seen:
                continue
            seen.add(id(node))
            for binding in free_bindings(node, index):
                if binding.name in self:
                    continue
                item = declaration_for(binding)
                if item is None:
                    logger.debug('Cannot declare %s (%s) in a closure', binding.name, binding.kind)
                    continue
                self.add(item)
                added += 1
                queue.append(binding.path.node)
                for violation in binding.constant_violations:
                    queue.append(violation.node)
        return added

    @classmethod
    def build(cls, index: ScopeIndex, bindings: Iterable[Binding]) -> 'DependencyClosure':
        """Closure of ``bindings`` and everything their declarations reference."""
        closure = cls()
        roots = []
        for binding in bindings:
            if closure.add_binding(binding):
                roots.append(binding.path.node)
                roots.extend(v.node for v in binding.constant_violations)
        closure.grow(index, roots)
        return closure
