"""
Scope Analysis
==============

Binding and liveness information for a program tree.

``crawl(tree)`` is a pure function from the current tree to a
``ScopeIndex``: every scope, every binding, the paths of its references and
of its constant violations (writes after declaration). The index is never
patched incrementally; after any structural edit, crawl again.

Hoisting follows the language:

    var / function-in-function-body   nearest function (or program) scope
    function-in-block, let, const,    nearest block scope
    class
    catch parameter                   the catch clause scope
    named function expression         the function's own scope

``BindingTracker`` wraps a program and its current index and implements
``try_safe_delete``, the liveness-checked removal every pass finishes with.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from deconfuser.compiler.nodes import (
    FUNCTION_TYPES, Node, NodePath, expression_statement, iter_child_fields,
)
from deconfuser.recursive.purity_analyzer import is_side_effect_free

logger = logging.getLogger(__name__)


class ScopeKind(Enum):
    PROGRAM = auto()
    FUNCTION = auto()
    BLOCK = auto()
    CATCH = auto()


@dataclass(eq=False)
class Binding:
    """One declared name and everything that touches it."""
    name: str
    kind: str                     # var, let, const, function, class, param, catch, local
    identifier: Node
    path: NodePath                # declarator / function / class / catch clause
    scope: 'Scope'
    reference_paths: List[NodePath] = field(default_factory=list)
    constant_violations: List[NodePath] = field(default_factory=list)

    @property
    def references(self) -> int:
        return len(self.reference_paths)

    @property
    def referenced(self) -> bool:
        return bool(self.reference_paths)

    @property
    def constant(self) -> bool:
        return not self.constant_violations

    def __repr__(self) -> str:
        return (f'Binding({self.name!r}, {self.kind}, refs={self.references}, '
                f'violations={len(self.constant_violations)})')


class Scope:
    """A lexical scope and the bindings it owns."""

    def __init__(self, kind: ScopeKind, block: Node, parent: Optional['Scope'] = None):
        self.kind = kind
        self.block = block
        self.parent = parent
        self.bindings: Dict[str, Binding] = {}

    def __repr__(self) -> str:
        return f'Scope({self.kind.name}, {self.block.type}, {sorted(self.bindings)})'

    def function_scope(self) -> 'Scope':
        scope = self
        while scope.kind not in (ScopeKind.FUNCTION, ScopeKind.PROGRAM):
            scope = scope.parent
        return scope

    def lookup(self, name: str) -> Optional[Binding]:
        scope: Optional[Scope] = self
        while scope is not None:
            binding = scope.bindings.get(name)
            if binding is not None:
                return binding
            scope = scope.parent
        return None


class ScopeIndex:
    """Result of a crawl: scopes by block, bindings, reference resolution."""

    def __init__(self, program: Node):
        self.program = program
        self.program_scope = Scope(ScopeKind.PROGRAM, program)
        self.scopes: Dict[int, Scope] = {id(program): self.program_scope}
        self.node_scope: Dict[int, Scope] = {}
        self.ref_binding: Dict[int, Binding] = {}
        self.globals: Dict[str, List[NodePath]] = {}

    def all_bindings(self) -> Iterator[Binding]:
        for scope in self.scopes.values():
            yield from scope.bindings.values()

    def scope_of(self, node_or_path) -> Scope:
        """Scope in which the given node is evaluated."""
        if isinstance(node_or_path, NodePath):
            scope = self.node_scope.get(id(node_or_path.node))
            if scope is not None:
                return scope
            for ancestor in node_or_path.ancestors():
                scope = self.node_scope.get(id(ancestor.node))
                if scope is not None:
                    return scope
            return self.program_scope
        return self.node_scope.get(id(node_or_path), self.program_scope)

    def get_binding(self, scope: Scope, name: str) -> Optional[Binding]:
        return scope.lookup(name)

    def resolve(self, name: str, at) -> Optional[Binding]:
        """Binding ``name`` would resolve to at the given node or path."""
        return self.scope_of(at).lookup(name)

    def binding_of(self, identifier: Node) -> Optional[Binding]:
        """Binding an identifier reference resolves to, or that it declares."""
        binding = self.ref_binding.get(id(identifier))
        if binding is not None:
            return binding
        for candidate in self.all_bindings():
            if candidate.identifier is identifier:
                return candidate
        return None

    def binding_for_declaration(self, node: Node, name: Optional[str] = None) -> Optional[Binding]:
        """Binding declared by a declaration / declarator / function / class node."""
        for candidate in self.all_bindings():
            if name is not None and candidate.name != name:
                continue
            if candidate.path.node is node:
                return candidate
            if node.type == 'VariableDeclaration' and candidate.path.parent is node:
                return candidate
            if candidate.identifier is node:
                return candidate
        return None


# ═══════════════════════════════════════════════════════════════════════════
# Crawl
# ═══════════════════════════════════════════════════════════════════════════

def pattern_identifiers(path: NodePath) -> Iterator[NodePath]:
    """Paths of the identifiers bound by a declaration / assignment pattern."""
    node = path.node
    if node is None:
        return
    if node.type == 'Identifier':
        yield path
    elif node.type == 'ObjectPattern':
        for i, prop in enumerate(node.properties):
            prop_path = path.child('properties', i)
            if prop.type == 'RestElement':
                yield from pattern_identifiers(prop_path.child('argument'))
            else:
                yield from pattern_identifiers(prop_path.child('value'))
    elif node.type == 'ArrayPattern':
        for i, element in enumerate(node.elements):
            if element is not None:
                yield from pattern_identifiers(path.child('elements', i))
    elif node.type == 'AssignmentPattern':
        yield from pattern_identifiers(path.child('left'))
    elif node.type == 'RestElement':
        yield from pattern_identifiers(path.child('argument'))


class _Crawler:
    def __init__(self, program: Node):
        self.index = ScopeIndex(program)
        self.declaration_ids = set()
        self.target_ids = set()
        self.visited: List[Tuple[NodePath, Scope]] = []

    def _declare(self, scope: Scope, id_path: NodePath, kind: str, decl_path: NodePath) -> None:
        identifier = id_path.node
        self.declaration_ids.add(id(identifier))
        existing = scope.bindings.get(identifier.name)
        if existing is not None:
            has_init = decl_path.node.type == 'FunctionDeclaration' or (
                decl_path.node.type == 'VariableDeclarator' and decl_path.node.init is not None)
            if has_init and decl_path.node is not existing.path.node:
                existing.constant_violations.append(decl_path)
            return
        scope.bindings[identifier.name] = Binding(
            name=identifier.name, kind=kind, identifier=identifier,
            path=decl_path, scope=scope,
        )

    def _new_scope(self, kind: ScopeKind, block: Node, parent: Scope) -> Scope:
        scope = Scope(kind, block, parent)
        self.index.scopes[id(block)] = scope
        return scope

    def _enter(self, path: NodePath, scope: Scope) -> Scope:
        """Declare what ``path`` introduces; returns the scope of its children."""
        node = path.node
        kind = node.type

        if kind in FUNCTION_TYPES:
            if kind == 'FunctionDeclaration' and node.id is not None:
                self._declare(scope, path.child('id'), 'function', path)
            inner = self._new_scope(ScopeKind.FUNCTION, node, scope)
            if kind == 'FunctionExpression' and node.id is not None:
                self._declare(inner, path.child('id'), 'local', path)
            for i in range(len(node.params)):
                for id_path in pattern_identifiers(path.child('params', i)):
                    self._declare(inner, id_path, 'param', path)
            return inner

        if kind == 'VariableDeclaration':
            target = scope.function_scope() if node.kind == 'var' else scope
            for i in range(len(node.declarations)):
                declarator_path = path.child('declarations', i)
                for id_path in pattern_identifiers(declarator_path.child('id')):
                    self._declare(target, id_path, node.kind, declarator_path)
            return scope

        if kind == 'ClassDeclaration':
            if node.id is not None:
                self._declare(scope, path.child('id'), 'class', path)
            return scope

        if kind == 'ClassExpression' and node.id is not None:
            self.declaration_ids.add(id(node.id))
            return scope

        if kind == 'CatchClause':
            inner = self._new_scope(ScopeKind.CATCH, node, scope)
            if node.param is not None:
                for id_path in pattern_identifiers(path.child('param')):
                    self._declare(inner, id_path, 'catch', path)
            return inner

        if kind == 'BlockStatement':
            if path.parent is not None and (
                    path.parent.type in FUNCTION_TYPES or path.parent.type == 'CatchClause'):
                return scope
            return self._new_scope(ScopeKind.BLOCK, node, scope)

        if kind in ('ForStatement', 'ForInStatement', 'ForOfStatement', 'SwitchStatement'):
            return self._new_scope(ScopeKind.BLOCK, node, scope)

        if kind == 'AssignmentExpression':
            for id_path in pattern_identifiers(path.child('left')):
                self.target_ids.add(id(id_path.node))
        elif kind == 'UpdateExpression' and node.argument.type == 'Identifier':
            self.target_ids.add(id(node.argument))
        return scope

    def run(self) -> ScopeIndex:
        program = self.index.program
        stack: List[Tuple[NodePath, Scope]] = [(NodePath(program), self.index.program_scope)]
        while stack:
            path, scope = stack.pop()
            self.index.node_scope[id(path.node)] = scope
            self.visited.append((path, scope))
            node = path.node
            inner = self._enter(path, scope)
            if node.type in ('ForInStatement', 'ForOfStatement') and node.left.type != 'VariableDeclaration':
                for id_path in pattern_identifiers(path.child('left')):
                    self.target_ids.add(id(id_path.node))
            pending = []
            for key, value in iter_child_fields(node):
                child_scope = scope if (node.type == 'FunctionDeclaration' and key == 'id') else inner
                if isinstance(value, list):
                    for i, item in enumerate(value):
                        if isinstance(item, Node):
                            pending.append((NodePath(item, node, key, i, path), child_scope))
                elif isinstance(value, Node):
                    pending.append((NodePath(value, node, key, None, path), child_scope))
            stack.extend(reversed(pending))
        self._resolve()
        return self.index

    def _resolve(self) -> None:
        for path, scope in self.visited:
            node = path.node
            if node.type != 'Identifier' or not is_reference_position(path):
                continue
            if id(node) in self.declaration_ids:
                continue
            binding = scope.lookup(node.name)
            if binding is None:
                self.index.globals.setdefault(node.name, []).append(path)
                continue
            self.index.ref_binding[id(node)] = binding
            if id(node) in self.target_ids:
                binding.constant_violations.append(_violation_path(path))
            else:
                binding.reference_paths.append(path)


def is_reference_position(path: NodePath) -> bool:
    """False for property names, labels and other identifiers that are not variables."""
    parent = path.parent
    if parent is None:
        return True
    key = path.key
    kind = parent.type
    if kind == 'MemberExpression' and key == 'property' and not parent.computed:
        return False
    if kind in ('Property', 'MethodDefinition') and key == 'key' and not parent.get('computed'):
        return False
    if kind in ('LabeledStatement', 'BreakStatement', 'ContinueStatement') and key == 'label':
        return False
    if kind == 'MetaProperty':
        return False
    return True


def _violation_path(id_path: NodePath) -> NodePath:
    """The assignment / update / loop node that writes through ``id_path``."""
    for ancestor in id_path.ancestors():
        if ancestor.type in ('AssignmentExpression', 'UpdateExpression',
                             'ForInStatement', 'ForOfStatement'):
            return ancestor
    return id_path


def crawl(tree: Node) -> ScopeIndex:
    """Build a fresh ``ScopeIndex`` for ``tree``."""
    return _Crawler(tree).run()


# ═══════════════════════════════════════════════════════════════════════════
# Liveness-checked deletion
# ═══════════════════════════════════════════════════════════════════════════

class BindingTracker:
    """
    Owns the program and its current scope index.

    Usage:
        >>> tracker = BindingTracker(program)
        >>> tracker.try_safe_delete('helper', helper_decl)
        True
    """

    def __init__(self, program: Node):
        self.program = program
        self.index = crawl(program)

    def recrawl(self) -> ScopeIndex:
        self.index = crawl(self.program)
        return self.index

    def scope_of(self, node_or_path) -> Scope:
        return self.index.scope_of(node_or_path)

    def get_binding(self, scope: Scope, name: str) -> Optional[Binding]:
        return self.index.get_binding(scope, name)

    def binding_of(self, identifier: Node) -> Optional[Binding]:
        return self.index.binding_of(identifier)

    def binding_for_declaration(self, node: Node, name: Optional[str] = None) -> Optional[Binding]:
        return self.index.binding_for_declaration(node, name)

    def try_safe_delete(self, name: str, decl_node: Node, keep_side_effects: bool = True) -> bool:
        """
        Delete the binding ``name`` declared by ``decl_node`` iff it is unreferenced.

        Removes the declaration and every constant violation. Returns
        ``False`` and leaves the tree untouched when the binding is still
        referenced, is a parameter, or has a write that cannot be removed
        without changing the program (an update or loop target used as a
        value).
        """
        self.recrawl()
        binding = self.index.binding_for_declaration(decl_node, name)
        if binding is None or binding.name != name:
            return False
        if binding.kind in ('param', 'catch', 'local') or binding.references:
            return False

        actions: List[Callable[[], None]] = []
        for violation in binding.constant_violations:
            action = _violation_removal(violation, keep_side_effects)
            if action is None:
                logger.debug('Keeping %s: write at %s cannot be removed', name, violation.node.start)
                return False
            actions.append(action)
        action = _declaration_removal(binding, keep_side_effects)
        if action is None:
            return False
        actions.append(action)

        for action in actions:
            action()
        self.recrawl()
        return True


def _violation_removal(path: NodePath, keep_side_effects: bool) -> Optional[Callable[[], None]]:
    node = path.node
    in_statement = path.parent is not None and path.parent.type == 'ExpressionStatement'

    if node.type == 'AssignmentExpression':
        if node.left.type != 'Identifier':
            return None
        rhs = node.right
        if in_statement:
            if keep_side_effects and not is_side_effect_free(rhs):
                return lambda: path.parent_path.replace_with(expression_statement(rhs))
            return path.remove
        return lambda: path.replace_with(rhs)

    if node.type == 'UpdateExpression':
        return path.remove if in_statement else None

    if node.type == 'VariableDeclarator':
        if keep_side_effects and not is_side_effect_free(node.init):
            return None
        return path.remove

    if node.type == 'FunctionDeclaration':
        return path.remove

    return None


def _declaration_removal(binding: Binding, keep_side_effects: bool) -> Optional[Callable[[], None]]:
    path = binding.path
    node = path.node

    if node.type == 'VariableDeclarator':
        declaration_path = path.parent_path
        if declaration_path.parent is not None and declaration_path.parent.type in (
                'ForInStatement', 'ForOfStatement'):
            return None
        if node.id.type != 'Identifier':
            return None
        if keep_side_effects and not is_side_effect_free(node.init):
            if len(declaration_path.node.declarations) != 1 \
                    or not declaration_path.is_statement_in_list:
                return None
            init = node.init
            return lambda: declaration_path.replace_with(expression_statement(init))
        return path.remove

    if node.type in ('FunctionDeclaration', 'ClassDeclaration'):
        if node.type == 'ClassDeclaration' and node.get('superClass') is not None \
                and keep_side_effects:
            return None
        return path.remove

    return None


def try_safe_delete(tree: Node, name: str, decl_node: Node, keep_side_effects: bool = True) -> bool:
    """Functional form of ``BindingTracker.try_safe_delete``."""
    return BindingTracker(tree).try_safe_delete(name, decl_node, keep_side_effects)
