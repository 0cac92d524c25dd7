"""
ESTree Node Model
=================

Mutable Python representation of the program tree produced by the parser
and consumed by the printer.

Every node is a ``Node`` carrying its ESTree ``type``, its ESTree fields as
attributes and the ``range`` (source offsets) it was parsed from. Child
order is fixed by ``VISITOR_KEYS`` so every traversal is deterministic and
follows source order.

Three traversal tools are provided, mirroring the ``ast`` module:

- ``NodeVisitor`` / ``NodeTransformer`` for recursive visits and rewrites
- ``NodePath`` + ``walk`` for pattern matching that needs ancestors
  (parent node, container key, list index), in the manner of Babel paths
"""

import copy
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from deconfuser.compiler.jsvalues import UNDEFINED, NOT_CONSTANT


VISITOR_KEYS: Dict[str, Tuple[str, ...]] = {
    'Program': ('body',),
    'ExpressionStatement': ('expression',),
    'BlockStatement': ('body',),
    'EmptyStatement': (),
    'DebuggerStatement': (),
    'WithStatement': ('object', 'body'),
    'ReturnStatement': ('argument',),
    'LabeledStatement': ('label', 'body'),
    'BreakStatement': ('label',),
    'ContinueStatement': ('label',),
    'IfStatement': ('test', 'consequent', 'alternate'),
    'SwitchStatement': ('discriminant', 'cases'),
    'SwitchCase': ('test', 'consequent'),
    'ThrowStatement': ('argument',),
    'TryStatement': ('block', 'handler', 'finalizer'),
    'CatchClause': ('param', 'body'),
    'WhileStatement': ('test', 'body'),
    'DoWhileStatement': ('body', 'test'),
    'ForStatement': ('init', 'test', 'update', 'body'),
    'ForInStatement': ('left', 'right', 'body'),
    'ForOfStatement': ('left', 'right', 'body'),
    'FunctionDeclaration': ('id', 'params', 'body'),
    'VariableDeclaration': ('declarations',),
    'VariableDeclarator': ('id', 'init'),
    'ClassDeclaration': ('id', 'superClass', 'body'),
    'ClassExpression': ('id', 'superClass', 'body'),
    'ClassBody': ('body',),
    'MethodDefinition': ('key', 'value'),
    'ThisExpression': (),
    'Super': (),
    'ArrayExpression': ('elements',),
    'ObjectExpression': ('properties',),
    'Property': ('key', 'value'),
    'FunctionExpression': ('id', 'params', 'body'),
    'ArrowFunctionExpression': ('params', 'body'),
    'UnaryExpression': ('argument',),
    'UpdateExpression': ('argument',),
    'BinaryExpression': ('left', 'right'),
    'AssignmentExpression': ('left', 'right'),
    'LogicalExpression': ('left', 'right'),
    'MemberExpression': ('object', 'property'),
    'ConditionalExpression': ('test', 'consequent', 'alternate'),
    'CallExpression': ('callee', 'arguments'),
    'NewExpression': ('callee', 'arguments'),
    'SequenceExpression': ('expressions',),
    'YieldExpression': ('argument',),
    'AwaitExpression': ('argument',),
    'TemplateLiteral': ('quasis', 'expressions'),
    'TaggedTemplateExpression': ('tag', 'quasi'),
    'TemplateElement': (),
    'SpreadElement': ('argument',),
    'RestElement': ('argument',),
    'AssignmentPattern': ('left', 'right'),
    'ArrayPattern': ('elements',),
    'ObjectPattern': ('properties',),
    'MetaProperty': ('meta', 'property'),
    'Identifier': (),
    'Literal': (),
}

FUNCTION_TYPES = frozenset({
    'FunctionDeclaration', 'FunctionExpression', 'ArrowFunctionExpression',
})

LOOP_TYPES = frozenset({
    'ForStatement', 'ForInStatement', 'ForOfStatement',
    'WhileStatement', 'DoWhileStatement',
})

# Containers holding statement lists
STATEMENT_LIST_KEYS = frozenset({
    ('Program', 'body'),
    ('BlockStatement', 'body'),
    ('SwitchCase', 'consequent'),
})


class Node:
    """A single ESTree node."""

    def __init__(self, type: str, **fields: Any):
        self.type = type
        self.range: Optional[List[int]] = fields.pop('range', None)
        for key, value in fields.items():
            setattr(self, key, value)
        for key in VISITOR_KEYS.get(type, ()):
            if not hasattr(self, key):
                setattr(self, key, None)

    def get(self, name: str, default: Any = None) -> Any:
        return self.__dict__.get(name, default)

    @property
    def start(self) -> float:
        """Source offset the node was parsed from (infinity when synthesized)."""
        if self.range:
            return self.range[0]
        return float('inf')

    def children(self) -> Iterator['Node']:
        for key in VISITOR_KEYS.get(self.type, ()):
            value = getattr(self, key, None)
            if isinstance(value, list):
                for item in value:
                    if isinstance(item, Node):
                        yield item
            elif isinstance(value, Node):
                yield value

    def clone(self) -> 'Node':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        if self.type == 'Identifier':
            return f'Identifier({self.name!r})'
        if self.type == 'Literal':
            return f'Literal({self.value!r})'
        return f'{self.type}@{self.range}'


def iter_child_fields(node: Node) -> Iterator[Tuple[str, Any]]:
    for key in VISITOR_KEYS.get(node.type, ()):
        yield key, getattr(node, key, None)


def walk_nodes(node: Node) -> Iterator[Node]:
    """Pre-order iteration over ``node`` and all of its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(current.children())))


def contains(ancestor: Node, node: Node) -> bool:
    return any(n is node for n in walk_nodes(ancestor))


# ═══════════════════════════════════════════════════════════════════════════
# Paths
# ═══════════════════════════════════════════════════════════════════════════

class NodePath:
    """
    Location of a node in the tree: the node, its parent, the field of the
    parent holding it and, for list fields, its index.

    Paths hold a reference to the parent path, so ancestor queries never
    need a separate parent map. List indices are re-resolved by identity
    before every mutation, so removing siblings does not invalidate the
    path of a node that is still in the tree.
    """

    def __init__(
        self,
        node: Node,
        parent: Optional[Node] = None,
        key: Optional[str] = None,
        index: Optional[int] = None,
        parent_path: Optional['NodePath'] = None,
    ):
        self.node = node
        self.parent = parent
        self.key = key
        self.index = index
        self.parent_path = parent_path

    def __repr__(self) -> str:
        return f'NodePath({self.node!r}, key={self.key!r}, index={self.index!r})'

    @property
    def type(self) -> str:
        return self.node.type

    @property
    def in_list(self) -> bool:
        return self.index is not None

    @property
    def container(self) -> Any:
        if self.parent is None:
            return None
        return getattr(self.parent, self.key)

    @property
    def is_statement_in_list(self) -> bool:
        return (
            self.in_list and self.parent is not None
            and (self.parent.type, self.key) in STATEMENT_LIST_KEYS
        )

    def _locate(self) -> Optional[int]:
        container = self.container
        if not isinstance(container, list):
            return None
        if self.index is not None and self.index < len(container) \
                and container[self.index] is self.node:
            return self.index
        for i, item in enumerate(container):
            if item is self.node:
                self.index = i
                return i
        raise ValueError(f'{self!r} is no longer attached to its parent')

    # ---- Ancestry ----

    def ancestors(self) -> Iterator['NodePath']:
        current = self.parent_path
        while current is not None:
            yield current
            current = current.parent_path

    def find_parent(self, predicate: Callable[['NodePath'], bool]) -> Optional['NodePath']:
        for ancestor in self.ancestors():
            if predicate(ancestor):
                return ancestor
        return None

    def function_parent(self) -> Optional['NodePath']:
        return self.find_parent(lambda p: p.node.type in FUNCTION_TYPES)

    def statement_path(self) -> Optional['NodePath']:
        """Nearest path (self included) sitting directly in a statement list."""
        current: Optional[NodePath] = self
        while current is not None:
            if current.is_statement_in_list:
                return current
            current = current.parent_path
        return None

    def child(self, key: str, index: Optional[int] = None) -> 'NodePath':
        value = getattr(self.node, key)
        if index is not None:
            return NodePath(value[index], self.node, key, index, self)
        return NodePath(value, self.node, key, None, self)

    # ---- Mutation ----

    def replace_with(self, node: Node) -> None:
        if self.parent is None:
            raise ValueError('cannot replace the root node')
        index = self._locate()
        if index is not None:
            self.container[index] = node
        else:
            setattr(self.parent, self.key, node)
        self.node = node

    def replace_with_statements(self, statements: Sequence[Node]) -> None:
        """Replace a statement by several (spliced into lists, else a block)."""
        index = self._locate()
        if index is not None and self.is_statement_in_list:
            self.container[index:index + 1] = list(statements)
            return
        block = Node('BlockStatement', body=list(statements))
        self.replace_with(block)

    def insert_before(self, statements: Sequence[Node]) -> None:
        target = self.statement_path()
        if target is None:
            raise ValueError(f'{self!r} has no enclosing statement list')
        index = target._locate()
        target.container[index:index] = list(statements)

    def remove(self) -> None:
        parent_type = self.parent.type if self.parent is not None else None
        if parent_type == 'ExpressionStatement' and self.key == 'expression':
            self.parent_path.remove()
            return
        index = self._locate()
        if index is not None:
            del self.container[index]
            if parent_type == 'VariableDeclaration' and not self.parent.declarations:
                self.parent_path.remove()
            return
        if self.is_statement_position():
            setattr(self.parent, self.key, Node('EmptyStatement'))
        else:
            setattr(self.parent, self.key, None)

    def is_statement_position(self) -> bool:
        if self.parent is None:
            return False
        # an emptied ``else`` branch is dropped instead
        return (self.parent.type, self.key) in {
            ('IfStatement', 'consequent'),
            ('WhileStatement', 'body'), ('DoWhileStatement', 'body'),
            ('ForStatement', 'body'), ('ForInStatement', 'body'),
            ('ForOfStatement', 'body'), ('LabeledStatement', 'body'),
            ('WithStatement', 'body'),
        }


def walk(root: Node, root_path: Optional[NodePath] = None) -> Iterator[NodePath]:
    """
    Pre-order traversal yielding a ``NodePath`` for every node.

    Children are read when their parent is reached, so a caller that
    replaces the node it was given sees the replacement's children.
    """
    start = root_path or NodePath(root)
    stack = [start]
    while stack:
        path = stack.pop()
        yield path
        node = path.node
        pending = []
        for key, value in iter_child_fields(node):
            if isinstance(value, list):
                for i, item in enumerate(value):
                    if isinstance(item, Node):
                        pending.append(NodePath(item, node, key, i, path))
            elif isinstance(value, Node):
                pending.append(NodePath(value, node, key, None, path))
        stack.extend(reversed(pending))


def find_paths(root: Node, node_type: str) -> List[NodePath]:
    return [p for p in walk(root) if p.node.type == node_type]


def path_to(root: Node, target: Node) -> Optional[NodePath]:
    for path in walk(root):
        if path.node is target:
            return path
    return None


# ═══════════════════════════════════════════════════════════════════════════
# Visitors
# ═══════════════════════════════════════════════════════════════════════════

class NodeVisitor:
    """Dispatches ``visit_<Type>`` methods, defaulting to ``generic_visit``."""

    def visit(self, node: Node) -> Any:
        method = getattr(self, f'visit_{node.type}', self.generic_visit)
        return method(node)

    def generic_visit(self, node: Node) -> None:
        for child in list(node.children()):
            self.visit(child)


class NodeTransformer(NodeVisitor):
    """
    Rewrites the tree bottom-up from the visitor's return values.

    A visitor may return the node, a replacement node, ``None`` (drop it
    from a list; statements in single slots become ``EmptyStatement``) or a
    list of nodes (spliced into lists, wrapped in a block elsewhere).
    """

    def generic_visit(self, node: Node) -> Node:
        for key, value in iter_child_fields(node):
            if isinstance(value, list):
                new_items = []
                for item in value:
                    if not isinstance(item, Node):
                        new_items.append(item)
                        continue
                    result = self.visit(item)
                    if result is None:
                        continue
                    if isinstance(result, list):
                        new_items.extend(result)
                    else:
                        new_items.append(result)
                value[:] = new_items
            elif isinstance(value, Node):
                result = self.visit(value)
                if isinstance(result, list):
                    result = Node('BlockStatement', body=result)
                elif result is None and key in ('consequent', 'body'):
                    result = Node('EmptyStatement')
                setattr(node, key, result)
        return node


# ═══════════════════════════════════════════════════════════════════════════
# Builders
# ═══════════════════════════════════════════════════════════════════════════

def identifier(name: str) -> Node:
    return Node('Identifier', name=name)


def literal(value: Any) -> Node:
    return Node('Literal', value=value, raw=None)


def member(obj: Node, prop: Node, computed: bool = True) -> Node:
    return Node('MemberExpression', object=obj, property=prop, computed=computed)


def call(callee: Node, arguments: Sequence[Node]) -> Node:
    return Node('CallExpression', callee=callee, arguments=list(arguments))


def expression_statement(expression: Node) -> Node:
    return Node('ExpressionStatement', expression=expression)


def var_declaration(name: str, init: Optional[Node], kind: str = 'var') -> Node:
    declarator = Node('VariableDeclarator', id=identifier(name), init=init)
    return Node('VariableDeclaration', declarations=[declarator], kind=kind)


def void_zero() -> Node:
    return Node('UnaryExpression', operator='void', prefix=True, argument=literal(0))


def value_to_node(value: Any) -> Node:
    """Marshal a Python value holding a JS value into an expression node."""
    if value is UNDEFINED:
        return identifier('undefined')
    if value is None or isinstance(value, (bool, str)):
        return literal(value)
    if isinstance(value, (int, float)):
        if value != value:
            return Node('BinaryExpression', operator='/', left=literal(0), right=literal(0))
        if value in (float('inf'), float('-inf')):
            infinity = Node('BinaryExpression', operator='/', left=literal(1), right=literal(0))
            if value < 0:
                return Node('UnaryExpression', operator='-', prefix=True, argument=infinity)
            return infinity
        if isinstance(value, float) and value.is_integer() and abs(value) < 2 ** 53:
            if value == 0 and str(value).startswith('-'):
                return Node('UnaryExpression', operator='-', prefix=True, argument=literal(0))
            value = int(value)
        if value < 0:
            return Node('UnaryExpression', operator='-', prefix=True, argument=literal(-value))
        return literal(value)
    if isinstance(value, (list, tuple)):
        return Node('ArrayExpression', elements=[value_to_node(v) for v in value])
    if isinstance(value, dict):
        properties = [
            Node('Property', key=literal(str(k)), value=value_to_node(v), kind='init',
                 computed=False, method=False, shorthand=False)
            for k, v in value.items()
        ]
        return Node('ObjectExpression', properties=properties)
    raise TypeError(f'cannot marshal {type(value).__name__} into a literal')


def is_literal(node: Optional[Node]) -> bool:
    return node is not None and node.type == 'Literal' and node.get('regex') is None


def is_identifier(node: Optional[Node], name: Optional[str] = None) -> bool:
    if node is None or node.type != 'Identifier':
        return False
    return name is None or node.name == name


def static_value(node: Optional[Node]) -> Any:
    """
    Value of a literal-like expression or ``NOT_CONSTANT``.

    Recognizes plain literals, negated numbers and ``void <literal>``.
    """
    if node is None:
        return NOT_CONSTANT
    if is_literal(node):
        return node.value
    if node.type == 'UnaryExpression':
        if node.operator == '-' and is_literal(node.argument) \
                and isinstance(node.argument.value, (int, float)) \
                and not isinstance(node.argument.value, bool):
            return -node.argument.value
        if node.operator == 'void' and is_literal(node.argument):
            return UNDEFINED
    return NOT_CONSTANT


def static_index(node: Optional[Node]) -> Optional[int]:
    """Integer carried by a literal index expression, if any."""
    value = static_value(node)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    return value


def property_name(member_node: Node) -> Optional[str]:
    """Static key of ``a.b`` / ``a["b"]``, or ``None`` when computed dynamically."""
    prop = member_node.property
    if not member_node.computed and prop.type == 'Identifier':
        return prop.name
    if member_node.computed and is_literal(prop) and isinstance(prop.value, str):
        return prop.value
    return None


def property_key(prop: Node) -> Optional[str]:
    """Static key of an object-literal property."""
    key = prop.key
    if not prop.get('computed') and key.type == 'Identifier':
        return key.name
    if is_literal(key) and isinstance(key.value, (str, int, float)) \
            and not isinstance(key.value, bool):
        return key.value if isinstance(key.value, str) else str(key.value)
    return None
