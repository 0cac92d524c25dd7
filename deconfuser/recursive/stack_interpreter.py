"""
Abstract Stack Interpreter
==========================

Resolves functions whose variables were moved into an array-like "stack":

    function f(...s) {
      s.length = 1;
      s[1] = 5;
      s[2] = s[0];
      return s[2] + s[1];        // -> return s[0] + 5
    }

Every slot holds an abstract cell:

    PARAM       the incoming argument (unknown)
    VALUE(n)    a known literal-like expression ``n``
    REF(i)      a copy of the still-unmodified PARAM slot ``i``
    INVALID     unknown; absorbing for the rest of the iteration

Slots written anywhere but a straight-line statement of the function body
(inside a branch, loop or nested function), updated, compound-assigned or
assigned a value that is neither literal nor a chain are INVALID up front.
The top-level statements are then replayed in evaluation order, rewriting
reads of VALUE slots to the value and reads of REF slots to the slot they
copy. Constant folding runs between iterations so freshly inlined literals
combine, and the loop repeats until an iteration rewrites nothing.

When no read of the stack remains, the writes and the declaration of the
stack are removed.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Set

from deconfuser.compiler.ast_optimizer import fold
from deconfuser.compiler.jsvalues import NOT_CONSTANT
from deconfuser.compiler.nodes import (
    FUNCTION_TYPES, Node, NodePath, NodeTransformer, is_identifier, literal,
    static_index, static_value, void_zero, walk,
)
from deconfuser.recursive.fixed_point_engine import FixedPointEngine
from deconfuser.recursive.purity_analyzer import is_side_effect_free

logger = logging.getLogger(__name__)


class CellKind(Enum):
    PARAM = auto()
    VALUE = auto()
    REF = auto()
    INVALID = auto()


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    node: Optional[Node] = None
    index: Optional[int] = None


PARAM = Cell(CellKind.PARAM)
INVALID = Cell(CellKind.INVALID)


@dataclass
class StackAccess:
    """One use of the stack: ``s[i]`` read/written, or ``s.length = N``."""
    path: NodePath               # the MemberExpression
    index: int                   # slot, or the new length for role 'length'
    role: str                    # read, write, update, length
    nested: bool                 # inside a nested function
    straight_line: bool          # top-level statement of the function body

    @property
    def assignment(self) -> Node:
        return self.path.parent


_PATTERN_PARENTS = frozenset({
    'ArrayPattern', 'ObjectPattern', 'AssignmentPattern', 'RestElement',
    'ForInStatement', 'ForOfStatement',
})


class StackInterpreter:
    """
    Fixed-point resolution of one function's virtual stack.

    Usage:
        >>> StackInterpreter().resolve(function_node, 's', length=2)
        3
    """

    def __init__(self, max_iterations: int = 32, stats: Optional[Dict[str, int]] = None):
        self.max_iterations = max_iterations
        self.stats = stats if stats is not None else defaultdict(int)

    def resolve(self, function: Node, stack_name: str, length: Optional[int] = None) -> int:
        """
        Rewrite the reads of ``stack_name`` in ``function``.

        ``length`` is the declared parameter count of the function, when
        known: slots at or past it start out undefined. A literal
        ``s.length = N`` statement truncates the stack where it stands.

        Returns the number of rewritten reads (0 when the function's use
        of the stack is not one the interpreter models).
        """
        source = self._stack_source(function, stack_name)
        if source is None:
            return 0
        if self._collect(function, stack_name) is None:
            logger.debug('Stack %s: unsupported use, declining', stack_name)
            return 0
        declared = self._declared_length(function, stack_name)

        rewrites = [0]

        def step(iteration: int) -> int:
            folded = fold(function.body, self.stats)
            changed = self._iterate(function, stack_name, source, length)
            if changed is None:
                return 0
            rewrites[0] += changed
            return changed + folded

        result = FixedPointEngine(self.max_iterations).iterate(step)
        logger.debug('Stack %s: %d reads rewritten in %d iterations (length %s)',
                     stack_name, rewrites[0], result.iterations,
                     length if length is not None else declared)
        self.stats['stack_reads_rewritten'] += rewrites[0]

        if self._cleanup(function, stack_name, source):
            self.stats['stacks_removed'] += 1
        return rewrites[0]

    # ---- Stack discovery ----

    @staticmethod
    def _stack_source(function: Node, name: str) -> Optional[str]:
        """'rest' for ``function(...s)``, 'local' for a top-level ``var s = [...]``."""
        if function.body.type != 'BlockStatement':
            return None
        params = function.params
        if len(params) == 1 and params[0].type == 'RestElement' \
                and is_identifier(params[0].argument, name):
            return 'rest'
        for statement in function.body.body:
            if statement.type == 'VariableDeclaration' and statement.kind == 'var':
                for declarator in statement.declarations:
                    if is_identifier(declarator.id, name) and declarator.init is not None \
                            and declarator.init.type == 'ArrayExpression':
                        return 'local'
        return None

    def _local_declarator(self, function: Node, name: str) -> Optional[NodePath]:
        body_path = NodePath(function.body, function, 'body', None, NodePath(function))
        for i, statement in enumerate(function.body.body):
            if statement.type != 'VariableDeclaration' or statement.kind != 'var':
                continue
            statement_path = body_path.child('body', i)
            for j, declarator in enumerate(statement.declarations):
                if is_identifier(declarator.id, name) and declarator.init is not None \
                        and declarator.init.type == 'ArrayExpression':
                    return statement_path.child('declarations', j)
        return None

    def _declared_length(self, function: Node, name: str) -> Optional[int]:
        for access in self._collect(function, name) or []:
            if access.role == 'length':
                return access.index
        return None

    def _collect(self, function: Node, name: str) -> Optional[List[StackAccess]]:
        """Every use of the stack, or ``None`` when one of them is not modelled."""
        root = NodePath(function)
        declarations = 0
        accesses: List[StackAccess] = []
        for path in walk(function, root):
            node = path.node
            if node.type != 'Identifier' or node.name != name:
                continue
            parent = path.parent
            if parent is None:
                continue
            if parent.type == 'MemberExpression' and path.key == 'property' and not parent.computed:
                continue
            if parent.type in ('Property', 'MethodDefinition') and path.key == 'key' \
                    and not parent.get('computed'):
                continue
            if parent.type == 'RestElement' and path.parent_path.parent is function:
                declarations += 1
                continue
            if parent.type == 'VariableDeclarator' and path.key == 'id':
                if path.function_parent().node is not function:
                    return None
                declarations += 1
                continue
            if parent.type in FUNCTION_TYPES or parent.type in _PATTERN_PARENTS \
                    or parent.type == 'CatchClause':
                return None
            if parent.type != 'MemberExpression' or path.key != 'object':
                return None
            access = self._classify(path.parent_path, function)
            if access is None:
                return None
            accesses.append(access)
        if declarations != 1:
            return None
        return accesses

    def _classify(self, member_path: NodePath, function: Node) -> Optional[StackAccess]:
        member = member_path.node
        holder = member_path.parent
        nested = member_path.function_parent().node is not function
        is_length = (not member.computed and member.property.name == 'length') or (
            member.computed and static_value(member.property) == 'length')

        if is_length:
            if holder.type != 'AssignmentExpression' or member_path.key != 'left' \
                    or holder.operator != '=' or nested:
                return None
            value = static_index(holder.right)
            if value is None or value < 0 or not self._straight_line(member_path.parent_path, function):
                return None
            return StackAccess(member_path, value, 'length', nested, True)

        if not member.computed:
            return None
        index = static_index(member.property)
        if index is None or index < 0:
            return None
        if holder.type == 'AssignmentExpression' and member_path.key == 'left':
            role = 'write' if holder.operator == '=' else 'update'
        elif holder.type == 'UpdateExpression':
            role = 'update'
        elif holder.type in _PATTERN_PARENTS or (
                holder.type == 'UnaryExpression' and holder.operator == 'delete'):
            return None
        elif holder.type == 'Property' and member_path.parent_path.parent is not None \
                and member_path.parent_path.parent.type == 'ObjectPattern':
            return None
        else:
            role = 'read'
        straight = role == 'write' and not nested \
            and self._straight_line(member_path.parent_path, function)
        return StackAccess(member_path, index, role, nested, straight)

    @staticmethod
    def _straight_line(assignment_path: NodePath, function: Node) -> bool:
        """Whether the assignment is (a member of) a top-level expression statement."""
        holder = assignment_path.parent_path
        if holder is not None and holder.type == 'SequenceExpression':
            holder = holder.parent_path
        if holder is None or holder.type != 'ExpressionStatement':
            return False
        block = holder.parent_path
        return block is not None and block.node is function.body

    # ---- One iteration ----

    @staticmethod
    def _arguments_stable(function: Node) -> bool:
        """``arguments[k]`` keeps its value for the whole call."""
        if function.type == 'ArrowFunctionExpression':
            return False
        if any(p.type != 'RestElement' for p in function.params):
            return False
        for path in walk(function.body):
            if not is_identifier(path.node, 'arguments'):
                continue
            parent = path.parent
            if parent is None or parent.type != 'MemberExpression' or path.key != 'object':
                return False
            holder = path.parent_path.parent
            if holder is not None and (
                    (holder.type == 'AssignmentExpression' and path.parent_path.key == 'left')
                    or holder.type == 'UpdateExpression'
                    or (holder.type == 'UnaryExpression' and holder.operator == 'delete')):
                return False
        return True

    @staticmethod
    def _arguments_read(node: Node) -> bool:
        return node.type == 'MemberExpression' and node.computed \
            and is_identifier(node.object, 'arguments') \
            and static_index(node.property) is not None

    def _is_modelled_value(self, node: Node, name: str, arguments_ok: bool) -> bool:
        if static_value(node) is not NOT_CONSTANT:
            return True
        if node.type == 'ArrayExpression' and len(node.elements) == 1 \
                and node.elements[0] is not None \
                and static_value(node.elements[0]) is not NOT_CONSTANT:
            return True
        if node.type == 'MemberExpression' and node.computed and is_identifier(node.object, name) \
                and static_index(node.property) is not None:
            return True
        return arguments_ok and self._arguments_read(node)

    def _iterate(self, function: Node, name: str, source: str,
                 length: Optional[int] = None) -> Optional[int]:
        accesses = self._collect(function, name)
        if accesses is None:
            return None
        arguments_ok = self._arguments_stable(function)

        invalid: Set[int] = set()
        for access in accesses:
            if access.role == 'update':
                invalid.add(access.index)
            elif access.role == 'write':
                if not access.straight_line or not self._is_modelled_value(
                        access.assignment.right, name, arguments_ok):
                    invalid.add(access.index)

        state = _StackState(source, invalid, length)
        if source == 'local':
            declarator = self._local_declarator(function, name)
            for i, element in enumerate(declarator.node.init.elements):
                if element is None:
                    continue
                if element.type == 'SpreadElement' or static_value(element) is NOT_CONSTANT:
                    state.cells[i] = INVALID
                else:
                    state.cells[i] = Cell(CellKind.VALUE, element)

        reads = {id(a.path.node): a for a in accesses if a.role == 'read' and not a.nested}
        writes = {id(a.assignment): a for a in accesses if a.role == 'write' and a.straight_line}
        lengths = {id(a.assignment): a for a in accesses if a.role == 'length'}

        changes = 0
        body_path = NodePath(function.body, function, 'body', None, NodePath(function))
        for statement in list(function.body.body):
            statement_path = body_path.child('body', function.body.body.index(statement))
            for expression_path in self._evaluation_units(statement_path):
                node = expression_path.node
                if id(node) in writes:
                    access = writes[id(node)]
                    changes += self._rewrite_reads(expression_path.child('right'), reads, state, name)
                    state.write(access.index, self._value_cell(node.right, name, state, arguments_ok))
                elif id(node) in lengths:
                    state.truncate(lengths[id(node)].index)
                else:
                    changes += self._rewrite_reads(expression_path, reads, state, name)
        return changes

    @staticmethod
    def _evaluation_units(statement_path: NodePath) -> List[NodePath]:
        statement = statement_path.node
        if statement.type == 'ExpressionStatement':
            expression_path = statement_path.child('expression')
            if statement.expression.type == 'SequenceExpression':
                return [expression_path.child('expressions', i)
                        for i in range(len(statement.expression.expressions))]
            return [expression_path]
        return [statement_path]

    def _rewrite_reads(self, root: NodePath, reads: Dict[int, StackAccess],
                       state: '_StackState', name: str) -> int:
        changes = 0
        for path in walk(root.node, root):
            access = reads.get(id(path.node))
            if access is None:
                continue
            cell = state.cell(access.index)
            if cell.kind == CellKind.VALUE:
                path.replace_with(cell.node.clone())
                changes += 1
            elif cell.kind == CellKind.REF and cell.index != access.index:
                path.node.property = literal(cell.index)
                changes += 1
        return changes

    def _value_cell(self, rhs: Node, name: str, state: '_StackState', arguments_ok: bool) -> Cell:
        if static_value(rhs) is not NOT_CONSTANT:
            return Cell(CellKind.VALUE, rhs)
        if rhs.type == 'ArrayExpression' and len(rhs.elements) == 1 \
                and rhs.elements[0] is not None \
                and static_value(rhs.elements[0]) is not NOT_CONSTANT:
            return Cell(CellKind.VALUE, rhs)
        if rhs.type == 'MemberExpression' and rhs.computed and is_identifier(rhs.object, name):
            source_index = static_index(rhs.property)
            source_cell = state.cell(source_index)
            if source_cell.kind == CellKind.PARAM:
                return Cell(CellKind.REF, index=source_index)
            return source_cell
        if arguments_ok and self._arguments_read(rhs):
            return Cell(CellKind.VALUE, rhs)
        return INVALID

    # ---- Cleanup ----

    def _cleanup(self, function: Node, name: str, source: str) -> bool:
        accesses = self._collect(function, name)
        if accesses is None or any(a.role in ('read', 'update') for a in accesses):
            return False
        assignments = {id(a.assignment) for a in accesses}
        _WriteStripper(assignments, name).visit(function.body)
        if source == 'rest':
            function.params = []
        else:
            declarator = self._local_declarator(function, name)
            if declarator is None or not is_side_effect_free(declarator.node.init, (name,)):
                return False
            declarator.remove()
        logger.debug('Stack %s removed', name)
        return True


class _StackState:
    """The stack cache for one iteration."""

    def __init__(self, source: str, invalid: Set[int], length: Optional[int] = None):
        self.source = source
        self.invalid = invalid
        self.cells: Dict[int, Cell] = {}
        # arguments past the declared length read as undefined
        self.truncated_at: Optional[int] = length if source == 'rest' else None

    def _default(self, index: int) -> Cell:
        if self.source == 'local' or (self.truncated_at is not None and index >= self.truncated_at):
            return Cell(CellKind.VALUE, void_zero())
        return PARAM

    def cell(self, index: int) -> Cell:
        if index in self.invalid:
            return INVALID
        return self.cells.get(index) or self._default(index)

    def write(self, index: int, cell: Cell) -> None:
        for other, existing in list(self.cells.items()):
            if existing.kind == CellKind.REF and existing.index == index and other != index:
                self.cells[other] = INVALID
        self.cells[index] = INVALID if index in self.invalid else cell

    def truncate(self, length: int) -> None:
        self.truncated_at = length
        for index in list(self.cells):
            if index >= length:
                del self.cells[index]
        for other, existing in list(self.cells.items()):
            if existing.kind == CellKind.REF and existing.index >= length:
                self.cells[other] = INVALID


class _WriteStripper(NodeTransformer):
    """Drops dead stack writes, keeping right-hand sides with side effects."""

    def __init__(self, assignments: Set[int], stack_name: str):
        self.assignments = assignments
        self.trusted = (stack_name,)

    def visit_ExpressionStatement(self, node: Node):
        expression = node.expression
        items = expression.expressions if expression.type == 'SequenceExpression' else [expression]
        kept = []
        for item in items:
            if id(item) in self.assignments:
                if not is_side_effect_free(item.right, self.trusted):
                    kept.append(item.right)
            else:
                kept.append(item)
        if not kept:
            return None
        if len(kept) == 1:
            node.expression = kept[0]
        else:
            expression.expressions = kept
        return self.generic_visit(node)

    def visit_AssignmentExpression(self, node: Node) -> Node:
        self.generic_visit(node)
        if id(node) in self.assignments:
            return node.right
        return node
