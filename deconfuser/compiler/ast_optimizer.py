"""
AST-Level Optimizer
===================

Source-level simplifications applied between the de-transform passes.

Passes:
1. Constant Folding - Evaluate operators over literal operands with JS semantics
2. Branch Pruning - Replace ``if``/``?:`` with a static test by the taken branch
"""

import math
from collections import defaultdict
from typing import Any, Dict, List, Optional, Union

from deconfuser.compiler import jsvalues
from deconfuser.compiler.jsvalues import NOT_CONSTANT, UNDEFINED
from deconfuser.compiler.nodes import (
    Node, NodeTransformer, is_literal, static_value, value_to_node, void_zero,
)


class ConstantFolder(NodeTransformer):
    """
    Constant folding pass.

    Evaluates expressions where all operands are constants:
    - 2 * 3 + 1 -> 7
    - "hel" + "lo" -> "hello"
    - ![] -> false
    - true && x -> x

    Results that are not finite numbers are left in their original form,
    so the folder reaches a fixed point.
    """

    ARITHMETIC_OPS = frozenset({'-', '*', '/', '%', '**'})
    BITWISE_OPS = frozenset({'|', '&', '^', '<<', '>>', '>>>'})
    COMPARISON_OPS = frozenset({'<', '>', '<=', '>='})
    EQUALITY_OPS = frozenset({'==', '!=', '===', '!=='})

    def __init__(self, stats: Optional[Dict[str, int]] = None):
        self.stats = stats if stats is not None else defaultdict(int)
        self.changes = 0

    def _folded(self, value: Any) -> Optional[Node]:
        if not self._is_safe_constant(value):
            return None
        self.changes += 1
        self.stats['constants_folded'] += 1
        return value_to_node(value)

    def visit_BinaryExpression(self, node: Node) -> Node:
        self.generic_visit(node)

        left = static_value(node.left)
        right = static_value(node.right)
        if left is NOT_CONSTANT or right is NOT_CONSTANT:
            return node
        try:
            result = self._eval_binop(node.operator, left, right)
        except (ZeroDivisionError, OverflowError, ValueError, TypeError):
            return node
        if result is NOT_CONSTANT:
            return node
        return self._folded(result) or node

    def visit_UnaryExpression(self, node: Node) -> Node:
        self.generic_visit(node)

        operator = node.operator
        argument = node.argument
        if operator == '-' and is_literal(argument) and jsvalues.is_number(argument.value):
            return node
        if operator == '!' and argument.type in ('ArrayExpression', 'ObjectExpression') \
                and not (argument.elements if argument.type == 'ArrayExpression'
                         else argument.properties):
            return self._folded(False) or node

        value = static_value(argument)
        if value is NOT_CONSTANT:
            return node
        if operator == 'void':
            if is_literal(argument) and argument.value == 0 \
                    and not isinstance(argument.value, bool):
                return node
            self.changes += 1
            self.stats['constants_folded'] += 1
            return void_zero()
        try:
            if operator == '!':
                result = not jsvalues.truthy(value)
            elif operator == '-':
                result = -jsvalues.to_number(value)
            elif operator == '+':
                result = jsvalues.to_number(value)
            elif operator == '~':
                result = jsvalues.to_int32(~jsvalues.to_int32(value))
            elif operator == 'typeof':
                result = jsvalues.type_of(value)
            else:
                return node
        except TypeError:
            return node
        return self._folded(result) or node

    def visit_LogicalExpression(self, node: Node) -> Node:
        self.generic_visit(node)

        left = static_value(node.left)
        if left is NOT_CONSTANT:
            return node
        if node.operator == '&&':
            taken = node.right if jsvalues.truthy(left) else node.left
        elif node.operator == '||':
            taken = node.left if jsvalues.truthy(left) else node.right
        elif node.operator == '??':
            taken = node.right if left is None or left is UNDEFINED else node.left
        else:
            return node
        self.changes += 1
        self.stats['constants_folded'] += 1
        return taken

    def _eval_binop(self, operator: str, left: Any, right: Any) -> Any:
        if operator == '+':
            if isinstance(left, str) or isinstance(right, str):
                return jsvalues.to_string(left) + jsvalues.to_string(right)
            return self._number(float(jsvalues.to_number(left)) + float(jsvalues.to_number(right)))
        if operator in self.ARITHMETIC_OPS:
            a = float(jsvalues.to_number(left))
            b = float(jsvalues.to_number(right))
            if operator == '-':
                return self._number(a - b)
            if operator == '*':
                return self._number(a * b)
            if operator == '/':
                return self._number(a / b)
            if operator == '%':
                return self._number(math.fmod(a, b))
            if a < 0 and not b.is_integer():
                return NOT_CONSTANT
            return self._number(math.pow(a, b))
        if operator in self.BITWISE_OPS:
            a = jsvalues.to_int32(left)
            shift = jsvalues.to_uint32(right) & 31
            if operator == '|':
                return jsvalues.to_int32(a | jsvalues.to_int32(right))
            if operator == '&':
                return jsvalues.to_int32(a & jsvalues.to_int32(right))
            if operator == '^':
                return jsvalues.to_int32(a ^ jsvalues.to_int32(right))
            if operator == '<<':
                return jsvalues.to_int32(a << shift)
            if operator == '>>':
                return a >> shift
            return jsvalues.to_uint32(left) >> shift
        if operator in self.COMPARISON_OPS:
            if isinstance(left, str) and isinstance(right, str):
                a, b = left, right
            else:
                a, b = jsvalues.to_number(left), jsvalues.to_number(right)
                if a != a or b != b:
                    return False
            return {'<': a < b, '>': a > b, '<=': a <= b, '>=': a >= b}[operator]
        if operator in self.EQUALITY_OPS:
            if operator == '===':
                return jsvalues.strict_equals(left, right)
            if operator == '==':
                return jsvalues.loose_equals(left, right)
            if operator == '!==':
                return not jsvalues.strict_equals(left, right)
            return not jsvalues.loose_equals(left, right)
        return NOT_CONSTANT

    @staticmethod
    def _number(value: float) -> Any:
        return jsvalues.normalize_number(value)

    def _is_safe_constant(self, value) -> bool:
        """Check if a value is safe to embed as a literal."""
        if jsvalues.is_number(value):
            return math.isfinite(value)
        return isinstance(value, (str, bool, type(None)))


class BranchPruner(NodeTransformer):
    """
    Dead branch elimination pass.

    Removes:
    - if (false) ... branches (keeping the ``else``)
    - if (true) ... (keeps only the consequent)
    - c ? a : b with a static test
    """

    def __init__(self, stats: Optional[Dict[str, int]] = None):
        self.stats = stats if stats is not None else defaultdict(int)
        self.changes = 0

    def visit_IfStatement(self, node: Node) -> Union[Node, List[Node], None]:
        self.generic_visit(node)

        test = static_truthiness(node.test)
        if test is None:
            return node
        self.changes += 1
        self.stats['dead_branches_removed'] += 1
        taken = node.consequent if test else node.alternate
        if taken is None:
            return None
        if taken.type == 'BlockStatement' and not _declares_lexically(taken.body):
            return taken.body
        return taken

    def visit_ConditionalExpression(self, node: Node) -> Node:
        self.generic_visit(node)

        test = static_truthiness(node.test)
        if test is None:
            return node
        self.changes += 1
        self.stats['dead_branches_removed'] += 1
        return node.consequent if test else node.alternate


def static_truthiness(node: Node) -> Optional[bool]:
    """ToBoolean of a side-effect-free static expression, else ``None``."""
    value = static_value(node)
    if value is not NOT_CONSTANT:
        return jsvalues.truthy(value)
    if node.type in ('FunctionExpression', 'ArrowFunctionExpression'):
        return True
    if node.type == 'ArrayExpression' and not node.elements:
        return True
    if node.type == 'ObjectExpression' and not node.properties:
        return True
    return None


def _declares_lexically(statements: List[Node]) -> bool:
    for statement in statements:
        if statement.type in ('ClassDeclaration', 'FunctionDeclaration'):
            return True
        if statement.type == 'VariableDeclaration' and statement.kind != 'var':
            return True
    return False


def fold(tree: Node, stats: Optional[Dict[str, int]] = None) -> int:
    """Constant-fold ``tree`` in place; returns the number of rewrites."""
    folder = ConstantFolder(stats)
    folder.visit(tree)
    return folder.changes


def prune(tree: Node, stats: Optional[Dict[str, int]] = None) -> int:
    """Prune statically decided branches in place; returns the number of rewrites."""
    pruner = BranchPruner(stats)
    pruner.visit(tree)
    return pruner.changes
