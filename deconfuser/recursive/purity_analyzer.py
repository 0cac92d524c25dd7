"""
Purity Analyzer
================

Static analysis that classifies a JavaScript expression by how much of the
surrounding program it can observe or disturb.

Theoretical Foundation:
    Expressions are placed in a purity lattice:

        CONSTANT ⊂ PURE ⊂ READ_ONLY ⊂ IMPURE

    Where:
        - CONSTANT: built from literals and operators only; its value is
          known without running anything
        - PURE: allocates (closures, fresh arrays/objects) but reads no
          outside state
        - READ_ONLY: reads bindings, or properties of literals and plain
          arrays; never writes them
        - IMPURE: calls, constructs, assigns, updates, deletes, or reads a
          property that may be a getter

    Consumers:
        - Call sites sent to the evaluation oracle must have CONSTANT
          arguments, otherwise the site is declined
        - Removing a write keeps its right-hand side unless the RHS is at
          most READ_ONLY
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, List, Optional

from deconfuser.compiler.nodes import Node


class PurityLevel(IntEnum):
    """
    Graduated purity classification.

    Higher values = more impure.
    """
    CONSTANT = 0    # Literal-only: value known statically
    PURE = 1        # No reads of outside state
    READ_ONLY = 2   # Reads bindings/properties: removable when unused
    IMPURE = 3      # Observable side effects: must be kept


@dataclass
class PurityReport:
    """Purity of one expression and the constructs that decided it."""
    level: PurityLevel
    reasons: List[str] = field(default_factory=list)

    @property
    def is_constant(self) -> bool:
        return self.level == PurityLevel.CONSTANT

    @property
    def is_side_effect_free(self) -> bool:
        return self.level <= PurityLevel.READ_ONLY


_IMPURE_TYPES = {
    'CallExpression': 'call',
    'NewExpression': 'construction',
    'AssignmentExpression': 'assignment',
    'UpdateExpression': 'update',
    'YieldExpression': 'yield',
    'AwaitExpression': 'await',
    'TaggedTemplateExpression': 'tagged template',
}


class PurityAnalyzer:
    """
    Classifies expressions into the purity lattice.

    Usage:
        >>> PurityAnalyzer().analyze(node).level
        PurityLevel.CONSTANT
    """

    def __init__(self, trusted: Iterable[str] = ()):
        self.trusted = frozenset(trusted) | {'arguments'}

    def _plain_object(self, node: Node) -> bool:
        """Property reads of ``node`` cannot reach a user-defined getter."""
        if node.type in ('ArrayExpression', 'TemplateLiteral'):
            return True
        if node.type == 'Literal':
            return node.get('regex') is None
        return node.type == 'Identifier' and node.name in self.trusted

    def analyze(self, node: Optional[Node]) -> PurityReport:
        report = PurityReport(level=PurityLevel.CONSTANT)
        if node is not None:
            self._visit(node, report)
        return report

    def _raise(self, report: PurityReport, level: PurityLevel, reason: str) -> None:
        if level > report.level:
            report.level = level
        if level > PurityLevel.PURE:
            report.reasons.append(reason)

    def _visit(self, node: Node, report: PurityReport) -> None:
        kind = node.type
        if kind in _IMPURE_TYPES:
            self._raise(report, PurityLevel.IMPURE, _IMPURE_TYPES[kind])
            return
        if kind == 'Literal':
            if node.get('regex') is not None:
                self._raise(report, PurityLevel.PURE, 'regex allocation')
            return
        if kind == 'TemplateLiteral':
            for expression in node.expressions:
                # interpolation calls toString on objects
                self._raise(report, PurityLevel.READ_ONLY, 'template interpolation')
                self._visit(expression, report)
            return
        if kind == 'UnaryExpression':
            if node.operator == 'delete':
                self._raise(report, PurityLevel.IMPURE, 'delete')
                return
            self._visit(node.argument, report)
            return
        if kind in ('BinaryExpression', 'LogicalExpression'):
            if node.operator in ('in', 'instanceof'):
                self._raise(report, PurityLevel.READ_ONLY, node.operator)
            self._visit(node.left, report)
            self._visit(node.right, report)
            return
        if kind in ('ConditionalExpression', 'SequenceExpression', 'ArrayExpression'):
            for child in node.children():
                self._visit(child, report)
            return
        if kind == 'SpreadElement':
            self._raise(report, PurityLevel.READ_ONLY, 'spread')
            self._visit(node.argument, report)
            return
        if kind == 'ObjectExpression':
            for prop in node.properties:
                if prop.type != 'Property' or prop.get('kind', 'init') != 'init':
                    self._raise(report, PurityLevel.PURE, 'accessor property')
                if prop.type != 'Property':
                    self._visit(prop, report)
                    continue
                if prop.get('computed'):
                    self._visit(prop.key, report)
                self._visit(prop.value, report)
            return
        if kind in ('FunctionExpression', 'ArrowFunctionExpression'):
            self._raise(report, PurityLevel.PURE, 'closure')
            return
        if kind == 'ClassExpression':
            if node.get('superClass') is not None:
                self._raise(report, PurityLevel.IMPURE, 'class heritage')
            else:
                self._raise(report, PurityLevel.PURE, 'class')
            return
        if kind in ('Identifier', 'ThisExpression', 'Super', 'MetaProperty'):
            self._raise(report, PurityLevel.READ_ONLY, f'read of {kind}')
            return
        if kind == 'MemberExpression':
            if self._plain_object(node.object):
                self._raise(report, PurityLevel.READ_ONLY, 'property read')
            else:
                self._raise(report, PurityLevel.IMPURE, 'property read may run a getter')
            self._visit(node.object, report)
            if node.computed:
                self._visit(node.property, report)
            return
        self._raise(report, PurityLevel.IMPURE, f'unclassified {kind}')


_analyzer = PurityAnalyzer()


def analyze_purity(node: Optional[Node]) -> PurityReport:
    return _analyzer.analyze(node)


def is_constant_expression(node: Optional[Node]) -> bool:
    """Literal-only expression (regexes and closures excluded)."""
    return node is not None and _analyzer.analyze(node).is_constant


def is_side_effect_free(node: Optional[Node], trusted: Iterable[str] = ()) -> bool:
    """
    Whether dropping ``node`` is unobservable.

    Property reads count as effects (a getter may run) unless the object is
    a literal or a name known to hold a plain array (``arguments`` and
    ``trusted``).
    """
    if node is None:
        return True
    analyzer = PurityAnalyzer(trusted) if trusted else _analyzer
    return analyzer.analyze(node).is_side_effect_free
