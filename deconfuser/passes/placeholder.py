"""
Single-use placeholder literals.

    var x = "secret";
    use(x);
    x = "other";          // never read again

becomes ``use("secret");``. The literal (string, array or object) is read
once, before its only overwrite, in straight-line code of the same function.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from deconfuser.analysis.scope import Binding, BindingTracker
from deconfuser.compiler.nodes import FUNCTION_TYPES, LOOP_TYPES, Node, NodePath
from deconfuser.passes.base import Pass
from deconfuser.recursive.purity_analyzer import is_constant_expression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaceholderMatch:
    name: str
    declarator: Node
    reference: NodePath
    init: Node


def _is_placeholder_value(node: Optional[Node]) -> bool:
    if node is None or not is_constant_expression(node):
        return False
    if node.type == 'Literal':
        return isinstance(node.value, str)
    return node.type in ('ArrayExpression', 'ObjectExpression')


def _enclosing_function(path: NodePath) -> Optional[Node]:
    function_path = path.function_parent()
    return function_path.node if function_path is not None else None


def _in_loop(path: NodePath) -> bool:
    """A loop encloses ``path`` inside its own function."""
    for ancestor in path.ancestors():
        if ancestor.type in FUNCTION_TYPES:
            return False
        if ancestor.type in LOOP_TYPES:
            return True
    return False


def match_placeholder(binding: Binding) -> Optional[PlaceholderMatch]:
    if binding.kind not in ('var', 'let'):
        return None
    declarator = binding.path.node
    if declarator.type != 'VariableDeclarator' or not _is_placeholder_value(declarator.init):
        return None
    if binding.references != 1 or len(binding.constant_violations) != 1:
        return None

    reference = binding.reference_paths[0]
    violation = binding.constant_violations[0]
    write = violation.node
    if write.type != 'AssignmentExpression' or write.operator != '=' \
            or violation.parent is None or violation.parent.type != 'ExpressionStatement':
        return None

    positions = (declarator.start, reference.node.start, write.start)
    if not all(math.isfinite(p) for p in positions):
        return None
    if not positions[0] < positions[1] < positions[2]:
        return None

    function = _enclosing_function(binding.path)
    if _enclosing_function(reference) is not function or _enclosing_function(violation) is not function:
        return None
    if any(_in_loop(p) for p in (binding.path, reference, violation)):
        return None
    return PlaceholderMatch(binding.name, declarator, reference, declarator.init)


class PlaceholderPass(Pass):
    name = 'placeholder'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            binding = tracker.binding_for_declaration(binding.path.node, binding.name)
            if binding is None:
                continue
            match = match_placeholder(binding)
            if match is None:
                continue
            logger.debug('Placeholder %s inlined at offset %s', match.name, match.reference.node.start)
            match.reference.replace_with(match.init.clone())
            rewritten += 1
            self.delete(tracker, match.name, match.declarator)

        self.stats['placeholders_inlined'] += rewritten
        return rewritten
