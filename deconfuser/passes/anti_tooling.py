"""
Anti-tooling decoys.

The obfuscator wraps statements in calls to a parameterless function with
an empty body, so the statement turns into a call argument:

    function decoy() {}
    decoy(log(1), log(2));      // -> log(1); log(2);
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from deconfuser.analysis.scope import BindingTracker
from deconfuser.compiler.nodes import (
    Node, NodePath, expression_statement, void_zero,
)
from deconfuser.passes.base import Pass
from deconfuser.recursive.purity_analyzer import is_side_effect_free

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AntiToolingMatch:
    name: str
    function: Node


def match_anti_tooling(function: Node) -> Optional[AntiToolingMatch]:
    if function.type != 'FunctionDeclaration' or function.id is None:
        return None
    if function.params or function.get('generator') or function.get('is_async'):
        return None
    if function.body.type != 'BlockStatement' or function.body.body:
        return None
    return AntiToolingMatch(function.id.name, function)


def _effects(arguments: List[Node]) -> List[Node]:
    """Side-effecting expressions of ``arguments``, sequences flattened."""
    effects = []
    for arg in arguments:
        items = arg.expressions if arg.type == 'SequenceExpression' else [arg]
        effects.extend(item for item in items if not is_side_effect_free(item))
    return effects


class AntiToolingPass(Pass):
    name = 'anti_tooling'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        matches = []
        for binding in list(tracker.index.all_bindings()):
            if binding.kind != 'function':
                continue
            match = match_anti_tooling(binding.path.node)
            if match is not None:
                matches.append(match)

        rewritten = 0
        for match in matches:
            binding = tracker.binding_for_declaration(match.function, match.name)
            if binding is None:
                continue
            logger.info('AntiTooling function: %s', match.name)
            sites = self.call_sites(binding, 'anti-tooling function')
            # innermost first: an outer rewrite never detaches an inner site
            for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
                if self._unwrap(call_path):
                    rewritten += 1
            self.delete(tracker, match.name, match.function)

        self.stats['calls_unwrapped'] += rewritten
        return rewritten

    def _unwrap(self, call_path: NodePath) -> bool:
        arguments: List[Node] = call_path.node.arguments
        if any(arg.type == 'SpreadElement' for arg in arguments):
            return False
        kept = [arg for arg in arguments if not is_side_effect_free(arg)]
        holder = call_path.parent_path
        if holder is not None and holder.type == 'ExpressionStatement':
            holder.replace_with_statements([expression_statement(e) for e in _effects(kept)])
            return True
        if not kept:
            call_path.replace_with(void_zero())
        else:
            call_path.replace_with(Node('SequenceExpression', expressions=kept + [void_zero()]))
        return True
