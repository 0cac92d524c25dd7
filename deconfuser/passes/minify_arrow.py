"""
Minified-arrow rewrapping.

Template:

    function wrap(arrowFn, functionLength = 0) {
      var functionObject = function () { return arrowFn(...arguments); };
      return Object.defineProperty(functionObject, "length", {
        "value": functionLength,
        "configurable": true
      });
    }

Each ``wrap(fn, n)`` becomes ``fn``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from deconfuser.analysis.fingerprint import has_fingerprint
from deconfuser.analysis.scope import BindingTracker
from deconfuser.compiler.nodes import FUNCTION_TYPES, Node, is_identifier, walk_nodes
from deconfuser.passes.base import Pass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArrowWrapperMatch:
    name: str
    function: Node


def _forwards_arguments(function: Node, target: str) -> bool:
    """``function`` contains ``return target(...arguments)``."""
    for node in walk_nodes(function.body):
        if node.type != 'ReturnStatement' or node.argument is None:
            continue
        call = node.argument
        if call.type == 'CallExpression' and is_identifier(call.callee, target) \
                and len(call.arguments) == 1 and call.arguments[0].type == 'SpreadElement' \
                and is_identifier(call.arguments[0].argument, 'arguments'):
            return True
    return False


def match_minify_arrow(function: Node) -> Optional[ArrowWrapperMatch]:
    if function.type != 'FunctionDeclaration' or function.id is None:
        return None
    if not function.params or not is_identifier(function.params[0]):
        return None
    target = function.params[0].name
    body = function.body.body
    if len(body) != 2:
        return None
    first = body[0]
    if first.type != 'VariableDeclaration' or len(first.declarations) != 1:
        return None
    declarator = first.declarations[0]
    if not is_identifier(declarator.id) or declarator.init is None \
            or declarator.init.type not in FUNCTION_TYPES:
        return None
    if not _forwards_arguments(declarator.init, target):
        return None
    if not has_fingerprint(body[1], (declarator.id.name,)) \
            or not has_fingerprint(body[1], ('defineProperty',)):
        return None
    return ArrowWrapperMatch(function.id.name, function)


class MinifyArrowPass(Pass):
    name = 'minify_arrow'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            if binding.kind != 'function':
                continue
            match = match_minify_arrow(binding.path.node)
            if match is None:
                continue
            logger.info('Arrow function wrapper: %s', match.name)
            self.context.arrow_wrapper = match.name
            binding = tracker.binding_for_declaration(match.function, match.name)
            if binding is None:
                continue
            sites = self.call_sites(binding, 'arrow function wrapper')
            for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
                arguments = call_path.node.arguments
                if not arguments or arguments[0].type == 'SpreadElement':
                    logger.warning('Unexpected call of %s at offset %s',
                                   match.name, call_path.node.start)
                    continue
                call_path.replace_with(arguments[0])
                rewritten += 1
            self.delete(tracker, match.name, match.function)

        self.stats['wrappers_unwrapped'] += rewritten
        return rewritten
