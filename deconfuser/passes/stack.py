"""
Stack de-transform.

Two parts. The function-length helper the obfuscator adds so that
``fn.length`` survives the rewrite of parameters into a rest array:

    function setLength(fn, n = 0) {
      Object.defineProperty(fn, "length", { value: n, configurable: true });
      return fn;
    }

is removed, its declared lengths kept as hints. Then every function whose
parameter list is exactly ``(...s)`` is handed to the stack interpreter.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from deconfuser.analysis.scope import BindingTracker
from deconfuser.compiler.nodes import (
    FUNCTION_TYPES, Node, NodePath, is_identifier, property_key, static_index, walk,
    walk_nodes,
)
from deconfuser.passes.base import Pass, function_of
from deconfuser.recursive.stack_interpreter import StackInterpreter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LengthHelperMatch:
    name: str
    function: Node


def _defines_length(call: Node, param: str) -> bool:
    """``X(param, _, {value: .., configurable: ..})``."""
    if call.type != 'CallExpression' or len(call.arguments) < 3:
        return False
    if not is_identifier(call.arguments[0], param):
        return False
    descriptor = call.arguments[2]
    if descriptor.type != 'ObjectExpression' or len(descriptor.properties) != 2:
        return False
    first, second = descriptor.properties
    if first.type != 'Property' or second.type != 'Property':
        return False
    return property_key(first) == 'value' and property_key(second) == 'configurable'


def match_length_helper(function: Node, arrow_wrapper: Optional[str] = None) -> Optional[LengthHelperMatch]:
    if function.type != 'FunctionDeclaration' or function.id is None:
        return None
    if function.id.name == arrow_wrapper:
        return None
    if not function.params or not is_identifier(function.params[0]):
        return None
    param = function.params[0].name
    for node in walk_nodes(function.body):
        if node.type in FUNCTION_TYPES:
            continue
        if _defines_length(node, param):
            return LengthHelperMatch(function.id.name, function)
    return None


def rest_stack_name(function: Node) -> Optional[str]:
    params = function.params
    if len(params) == 1 and params[0].type == 'RestElement' and is_identifier(params[0].argument):
        return params[0].argument.name
    return None


class StackPass(Pass):
    name = 'stack'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = self._remove_length_helpers(tracker)
        interpreter = StackInterpreter(self.context.max_stack_iterations, self.stats)
        functions = [p.node for p in walk(program) if p.node.type in FUNCTION_TYPES]
        for function in functions:
            name = rest_stack_name(function)
            if name is None:
                continue
            rewritten += interpreter.resolve(function, name, self.context.length_hint(function))
        tracker.recrawl()
        return rewritten

    # ---- Function-length helper ----

    def _remove_length_helpers(self, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            if binding.kind != 'function':
                continue
            match = match_length_helper(binding.path.node, self.context.arrow_wrapper)
            if match is None:
                continue
            binding = tracker.binding_for_declaration(match.function, match.name)
            if binding is None:
                continue
            logger.info('Function length helper: %s', match.name)
            sites = self.call_sites(binding, 'function length helper')
            for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
                if self._unwrap(call_path, tracker):
                    rewritten += 1
            self.delete(tracker, match.name, match.function)
        self.stats['length_calls_removed'] += rewritten
        return rewritten

    def _unwrap(self, call_path: NodePath, tracker: BindingTracker) -> bool:
        arguments = call_path.node.arguments
        if not arguments or arguments[0].type == 'SpreadElement':
            logger.warning('Unexpected call of length helper at offset %s', call_path.node.start)
            return False
        target = arguments[0]
        length = static_index(arguments[1]) if len(arguments) > 1 else 0
        if is_identifier(target):
            binding = tracker.index.ref_binding.get(id(target))
            function = function_of(binding) if binding is not None else None
            if function is not None and length is not None:
                self.context.length_hints.append((function, length))
            holder = call_path.parent_path
            if holder is not None and holder.type == 'ExpressionStatement':
                holder.remove()
                return True
        elif target.type in FUNCTION_TYPES and length is not None:
            self.context.length_hints.append((target, length))
        call_path.replace_with(target)
        return True
