"""
Duplicate-literal extraction.

Template:

    var arrayName;
    arrayName = getArrayFn();
    function getArrayFn() { return [...literals]; }
    function get(index) { return arrayName[index]; }

Every call of an accessor (a function reading ``arrayName``) is evaluated
against the factory, the array and the accessor, and replaced by its value.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from deconfuser.analysis.closure import ClosureItem, DependencyClosure, declaration_for
from deconfuser.analysis.scope import Binding, BindingTracker, ScopeIndex
from deconfuser.compiler.nodes import (
    Node, call, identifier, is_identifier, var_declaration,
)
from deconfuser.passes.base import (
    Pass, constant_arguments, enclosing_function_binding, is_call_of,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateLiteralMatch:
    factory_name: str
    factory: Node
    array_name: str
    array_declarator: Node
    array_declaration: Node
    array_position: float
    accessors: Tuple[Binding, ...]


def match_duplicate_literal(binding: Binding, index: ScopeIndex) -> Optional[DuplicateLiteralMatch]:
    factory = binding.path.node
    if factory.type != 'FunctionDeclaration' or factory.params or not factory.body.body:
        return None
    first = factory.body.body[0]
    if first.type != 'ReturnStatement' or first.argument is None \
            or first.argument.type != 'ArrayExpression':
        return None
    if binding.references != 1:
        return None

    ref = binding.reference_paths[0]
    if not is_call_of(ref) or ref.parent.arguments:
        return None
    call_path = ref.parent_path
    holder = call_path.parent
    if holder is None:
        return None
    if holder.type == 'AssignmentExpression' and call_path.key == 'right' \
            and holder.operator == '=' and is_identifier(holder.left):
        array_binding = index.ref_binding.get(id(holder.left))
    elif holder.type == 'VariableDeclarator' and call_path.key == 'init' \
            and is_identifier(holder.id):
        array_binding = index.binding_for_declaration(holder, holder.id.name)
    else:
        return None
    if array_binding is None or not array_binding.reference_paths:
        return None

    accessors = []
    for array_ref in array_binding.reference_paths:
        accessor = enclosing_function_binding(array_ref, index)
        if accessor is None:
            return None
        if accessor not in accessors:
            accessors.append(accessor)

    array_declaration = var_declaration(array_binding.name,
                                        call(identifier(binding.name), []))
    return DuplicateLiteralMatch(
        factory_name=binding.name,
        factory=factory,
        array_name=array_binding.name,
        array_declarator=array_binding.path.node,
        array_declaration=array_declaration,
        array_position=holder.start,
        accessors=tuple(accessors),
    )


class DuplicateLiteralPass(Pass):
    name = 'duplicate_literal'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            if binding.kind != 'function':
                continue
            binding = tracker.binding_for_declaration(binding.path.node, binding.name)
            if binding is None:
                continue
            match = match_duplicate_literal(binding, tracker.index)
            if match is None:
                continue
            logger.info('Array name: %s (factory %s, %d accessors)', match.array_name,
                        match.factory_name, len(match.accessors))
            rewritten += self._extract(match, tracker)
            self._remove(match, tracker)

        self.stats['literals_restored'] += rewritten
        return rewritten

    def _extract(self, match: DuplicateLiteralMatch, tracker: BindingTracker) -> int:
        rewritten = 0
        for original in match.accessors:
            accessor = tracker.binding_for_declaration(original.path.node, original.name)
            if accessor is None:
                continue
            item = declaration_for(accessor)
            if item is None:
                continue
            closure = DependencyClosure([
                ClosureItem(match.factory_name, match.factory, match.factory.start),
                ClosureItem(match.array_name, match.array_declaration, match.array_position),
                item,
            ])
            closure.grow(tracker.index, [accessor.path.node])
            sites = self.call_sites(accessor, 'array accessor')
            for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
                if not constant_arguments(call_path.node):
                    continue
                value = self.extract(closure, call_path.node, call_path.node)
                if value is not None:
                    call_path.replace_with(value)
                    rewritten += 1
            tracker.recrawl()
        return rewritten

    def _remove(self, match: DuplicateLiteralMatch, tracker: BindingTracker) -> None:
        for accessor in match.accessors:
            self.delete(tracker, accessor.name, accessor.path.node)
        self.delete(tracker, match.array_name, match.array_declarator, keep_side_effects=False)
        self.delete(tracker, match.factory_name, match.factory, keep_side_effects=False)
