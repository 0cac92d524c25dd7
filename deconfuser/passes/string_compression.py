"""
Compressed-string decoding.

Template:

    function decompress(s) {
      var dict = {}, data = (s + "").split(""), ...;
      for (var i = 1; i < data.length; i++) { var c = data[i].charCodeAt(0); ... }
      return out.join("").split(delimiter);
    }
    var table = decompress("...");
    function get(i) { return table[i]; }

Every ``get(<constant>)`` is evaluated in a sandbox holding the decoder,
the table and the lookup, and replaced by the string it returns.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from deconfuser.analysis.closure import DependencyClosure
from deconfuser.analysis.fingerprint import has_fragments
from deconfuser.analysis.scope import Binding, BindingTracker, ScopeIndex
from deconfuser.compiler.nodes import Node, is_identifier
from deconfuser.passes.base import (
    Pass, constant_arguments, enclosing_function_binding, function_of, is_call_of,
)

logger = logging.getLogger(__name__)

DECODER_FINGERPRINT = ('split', 'for(', 'charCodeAt')


@dataclass(frozen=True)
class StringCompressionMatch:
    decoder_name: str
    decoder: Node
    table_name: str
    table_declarator: Node
    lookups: Tuple[Binding, ...]


def _table_binding(call_path, index: ScopeIndex) -> Optional[Binding]:
    holder = call_path.parent
    if holder is None:
        return None
    if holder.type == 'VariableDeclarator' and call_path.key == 'init' and is_identifier(holder.id):
        return index.binding_for_declaration(holder, holder.id.name)
    if holder.type == 'AssignmentExpression' and call_path.key == 'right' \
            and holder.operator == '=' and is_identifier(holder.left):
        return index.ref_binding.get(id(holder.left))
    return None


def match_string_compression(binding: Binding, index: ScopeIndex) -> Optional[StringCompressionMatch]:
    function = function_of(binding)
    if function is None or not has_fragments(function, DECODER_FINGERPRINT):
        return None

    tables = []
    for ref in binding.reference_paths:
        if not is_call_of(ref):
            return None
        table = _table_binding(ref.parent_path, index)
        if table is None:
            return None
        tables.append(table)
    if len(tables) != 1 or not tables[0].reference_paths:
        return None
    table = tables[0]

    lookups = []
    for ref in table.reference_paths:
        lookup = enclosing_function_binding(ref, index)
        if lookup is None or lookup is binding:
            return None
        if lookup not in lookups:
            lookups.append(lookup)

    return StringCompressionMatch(
        decoder_name=binding.name,
        decoder=binding.path.node,
        table_name=table.name,
        table_declarator=table.path.node,
        lookups=tuple(lookups),
    )


class StringCompressionPass(Pass):
    name = 'string_compression'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        rewritten = 0
        for binding in list(tracker.index.all_bindings()):
            binding = tracker.binding_for_declaration(binding.path.node, binding.name)
            if binding is None:
                continue
            match = match_string_compression(binding, tracker.index)
            if match is None:
                continue
            logger.info('String compression decoder: %s (table %s, %d lookups)',
                        match.decoder_name, match.table_name, len(match.lookups))
            for original in match.lookups:
                lookup = tracker.binding_for_declaration(original.path.node, original.name)
                if lookup is not None:
                    rewritten += self._decode(lookup, tracker)
            for lookup in match.lookups:
                self.delete(tracker, lookup.name, lookup.path.node)
            self.delete(tracker, match.table_name, match.table_declarator, keep_side_effects=False)
            self.delete(tracker, match.decoder_name, match.decoder)

        self.stats['strings_decoded'] += rewritten
        return rewritten

    def _decode(self, lookup: Binding, tracker: BindingTracker) -> int:
        closure = DependencyClosure.build(tracker.index, [lookup])
        logger.debug('Lookup %s closure: %s', lookup.name, closure.names())
        rewritten = 0
        sites = self.call_sites(lookup, 'string lookup')
        for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
            if not constant_arguments(call_path.node):
                continue
            value = self.extract(closure, call_path.node, call_path.node)
            if value is not None:
                call_path.replace_with(value)
                rewritten += 1
        tracker.recrawl()
        return rewritten
