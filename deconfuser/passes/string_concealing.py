"""
Concealed-string decoding.

The obfuscator replaces string literals with calls of a getter that decodes
an entry of a backing array and memoizes it in a cache:

    function getGlobal() { ... try { ""["__proto__"]["constructor"]["name"] } catch (e) {} ... }
    var realm = getGlobal() || {};
    var TextDecoder_ = realm["TextDecoder"], Buffer_ = realm["Buffer"], ...;
    function bufferToString(b) {
      if (typeof TextDecoder_ !== "undefined" && TextDecoder_) return new TextDecoder_()["decode"](...);
      else if (typeof Buffer_ !== "undefined" && Buffer_) return Buffer_["from"](b)["toString"]("utf-8");
      ...
    }
    function decode(str) { var alphabet = "<91 distinct characters>"; ...; return bufferToString(out); }
    function get(i) { if (typeof cache[i] === "undefined") return cache[i] = decode(arr[i]); return cache[i]; }

For each ``get(<constant>)`` the pass evaluates

    (function () { <decode>; <get>; return get(<constant>); })()

in a sandbox seeded with the realm helpers. The cache and the backing array
are not located structurally: each undefined name reported by the sandbox
is resolved from the call site, its declaration is added to the closure and
the evaluation is retried. Each retry adds one name the closure did not
hold, so the loop ends after at most as many retries as the fragment has
distinct free names.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from deconfuser.analysis.closure import DependencyClosure, declaration_for, free_names
from deconfuser.analysis.fingerprint import has_fingerprint
from deconfuser.analysis.scope import Binding, BindingTracker, ScopeIndex
from deconfuser.compiler.nodes import Node, NodePath, call, walk, walk_nodes
from deconfuser.errors import OracleFailure, UndefinedReference
from deconfuser.passes.base import (
    Pass, constant_arguments, declared_functions, function_of, is_call_of,
)

logger = logging.getLogger(__name__)

REALM_FINGERPRINT = ('try', '__proto__', 'constructor', 'name', 'catch')
BRIDGE_FINGERPRINT = ('typeof', 'decode', 'from', 'toString')
ALPHABET_LENGTH = 91


@dataclass(frozen=True)
class StringConcealingMatch:
    realm: Binding
    helpers: Tuple[Binding, ...]
    bridge: Optional[Binding]
    decoders: Tuple[Binding, ...]
    getters: Tuple[Binding, ...]


def is_alphabet_literal(node: Node) -> bool:
    value = node.get('value') if node.type == 'Literal' else None
    return isinstance(value, str) and len(value) == ALPHABET_LENGTH \
        and len(set(value)) == ALPHABET_LENGTH


def _references_any(node: Node, bindings: List[Binding], index: ScopeIndex) -> bool:
    targets = {id(b.path.node) for b in bindings}
    for path in walk(node):
        if path.node.type == 'Identifier':
            binding = index.ref_binding.get(id(path.node))
            if binding is not None and id(binding.path.node) in targets:
                return True
    return False


def _calls_any(function: Node, bindings: List[Binding], index: ScopeIndex) -> bool:
    targets = {id(b.path.node) for b in bindings}
    for path in walk(function):
        if path.node.type != 'Identifier' or not is_call_of(path):
            continue
        binding = index.ref_binding.get(id(path.node))
        if binding is not None and id(binding.path.node) in targets:
            return True
    return False


def _realm_helpers(realm: Binding, index: ScopeIndex) -> List[Binding]:
    """Variables whose initializer reads the realm factory or another helper."""
    helpers: List[Binding] = []
    captured = [realm]
    changed = True
    while changed:
        changed = False
        for binding in index.all_bindings():
            if binding.kind not in ('var', 'let', 'const') or binding in helpers:
                continue
            declarator = binding.path.node
            if declarator.type != 'VariableDeclarator' or declarator.init is None:
                continue
            if _references_any(declarator.init, captured, index):
                helpers.append(binding)
                captured.append(binding)
                changed = True
    return helpers


def match_string_concealing(index: ScopeIndex, functions: List[Tuple[Binding, Node]]) -> Optional[StringConcealingMatch]:
    realm = next((b for b, f in functions if has_fingerprint(f, REALM_FINGERPRINT)), None)
    if realm is None:
        return None
    bridge = next((b for b, f in functions if b is not realm
                   and has_fingerprint(f, BRIDGE_FINGERPRINT)), None)
    decoders = [b for b, f in functions
                if any(is_alphabet_literal(n) for n in walk_nodes(f.body))]
    if not decoders:
        return None
    getters = [b for b, f in functions
               if b not in decoders and _calls_any(f, decoders, index)]
    if not getters:
        return None
    return StringConcealingMatch(
        realm=realm,
        helpers=tuple(_realm_helpers(realm, index)),
        bridge=bridge,
        decoders=tuple(decoders),
        getters=tuple(getters),
    )


def _iife(statements: List[Node], site: Node) -> Node:
    body = list(statements) + [Node('ReturnStatement', argument=site)]
    function = Node('FunctionExpression', id=None, params=[], generator=False, is_async=False,
                    body=Node('BlockStatement', body=body))
    return call(function, [])


class StringConcealingPass(Pass):
    name = 'string_concealing'

    def run(self, program: Node, tracker: BindingTracker) -> int:
        match = match_string_concealing(tracker.index, list(declared_functions(tracker)))
        if match is None:
            return 0
        logger.info('String concealing: realm %s, bridge %s, decoders %s, getters %s',
                    match.realm.name, match.bridge.name if match.bridge else None,
                    [d.name for d in match.decoders], [g.name for g in match.getters])

        seed = [match.realm, *match.helpers]
        if match.bridge is not None:
            seed.append(match.bridge)
        base = DependencyClosure.build(tracker.index, seed)

        rewritten = 0
        discovered: List[Binding] = []
        for original in match.getters:
            getter = tracker.binding_for_declaration(original.path.node, original.name)
            if getter is None:
                continue
            rewritten += self._decode_getter(getter, match, base, tracker, discovered)
            tracker.recrawl()

        self._remove(match, discovered, tracker)
        self.stats['strings_decoded'] += rewritten
        return rewritten

    def _decode_getter(self, getter: Binding, match: StringConcealingMatch,
                       base: DependencyClosure, tracker: BindingTracker,
                       discovered: List[Binding]) -> int:
        getter_item = declaration_for(getter)
        if getter_item is None:
            return 0
        decoder_items = []
        for decoder in match.decoders:
            if _calls_any(function_of(getter), [decoder], tracker.index):
                item = declaration_for(decoder)
                if item is not None:
                    decoder_items.append(item)
        prelude = [item.node for item in decoder_items] + [getter_item.node]

        # grown closures are kept for the remaining sites of the getter
        closure = base.copy()
        rewritten = 0
        sites = self.call_sites(getter, 'string getter')
        for call_path in sorted(sites, key=lambda p: p.node.start, reverse=True):
            if not constant_arguments(call_path.node):
                continue
            target = _iife(prelude, call_path.node)
            value = self._evaluate(closure, target, call_path, prelude, tracker, discovered)
            if value is not None:
                call_path.replace_with(value)
                rewritten += 1
        return rewritten

    def _retry_bound(self, closure: DependencyClosure, prelude: List[Node], index: ScopeIndex) -> int:
        names: Set[str] = set()
        for node in prelude:
            names |= free_names(node, index)
        for item in closure.items():
            names |= free_names(item.node, index)
        return min(self.context.max_closure_retries, len(names))

    def _evaluate(self, closure: DependencyClosure, target: Node, call_path: NodePath,
                  prelude: List[Node], tracker: BindingTracker,
                  discovered: List[Binding]) -> Optional[Node]:
        site = call_path.node
        bound = self._retry_bound(closure, prelude, tracker.index)
        retries = 0
        while True:
            try:
                result = self.oracle.evaluate_or_raise(closure, target, site)
            except UndefinedReference as e:
                missing = e.name
            except OracleFailure:
                break
            else:
                if result.node is not None:
                    self.stats['sites_evaluated'] += 1
                    return result.node
                break
            if retries >= bound:
                logger.warning('Giving up at offset %s after %d retries (%s undefined)',
                               site.start, retries, missing)
                break
            binding = tracker.index.resolve(missing, call_path) \
                or tracker.index.program_scope.lookup(missing)
            if binding is None or not closure.add_binding(binding):
                logger.warning('Cannot supply %s for the decoder at offset %s',
                               missing, site.start)
                break
            retries += 1
            self.stats['closure_retries'] += 1
            logger.debug('Added %s to the decoder closure (%d items)', missing, len(closure))
            if binding not in discovered:
                discovered.append(binding)
        self.stats['sites_failed'] += 1
        return None

    def _remove(self, match: StringConcealingMatch, discovered: List[Binding],
                tracker: BindingTracker) -> None:
        candidates = [(b, True) for b in match.getters]
        candidates += [(b, True) for b in match.decoders]
        candidates += [(b, False) for b in discovered]
        if match.bridge is not None:
            candidates.append((match.bridge, True))
        candidates += [(b, False) for b in match.helpers]
        candidates.append((match.realm, True))

        pending = list(candidates)
        progress = True
        while pending and progress:
            progress = False
            for binding, keep in list(pending):
                if self.delete(tracker, binding.name, binding.path.node, keep_side_effects=keep):
                    pending.remove((binding, keep))
                    progress = True
