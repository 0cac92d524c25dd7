"""
Tests for the analysis modules: scopes and liveness, fingerprints, closures.

Validates:
  - Bindings are declared in the scope the language hoists them to
  - References and constant violations are told apart
  - try_safe_delete removes only unreferenced bindings and keeps side effects
  - Fingerprints match ordered fragments regardless of names and whitespace
  - Dependency closures are complete, unique by name and source-ordered
"""

import textwrap

import pytest

from deconfuser.analysis.closure import (
    ClosureItem, DependencyClosure, declaration_for, free_names,
)
from deconfuser.analysis.fingerprint import (
    contains_in_order, has_fingerprint, has_fragments,
)
from deconfuser.analysis.scope import BindingTracker, ScopeKind, crawl, try_safe_delete
from deconfuser.compiler.codegen import generate
from deconfuser.compiler.nodes import find_paths
from deconfuser.compiler.parser import parse


SCOPES_JS = textwrap.dedent("""
    var a = 1;
    function f(b) {
      let c = a;
      if (b) { var hoisted = c; }
      return hoisted + b;
    }
    { let inner = 2; }
    a = 2;
    try { f(a); } catch (err) { report(err); }
""")

CLOSURE_JS = textwrap.dedent("""
    function a() { return b() + 1; }
    function b() { return t; }
    var t;
    t = 41;
    var c = a();
    var unrelated = 0;
""")


def binding(index, name):
    matches = [b for b in index.all_bindings() if b.name == name]
    assert len(matches) == 1, f'{name}: {matches}'
    return matches[0]


# ═══════════════════════════════════════════════════════════════════
#  Scope crawl
# ═══════════════════════════════════════════════════════════════════

class TestScopeCrawl:

    def setup_method(self):
        self.program = parse(SCOPES_JS)
        self.index = crawl(self.program)

    def test_kinds(self):
        assert binding(self.index, 'a').kind == 'var'
        assert binding(self.index, 'f').kind == 'function'
        assert binding(self.index, 'b').kind == 'param'
        assert binding(self.index, 'c').kind == 'let'
        assert binding(self.index, 'err').kind == 'catch'

    def test_var_hoists_to_function_scope(self):
        hoisted = binding(self.index, 'hoisted')
        assert hoisted.scope.kind == ScopeKind.FUNCTION
        assert hoisted.references == 1

    def test_let_stays_in_block(self):
        inner = binding(self.index, 'inner')
        assert inner.scope.kind == ScopeKind.BLOCK
        assert self.index.program_scope.lookup('inner') is None

    def test_references_and_violations(self):
        a = binding(self.index, 'a')
        assert a.references == 2
        assert len(a.constant_violations) == 1
        assert a.constant_violations[0].type == 'AssignmentExpression'
        assert not a.constant

    def test_globals_are_collected(self):
        assert 'report' in self.index.globals
        assert 'report' not in [b.name for b in self.index.all_bindings()]

    def test_property_names_are_not_references(self):
        index = crawl(parse('var x = 1; o.x = {x: 2};'))
        assert binding(index, 'x').references == 0

    def test_resolve_at_path(self):
        call = find_paths(self.program, 'CallExpression')[0]
        assert self.index.resolve('a', call) is binding(self.index, 'a')
        assert self.index.resolve('c', call) is None

    def test_redeclared_var_is_a_violation(self):
        index = crawl(parse('var v = 1; var v = 2; use(v);'))
        v = binding(index, 'v')
        assert v.references == 1
        assert len(v.constant_violations) == 1


# ═══════════════════════════════════════════════════════════════════
#  Liveness-checked deletion
# ═══════════════════════════════════════════════════════════════════

class TestSafeDelete:

    def _declarator(self, program, name):
        return next(d for d in find_paths(program, 'VariableDeclarator')
                    if d.node.id.name == name).node

    def test_unreferenced_binding_is_removed(self):
        program = parse('var unused = 1; var used = 2; log(used);')
        assert try_safe_delete(program, 'unused', self._declarator(program, 'unused'))
        assert generate(program) == 'var used = 2;\nlog(used);'

    def test_referenced_binding_is_kept(self):
        program = parse('var used = 2; log(used);')
        assert not try_safe_delete(program, 'used', self._declarator(program, 'used'))
        assert generate(program) == 'var used = 2;\nlog(used);'

    def test_side_effects_are_kept(self):
        program = parse('var r = compute();')
        assert try_safe_delete(program, 'r', self._declarator(program, 'r'))
        assert generate(program) == 'compute();'

    def test_property_read_is_kept_for_getters(self):
        program = parse('var v = P.a; go();')
        assert try_safe_delete(program, 'v', self._declarator(program, 'v'))
        assert generate(program) == 'P.a;\ngo();'

    def test_side_effects_dropped_on_request(self):
        program = parse('var r = compute();')
        assert try_safe_delete(program, 'r', self._declarator(program, 'r'),
                               keep_side_effects=False)
        assert generate(program) == ''

    def test_writes_are_removed_with_the_binding(self):
        program = parse('var k; k = 1; k = next(); done();')
        assert try_safe_delete(program, 'k', self._declarator(program, 'k'))
        assert generate(program) == 'next();\ndone();'

    def test_update_used_as_value_blocks_deletion(self):
        program = parse('var k = 0; f(k++);')
        assert not try_safe_delete(program, 'k', self._declarator(program, 'k'))

    def test_function_declaration(self):
        program = parse('function helper() {} go();')
        tracker = BindingTracker(program)
        assert tracker.try_safe_delete('helper', program.body[0])
        assert generate(program) == 'go();'

    def test_parameters_are_never_deleted(self):
        program = parse('function f(p) {}')
        tracker = BindingTracker(program)
        p = binding(tracker.index, 'p')
        assert not tracker.try_safe_delete('p', p.path.node)


# ═══════════════════════════════════════════════════════════════════
#  Fingerprints
# ═══════════════════════════════════════════════════════════════════

class TestFingerprint:

    def test_contains_in_order(self):
        assert contains_in_order('try{x}catch(e){}', ('try', 'catch'))
        assert not contains_in_order('try{x}catch(e){}', ('catch', 'try'))

    def test_fingerprint_ignores_names_and_whitespace(self):
        first = parse('function q(a) { try { a["__proto__"]; } catch (e) {} }')
        second = parse('function zz(b){try{b [ "__proto__" ]}catch(x){}}')
        fragments = ('try', '__proto__', 'catch')
        assert has_fingerprint(first, fragments)
        assert has_fingerprint(second, fragments)

    def test_fragments_in_any_order(self):
        code = 'function d(s) { for (;;) { s.charCodeAt(0); } return s.split(""); }'
        program = parse(code)
        assert has_fragments(program, ('split', 'for(', 'charCodeAt'))
        assert not has_fingerprint(program, ('split', 'for(', 'charCodeAt'))


# ═══════════════════════════════════════════════════════════════════
#  Dependency closures
# ═══════════════════════════════════════════════════════════════════

class TestDependencyClosure:

    def setup_method(self):
        self.program = parse(CLOSURE_JS)
        self.index = crawl(self.program)

    def test_build_is_transitive_and_ordered(self):
        closure = DependencyClosure.build(self.index, [binding(self.index, 'c')])
        assert closure.names() == ['a', 'b', 't', 'c']
        assert 'unrelated' not in closure

    def test_single_assignment_is_synthesized(self):
        item = declaration_for(binding(self.index, 't'))
        assert generate(item.node) == 'var t = 41;'
        assert item.position == self.program.body[3].expression.start

    def test_items_are_unique_by_name(self):
        closure = DependencyClosure.build(self.index, [binding(self.index, 'a')])
        assert not closure.add_binding(binding(self.index, 'b'))
        assert len(closure) == 3

    def test_source_runs_in_order(self):
        closure = DependencyClosure.build(self.index, [binding(self.index, 'c')])
        assert closure.source().splitlines()[-1] == 'var c = a();'

    def test_explicit_position_wins(self):
        closure = DependencyClosure([
            ClosureItem('late', parse('var late = 1;').body[0], 100),
            ClosureItem('early', parse('var early = 2;').body[0], 5),
        ])
        assert closure.names() == ['early', 'late']

    def test_copy_is_independent(self):
        closure = DependencyClosure.build(self.index, [binding(self.index, 'b')])
        copy = closure.copy()
        copy.add_binding(binding(self.index, 'a'))
        assert 'a' in copy
        assert 'a' not in closure

    def test_free_names(self):
        program = parse('var y = 1; function h(x) { var z = x; return z + y + Math.max(w); }')
        index = crawl(program)
        assert free_names(program.body[1], index) == {'y', 'Math', 'w'}

    def test_parameters_cannot_be_declared(self):
        program = parse('function f(p) { return p; }')
        index = crawl(program)
        assert declaration_for(binding(index, 'p')) is None


@pytest.mark.parametrize('code,expected', [
    ('var a = 1;', 'var a = 1;'),
    ('let b = f();', 'var b = f();'),
    ('class K {}', 'var K = class K {\n};'),
])
def test_declaration_for_forms(code, expected):
    index = crawl(parse(code))
    item = declaration_for(next(iter(index.all_bindings())))
    assert generate(item.node) == expected
