"""
Tests for the runtime modules: evaluation oracle, pass context, pipeline.

Validates:
  - Oracle results are classified as Ok / MissingName / Fatal
  - Values are marshalled back into expression nodes
  - Timeouts are reported as Fatal and counted
  - The pipeline validates pass selection and keeps the fixed order
"""

import math

import pytest

from deconfuser.analysis.closure import DependencyClosure
from deconfuser.analysis.scope import crawl
from deconfuser.compiler.codegen import generate
from deconfuser.compiler.jsvalues import NOT_CONSTANT, UNDEFINED
from deconfuser.compiler.parser import parse
from deconfuser.errors import OracleFailure, ParseFailure, UndefinedReference
from deconfuser.runtime.context import PassContext
from deconfuser.runtime.oracle import Fatal, MissingName, Ok, Oracle
from deconfuser.runtime.pipeline import PASS_ORDER, Deobfuscator, deobfuscate


# ---------- Oracle ----------

class TestOracle:

    def setup_method(self):
        self.oracle = Oracle(timeout_ms=2000)

    def test_primitive_value(self):
        result = self.oracle.evaluate(None, '1 + 2')
        assert isinstance(result, Ok)
        assert result.value == 3
        assert result.is_primitive
        assert generate(result.node) == '3'

    def test_prelude_string(self):
        result = self.oracle.evaluate('var k = "v";', 'k + "w"')
        assert result.value == 'vw'

    def test_prelude_closure(self):
        index = crawl(parse('function twice(x) { return x * 2; } var base = 20;'))
        closure = DependencyClosure()
        for binding in index.program_scope.bindings.values():
            closure.add_binding(binding)
        result = self.oracle.evaluate(closure, parse('twice(base) + 2').body[0].expression)
        assert result.value == 42

    def test_special_values(self):
        assert self.oracle.evaluate(None, 'void 0').value is UNDEFINED
        assert self.oracle.evaluate(None, 'null').value is None
        assert math.isnan(self.oracle.evaluate(None, '0 / 0').value)
        assert generate(self.oracle.evaluate(None, '-1 / 0').node) == '-(1 / 0)'

    def test_objects_have_source_form(self):
        result = self.oracle.evaluate(None, '({a: 1, b: [true]})')
        assert result.value is NOT_CONSTANT
        assert not result.is_primitive
        assert result.node.type == 'ObjectExpression'

    def test_arrays(self):
        result = self.oracle.evaluate(None, '[1, "x", null]')
        assert generate(result.node) == '[\n  1,\n  "x",\n  null\n]'

    def test_object_values_keep_special_numbers(self):
        result = self.oracle.evaluate(None, '({n: NaN, u: void 0, z: -0, i: 1 / 0, s: [2]})')
        assert generate(result.node) == (
            '{\n  "n": 0 / 0,\n  "u": void 0,\n  "z": -0,\n  "i": 1 / 0,\n  "s": [2]\n}')

    def test_object_round_trips_through_sandbox(self):
        first = self.oracle.evaluate(None, '({a: {b: "c"}, n: NaN})')
        source = '(function (o) { return JSON.stringify([o.a.b, isNaN(o.n), Object.keys(o)]); })(' \
            + generate(first.node) + ')'
        assert self.oracle.evaluate(None, source).value == '["c",true,["a","n"]]'

    def test_objects_with_behaviour_are_opaque(self):
        for source in ('({f: function () { return 1; }, n: NaN})',
                       '({get g() { return 1; }})',
                       '(function () { var o = {}; Object.defineProperty(o, "h", {value: 1}); return o; })()',
                       '({[Symbol.iterator]: 1})',
                       '[{k: function () {}}]',
                       'Object.create(null)'):
            result = self.oracle.evaluate(None, source)
            assert isinstance(result, Ok)
            assert result.node is None, source

    def test_functions_are_reparsed(self):
        result = self.oracle.evaluate(None, '(function f(a) { return a; })')
        assert result.node.type == 'FunctionExpression'

    def test_missing_name(self):
        result = self.oracle.evaluate(None, 'nope + 1')
        assert result == MissingName('nope')
        assert self.oracle.stats['missing'] == 1

    def test_thrown_error_is_fatal(self):
        result = self.oracle.evaluate(None, '(function () { throw new Error("boom"); })()')
        assert isinstance(result, Fatal)
        assert 'boom' in result.error

    def test_timeout_is_fatal(self):
        oracle = Oracle(timeout_ms=50)
        result = oracle.evaluate(None, '(function () { while (true) {} })()')
        assert isinstance(result, Fatal)
        assert oracle.stats['timeouts'] == 1

    def test_contexts_are_isolated(self):
        self.oracle.evaluate('var leaked = 1;', 'leaked')
        assert isinstance(self.oracle.evaluate(None, 'leaked'), MissingName)

    def test_evaluate_or_raise(self):
        with pytest.raises(UndefinedReference) as info:
            self.oracle.evaluate_or_raise(None, 'missing()')
        assert info.value.name == 'missing'
        with pytest.raises(OracleFailure):
            self.oracle.evaluate_or_raise(None, '(function () { throw 1; })()')
        assert self.oracle.evaluate_or_raise(None, '"ok"').value == 'ok'


# ---------- Pass context ----------

class TestPassContext:

    def test_counters_are_per_pass(self):
        context = PassContext(oracle=Oracle())
        context.counters('stack')['reads'] += 2
        assert context.stats['stack']['reads'] == 2
        assert context.stats['placeholder']['reads'] == 0

    def test_length_hint_by_identity(self):
        context = PassContext(oracle=Oracle())
        first, second = parse('function a() {} function a() {}').body
        context.length_hints.append((first, 3))
        assert context.length_hint(first) == 3
        assert context.length_hint(second) is None


# ---------- Pipeline ----------

class TestDeobfuscator:

    def test_unknown_pass_rejected(self):
        with pytest.raises(ValueError):
            Deobfuscator(passes=['anti_tooling', 'nope'])

    def test_order_is_fixed(self):
        deobfuscator = Deobfuscator(passes=['constant_fold', 'anti_tooling'])
        assert deobfuscator.enabled_passes == [
            'anti_tooling', 'constant_fold', 'constant_fold', 'constant_fold']

    def test_default_runs_every_step(self):
        assert Deobfuscator().enabled_passes == list(PASS_ORDER)

    def test_parse_failure_propagates(self):
        with pytest.raises(ParseFailure):
            Deobfuscator().run('function (')

    def test_result_carries_stats_and_timings(self):
        result = Deobfuscator().run('function f(){} f(log(1), log(2));')
        assert result.code == 'log(1);\nlog(2);'
        assert result.stats['anti_tooling']['calls_unwrapped'] == 1
        assert set(result.timings) == set(PASS_ORDER)
        assert result.elapsed_ms >= 0

    def test_untouched_program_is_canonicalized(self):
        assert deobfuscate("if (a) { b('x') }") == 'if (a) {\n  b("x");\n}'

    def test_idempotent(self):
        source = 'function d(){} d(x = 1 + 2); if (!0) { y(); }'
        once = deobfuscate(source)
        assert once == 'x = 3;\ny();'
        assert deobfuscate(once) == once

    def test_selected_passes_only(self):
        code = deobfuscate('function d(){} d(f()); x = 1 + 1;', passes=['constant_fold'])
        assert code == 'function d() {\n}\nd(f());\nx = 2;'
