"""
Tests for the fixed-point machinery.

Tests all three modules:
    1. fixed_point_engine.py  - Convergence and the iteration cap
    2. purity_analyzer.py     - Purity lattice classification
    3. stack_interpreter.py   - Abstract interpretation of array stacks
"""

import textwrap
from collections import defaultdict

import pytest

from deconfuser.compiler.codegen import generate
from deconfuser.compiler.parser import parse, parse_expression
from deconfuser.recursive.fixed_point_engine import (
    ConvergenceStatus, FixedPointEngine,
)
from deconfuser.recursive.purity_analyzer import (
    PurityAnalyzer, PurityLevel, is_constant_expression, is_side_effect_free,
)
from deconfuser.recursive.stack_interpreter import StackInterpreter


def function_of(source):
    return parse(textwrap.dedent(source)).body[0]


# ═══════════════════════════════════════════════════════════════════
#  Module 1: Fixed-Point Engine
# ═══════════════════════════════════════════════════════════════════

class TestFixedPointEngine:

    def test_converges_when_step_makes_no_change(self):
        remaining = [3]

        def step(i):
            if remaining[0] == 0:
                return 0
            remaining[0] -= 1
            return 1

        result = FixedPointEngine(max_iterations=10).iterate(step)
        assert result.converged
        assert result.iterations == 4
        assert result.total_changes == 3
        assert result.changes_history == [1, 1, 1, 0]

    def test_iteration_cap(self):
        result = FixedPointEngine(max_iterations=5).iterate(lambda i: 1)
        assert result.status == ConvergenceStatus.MAX_ITERATIONS
        assert not result.converged
        assert result.iterations == 5

    def test_step_receives_iteration_index(self):
        seen = []
        FixedPointEngine(max_iterations=3).iterate(lambda i: seen.append(i) or 1)
        assert seen == [0, 1, 2]

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            FixedPointEngine(max_iterations=0)


# ═══════════════════════════════════════════════════════════════════
#  Module 2: Purity Analyzer
# ═══════════════════════════════════════════════════════════════════

class TestPurityAnalyzer:

    def setup_method(self):
        self.analyzer = PurityAnalyzer()

    def level(self, source):
        return self.analyzer.analyze(parse_expression(source)).level

    def test_lattice_order(self):
        assert PurityLevel.CONSTANT < PurityLevel.PURE < PurityLevel.READ_ONLY < PurityLevel.IMPURE

    def test_constant(self):
        assert self.level('1 + 2 * -3') == PurityLevel.CONSTANT
        assert self.level('["a", {b: void 0}]') == PurityLevel.CONSTANT

    def test_pure(self):
        assert self.level('function () { return g(); }') == PurityLevel.PURE
        assert self.level('/ab+c/') == PurityLevel.PURE

    def test_read_only(self):
        assert self.level('a + b') == PurityLevel.READ_ONLY
        assert self.level('"abc".length + [1, 2][i]') == PurityLevel.READ_ONLY
        assert self.level('arguments[0]') == PurityLevel.READ_ONLY
        assert self.level('"x" in o') == PurityLevel.READ_ONLY

    def test_impure(self):
        assert self.level('f()') == PurityLevel.IMPURE
        assert self.level('x = 1') == PurityLevel.IMPURE
        assert self.level('delete o.k') == PurityLevel.IMPURE
        assert self.level('[1, i++]') == PurityLevel.IMPURE

    def test_property_reads_may_run_getters(self):
        assert self.level('a.b[c]') == PurityLevel.IMPURE
        assert 'property read may run a getter' in self.analyzer.analyze(parse_expression('P.a')).reasons
        assert PurityAnalyzer(trusted=['s']).analyze(parse_expression('s[0]')).level == PurityLevel.READ_ONLY

    def test_reasons_are_reported(self):
        report = self.analyzer.analyze(parse_expression('a + f()'))
        assert 'call' in report.reasons

    def test_helpers(self):
        assert is_constant_expression(parse_expression('"s" + 1'))
        assert not is_constant_expression(parse_expression('x'))
        assert not is_constant_expression(None)
        assert is_side_effect_free(None)
        assert not is_side_effect_free(parse_expression('x.y'))
        assert is_side_effect_free(parse_expression('s[1]'), trusted=('s',))
        assert not is_side_effect_free(parse_expression('new X()'))


# ═══════════════════════════════════════════════════════════════════
#  Module 3: Stack Interpreter
# ═══════════════════════════════════════════════════════════════════

class TestStackInterpreter:

    def setup_method(self):
        self.stats = defaultdict(int)
        self.interpreter = StackInterpreter(max_iterations=16, stats=self.stats)

    def test_local_stack_is_resolved_and_removed(self):
        fn = function_of("""
            function f() {
              var s = [];
              s[0] = arguments[0];
              s[1] = 5;
              return s[0] + s[1];
            }
        """)
        assert self.interpreter.resolve(fn, 's') == 2
        assert generate(fn) == 'function f() {\n  return arguments[0] + 5;\n}'
        assert self.stats['stacks_removed'] == 1

    def test_rest_stack_refs_and_length(self):
        fn = function_of("""
            function f(...s) {
              s.length = 1;
              s[1] = 5;
              s[2] = s[0];
              return s[2] + s[1];
            }
        """)
        self.interpreter.resolve(fn, 's')
        assert generate(fn).splitlines()[-2] == '  return s[0] + 5;'

    def test_folding_between_iterations(self):
        fn = function_of("""
            function f(...s) {
              s[1] = 2;
              s[2] = 3;
              return s[1] * s[2] + s[0];
            }
        """)
        self.interpreter.resolve(fn, 's')
        assert 'return 6 + s[0];' in generate(fn)

    def test_write_in_branch_invalidates_slot(self):
        fn = function_of("""
            function f(...s) {
              s[1] = 1;
              if (s[0]) { s[1] = 2; }
              return s[1];
            }
        """)
        assert self.interpreter.resolve(fn, 's') == 0
        assert 'return s[1];' in generate(fn)

    def test_overwritten_source_invalidates_copy(self):
        fn = function_of("""
            function f(...s) {
              s[1] = s[0];
              s[0] = g();
              return s[1];
            }
        """)
        self.interpreter.resolve(fn, 's')
        assert 'return s[1];' in generate(fn)

    def test_unmodelled_use_is_declined(self):
        fn = function_of("""
            function f(...s) {
              s[1] = 4;
              h(s);
              return s[1];
            }
        """)
        before = generate(fn)
        assert self.interpreter.resolve(fn, 's') == 0
        assert generate(fn) == before

    def test_dead_writes_keep_side_effects(self):
        fn = function_of("""
            function f(...s) {
              s[0] = 1;
              s[1] = effect();
              return s[0];
            }
        """)
        self.interpreter.resolve(fn, 's')
        assert generate(fn) == 'function f() {\n  effect();\n  return 1;\n}'

    def test_length_hint_marks_missing_arguments_undefined(self):
        source = """
            function f(...s) {
              s[1] = 5;
              return s[0] + s[1] + s[2];
            }
        """
        hinted = function_of(source)
        assert self.interpreter.resolve(hinted, 's', length=1) == 2
        assert 'return s[0] + 5 + void 0;' in generate(hinted)

        unhinted = function_of(source)
        assert self.interpreter.resolve(unhinted, 's') == 1
        assert 'return s[0] + 5 + s[2];' in generate(unhinted)

    def test_length_statement_applies_where_it_stands(self):
        fn = function_of("""
            function f(...s) {
              g(s[1]);
              s.length = 1;
              return s[1];
            }
        """)
        self.interpreter.resolve(fn, 's')
        code = generate(fn)
        assert 'g(s[1]);' in code
        assert 'return void 0;' in code

    def test_expression_bodied_arrow_is_declined(self):
        fn = parse('var g = (...a) => a[0];').body[0].declarations[0].init
        assert self.interpreter.resolve(fn, 'a') == 0
        assert generate(fn) == '(...a) => a[0]'

    def test_non_stack_function_untouched(self):
        fn = function_of('function f(a) { return a; }')
        assert self.interpreter.resolve(fn, 's') == 0
