"""
Integration tests for the deobfuscation pipeline.

End-to-end tests that run layered samples through every step:
  Parse -> Scope crawl -> De-transform passes -> Folding -> Printing

Rewritten programs are also run next to their originals in V8 and must
log the same values.
"""

import textwrap

import pytest
from py_mini_racer import MiniRacer

from deconfuser.compiler.parser import parse
from deconfuser.errors import ParseFailure
from deconfuser.runtime.pipeline import PASS_ORDER, Deobfuscator, deobfuscate

from test_passes import (
    COMPRESSION_JS, CONCEALING_JS, FLATTEN_JS, GLOBALS_JS, PREDICATES_JS, STACK_JS,
    WRAPPER_JS,
)


# ---------- Layered samples ----------

LAYERED_JS = textwrap.dedent("""
    function d() {}
    function arr() { return ["a", "b", "c"]; }
    var A = arr();
    function get(i) { return A[i]; }
    var P = (function () { return { n: 5 }; })();
    if (P.n > 3) { d(log(get(1))); } else { d(log(get(2))); }
""")

CLEAN_JS = textwrap.dedent("""
    function greet(name) {
      return "hello " + name;
    }
    for (var i = 0; i < 3; i++) {
      console.log(greet(i));
    }
""")


class TestEndToEnd:

    def test_decoy_calls(self):
        assert deobfuscate('function f(){} f(log(1), log(2));') == 'log(1);\nlog(2);'

    def test_layered_sample(self):
        assert deobfuscate(LAYERED_JS) == 'log("b");'

    def test_concealed_strings(self):
        assert deobfuscate(CONCEALING_JS) == 'log("hello", "secret world");'

    def test_opaque_predicates_then_pruning(self):
        assert deobfuscate(PREDICATES_JS) == 'a();\nx = 2;'

    def test_stats_cover_the_layers(self):
        result = Deobfuscator().run(LAYERED_JS)
        assert result.stats['anti_tooling']['calls_unwrapped'] >= 1
        assert result.oracle_stats['evaluations'] >= 1
        assert result.oracle_stats['fatal'] == 0

    def test_skipping_a_layer_leaves_it(self):
        code = deobfuscate(LAYERED_JS, passes=['anti_tooling'])
        assert 'function d' not in code
        assert 'get(1)' in code
        assert 'P.n > 3' in code

    def test_expression_bodied_rest_arrow(self):
        assert deobfuscate('var g = (...a) => a[0]; g(1);') == 'var g = (...a) => a[0];\ng(1);'

    def test_control_object_is_inlined_and_folded(self):
        code = deobfuscate(FLATTEN_JS)
        assert 'x = 13;' in code
        assert 'console["log"](x);' in code
        assert 'var C' not in code


class TestUnobfuscatedInput:

    def test_clean_code_survives(self):
        code = deobfuscate(CLEAN_JS)
        assert 'function greet(name)' in code
        assert 'console.log(greet(i));' in code
        assert 'for (var i = 0; i < 3; i++)' in code

    def test_output_reparses(self):
        for sample in (CLEAN_JS, LAYERED_JS, CONCEALING_JS, PREDICATES_JS):
            parse(deobfuscate(sample))

    def test_output_is_a_fixed_point(self):
        once = deobfuscate(CLEAN_JS)
        assert deobfuscate(once) == once

    def test_empty_program(self):
        assert deobfuscate('') == ''

    def test_invalid_input(self):
        with pytest.raises(ParseFailure):
            deobfuscate('if (a) {')


# ---------- Semantic equivalence ----------

OBSERVER_JS = """
var out = [];
function log() { out.push(Array.prototype.slice.call(arguments)); }
var console = { log: log };
function a() { log("a"); }
function b() { log("b"); }
function use() { log.apply(null, arguments); }
"""


def observe(code):
    """Values logged by ``code`` in a fresh V8 context, as JSON."""
    context = MiniRacer()
    try:
        context.eval(OBSERVER_JS)
        context.eval(code)
        return context.eval('JSON.stringify(out)')
    finally:
        context.close()


OBSERVED_SAMPLES = {
    'layered': LAYERED_JS,
    'concealed': CONCEALING_JS,
    'compressed': COMPRESSION_JS,
    'globals': GLOBALS_JS,
    'predicates': PREDICATES_JS,
    'control_object': FLATTEN_JS,
    'stack': STACK_JS + '\nlog(f(7), f(7, 8, 9));',
    'wrapped_arrow': WRAPPER_JS + '\nlog(add(1, 2), add.length);',
    'rest_arrow': 'var g = (...a) => a[0]; log(g(1), g());',
    'clean': CLEAN_JS.replace('console.log', 'log'),
    'duplicate_object': """
        function arr() { return [{ n: 0 / 0, u: void 0, k: "v" }, 4]; }
        var A = arr();
        function get(i) { return A[i]; }
        var o = get(0);
        log(isNaN(o.n), "u" in o, o.u === undefined, o.k, get(1));
    """,
}


@pytest.mark.parametrize('name', sorted(OBSERVED_SAMPLES))
def test_rewritten_program_logs_the_same(name):
    source = OBSERVED_SAMPLES[name]
    expected = observe(source)
    assert expected != '[]'
    assert observe(deobfuscate(source)) == expected


# ---------- Per-pass idempotence ----------

PASS_SAMPLES = {
    'anti_tooling': 'function f(){} f(log(1), log(2));',
    'minify_arrow': WRAPPER_JS,
    'duplicate_literal': LAYERED_JS,
    'stack': STACK_JS,
    'string_compression': COMPRESSION_JS,
    'string_concealing': CONCEALING_JS,
    'placeholder': 'var x = "secret"; use(x); x = "other";',
    'constant_fold': 'x = 1 + 2 * 3; y = "a" + "b";',
    'opaque_predicates': PREDICATES_JS,
    'branch_prune': 'if (0) a(); else b(); z = true ? 1 : 2;',
    'global_concealing': GLOBALS_JS,
    'flatten_object': FLATTEN_JS,
}


def test_every_step_has_a_sample():
    assert set(PASS_SAMPLES) == set(PASS_ORDER)


@pytest.mark.parametrize('name', sorted(PASS_SAMPLES))
def test_each_pass_is_idempotent(name):
    once = deobfuscate(PASS_SAMPLES[name], passes=[name])
    assert deobfuscate(once, passes=[name]) == once
