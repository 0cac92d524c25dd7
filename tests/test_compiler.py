"""
Tests for the compiler modules: tree model, parser, printer, folding passes.

Validates:
  - esprima output is converted to Node trees with source ranges
  - NodePath mutations keep statement lists well-formed
  - The printer emits canonical, re-parseable source
  - JS value semantics used by the folder (ToNumber, ToString, equality)
  - Constant folding and branch pruning reach their expected forms
"""

import math

import pytest

from deconfuser.compiler import jsvalues
from deconfuser.compiler.ast_optimizer import fold, prune, static_truthiness
from deconfuser.compiler.codegen import flatten, generate, to_estree
from deconfuser.compiler.jsvalues import NOT_CONSTANT, UNDEFINED
from deconfuser.compiler.nodes import (
    NodePath, find_paths, literal, path_to, static_index, static_value, value_to_node,
)
from deconfuser.compiler.parser import parse, parse_expression
from deconfuser.errors import ParseFailure


def rewrite(source, transform):
    program = parse(source)
    transform(program)
    return generate(program)


# ---------- Parser ----------

class TestParser:

    def test_program_shape(self):
        program = parse('var a = 1; f(a);')
        assert program.type == 'Program'
        assert [s.type for s in program.body] == ['VariableDeclaration', 'ExpressionStatement']

    def test_ranges_are_kept(self):
        program = parse('var a = 1; f(a);')
        call = program.body[1].expression
        assert call.start == 11

    def test_integral_numbers_become_int(self):
        program = parse('x = 3; y = 2.5;')
        assert program.body[0].expression.right.value == 3
        assert isinstance(program.body[0].expression.right.value, int)
        assert program.body[1].expression.right.value == 2.5

    def test_unrecoverable_error_raises(self):
        with pytest.raises(ParseFailure):
            parse('function (')

    def test_parse_expression(self):
        node = parse_expression('{"a": [1, 2]}')
        assert node.type == 'ObjectExpression'
        assert node.start == float('inf')


# ---------- Node paths ----------

class TestNodePath:

    def test_remove_last_declarator_removes_declaration(self):
        program = parse('var a = 1; g();')
        declarator = find_paths(program, 'VariableDeclarator')[0]
        declarator.remove()
        assert generate(program) == 'g();'

    def test_remove_one_of_several_declarators(self):
        program = parse('var a = 1, b = 2;')
        path_to(program, program.body[0].declarations[0]).remove()
        assert generate(program) == 'var b = 2;'

    def test_remove_expression_removes_statement(self):
        program = parse('a(); b();')
        call = find_paths(program, 'CallExpression')[0]
        call.remove()
        assert generate(program) == 'b();'

    def test_replace_with_statements_splices(self):
        program = parse('a(); b();')
        statement = NodePath(program).child('body', 0)
        statement.replace_with_statements(parse('x(); y();').body)
        assert generate(program) == 'x();\ny();\nb();'

    def test_replace_with_statements_outside_list_wraps_block(self):
        program = parse('if (c) a();')
        consequent = NodePath(program).child('body', 0).child('consequent')
        consequent.replace_with_statements(parse('x(); y();').body)
        assert generate(program) == 'if (c) {\n  x();\n  y();\n}'

    def test_index_is_reresolved_after_sibling_removal(self):
        program = parse('a(); b(); c();')
        root = NodePath(program)
        first, third = root.child('body', 0), root.child('body', 2)
        first.remove()
        third.remove()
        assert generate(program) == 'b();'


# ---------- Printer ----------

class TestGenerate:

    def test_statements_joined_without_trailing_newline(self):
        assert rewrite('a();b()', lambda p: None) == 'a();\nb();'

    def test_strings_use_double_quotes(self):
        assert rewrite("x = 'it';", lambda p: None) == 'x = "it";'

    def test_string_escapes(self):
        assert generate(literal('a"b\n')) == '"a\\"b\\n"'

    def test_object_literal_layout(self):
        code = 'var o = {x: 1, "y-z": [3]}; var p = {q: 2};'
        assert rewrite(code, lambda p: None) == \
            'var o = {\n  x: 1,\n  "y-z": [3]\n};\nvar p = { q: 2 };'

    def test_array_layout(self):
        assert rewrite('x = [1, 2]; y = [];', lambda p: None) == 'x = [\n  1,\n  2\n];\ny = [];'

    def test_function_layout(self):
        code = 'function f(a){if(a){return 1}return 2}'
        expected = 'function f(a) {\n  if (a) {\n    return 1;\n  }\n  return 2;\n}'
        assert rewrite(code, lambda p: None) == expected

    def test_precedence_parentheses(self):
        assert rewrite('x = (a + b) * c;', lambda p: None) == 'x = (a + b) * c;'
        assert rewrite('x = a - (b - c);', lambda p: None) == 'x = a - (b - c);'
        assert rewrite('x = a * b + c;', lambda p: None) == 'x = a * b + c;'

    def test_iife_is_parenthesized(self):
        assert rewrite('(function(){})();', lambda p: None) == '(function () {\n}());'

    def test_non_finite_literals_are_spelled_as_expressions(self):
        program = parse('x = 1;')
        program.body[0].expression.right = literal(float('nan'))
        assert generate(program) == 'x = 0 / 0;'
        assert 'range' not in to_estree(parse('a;'))

    def test_arrow_and_rest(self):
        code = 'var f = (a, ...b) => a + b.length;'
        assert rewrite(code, lambda p: None) == 'var f = (a, ...b) => a + b.length;'

    def test_number_formatting(self):
        assert rewrite('x = 1e21; y = 0.5;', lambda p: None) == 'x = 1e+21;\ny = 0.5;'

    def test_output_reparses_to_same_text(self):
        code = 'switch (k) { case 1: a(); break; default: b(); }'
        first = rewrite(code, lambda p: None)
        assert rewrite(first, lambda p: None) == first

    def test_flatten_removes_whitespace(self):
        assert flatten(parse('try { a() } catch (e) {}')) == 'try{a();}catch(e){}'


# ---------- JS values ----------

class TestJSValues:

    def test_to_number(self):
        assert jsvalues.to_number(' 12 ') == 12
        assert jsvalues.to_number('0x1f') == 31
        assert jsvalues.to_number('') == 0
        assert jsvalues.to_number(None) == 0
        assert jsvalues.to_number(True) == 1
        assert math.isnan(jsvalues.to_number('abc'))
        assert math.isnan(jsvalues.to_number(UNDEFINED))

    def test_number_to_string(self):
        assert jsvalues.number_to_string(123.0) == '123'
        assert jsvalues.number_to_string(1e21) == '1e+21'
        assert jsvalues.number_to_string(0.000001) == '0.000001'
        assert jsvalues.number_to_string(1e-7) == '1e-7'
        assert jsvalues.number_to_string(0.1 + 0.2) == '0.30000000000000004'
        assert jsvalues.number_to_string(float('nan')) == 'NaN'

    def test_truthiness(self):
        assert not jsvalues.truthy('')
        assert jsvalues.truthy('0')
        assert not jsvalues.truthy(0)
        assert not jsvalues.truthy(float('nan'))
        assert not jsvalues.truthy(UNDEFINED)

    def test_equality(self):
        assert jsvalues.loose_equals(None, UNDEFINED)
        assert jsvalues.loose_equals(1, '1')
        assert not jsvalues.strict_equals(1, '1')
        assert not jsvalues.loose_equals(None, 0)

    def test_int32(self):
        assert jsvalues.to_int32(2 ** 32 + 5) == 5
        assert jsvalues.to_int32(2 ** 31) == -2 ** 31
        assert jsvalues.to_uint32(-1) == 2 ** 32 - 1

    def test_static_value(self):
        program = parse('x = -4; y = void 0; z = f;')
        values = [static_value(s.expression.right) for s in program.body]
        assert values == [-4, UNDEFINED, NOT_CONSTANT]
        assert static_index(literal(2.0)) == 2
        assert static_index(literal(2.5)) is None

    def test_value_to_node(self):
        assert generate(value_to_node([1, 'a', None, True])) == '[\n  1,\n  "a",\n  null,\n  true\n]'
        assert generate(value_to_node(-3)) == '-3'
        assert generate(value_to_node(float('inf'))) == '1 / 0'


# ---------- Constant folding ----------

class TestConstantFolder:

    def test_arithmetic(self):
        stats = {'constants_folded': 0}
        assert rewrite('x = 2 * 3 + 1;', lambda p: fold(p, stats)) == 'x = 7;'
        assert stats['constants_folded'] == 2

    def test_string_concatenation(self):
        assert rewrite('x = "hel" + "lo" + 1;', fold) == 'x = "hello1";'

    def test_unary(self):
        assert rewrite('x = ![]; y = !0; z = typeof void 0;', fold) == \
            'x = false;\ny = true;\nz = "undefined";'

    def test_comparison_and_equality(self):
        assert rewrite('x = "5" == 5; y = 1 === "1"; z = 3 > 2;', fold) == \
            'x = true;\ny = false;\nz = true;'

    def test_bitwise(self):
        assert rewrite('x = 7 >>> 1; y = 1 << 33;', fold) == 'x = 3;\ny = 2;'

    def test_logical_picks_operand(self):
        assert rewrite('x = true && f(); y = 0 || g();', fold) == 'x = f();\ny = g();'

    def test_non_finite_left_alone(self):
        assert rewrite('x = 1 / 0;', fold) == 'x = 1 / 0;'

    def test_fixed_point(self):
        program = parse('x = -5; y = void 0;')
        assert fold(program) == 0


# ---------- Branch pruning ----------

class TestBranchPruner:

    def test_if_true_keeps_consequent(self):
        assert rewrite('if (true) { a(); } else { b(); }', prune) == 'a();'

    def test_if_false_keeps_alternate(self):
        assert rewrite('if (0) a(); else b();', prune) == 'b();'

    def test_if_false_without_alternate_disappears(self):
        assert rewrite('if ("") { a(); } c();', prune) == 'c();'

    def test_conditional_expression(self):
        assert rewrite('x = 1 ? y : z;', prune) == 'x = y;'

    def test_lexical_block_is_kept(self):
        assert rewrite('if (1) { let q = 1; }', prune) == '{\n  let q = 1;\n}'

    def test_dynamic_test_untouched(self):
        assert rewrite('if (c) a();', prune) == 'if (c)\n  a();'

    def test_static_truthiness(self):
        assert static_truthiness(parse_expression('function () {}')) is True
        assert static_truthiness(parse_expression('[]')) is True
        assert static_truthiness(parse_expression('x')) is None
