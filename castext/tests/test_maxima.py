"""Tests for the reference Maxima-style evaluator and its printers."""

import pytest
import sympy
from sympy import FiniteSet, ImmutableMatrix, Symbol

from castext.errors import EvaluatorRuntimeError, EvaluatorSyntaxError
from castext.maxima import (UNKNOWN, check_syntax, evaluate_expression,
                            suggest_missing_stars)
from castext.options import RenderOptions
from castext.printing import latex_display, maxima_str

x = Symbol("x")


class TestSyntaxChecks:
    def test_empty(self):
        with pytest.raises(EvaluatorSyntaxError, match="Empty expression"):
            check_syntax("   ")

    def test_invalid_final_character(self):
        with pytest.raises(EvaluatorSyntaxError) as exc:
            check_syntax("2*")
        assert exc.value.message == "'*' is an invalid final character in 2*"

    def test_missing_right_bracket(self):
        with pytest.raises(EvaluatorSyntaxError, match="missing right bracket"):
            check_syntax("(x+1")

    def test_missing_left_bracket(self):
        with pytest.raises(EvaluatorSyntaxError, match="missing left bracket"):
            check_syntax("x^2)")

    def test_missing_star_suggestion(self):
        with pytest.raises(EvaluatorSyntaxError) as exc:
            check_syntax("c2A")
        assert exc.value.suggestion == "c2*A"
        assert exc.value.message == (
            "You seem to be missing * characters. Perhaps you meant to type c2*A."
        )

    def test_brackets_in_strings_ignored(self):
        check_syntax('[alt,"a (b"]')


@pytest.mark.parametrize(
    "expression,suggestion",
    [
        ("c2A", "c2*A"),
        ("2x", "2*x"),
        ("sin(3x)", "sin(3*x)"),
        ("1e5", None),
        ("x2", None),
        ("Ax2", None),
        ("double_cAx", None),
        ("Ac2", None),
        ('"2x"', None),
    ],
)
def test_suggest_missing_stars(expression, suggestion):
    assert suggest_missing_stars(expression) == suggestion


class TestEvaluate:
    def test_arithmetic(self):
        assert evaluate_expression("1+2") == 3
        assert evaluate_expression("x*x^2") == x**3
        assert evaluate_expression("-x^2") == -(x**2)
        assert evaluate_expression("2^3^2") == 512

    def test_bindings(self):
        assert evaluate_expression("a^2", {"a": x**2}) == x**4

    def test_constants(self):
        assert evaluate_expression("%pi") == sympy.pi
        assert evaluate_expression("true") is sympy.true

    def test_float(self):
        assert evaluate_expression("0.5") == sympy.Float("0.5")

    def test_string(self):
        assert evaluate_expression('"Hello World!"') == "Hello World!"

    def test_list_and_set(self):
        assert evaluate_expression("[1,2,3]") == [1, 2, 3]
        assert evaluate_expression("{4,5,6,7}") == FiniteSet(4, 5, 6, 7)

    def test_list_arithmetic(self):
        assert evaluate_expression("[1,2]+[3,4]") == [4, 6]
        assert evaluate_expression("2*[1,2]") == [2, 4]

    def test_list_index_is_one_based(self):
        assert evaluate_expression("[5,6,7][2]") == 6

    def test_index_out_of_range(self):
        with pytest.raises(EvaluatorRuntimeError, match="out of range"):
            evaluate_expression("[1,2][3]")

    def test_is(self):
        assert evaluate_expression("is(1>2)") is sympy.false
        assert evaluate_expression("is(x^2=x*x)") is sympy.true
        assert evaluate_expression("is(x>1)") == UNKNOWN

    def test_equation_is_kept(self):
        value = evaluate_expression("x=1")
        assert isinstance(value, sympy.Equality)
        assert value.rhs == 1

    def test_logic(self):
        assert evaluate_expression("true and not false") is sympy.true
        assert evaluate_expression("1>2 or 2>1") is sympy.true

    def test_calculus(self):
        assert evaluate_expression("diff(x^3,x)") == 3 * x**2
        assert evaluate_expression("integrate(2*x,x)") == x**2
        assert evaluate_expression("subst(2,x,x^2)") == 4
        assert evaluate_expression("subst(x=3,x+1)") == 4

    def test_solve(self):
        solutions = evaluate_expression("solve(x^2=4,x)")
        assert [maxima_str(s) for s in solutions] == ["x=-2", "x=2"]

    def test_unknown_function_stays_symbolic(self):
        value = evaluate_expression("f(x)")
        assert maxima_str(value) == "f(x)"

    def test_matrix(self):
        assert evaluate_expression("matrix([1,2],[3,4])") == ImmutableMatrix([[1, 2], [3, 4]])

    def test_ragged_matrix(self):
        with pytest.raises(EvaluatorRuntimeError, match="same length"):
            evaluate_expression("matrix([1,2],[3])")

    def test_matrix_element_assignment(self):
        bindings = {"A": ImmutableMatrix([[1, 2], [1, 1]])}
        assert evaluate_expression("A[1,2]:3", bindings) == ImmutableMatrix([[1, 3], [1, 1]])
        # the bound value itself is untouched
        assert bindings["A"][0, 1] == 2

    def test_list_element_assignment(self):
        assert evaluate_expression("L[2]:9", {"L": [1, 2, 3]}) == [1, 9, 3]

    def test_plain_assignment_returns_value(self):
        assert evaluate_expression("n:3") == 3

    def test_division_by_zero(self):
        with pytest.raises(EvaluatorRuntimeError, match="Division by zero"):
            evaluate_expression("1/0")

    def test_parse_error(self):
        with pytest.raises(EvaluatorSyntaxError, match="could not be parsed"):
            evaluate_expression("1 + * 2")

    def test_bad_arguments_are_runtime_errors(self):
        with pytest.raises(EvaluatorRuntimeError):
            evaluate_expression("diff(sans)")


class TestMaximaStr:
    def test_polynomial(self):
        assert maxima_str(x**2 + 2 * x) == "x^2+2*x"

    def test_function(self):
        assert maxima_str(sympy.sin(x)) == "sin(x)"

    def test_collections(self):
        assert maxima_str([1, 2, 3]) == "[1,2,3]"
        assert maxima_str(FiniteSet(4, 5, 6, 7)) == "{4,5,6,7}"
        assert maxima_str(ImmutableMatrix([[1, 2], [3, 4]])) == "matrix([1,2],[3,4])"

    def test_atoms(self):
        assert maxima_str(sympy.true) == "true"
        assert maxima_str(sympy.pi) == "%pi"
        assert maxima_str(sympy.oo) == "inf"
        assert maxima_str("Hello") == '"Hello"'
        assert maxima_str(sympy.Abs(x)) == "abs(x)"

    def test_string_quotes_escaped(self):
        assert maxima_str('a"b') == '"a\\"b"'
        assert maxima_str("a\\b") == '"a\\\\b"'
        assert maxima_str(['a"b', "c"]) == '["a\\"b","c"]'

    def test_quoted_string_reads_back(self):
        text = 'say "hi" \\o/'
        assert evaluate_expression(maxima_str(text)) == text


class TestLatexDisplay:
    def test_power(self):
        assert latex_display(x**2, RenderOptions()) == "x^{2}"

    def test_function(self):
        assert latex_display(sympy.sin(x), RenderOptions()) == r"\sin{\left(x \right)}"

    def test_boolean_and_string(self):
        assert latex_display(sympy.true, RenderOptions()) == r"\mathbf{true}"
        assert latex_display("hi", RenderOptions()) == r"\text{hi}"

    @pytest.mark.parametrize(
        "text,latex",
        [
            ("50%", r"\text{50\%}"),
            ("a_b & {c}", r"\text{a\_b \& \{c\}}"),
            ("$5 #1", r"\text{\$5 \#1}"),
            ("x^2~y", r"\text{x\^{}2\~{}y}"),
            ("back\\slash", r"\text{back\textbackslash{}slash}"),
        ],
    )
    def test_string_special_characters(self, text, latex):
        assert latex_display(text, RenderOptions()) == latex

    def test_list(self):
        assert latex_display([1, 2], RenderOptions()) == r"\left[ 1 , 2 \right]"

    @pytest.mark.parametrize(
        "sign,symbol",
        [("dot", r"\cdot"), ("cross", r"\times"), ("none", r"\,")],
    )
    def test_multiplication_sign(self, sign, symbol):
        a = Symbol("a")
        display = latex_display(a * sympy.sin(2 * x), RenderOptions(multiplication_sign=sign))
        assert symbol in display

    @pytest.mark.parametrize(
        "parens,left",
        [("[", r"\left[\begin{array}{cc}"), ("(", r"\left(\begin{array}{cc}"), ("", r"\begin{array}{cc}")],
    )
    def test_matrix_parens(self, parens, left):
        display = latex_display(ImmutableMatrix([[1, 3], [1, 1]]), RenderOptions(matrix_parens=parens))
        assert display.startswith(left)
        assert "1 & 3" in display
