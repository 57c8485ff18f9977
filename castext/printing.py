"""Printers for evaluated values.

Two forms are produced for every value:
- value text, in Maxima syntax (``x^2``, ``[1,2,3]``, ``matrix([1,2],[3,4])``),
  used by ``{# #}`` segments
- display form, LaTeX from ``sympy.latex`` with the render options applied
"""

import re
from typing import Any

import sympy
from sympy.logic.boolalg import BooleanAtom
from sympy.matrices import MatrixBase
from sympy.printing.str import StrPrinter

from .options import RenderOptions

# characters with a special meaning inside \text{...}
LATEX_TEXT_ESCAPES = {
    "\\": r"\textbackslash{}",
    "{": r"\{",
    "}": r"\}",
    "$": r"\$",
    "%": r"\%",
    "&": r"\&",
    "#": r"\#",
    "_": r"\_",
    "^": r"\^{}",
    "~": r"\~{}",
}
LATEX_TEXT_SPECIALS = re.compile("|".join(re.escape(c) for c in LATEX_TEXT_ESCAPES))


def quote_string(value: str) -> str:
    """A string literal in Maxima syntax, with " and \\ escaped."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def latex_text(value: str) -> str:
    return LATEX_TEXT_SPECIALS.sub(lambda m: LATEX_TEXT_ESCAPES[m.group(0)], value)


class MaximaStrPrinter(StrPrinter):
    """StrPrinter that writes Maxima input syntax instead of Python."""

    def _print_Pow(self, expr, rational=False):
        return super()._print_Pow(expr, rational).replace("**", "^")

    # Maxima output has no spaces around + and after commas
    def _print_Add(self, expr, order=None):
        return super()._print_Add(expr, order).replace(" ", "")

    def _print_Function(self, expr):
        return f"{expr.func.__name__}({','.join(self._print(a) for a in expr.args)})"

    def _print_Tuple(self, expr):
        return self._print_list(expr.args)

    def _print_Pi(self, expr):
        return "%pi"

    def _print_Exp1(self, expr):
        return "%e"

    def _print_ImaginaryUnit(self, expr):
        return "%i"

    def _print_Infinity(self, expr):
        return "inf"

    def _print_NegativeInfinity(self, expr):
        return "minf"

    def _print_BooleanTrue(self, expr):
        return "true"

    def _print_BooleanFalse(self, expr):
        return "false"

    def _print_Abs(self, expr):
        return f"abs({self._print(expr.args[0])})"

    def _print_Float(self, expr):
        return repr(float(expr))

    def _print_Relational(self, expr):
        op = {"==": "=", "!=": "#"}.get(expr.rel_op, expr.rel_op)
        return f"{self._print(expr.lhs)}{op}{self._print(expr.rhs)}"

    def _print_And(self, expr):
        return " and ".join(self.parenthesize(a, 1) for a in expr.args)

    def _print_Or(self, expr):
        return " or ".join(self.parenthesize(a, 1) for a in expr.args)

    def _print_Not(self, expr):
        return f"not {self.parenthesize(expr.args[0], 1)}"

    def _print_list(self, expr):
        return "[" + ",".join(self._print(item) for item in expr) + "]"

    def _print_FiniteSet(self, expr):
        return "{" + ",".join(self._print(item) for item in expr.args) + "}"

    def _print_MatrixBase(self, expr):
        rows = (
            "[" + ",".join(self._print(item) for item in expr.row(i)) + "]"
            for i in range(expr.rows)
        )
        return "matrix(" + ",".join(rows) + ")"

    _print_ImmutableDenseMatrix = _print_MatrixBase
    _print_MutableDenseMatrix = _print_MatrixBase

    def _print_str(self, expr):
        return quote_string(expr)


_str_printer = MaximaStrPrinter()


def maxima_str(value: Any) -> str:
    """Maxima input text for a value, e.g. x^2+1 or [1,2,3]."""
    if hasattr(value, "html"):
        return value.html
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(maxima_str(item) for item in value) + "]"
    if isinstance(value, sympy.FiniteSet):
        return "{" + ",".join(maxima_str(item) for item in value.args) + "}"
    return _str_printer.doprint(value)


def latex_display(value: Any, options: RenderOptions) -> str:
    """LaTeX display form of a value using the render options."""
    if hasattr(value, "html"):
        return value.html
    if isinstance(value, (bool, BooleanAtom)):
        return r"\mathbf{true}" if bool(value) else r"\mathbf{false}"
    if isinstance(value, str):
        return rf"\text{{{latex_text(value)}}}"
    if isinstance(value, (list, tuple)):
        inner = " , ".join(latex_display(item, options) for item in value)
        return rf"\left[ {inner} \right]"
    if isinstance(value, sympy.FiniteSet):
        inner = " , ".join(latex_display(item, options) for item in value.args)
        return rf"\left\{{ {inner} \right\}}"
    settings = dict(mul_symbol=options.mul_symbol, mat_str="array")
    if isinstance(value, MatrixBase):
        settings["mat_delim"] = options.matrix_parens
    return sympy.latex(value, **settings)
