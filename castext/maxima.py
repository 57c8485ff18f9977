"""Maxima-flavoured expressions evaluated with SymPy.

Expressions are checked with a few cheap heuristics first (final character,
bracket balance, missing ``*``), then parsed with the LALR grammar in
``maxima.lark`` and transformed bottom-up into SymPy values. Lists stay Python
lists, sets become ``FiniteSet`` and matrices ``ImmutableMatrix``.
"""

import logging
import operator
import re
from importlib.resources import files
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import sympy
from lark import Lark, Transformer, Tree
from lark.exceptions import UnexpectedInput, VisitError
from sympy.logic.boolalg import BooleanAtom
from sympy.matrices import MatrixBase

from .errors import CASTextError, EvaluatorRuntimeError, EvaluatorSyntaxError
from .plots import PlotReference, make_plot

logger = logging.getLogger(__name__)

try:
    maxima_grammar = (files(__package__) / "maxima.lark").read_text(encoding="utf-8")
except Exception:
    # fallback to relative path from current file
    grammar_path = Path(__file__).parent / "maxima.lark"
    maxima_grammar = grammar_path.read_text(encoding="utf-8")

UNKNOWN = sympy.Symbol("unknown")

CONSTANTS = {
    "%pi": sympy.pi,
    "%e": sympy.E,
    "%i": sympy.I,
    "%gamma": sympy.EulerGamma,
    "%phi": sympy.GoldenRatio,
    "inf": sympy.oo,
    "minf": -sympy.oo,
    "true": sympy.true,
    "false": sympy.false,
}

# characters an expression may not end with
INVALID_FINAL_CHARACTERS = frozenset("+-*/^=<>#,:.([{'")

BRACKETS = (("(", ")"), ("[", "]"), ("{", "}"))

STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\])*"')
ESCAPED_CHARACTER = re.compile(r"\\(.)")

# c2A -> c2*A: letters, digits, then a letter again
LETTER_DIGIT_LETTER = re.compile(r"(?<![A-Za-z0-9_%])([A-Za-z]+\d+)(?=[A-Za-z])")
# 2x -> 2*x, but not the exponent in 1e5
DIGIT_LETTER = re.compile(r"(?<![A-Za-z0-9_%.])(\d+(?:\.\d*)?)(?![eE][+-]?\d)(?=[A-Za-z%(])")

_cached_maxima_parser = None


def _get_maxima_parser():
    """Get or create the cached expression parser."""
    global _cached_maxima_parser
    if _cached_maxima_parser is None:
        _cached_maxima_parser = Lark(maxima_grammar, parser="lalr", maybe_placeholders=True)
    return _cached_maxima_parser


# -----------------------------------------------------------------------------
# Pre-parse checks
# -----------------------------------------------------------------------------


def _mask_strings(expression: str) -> str:
    """Blank out string literals, keeping positions."""
    return STRING_LITERAL.sub(lambda m: '"' + " " * (len(m.group(0)) - 2) + '"', expression)


def suggest_missing_stars(expression: str) -> Optional[str]:
    """Return the expression with * inserted where it looks to be missing."""
    masked = _mask_strings(expression)
    positions = sorted(
        {m.end(1) for m in LETTER_DIGIT_LETTER.finditer(masked)}
        | {m.end(1) for m in DIGIT_LETTER.finditer(masked)}
    )
    if not positions:
        return None
    pieces, last = [], 0
    for pos in positions:
        pieces.append(expression[last:pos])
        last = pos
    pieces.append(expression[last:])
    return "*".join(pieces)


def check_syntax(expression: str):
    """Cheap checks run before parsing.

    Raises:
        EvaluatorSyntaxError: with a human-readable message
    """
    if not expression.strip():
        raise EvaluatorSyntaxError("Empty expression.", expression)

    masked = _mask_strings(expression).rstrip()
    final = masked[-1]
    if final in INVALID_FINAL_CHARACTERS:
        raise EvaluatorSyntaxError(
            f"'{final}' is an invalid final character in {expression}", expression
        )

    for left, right in BRACKETS:
        opened, closed = masked.count(left), masked.count(right)
        if opened > closed:
            raise EvaluatorSyntaxError(
                f"You have a missing right bracket {right} in the expression: {expression}.",
                expression,
            )
        if closed > opened:
            raise EvaluatorSyntaxError(
                f"You have a missing left bracket {left} in the expression: {expression}.",
                expression,
            )

    suggestion = suggest_missing_stars(expression)
    if suggestion:
        raise EvaluatorSyntaxError(
            "You seem to be missing * characters. "
            f"Perhaps you meant to type {suggestion}.",
            expression,
            suggestion=suggestion,
        )


# -----------------------------------------------------------------------------
# Value helpers
# -----------------------------------------------------------------------------


def as_sympy(value: Any):
    """Coerce a transformed value to something SymPy functions accept."""
    if isinstance(value, (list, tuple)):
        return sympy.Tuple(*(as_sympy(v) for v in value))
    if isinstance(value, bool):
        return sympy.true if value else sympy.false
    if isinstance(value, str):
        raise EvaluatorRuntimeError(f'The string "{value}" cannot be used in an expression.')
    if isinstance(value, PlotReference):
        raise EvaluatorRuntimeError("A plot cannot be used in an expression.")
    return sympy.sympify(value)


def _require_list(value, name: str) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, sympy.FiniteSet):
        return list(value.args)
    raise EvaluatorRuntimeError(f"{name} expects a list, got {value}.")


def _index(value) -> int:
    if not isinstance(value, (int, sympy.Integer)) or int(value) < 1:
        raise EvaluatorRuntimeError(f"Index {value} must be a positive integer.")
    return int(value) - 1


def elementwise(op, a, b):
    """Apply a binary operator, mapping over lists as Maxima does."""
    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            raise EvaluatorRuntimeError(
                f"Arithmetic on lists of different lengths ({len(a)} and {len(b)})."
            )
        return [elementwise(op, x, y) for x, y in zip(a, b)]
    if isinstance(a, list):
        return [elementwise(op, x, b) for x in a]
    if isinstance(b, list):
        return [elementwise(op, a, y) for y in b]
    if op is operator.mul and isinstance(a, MatrixBase) and isinstance(b, MatrixBase):
        return a.multiply_elementwise(b)
    return op(as_sympy(a), as_sympy(b))


def listable(func):
    """Map a function over a list first argument."""

    def wrapper(first, *rest):
        if isinstance(first, list):
            return [wrapper(item, *rest) for item in first]
        return func(as_sympy(first), *(as_sympy(r) for r in rest))

    wrapper.__name__ = func.__name__
    return wrapper


# -----------------------------------------------------------------------------
# Function table
# -----------------------------------------------------------------------------


def _is(value):
    if isinstance(value, (bool, BooleanAtom)):
        return sympy.true if value else sympy.false
    if isinstance(value, sympy.Equality):
        return sympy.true if value.lhs == value.rhs else sympy.false
    if isinstance(value, sympy.Unequality):
        return sympy.false if value.lhs == value.rhs else sympy.true
    if isinstance(value, sympy.Rel):
        decided = value.doit()
        if isinstance(decided, BooleanAtom):
            return decided
    return UNKNOWN


def _matrix(*rows):
    if not rows or not all(isinstance(row, list) for row in rows):
        raise EvaluatorRuntimeError("matrix expects one or more lists as rows.")
    if len({len(row) for row in rows}) != 1:
        raise EvaluatorRuntimeError("All rows of a matrix must have the same length.")
    return sympy.ImmutableMatrix([[as_sympy(item) for item in row] for row in rows])


def _equations(value) -> List[Tuple[Any, Any]]:
    eqs = value if isinstance(value, list) else [value]
    pairs = []
    for eq in eqs:
        if not isinstance(eq, sympy.Equality):
            raise EvaluatorRuntimeError(f"Expected an equation of the form x=a, got {eq}.")
        pairs.append((eq.lhs, eq.rhs))
    return pairs


def _subst(*args):
    if len(args) == 3:
        new, old, expr = args
        pairs = [(as_sympy(old), as_sympy(new))]
    elif len(args) == 2:
        pairs = _equations(args[0])
        expr = args[1]
    else:
        raise EvaluatorRuntimeError("subst expects two or three arguments.")
    return listable(lambda e: e.subs(pairs))(expr)


def _ev(expr, *equations):
    pairs = [pair for eq in equations for pair in _equations(eq)]
    return listable(lambda e: e.subs(pairs).doit())(expr)


def _solve(expr, var):
    equation = expr if isinstance(expr, sympy.Equality) else sympy.Eq(as_sympy(expr), 0)
    if isinstance(var, list):
        solutions = sympy.solve(equation, var, dict=True)
        return [[sympy.Eq(k, v, evaluate=False) for k, v in s.items()] for s in solutions]
    return [sympy.Eq(var, s, evaluate=False) for s in sympy.solve(equation, var)]


def _length(value):
    if isinstance(value, (list, str)):
        return sympy.Integer(len(value))
    if isinstance(value, sympy.FiniteSet):
        return sympy.Integer(len(value.args))
    if isinstance(value, MatrixBase):
        return sympy.Integer(value.rows)
    return sympy.Integer(len(as_sympy(value).args))


def _first(value):
    items = _require_list(value, "first")
    if not items:
        raise EvaluatorRuntimeError("first: the list is empty.")
    return items[0]


def _last(value):
    items = _require_list(value, "last")
    if not items:
        raise EvaluatorRuntimeError("last: the list is empty.")
    return items[-1]


def _side(name):
    def side(value):
        if not isinstance(value, sympy.Rel):
            raise EvaluatorRuntimeError(f"{name} expects an equation or inequality.")
        return getattr(value, name)

    return side


def _matrix_op(name, method):
    def op(value):
        if not isinstance(value, MatrixBase):
            raise EvaluatorRuntimeError(f"{name} expects a matrix.")
        return method(value)

    return op


def _sum(expr, var, lo, hi):
    return sympy.summation(as_sympy(expr), (var, as_sympy(lo), as_sympy(hi)))


def _integrate(expr, var, lo=None, hi=None):
    if lo is None:
        return listable(lambda e: sympy.integrate(e, var))(expr)
    return listable(lambda e: sympy.integrate(e, (var, lo, hi)))(expr)


def _diff(expr, var, n=1):
    return listable(lambda e: sympy.diff(e, var, int(n)))(expr)


def _append(*lists):
    combined = []
    for item in lists:
        combined.extend(_require_list(item, "append"))
    return combined


def _sort(value):
    return sorted(_require_list(value, "sort"), key=sympy.default_sort_key)


def _setify(value):
    return sympy.FiniteSet(*(as_sympy(v) for v in _require_list(value, "setify")))


def _set_op(name, method):
    def op(*sets):
        values = []
        for s in sets:
            if not isinstance(s, sympy.Set):
                raise EvaluatorRuntimeError(f"{name} expects sets.")
            values.append(s)
        return method(*values)

    return op


def _float(value):
    return listable(lambda e: e.evalf())(value)


FUNCTIONS: Dict[str, Any] = {
    "is": _is,
    "matrix": _matrix,
    "diff": _diff,
    "integrate": _integrate,
    "int": _integrate,
    "subst": _subst,
    "ev": _ev,
    "solve": _solve,
    "limit": lambda expr, var, point: sympy.limit(as_sympy(expr), var, as_sympy(point)),
    "sum": _sum,
    "length": _length,
    "first": _first,
    "last": _last,
    "rest": lambda value: _require_list(value, "rest")[1:],
    "lhs": _side("lhs"),
    "rhs": _side("rhs"),
    "float": _float,
    "expand": listable(sympy.expand),
    "factor": listable(sympy.factor),
    "ratsimp": listable(lambda e: sympy.cancel(sympy.together(e))),
    "fullratsimp": listable(lambda e: sympy.cancel(sympy.together(e))),
    "simplify": listable(sympy.simplify),
    "trigsimp": listable(sympy.trigsimp),
    "trigexpand": listable(sympy.expand_trig),
    "num": listable(lambda e: sympy.fraction(sympy.together(e))[0]),
    "denom": listable(lambda e: sympy.fraction(sympy.together(e))[1]),
    "sin": listable(sympy.sin),
    "cos": listable(sympy.cos),
    "tan": listable(sympy.tan),
    "sec": listable(sympy.sec),
    "csc": listable(sympy.csc),
    "cot": listable(sympy.cot),
    "asin": listable(sympy.asin),
    "acos": listable(sympy.acos),
    "atan": listable(sympy.atan),
    "sinh": listable(sympy.sinh),
    "cosh": listable(sympy.cosh),
    "tanh": listable(sympy.tanh),
    "sqrt": listable(sympy.sqrt),
    "exp": listable(sympy.exp),
    "log": listable(sympy.log),
    "abs": listable(sympy.Abs),
    "floor": listable(sympy.floor),
    "ceiling": listable(sympy.ceiling),
    "max": lambda *args: sympy.Max(*(as_sympy(a) for a in args)),
    "min": lambda *args: sympy.Min(*(as_sympy(a) for a in args)),
    "mod": lambda a, b: sympy.Mod(as_sympy(a), as_sympy(b)),
    "binomial": lambda n, k: sympy.binomial(as_sympy(n), as_sympy(k)),
    "factorial": listable(sympy.factorial),
    "transpose": _matrix_op("transpose", lambda m: m.T),
    "determinant": _matrix_op("determinant", lambda m: m.det()),
    "invert": _matrix_op("invert", lambda m: m.inv()),
    "append": _append,
    "cons": lambda item, value: [item] + _require_list(value, "cons"),
    "reverse": lambda value: list(reversed(_require_list(value, "reverse"))),
    "sort": _sort,
    "setify": _setify,
    "listify": lambda value: _require_list(value, "listify"),
    "union": _set_op("union", sympy.Union),
    "intersection": _set_op("intersection", sympy.Intersection),
    "plot": make_plot,
}


# -----------------------------------------------------------------------------
# Transformer
# -----------------------------------------------------------------------------


class MaximaTransformer(Transformer):
    """Evaluates an expression parse tree bottom-up into SymPy values.

    Names resolve against the session bindings first, then the constants,
    then become free symbols.
    """

    def __init__(self, bindings: Mapping[str, Any]):
        super().__init__()
        self.bindings = bindings

    def number(self, items):
        text = str(items[0])
        if any(c in text for c in ".eE"):
            return sympy.Float(text)
        return sympy.Integer(text)

    def string(self, items):
        return ESCAPED_CHARACTER.sub(r"\1", str(items[0])[1:-1])

    def symbol(self, items):
        name = str(items[0])
        if name in self.bindings:
            return self.bindings[name]
        if name in CONSTANTS:
            return CONSTANTS[name]
        return sympy.Symbol(name)

    def call(self, items):
        name = str(items[0])
        args = items[1] or []
        func = FUNCTIONS.get(name)
        if func is None:
            return sympy.Function(name)(*(as_sympy(a) for a in args))
        try:
            return func(*args)
        except TypeError as e:
            raise EvaluatorRuntimeError(f"Wrong arguments to {name}: {e}") from None

    def arguments(self, items):
        return list(items)

    def list_(self, items):
        return list(items[0] or [])

    def set_(self, items):
        return sympy.FiniteSet(*(as_sympy(a) for a in items[0] or []))

    def add(self, items):
        return elementwise(operator.add, *items)

    def sub(self, items):
        return elementwise(operator.sub, *items)

    def mul(self, items):
        return elementwise(operator.mul, *items)

    def div(self, items):
        return elementwise(operator.truediv, *items)

    def pow(self, items):
        return elementwise(operator.pow, *items)

    def neg(self, items):
        value = items[0]
        if isinstance(value, list):
            return [self.neg([v]) for v in value]
        return -as_sympy(value)

    def factorial(self, items):
        return listable(sympy.factorial)(items[0])

    def compare(self, items):
        left, op, right = items[0], str(items[1]), items[2]
        match op:
            case "=":
                return sympy.Eq(as_sympy(left), as_sympy(right), evaluate=False)
            case "#":
                return sympy.Ne(as_sympy(left), as_sympy(right), evaluate=False)
            case "<":
                return as_sympy(left) < as_sympy(right)
            case ">":
                return as_sympy(left) > as_sympy(right)
            case "<=":
                return as_sympy(left) <= as_sympy(right)
            case ">=":
                return as_sympy(left) >= as_sympy(right)

    def and_(self, items):
        return sympy.And(*(as_sympy(i) for i in items))

    def or_(self, items):
        return sympy.Or(*(as_sympy(i) for i in items))

    def not_(self, items):
        return sympy.Not(as_sympy(items[0]))

    def subscript(self, items):
        base, indices = items
        if isinstance(base, list):
            if len(indices) != 1:
                raise EvaluatorRuntimeError("A list takes exactly one index.")
            position = _index(indices[0])
            if position >= len(base):
                raise EvaluatorRuntimeError(f"Index {indices[0]} is out of range for {len(base)} items.")
            return base[position]
        if isinstance(base, MatrixBase):
            rows = [_index(i) for i in indices]
            if rows[0] >= base.rows or (len(rows) > 1 and rows[1] >= base.cols):
                raise EvaluatorRuntimeError("Matrix index out of range.")
            if len(rows) == 1:
                return list(base.row(rows[0]))
            return base[rows[0], rows[1]]
        if isinstance(base, sympy.Symbol):
            return sympy.Indexed(sympy.IndexedBase(base), *(as_sympy(i) for i in indices))
        raise EvaluatorRuntimeError(f"{base} cannot be indexed.")


# -----------------------------------------------------------------------------
# Entry points
# -----------------------------------------------------------------------------


def _assign_index(target: Tree, value, transformer: MaximaTransformer):
    base_tree, index_tree = target.children
    if not (isinstance(base_tree, Tree) and base_tree.data == "symbol"):
        raise EvaluatorSyntaxError("Only a named list or matrix can have elements assigned.")
    name = str(base_tree.children[0])
    current = transformer.bindings.get(name)
    indices = [_index(i) for i in transformer.transform(index_tree)]

    if isinstance(current, list) and len(indices) == 1:
        if indices[0] >= len(current):
            raise EvaluatorRuntimeError(f"Index out of range in assignment to {name}.")
        updated = list(current)
        updated[indices[0]] = value
        return updated
    if isinstance(current, MatrixBase) and len(indices) == 2:
        if indices[0] >= current.rows or indices[1] >= current.cols:
            raise EvaluatorRuntimeError(f"Index out of range in assignment to {name}.")
        mutable = current.as_mutable()
        mutable[indices[0], indices[1]] = as_sympy(value)
        return mutable.as_immutable()
    raise EvaluatorRuntimeError(f"{name} is not a list or matrix that can take this assignment.")


def _evaluate_tree(tree: Tree, bindings: Mapping[str, Any]):
    transformer = MaximaTransformer(bindings)
    if tree.data != "assign":
        return transformer.transform(tree)

    target, rhs = tree.children
    value = transformer.transform(rhs)
    if isinstance(target, Tree) and target.data == "symbol":
        return value
    if isinstance(target, Tree) and target.data == "subscript":
        return _assign_index(target, value, transformer)
    raise EvaluatorSyntaxError("The left-hand side of an assignment must be a name.")


def evaluate_expression(expression: str, bindings: Optional[Mapping[str, Any]] = None):
    """Parse and evaluate one expression against the given bindings.

    Raises:
        EvaluatorSyntaxError: the expression is malformed
        EvaluatorRuntimeError: evaluation failed
    """
    bindings = bindings or {}
    check_syntax(expression)

    try:
        tree = _get_maxima_parser().parse(expression)
    except UnexpectedInput as e:
        column = getattr(e, "column", None)
        where = f" at character {column}" if column and column > 0 else ""
        raise EvaluatorSyntaxError(
            f"The expression {expression} could not be parsed{where}.", expression
        ) from None

    try:
        value = _evaluate_tree(tree, bindings)
    except VisitError as e:
        # Unwrap VisitError to preserve original exception type
        error = e.orig_exc
        if isinstance(error, CASTextError):
            raise error from None
        raise EvaluatorRuntimeError(f"{type(error).__name__}: {error}") from None
    except CASTextError:
        raise
    except Exception as e:
        raise EvaluatorRuntimeError(f"{type(e).__name__}: {e}") from None

    if _is_undefined(value):
        raise EvaluatorRuntimeError("Division by zero.")
    return value


def _is_undefined(value) -> bool:
    if isinstance(value, list):
        return any(_is_undefined(v) for v in value)
    if isinstance(value, sympy.Basic):
        return value.has(sympy.zoo, sympy.nan)
    return False
