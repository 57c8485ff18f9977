"""The expression evaluator interface and the SymPy-backed reference evaluator.

The session only ever talks to an evaluator through ``evaluate``, so any object
with that method can stand in for the reference implementation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Protocol, runtime_checkable

import sympy
from sympy.logic.boolalg import BooleanAtom

from .errors import CASTextError, EvaluatorRuntimeError, PlotWarning
from .maxima import evaluate_expression
from .options import RenderOptions
from .plots import PlotReference
from .printing import latex_display, maxima_str

logger = logging.getLogger(__name__)


@dataclass
class Evaluation:
    """Outcome of evaluating one expression.

    Attributes:
        value: the evaluated value (SymPy object, list, str, PlotReference)
        display: LaTeX display form
        text: value text in evaluator syntax
        error: set when evaluation failed; every other field is then empty
        truth: True/False for boolean values, else None
        elements: value text of each element for lists and sets, else None
        is_html: display is HTML to be emitted without math wrapping
        warnings: non-fatal problems, e.g. unsupported plot options
    """

    value: Any = None
    display: str = ""
    text: str = ""
    error: Optional[CASTextError] = None
    truth: Optional[bool] = None
    elements: Optional[List[str]] = None
    is_html: bool = False
    warnings: List[PlotWarning] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.error is None


@runtime_checkable
class ExpressionEvaluator(Protocol):
    def evaluate(
        self, expression: str, bindings: Mapping[str, Any], options: RenderOptions
    ) -> Evaluation: ...

    def describe(self, value: Any, options: RenderOptions) -> Evaluation: ...


def element_values(value) -> Optional[list]:
    """The elements of a list or set value, else None."""
    if isinstance(value, list):
        return list(value)
    if isinstance(value, sympy.FiniteSet):
        return list(value.args)
    return None


def truth_value(value) -> Optional[bool]:
    if isinstance(value, (bool, BooleanAtom)):
        return bool(value)
    if isinstance(value, sympy.Equality):
        return value.lhs == value.rhs
    return None


class SympyEvaluator:
    """Reference evaluator: Maxima-style syntax, evaluated with SymPy.

    Args:
        plot_writer: called with each PlotReference so the image file can be
            produced; plots still render as <img> tags without it
    """

    def __init__(self, plot_writer: Optional[Callable[[PlotReference], None]] = None):
        self.plot_writer = plot_writer

    def evaluate(
        self,
        expression: str,
        bindings: Optional[Mapping[str, Any]] = None,
        options: Optional[RenderOptions] = None,
    ) -> Evaluation:
        options = options or RenderOptions()
        try:
            value = evaluate_expression(expression, bindings or {})
        except CASTextError as e:
            logger.debug(f"Evaluation of {expression!r} failed: {e.message}")
            return Evaluation(error=e)
        return self.describe(value, options)

    def describe(self, value, options: RenderOptions) -> Evaluation:
        """Build display, text and element forms for an evaluated value."""
        if isinstance(value, PlotReference):
            if self.plot_writer is not None:
                self.plot_writer(value)
            return Evaluation(
                value=value,
                display=value.html,
                text=value.html,
                is_html=True,
                warnings=list(value.warnings),
            )

        items = element_values(value)
        elements = None if items is None else [maxima_str(v) for v in items]

        try:
            display = latex_display(value, options)
            text = maxima_str(value)
        except Exception as e:
            return Evaluation(
                error=EvaluatorRuntimeError(f"Could not display the value: {type(e).__name__}: {e}")
            )

        return Evaluation(
            value=value,
            display=display,
            text=text,
            truth=truth_value(value),
            elements=elements,
        )
