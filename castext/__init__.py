"""castext -- templates mixing text with computer-algebra expressions."""

import logging
from typing import Iterable, Optional, Sequence

# Version - reads from package metadata (set in pyproject.toml)
try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castext")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"

logger = logging.getLogger(__name__)

# Re-export from errors module
from .errors import (CASTextError, EvaluatorRuntimeError, EvaluatorSyntaxError,
                     ForbiddenWordError, IterationLengthMismatchError,
                     MissingAttributeError, ParseError, PlotWarning,
                     UnknownFactSheetError)
from .evaluator import Evaluation, ExpressionEvaluator, SympyEvaluator
from .expander import BlockExpander, expand
from .facts import FactSheet, FactSheets, render_fact_sheet
from .nodes import (DefineBlock, ErrorMarker, FactSheetRef, ForeachBlock,
                    IfBlock, MathSegment, ParsedTemplate, SegmentKind, Text)
from .options import RenderOptions
from .parsing import parse_castext, raw_expressions
from .plots import PlotReference
from .results import ExpansionResult
from .session import Binding, Session, SessionSnapshot, split_assignment
from .text import CASText
from .validation import (GLOBAL_FORBIDDEN_WORDS, STUDENT_FORBIDDEN_WORDS,
                         ValidationReport, WordPolicy, check_forbidden_words)


def render(
    raw: str,
    session_expressions: Optional[Iterable[str]] = None,
    strict: bool = False,
    forbidden_words: Optional[Sequence[str]] = None,
    options: Optional[RenderOptions] = None,
) -> ExpansionResult:
    """Parse and expand a template in one call.

    Args:
        raw: the template text
        session_expressions: seed expressions, e.g. ["a:x^2"]
        strict: treat the template as student-facing
        forbidden_words: extra words expressions may not use
        options: render options

    Returns:
        ExpansionResult with display, valid and errors

    Example:
        >>> render("{@1+2@}").display
        '\\\\({3}\\\\)'
    """
    session = Session(session_expressions, options=options)
    return CASText(
        raw,
        session=session,
        strict=strict,
        forbidden_words=forbidden_words,
        options=options,
    ).expand()


__all__ = [
    "__version__",
    "render",
    "CASText",
    "Session",
    "Binding",
    "SessionSnapshot",
    "split_assignment",
    "parse_castext",
    "raw_expressions",
    "expand",
    "BlockExpander",
    "check_forbidden_words",
    "WordPolicy",
    "ValidationReport",
    "GLOBAL_FORBIDDEN_WORDS",
    "STUDENT_FORBIDDEN_WORDS",
    "ExpansionResult",
    "RenderOptions",
    "Evaluation",
    "ExpressionEvaluator",
    "SympyEvaluator",
    "FactSheet",
    "FactSheets",
    "render_fact_sheet",
    "PlotReference",
    "ParsedTemplate",
    "SegmentKind",
    "Text",
    "MathSegment",
    "IfBlock",
    "DefineBlock",
    "ForeachBlock",
    "FactSheetRef",
    "ErrorMarker",
    "CASTextError",
    "ParseError",
    "MissingAttributeError",
    "EvaluatorSyntaxError",
    "EvaluatorRuntimeError",
    "IterationLengthMismatchError",
    "ForbiddenWordError",
    "UnknownFactSheetError",
    "PlotWarning",
]
