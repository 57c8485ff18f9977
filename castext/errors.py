"""Exception classes for castext.

Errors are recorded against the node or binding that produced them rather than
raised out of an expansion. They are still exceptions so evaluators and
transformers can raise them internally and have them caught at one place.
"""

from typing import List, Optional


class CASTextError(Exception):
    """Base class for every error castext records."""

    kind = "error"
    fatal = True

    def __init__(self, message: str, position: Optional[int] = None):
        self.message = message
        self.position = position
        super().__init__(message)

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r}, position={self.position})"


class ParseError(CASTextError):
    """Malformed or unbalanced block tag or math delimiter."""

    kind = "parse"


class MissingAttributeError(ParseError):
    """A block tag lacks a required attribute, e.g. an if without test."""

    kind = "missing_attribute"


class EvaluatorSyntaxError(CASTextError):
    """The expression evaluator rejected an expression string."""

    kind = "syntax"

    def __init__(
        self,
        message: str,
        expression: str = "",
        suggestion: Optional[str] = None,
        position: Optional[int] = None,
    ):
        self.expression = expression
        self.suggestion = suggestion
        super().__init__(message, position)


class EvaluatorRuntimeError(CASTextError):
    """Evaluation of a syntactically valid expression failed."""

    kind = "runtime"


class IterationLengthMismatchError(EvaluatorRuntimeError):
    """Parallel foreach sources evaluated to sequences of different lengths."""

    kind = "iteration_length"

    def __init__(self, lengths: List[int], position: Optional[int] = None):
        self.lengths = list(lengths)
        super().__init__(
            "Foreach-block variables must evaluate to lists of equal length, "
            f"got lengths {', '.join(map(str, self.lengths))}.",
            position,
        )


class ForbiddenWordError(CASTextError):
    """An expression used a word the policy disallows."""

    kind = "forbidden"

    def __init__(self, words: List[str], expression: str = "", position: Optional[int] = None):
        self.words = list(words)
        self.expression = expression
        message = " ".join(f"The expression {word} is forbidden." for word in self.words)
        super().__init__(message, position)


class UnknownFactSheetError(CASTextError):
    """A [[facts:KEY]] reference named a sheet the provider does not know."""

    kind = "unknown_fact_sheet"

    def __init__(self, key: str, position: Optional[int] = None):
        self.key = key
        super().__init__(f"The fact sheet {key} does not exist.", position)


class PlotWarning(CASTextError):
    """Problem with plot options. Reported, but the text stays valid."""

    kind = "plot"
    fatal = False
