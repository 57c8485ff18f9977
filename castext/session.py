"""The evaluation session: an ordered, keyed store of evaluated bindings.

Every evaluation is appended to ``history`` and never removed. A separate view
maps each visible key to its latest binding, in the order the key was first
seen. Blocks take a snapshot before their body and restore it afterwards:
keys first seen inside the body disappear from the view, while keys that
already existed keep whatever value the body gave them.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import CASTextError, ForbiddenWordError, PlotWarning
from .evaluator import ExpressionEvaluator, SympyEvaluator
from .options import RenderOptions
from .validation import GLOBAL_FORBIDDEN_WORDS, find_forbidden_words

logger = logging.getLogger(__name__)

AUTOGEN_PREFIX = "autogen"

# name:expr, but not name:=expr (function definition)
ASSIGNMENT = re.compile(r"^\s*([A-Za-z%_][A-Za-z0-9_%]*)\s*:(?!=)")
# name[i,j]:expr assigns into an existing list or matrix
INDEXED_ASSIGNMENT = re.compile(r"^\s*([A-Za-z%_][A-Za-z0-9_%]*)\s*\[[^\]]*\]\s*:(?!=)")


def split_assignment(raw: str) -> Tuple[Optional[str], str]:
    """Split ``name:expr`` into its key and expression.

    Returns (None, expr) for a plain expression. For an indexed assignment
    the key is the list/matrix name and the whole string is the expression,
    since the evaluator needs the current value to update.

    >>> split_assignment("a: x^2")
    ('a', 'x^2')
    >>> split_assignment("A[1,2]:3")
    ('A', 'A[1,2]:3')
    """
    match = ASSIGNMENT.match(raw)
    if match:
        return match.group(1), raw[match.end():].strip()
    match = INDEXED_ASSIGNMENT.match(raw)
    if match:
        return match.group(1), raw.strip()
    return None, raw.strip()


@dataclass
class Binding:
    """One evaluated expression stored under a key."""

    key: str
    expression: str
    raw: str
    value: Any = None
    display: str = ""
    text: str = ""
    error: Optional[CASTextError] = None
    truth: Optional[bool] = None
    elements: Optional[List[str]] = None
    is_html: bool = False
    warnings: List[PlotWarning] = field(default_factory=list)
    auto: bool = False

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SessionSnapshot:
    watermark: int
    autogen_counter: int


class Session:
    """Ordered store of bindings shared by a template and its seed expressions.

    Args:
        expressions: seed expressions such as ``["a:x^2", "b:(x+1)^2"]``
        evaluator: anything implementing ExpressionEvaluator
        options: render options passed to the evaluator
    """

    def __init__(
        self,
        expressions: Optional[Iterable[str]] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        options: Optional[RenderOptions] = None,
    ):
        self.evaluator = evaluator or SympyEvaluator()
        self.options = options or RenderOptions()
        self.history: List[Binding] = []
        self._visible: Dict[str, Binding] = {}
        self._autogen_counter = 0
        # history index up to which errors have been reported by an expansion
        self._reported = 0
        for raw in expressions or ():
            self.append_raw(raw)

    @classmethod
    def from_strings(cls, expressions: Iterable[str], **kwargs) -> "Session":
        return cls(expressions=expressions, **kwargs)

    def __len__(self):
        return len(self._visible)

    def __contains__(self, key):
        return key in self._visible

    def __getitem__(self, key) -> Binding:
        return self._visible[key]

    def get(self, key, default=None) -> Optional[Binding]:
        return self._visible.get(key, default)

    # -------------------------------------------------------------------------
    # Appending
    # -------------------------------------------------------------------------

    def next_autogen_key(self) -> str:
        """Next autogenN key not already visible."""
        while True:
            key = f"{AUTOGEN_PREFIX}{self._autogen_counter}"
            self._autogen_counter += 1
            if key not in self._visible:
                return key

    def append_raw(self, raw: str, forbidden_words: Iterable[str] = ()) -> Binding:
        """Append ``name:expr`` or a bare expression."""
        key, expression = split_assignment(raw)
        return self.append(key, expression, raw=raw.strip(), forbidden_words=forbidden_words)

    def append(
        self,
        key: Optional[str],
        expression: str,
        raw: Optional[str] = None,
        forbidden_words: Iterable[str] = (),
        options: Optional[RenderOptions] = None,
    ) -> Binding:
        """Evaluate an expression and bind it under key.

        A key of None gets the next auto-generated name. Expressions using a
        forbidden word are recorded as failed without being evaluated.
        """
        auto = key is None
        if auto:
            key = self.next_autogen_key()
        raw = expression if raw is None else raw

        forbidden = find_forbidden_words(raw, GLOBAL_FORBIDDEN_WORDS | set(forbidden_words))
        if forbidden:
            binding = Binding(
                key=key,
                expression=expression,
                raw=raw,
                error=ForbiddenWordError(forbidden, expression),
                auto=auto,
            )
        else:
            result = self.evaluator.evaluate(expression, self.values(), options or self.options)
            binding = self._from_evaluation(key, expression, raw, result, auto)
        return self._store(binding)

    def bind_value(
        self, key: str, value: Any, raw: str, options: Optional[RenderOptions] = None
    ) -> Binding:
        """Bind an already evaluated value under key, without parsing anything.

        Used for foreach iteration variables, whose values are the elements of
        the evaluated source list.
        """
        result = self.evaluator.describe(value, options or self.options)
        return self._store(self._from_evaluation(key, raw, raw, result, auto=False))

    @staticmethod
    def _from_evaluation(key, expression, raw, result, auto) -> Binding:
        return Binding(
            key=key,
            expression=expression,
            raw=raw,
            value=result.value,
            display=result.display,
            text=result.text,
            error=result.error,
            truth=result.truth,
            elements=result.elements,
            is_html=result.is_html,
            warnings=list(result.warnings),
            auto=auto,
        )

    def _store(self, binding: Binding) -> Binding:
        key, raw = binding.key, binding.raw
        self.history.append(binding)
        # reassignment keeps the key's original position
        self._visible[key] = binding
        if binding.valid:
            logger.debug(f"{key} := {binding.text}  [{raw}]")
        else:
            logger.debug(f"{key} failed: {binding.error.message}  [{raw}]")
        return binding

    # -------------------------------------------------------------------------
    # Scoping
    # -------------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(len(self._visible), self._autogen_counter)

    def restore(self, snapshot: SessionSnapshot):
        """Drop keys first seen after the snapshot. History is kept."""
        for key in list(self._visible)[snapshot.watermark:]:
            del self._visible[key]
        self._autogen_counter = snapshot.autogen_counter

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def values(self) -> Dict[str, Any]:
        """Key -> value of every visible, valid binding."""
        return {key: b.value for key, b in self._visible.items() if b.valid}

    def get_all_keys(self) -> List[str]:
        return list(self._visible)

    def raw_expressions(self) -> List[str]:
        return [binding.raw for binding in self.history]

    def unreported(self) -> List[Binding]:
        """Bindings added since the last expansion reported its errors.

        On the first expansion this includes the seed expressions.
        """
        return self.history[self._reported:]

    def mark_reported(self):
        self._reported = len(self.history)

    @property
    def errors(self) -> List[CASTextError]:
        return [binding.error for binding in self.history if binding.error is not None]

    @property
    def valid(self) -> bool:
        return all(binding.valid for binding in self.history)

    def __repr__(self):
        return f"Session(keys={self.get_all_keys()!r}, valid={self.valid})"
