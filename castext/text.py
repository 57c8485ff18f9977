"""CASText: a template bound to a session, expanded on first use."""

import logging
from typing import Iterable, List, Optional, Sequence

from .evaluator import ExpressionEvaluator
from .expander import expand
from .facts import FactSheetProvider
from .options import RenderOptions
from .parsing import parse_castext
from .results import ExpansionResult
from .session import Session
from .validation import find_forbidden_words

logger = logging.getLogger(__name__)


class CASText:
    """A CASText template together with the session it is evaluated in.

    The template is parsed straight away; expansion happens the first time the
    display, validity or errors are asked for, and is then memoised.

    Example:
        ct = CASText(r"Let \\(a={@a@}\\).", session=Session(["a:x^2"]))
        ct.display   # 'Let \\(a={x^{2}}\\).'
        ct.valid     # True
    """

    def __init__(
        self,
        raw: Optional[str],
        session: Optional[Session] = None,
        strict: bool = False,
        forbidden_words: Optional[Sequence[str]] = None,
        options: Optional[RenderOptions] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        fact_sheets: Optional[FactSheetProvider] = None,
    ):
        self.raw = raw or ""
        self.strict = strict
        self.forbidden_words = tuple(forbidden_words or ())
        self.fact_sheets = fact_sheets
        if session is None:
            session = Session(evaluator=evaluator, options=options)
        self.options = options or session.options
        self._session = session
        self.tree = parse_castext(self.raw, strict=strict)
        self._result: Optional[ExpansionResult] = None

    def expand(self) -> ExpansionResult:
        if self._result is None:
            self._result = expand(
                self.tree,
                self._session,
                options=self.options,
                forbidden_words=self.forbidden_words,
                fact_sheets=self.fact_sheets,
                strict=self.strict,
            )
        return self._result

    @property
    def display(self) -> str:
        return self.expand().display

    @property
    def valid(self) -> bool:
        return self.expand().valid

    @property
    def errors(self) -> List[str]:
        """Error and warning messages, in the order they arose."""
        return [issue.message for issue in self.expand().issues]

    @property
    def session(self) -> Session:
        """The session, after expansion has added the template's bindings."""
        self.expand()
        return self._session

    def get_errors(self, html: bool = False) -> str:
        return self.expand().render_errors(html=html) or ""

    def get_all_raw_expressions(self) -> List[str]:
        """Raw text of every expression evaluated: seeds, then the template's."""
        self.expand()
        return self._session.raw_expressions()

    def check_forbidden_words(self, words: Iterable[str]) -> bool:
        """True if any expression evaluated so far uses one of the words."""
        words = set(words)
        if not words:
            return False
        return any(find_forbidden_words(raw, words) for raw in self.get_all_raw_expressions())

    def __str__(self):
        return self.display

    def __repr__(self):
        return f"CASText({self.raw!r})"
