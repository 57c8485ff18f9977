"""Forbidden-word policy and error aggregation for CASText.

This module consolidates:
- the word lists no expression may use (global) or student text may not use
- static forbidden-word checks over a parsed template
- the ValidationReport that gathers parse, evaluation and expansion problems
  and renders them as the error banner
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from jinja2 import Environment

from .errors import CASTextError
from .options import EXTRA_FORBIDDEN_WORDS
from .parsing import raw_expressions

logger = logging.getLogger(__name__)


# ANSI colour codes for terminal output
class LC:
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


# file system, process and session-level commands
GLOBAL_FORBIDDEN_WORDS = frozenset(
    {
        "system", "batch", "batchload", "load", "loadfile", "save",
        "stringout", "writefile", "appendfile", "opena", "openr", "openw",
        "close", "with_stdout", "compile_file", "translate_file", "run_testsuite",
        "setup_autoload", "describe", "example", "demo", "kill", "killcontext",
        "reset", "remvalue", "remfunction", "quit", "to_lisp", "file_search",
        "printfile", "filename_merge", "pathname_directory", "pathname_name",
        "pathname_type", "tex", "concat", "eval_string", "parse_string",
    }
)

# additionally forbidden in student-facing (strict) text
STUDENT_FORBIDDEN_WORDS = frozenset(
    {
        "diff", "integrate", "int", "solve", "subst", "ev", "limit", "sum",
        "plot", "expand", "factor", "ratsimp", "fullratsimp", "simplify",
        "trigsimp", "trigexpand", "float", "is", "matrix", "invert",
        "determinant",
    }
)

IDENTIFIER = re.compile(r"[A-Za-z_%][A-Za-z0-9_%]*")
STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\])*"')


def expression_words(expression: str) -> List[str]:
    """Identifier tokens of an expression, string literals excluded."""
    return IDENTIFIER.findall(STRING_LITERAL.sub(" ", expression))


def find_forbidden_words(expression: str, words: Iterable[str]) -> List[str]:
    """Forbidden words used by the expression, in order of first use.

    Matching is case-sensitive and on whole identifiers only.
    """
    words = set(words)
    found = []
    for token in expression_words(expression):
        if token in words and token not in found:
            found.append(token)
    if found:
        logger.warning(f"{LC.ORANGE}Forbidden words {found} in {expression!r}{LC.RESET}")
    return found


@dataclass(frozen=True)
class WordPolicy:
    """The words an expression may not use.

    Combines the global list, the student list when strict, words supplied by
    the caller and any set through CASTEXT_FORBIDDEN_WORDS.
    """

    extra: Sequence[str] = ()
    strict: bool = False

    @property
    def words(self) -> frozenset:
        words = set(GLOBAL_FORBIDDEN_WORDS) | set(self.extra) | set(EXTRA_FORBIDDEN_WORDS)
        if self.strict:
            words |= STUDENT_FORBIDDEN_WORDS
        return frozenset(w for w in words if w)

    def violations(self, expression: str) -> List[str]:
        return find_forbidden_words(expression, self.words)


def check_forbidden_words(tree, words: Iterable[str]) -> bool:
    """True if any expression in the tree uses one of the words.

    Works statically on the parsed tree; nothing is evaluated.
    """
    words = set(words)
    if not words:
        return False
    return any(find_forbidden_words(raw, words) for raw in raw_expressions(tree))


# -----------------------------------------------------------------------------
# Aggregation
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Issue:
    kind: str
    message: str
    fatal: bool = True
    grouped: bool = False  # rendered under the "CAS commands not valid." heading
    # set for forbidden-word errors, highlighted in the HTML banner
    words: Tuple[str, ...] = ()
    # (text, inserted) runs of a suggested correction, e.g. c2 / * / A
    suggestion: Tuple[Tuple[str, bool], ...] = ()

    @classmethod
    def from_error(cls, error: CASTextError) -> "Issue":
        suggestion = getattr(error, "suggestion", None)
        return cls(
            kind=error.kind,
            message=error.message,
            fatal=error.fatal,
            grouped=bool(suggestion),
            words=tuple(getattr(error, "words", ())),
            suggestion=suggestion_runs(getattr(error, "expression", ""), suggestion or ""),
        )


def suggestion_runs(expression: str, suggestion: str) -> Tuple[Tuple[str, bool], ...]:
    """Split a suggestion into runs of original text and inserted ``*``.

    >>> suggestion_runs("c2A", "c2*A")
    (('c2', False), ('*', True), ('A', False))
    """
    runs: List[Tuple[str, bool]] = []
    i = 0
    for char in suggestion:
        if i < len(expression) and expression[i] == char:
            inserted = False
            i += 1
        else:
            inserted = char == "*"
        if runs and runs[-1][1] == inserted:
            runs[-1] = (runs[-1][0] + char, inserted)
        else:
            runs.append((char, inserted))
    return tuple(runs)


_env = Environment(autoescape=True)
_banner_template = _env.from_string(
    "{% macro show(issue) %}"
    "{% if issue.words %}"
    "{% for w in issue.words %}The expression <span class=\"stacksyntaxexample\">{{ w }}</span> is forbidden."
    "{% if not loop.last %} {% endif %}{% endfor %}"
    "{% elif issue.suggestion %}"
    "You seem to be missing * characters. Perhaps you meant to type <span class=\"stacksyntaxexample\">"
    "{% for text, inserted in issue.suggestion %}"
    "{% if inserted %}<font color=\"red\">{{ text }}</font>{% else %}{{ text }}{% endif %}"
    "{% endfor %}</span>."
    "{% else %}{{ issue.message }}{% endif %}"
    "{% endmacro %}"
    "{% if not valid %}<span class=\"error\">CASText failed validation. </span>{% endif %}"
    "{% for i in plain %}{{ show(i) }} {% endfor %}"
    "{% if grouped %}CAS commands not valid. <br />{% for i in grouped %}{{ show(i) }}{% endfor %}{% endif %}"
    "{% for w in warnings %}{{ w }} {% endfor %}"
)


@dataclass
class ValidationReport:
    """Every problem found while parsing and expanding one template."""

    issues: List[Issue] = field(default_factory=list)

    def add(self, error: CASTextError):
        self.issues.append(Issue.from_error(error))

    def extend(self, errors: Iterable[CASTextError]):
        for error in errors:
            self.add(error)

    @classmethod
    def collect(
        cls,
        parse_errors: Iterable[CASTextError] = (),
        session=None,
        expander_errors: Iterable[CASTextError] = (),
    ) -> "ValidationReport":
        """Gather issues from the parse, the session and the expander.

        Only session bindings not yet reported by an earlier expansion are
        read, in history order, so errors from seed expressions come first and
        are reported once.
        """
        report = cls()
        report.extend(parse_errors)
        if session is not None:
            for binding in session.unreported():
                if binding.error is not None:
                    report.add(binding.error)
                report.extend(binding.warnings)
        report.extend(expander_errors)
        return report

    @property
    def valid(self) -> bool:
        return not any(issue.fatal for issue in self.issues)

    @property
    def errors(self) -> List[str]:
        return [issue.message for issue in self.issues if issue.fatal]

    @property
    def warnings(self) -> List[str]:
        return [issue.message for issue in self.issues if not issue.fatal]

    def render(self, html: bool = False) -> Optional[str]:
        """The error banner, or None when there is nothing to report."""
        if not self.issues:
            return None

        plain = [i for i in self.issues if i.fatal and not i.grouped]
        grouped = [i for i in self.issues if i.fatal and i.grouped]

        if html:
            return _banner_template.render(
                valid=self.valid, plain=plain, grouped=grouped, warnings=self.warnings
            )

        parts = [] if self.valid else ["CASText failed validation."]
        parts += [i.message for i in plain]
        if grouped:
            parts.append("CAS commands not valid. " + " ".join(i.message for i in grouped))
        parts += self.warnings
        return " ".join(parts)
