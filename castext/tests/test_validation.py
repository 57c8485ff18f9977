"""Tests for forbidden words and the validation report."""

import pytest

from castext.errors import (EvaluatorSyntaxError, ForbiddenWordError, ParseError,
                            PlotWarning)
from castext.parsing import parse_castext
from castext.validation import (GLOBAL_FORBIDDEN_WORDS, STUDENT_FORBIDDEN_WORDS,
                                ValidationReport, WordPolicy,
                                check_forbidden_words, expression_words,
                                find_forbidden_words, suggestion_runs)


class TestFindForbiddenWords:
    def test_whole_identifiers_only(self):
        assert find_forbidden_words("cosh(x)", ["cos"]) == []
        assert find_forbidden_words("cos(x)+cos(y)", ["cos"]) == ["cos"]

    def test_case_sensitive(self):
        assert find_forbidden_words("Cos(x)", ["cos"]) == []

    def test_string_literals_ignored(self):
        assert find_forbidden_words('"system"', GLOBAL_FORBIDDEN_WORDS) == []
        assert expression_words('f("a b", c)') == ["f", "c"]

    def test_order_of_first_use(self):
        assert find_forbidden_words("kill(save(x), kill)", GLOBAL_FORBIDDEN_WORDS) == ["kill", "save"]

    def test_percent_names(self):
        assert expression_words("%pi*%e") == ["%pi", "%e"]


class TestWordPolicy:
    def test_default_is_global_list(self):
        assert WordPolicy().words >= GLOBAL_FORBIDDEN_WORDS
        assert "diff" not in WordPolicy().words

    def test_strict_adds_student_words(self):
        assert WordPolicy(strict=True).words >= STUDENT_FORBIDDEN_WORDS

    def test_extra_words(self):
        policy = WordPolicy(extra=("sin", ""))
        assert "sin" in policy.words
        assert "" not in policy.words
        assert policy.violations("sin(x)") == ["sin"]


@pytest.mark.parametrize(
    "raw,words,expected",
    [
        ("Take {@x^2+2*x@} and then {@sin(z^2)@}.", ["sin"], True),
        ("Take {@x^2+2*x@} and then {@sin(z^2)@}.", ["cos"], False),
        ('[[ if test="is(a>1)" ]]ok[[/ if ]]', ["is"], True),
        ('[[ define b="diff(a,x)" /]]', ["diff"], True),
        (r"\(\cos(x)\)", ["cos"], False),
        ("{@cos(x)@}", [], False),
    ],
)
def test_check_forbidden_words_static(raw, words, expected):
    assert check_forbidden_words(parse_castext(raw), words) is expected


class TestValidationReport:
    def test_empty_report(self):
        report = ValidationReport()
        assert report.valid
        assert report.render() is None
        assert report.render(html=True) is None

    def test_plain_errors(self):
        report = ValidationReport()
        report.add(ForbiddenWordError(["system"]))
        report.add(ParseError("Unclosed block [[ if ]] at position 0."))
        assert not report.valid
        assert report.render() == (
            "CASText failed validation. The expression system is forbidden. "
            "Unclosed block [[ if ]] at position 0."
        )

    def test_grouped_errors(self):
        report = ValidationReport()
        report.add(EvaluatorSyntaxError("'*' is an invalid final character in 2*"))
        report.add(
            EvaluatorSyntaxError(
                "You seem to be missing * characters. Perhaps you meant to type c2*A.",
                "c2A",
                suggestion="c2*A",
            )
        )
        assert report.render() == (
            "CASText failed validation. '*' is an invalid final character in 2* "
            "CAS commands not valid. "
            "You seem to be missing * characters. Perhaps you meant to type c2*A."
        )
        assert report.render(html=True) == (
            '<span class="error">CASText failed validation. </span>'
            "&#39;*&#39; is an invalid final character in 2* "
            "CAS commands not valid. <br />"
            "You seem to be missing * characters. Perhaps you meant to type "
            '<span class="stacksyntaxexample">c2<font color="red">*</font>A</span>.'
        )

    def test_forbidden_words_marked_up(self):
        report = ValidationReport()
        report.add(ForbiddenWordError(["system", "kill"], "system(kill)"))
        assert report.render() == (
            "CASText failed validation. "
            "The expression system is forbidden. The expression kill is forbidden."
        )
        assert report.render(html=True) == (
            '<span class="error">CASText failed validation. </span>'
            'The expression <span class="stacksyntaxexample">system</span> is forbidden. '
            'The expression <span class="stacksyntaxexample">kill</span> is forbidden. '
        )

    def test_marked_up_words_are_escaped(self):
        report = ValidationReport()
        report.add(ForbiddenWordError(["<b>"]))
        html = report.render(html=True)
        assert '<span class="stacksyntaxexample">&lt;b&gt;</span>' in html
        assert report.render(html=True) == (
            '<span class="error">CASText failed validation. </span>'
            "&#39;*&#39; is an invalid final character in 2* "
            "CAS commands not valid. <br />Perhaps c2*A."
        )

    def test_html_escapes_messages(self):
        report = ValidationReport()
        report.add(ParseError("Closing tag [[/ if ]] has no <matching> opening tag."))
        html = report.render(html=True)
        assert "&lt;matching&gt;" in html
        assert "<matching>" not in html

    def test_warnings_only_are_valid(self):
        report = ValidationReport()
        report.add(PlotWarning("Plot error: bad option."))
        assert report.valid
        assert report.errors == []
        assert report.warnings == ["Plot error: bad option."]
        assert report.render() == "Plot error: bad option."
        assert report.render(html=True) == "Plot error: bad option. "

    def test_collect_orders_sources(self):
        report = ValidationReport.collect(
            parse_errors=[ParseError("first")],
            expander_errors=[ParseError("last")],
        )
        assert report.errors == ["first", "last"]


@pytest.mark.parametrize(
    "expression,suggestion,runs",
    [
        ("c2A", "c2*A", (("c2", False), ("*", True), ("A", False))),
        ("2x", "2*x", (("2", False), ("*", True), ("x", False))),
        ("a2b3c", "a2*b3*c", (("a2", False), ("*", True), ("b3", False), ("*", True), ("c", False))),
        ("x", "", ()),
    ],
)
def test_suggestion_runs(expression, suggestion, runs):
    assert suggestion_runs(expression, suggestion) == runs
