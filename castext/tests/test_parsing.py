"""Tests for the CASText template parser.

The parser never raises on malformed input; problems are recorded on the
ParsedTemplate and marked in the tree.
"""

import pytest

from castext.errors import MissingAttributeError, ParseError
from castext.nodes import (DefineBlock, ErrorMarker, FactSheetRef, ForeachBlock,
                           IfBlock, MathSegment, SegmentKind, Text)
from castext.parsing import (PLUGINFILE, parse_castext, parse_tag_body,
                             raw_expressions)


def segments(tree):
    return [node for node in tree.nodes if isinstance(node, MathSegment)]


class TestPlainText:
    def test_empty_template(self):
        tree = parse_castext("")
        assert tree.valid
        assert tree.nodes == (Text(""),)

    def test_none_is_empty(self):
        assert parse_castext(None).nodes == (Text(""),)

    def test_text_only_is_single_node(self):
        tree = parse_castext("Hello world")
        assert tree.nodes == (Text("Hello world"),)

    def test_latex_without_segments_is_single_node(self):
        raw = r"Some $x^2$ and \(y\) and \[z\]"
        tree = parse_castext(raw)
        assert tree.nodes == (Text(raw),)

    def test_lone_at_sign(self):
        assert parse_castext("@").nodes == (Text("@"),)

    def test_escaped_dollar(self):
        raw = r"This is system cost \$100,000 to create."
        tree = parse_castext(raw)
        assert tree.valid
        assert tree.nodes == (Text(raw),)

    def test_parse_is_repeatable(self):
        raw = r'\[{@a@}\] [[ if test="b" ]]{#c#}[[/ if ]]'
        assert parse_castext(raw) == parse_castext(raw)


class TestSegmentKinds:
    def test_display_segment(self):
        tree = parse_castext(r"\[{@x^2@}\]")
        assert tree.nodes == (
            Text(r"\["),
            MathSegment(SegmentKind.DISPLAY, "x^2", "{@x^2@}", 2),
            Text(r"\]"),
        )

    def test_inline_segment(self):
        [seg] = segments(parse_castext(r"Inline \({@1+1@}\)"))
        assert seg.kind is SegmentKind.INLINE

    def test_implicit_segment(self):
        [seg] = segments(parse_castext("Implicit inline {@1+1@}"))
        assert seg.kind is SegmentKind.IMPLICIT

    def test_implicit_after_closed_math(self):
        [seg] = segments(parse_castext(r"\(n\) then {@a@}"))
        assert seg.kind is SegmentKind.IMPLICIT

    def test_value_segment(self):
        [seg] = segments(parse_castext(r"\({#a#}\)"))
        assert seg.kind is SegmentKind.VALUE

    def test_dollar_delimiters(self):
        a, b, c = segments(parse_castext("{@a@} $${@b@}$$ ${@c@}$"))
        assert a.kind is SegmentKind.IMPLICIT
        assert b.kind is SegmentKind.DISPLAY
        assert c.kind is SegmentKind.INLINE

    def test_math_environment(self):
        raw = r"\begin{align*} x & = {@a@}+1 \\ & = {@a+1@} \end{align*} {@b@}"
        a, a1, b = segments(parse_castext(raw))
        assert a.kind is SegmentKind.DISPLAY
        assert a1.kind is SegmentKind.DISPLAY
        assert b.kind is SegmentKind.IMPLICIT

    def test_non_math_environment(self):
        [seg] = segments(parse_castext(r"\begin{itemize} {@a@} \end{itemize}"))
        assert seg.kind is SegmentKind.IMPLICIT

    def test_raw_is_stripped(self):
        [seg] = segments(parse_castext("Take {@ 1/(1+x^2) @}."))
        assert seg.raw == "1/(1+x^2)"
        assert seg.source == "{@ 1/(1+x^2) @}"


class TestSegmentErrors:
    def test_unclosed_segment(self):
        tree = parse_castext("{@x")
        assert not tree.valid
        assert isinstance(tree.errors[0], ParseError)
        assert "never closed" in tree.errors[0].message
        assert any(isinstance(n, ErrorMarker) for n in tree.nodes)

    def test_empty_segment(self):
        tree = parse_castext("a {@  @} b")
        assert not tree.valid
        assert "Empty CAS expression" in tree.errors[0].message


class TestPluginfile:
    def test_marker_is_literal(self):
        tree = parse_castext("Here {@x@} is some @@PLUGINFILE@@ {@x + 1@} some input")
        assert tree.valid
        assert [s.raw for s in segments(tree)] == ["x", "x + 1"]
        texts = "".join(n.text for n in tree.nodes if isinstance(n, Text))
        assert PLUGINFILE in texts

    def test_real_example(self):
        raw = (
            '<p><img style="display: block; margin-left: auto; margin-right: auto;" '
            'src="@@PLUGINFILE@@/inclined-plane.png" alt="" width="164" height="117" /></p>'
        )
        tree = parse_castext(raw)
        assert tree.valid
        assert tree.nodes == (Text(raw),)

    def test_brace_before_marker(self):
        tree = parse_castext("{@@PLUGINFILE@@}")
        assert tree.valid
        assert tree.nodes == (Text("{@@PLUGINFILE@@}"),)

    def test_closing_search_skips_marker(self):
        # the marker's trailing "@" followed by "}" must not close the segment
        tree = parse_castext("{@a+@@PLUGINFILE@@}+b@}")
        [seg] = segments(tree)
        assert seg.raw == "a+@@PLUGINFILE@@}+b"


class TestTagBody:
    def test_open_tag(self):
        tag = parse_tag_body(' if test="a" ')
        assert tag == {"kind": "open", "name": "if", "attributes": [("test", "a")], "self_closing": False}

    def test_self_closing_define(self):
        tag = parse_tag_body(' define a="1" b="2" /')
        assert tag["self_closing"] is True
        assert tag["attributes"] == [("a", "1"), ("b", "2")]

    def test_close_tag(self):
        assert parse_tag_body("/ foreach ") == {"kind": "close", "name": "foreach"}

    def test_facts_tag(self):
        assert parse_tag_body("facts:calc_chain_rule") == {"kind": "facts", "key": "calc_chain_rule"}

    def test_single_quotes(self):
        tag = parse_tag_body("if test='a'")
        assert tag["attributes"] == [("test", "a")]


class TestBlocks:
    def test_if_block(self):
        tree = parse_castext('[[ if test="a" ]]ok[[/ if ]]')
        assert tree.nodes == (IfBlock("a", (Text("ok"),), 0),)

    def test_nested_if(self):
        tree = parse_castext('[[ if test="a" ]][[ if test="b" ]]ok[[/ if ]][[/ if ]]')
        [outer] = tree.nodes
        [inner] = outer.children
        assert inner.test == "b"
        assert inner.children == (Text("ok"),)

    def test_if_without_test(self):
        tree = parse_castext('[[ if test="a" ]][[ if ]]ok[[/ if ]][[/ if ]]')
        assert not tree.valid
        assert len(tree.errors) == 1
        assert isinstance(tree.errors[0], MissingAttributeError)
        assert tree.errors[0].message == "If-block needs a test attribute."

    def test_if_unknown_attribute(self):
        tree = parse_castext('[[ if test="a" else="b" ]]x[[/ if ]]')
        assert not tree.valid
        assert "unknown attribute 'else'" in tree.errors[0].message

    def test_define_block(self):
        tree = parse_castext('{#a#} [[ define a="1" /]]{#a#}')
        assert DefineBlock("a", "1", 6) in tree.nodes

    def test_define_several(self):
        tree = parse_castext('[[ define a="1" b="a+1" /]]')
        assert [(n.name, n.expression) for n in tree.nodes] == [("a", "1"), ("b", "a+1")]

    def test_define_without_attributes(self):
        tree = parse_castext("[[ define /]]")
        assert not tree.valid

    def test_foreach_block(self):
        tree = parse_castext('[[ foreach I="a" K="b" ]]{#I#},{#K#},[[/foreach]]')
        [block] = tree.nodes
        assert isinstance(block, ForeachBlock)
        assert block.iterators == (("I", "a"), ("K", "b"))
        assert block.names == ("I", "K")
        assert len(block.children) == 4

    def test_foreach_brackets_in_attribute(self):
        raw = '[[ foreach o="[[1,2],[3,4]]" ]]{[[ foreach k="o" ]]{#k#},[[/ foreach ]]}[[/foreach]]'
        tree = parse_castext(raw)
        assert tree.valid
        [outer] = tree.nodes
        assert outer.iterators == (("o", "[[1,2],[3,4]]"),)
        assert outer.children[0] == Text("{")
        assert isinstance(outer.children[1], ForeachBlock)
        assert outer.children[2] == Text("}")

    def test_foreach_repeated_variable(self):
        tree = parse_castext('[[ foreach a="x" a="y" ]]z[[/foreach]]')
        assert not tree.valid
        assert "repeats the variable 'a'" in tree.errors[0].message

    def test_facts_reference(self):
        tree = parse_castext("[[facts:calc_diff_linearity_rule]]")
        assert tree.nodes == (FactSheetRef("calc_diff_linearity_rule", 0),)


class TestBlockErrors:
    def test_unclosed_block(self):
        tree = parse_castext('[[ if test="a" ]]ok')
        assert not tree.valid
        assert 'Unclosed block [[ if test="a" ]]' in tree.errors[0].message

    def test_unmatched_close(self):
        tree = parse_castext("ok[[/ if ]]")
        assert not tree.valid
        assert "no matching opening tag" in tree.errors[0].message

    def test_mismatched_close(self):
        tree = parse_castext('[[ if test="a" ]]ok[[/ foreach ]]')
        messages = [e.message for e in tree.errors]
        assert any("does not match" in m for m in messages)
        assert any("Unclosed block" in m for m in messages)

    def test_unknown_block(self):
        tree = parse_castext('[[ while test="a" ]]x[[/ while ]]')
        assert not tree.valid
        assert "Unknown block type 'while'" in tree.errors[0].message

    def test_unrecognised_tag(self):
        tree = parse_castext("[[1,2]]")
        assert not tree.valid

    def test_list_literal_in_text_is_not_a_tag(self):
        tree = parse_castext("the list [[1,2],[3,4]] here")
        assert tree.valid


class TestRawExpressions:
    def test_segments(self):
        tree = parse_castext("Take {@x^2+2*x@} and then {@sin(z^2)@}.")
        assert raw_expressions(tree) == ["x^2+2*x", "sin(z^2)"]

    def test_if(self):
        tree = parse_castext('Take {@x^2+2*x@} and then [[ if test="true"]]{@sin(z^2)@}[[/if]].')
        assert raw_expressions(tree) == ["x^2+2*x", "true", "sin(z^2)"]

    def test_foreach_listed_once(self):
        tree = parse_castext('Take {@x^2+2*x@} and then [[ foreach t="[1,2,3]"]]{@t@}[[/foreach]].')
        assert raw_expressions(tree) == ["x^2+2*x", "[1,2,3]", "t"]

    def test_define(self):
        tree = parse_castext('[[ define a="x^2" /]]{@a@}')
        assert raw_expressions(tree) == ["a:x^2", "a"]

    def test_empty(self):
        assert raw_expressions(parse_castext("Take some text without cas commands.")) == []


@pytest.mark.parametrize(
    "raw",
    [
        "plain",
        r"\(x\) and \[y\]",
        "a $ b $$ c",
        "@@PLUGINFILE@@/x.png",
        r"\\ \$ \begin{align}",
    ],
)
def test_text_reproduced_exactly(raw):
    tree = parse_castext(raw)
    assert "".join(n.text for n in tree.nodes) == raw
