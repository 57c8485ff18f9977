"""Block expansion: walks a parsed template and produces the display string.

Nodes are processed depth first in document order, so later expressions see
every binding made before them, including those made by define-blocks and by
earlier segments that assign (``{@n:n+1@}``). Failures never stop the walk;
they are collected and reported on the ExpansionResult.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from .errors import (CASTextError, EvaluatorRuntimeError,
                     IterationLengthMismatchError, UnknownFactSheetError)
from .evaluator import element_values
from .facts import FactSheetProvider, FactSheets, render_fact_sheet
from .nodes import (DefineBlock, ErrorMarker, FactSheetRef, ForeachBlock,
                    IfBlock, MathSegment, Node, ParsedTemplate, SegmentKind,
                    Text)
from .options import RenderOptions
from .results import ExpansionResult
from .session import Binding, Session, split_assignment
from .validation import ValidationReport, WordPolicy

logger = logging.getLogger(__name__)


class BlockExpander:
    """Expands nodes against one session.

    Args:
        session: the session bindings are appended to
        options: render options; defaults to the session's own
        forbidden_words: extra words no template expression may use
        fact_sheets: provider for [[facts:KEY]] tags
        strict: apply the student word list as well
    """

    def __init__(
        self,
        session: Session,
        options: Optional[RenderOptions] = None,
        forbidden_words: Sequence[str] = (),
        fact_sheets: Optional[FactSheetProvider] = None,
        strict: bool = False,
    ):
        self.session = session
        self.options = options or session.options
        self.words = WordPolicy(extra=tuple(forbidden_words), strict=strict).words
        self.fact_sheets = fact_sheets or FactSheets
        self.errors: List[CASTextError] = []

    def expand_nodes(self, nodes: Iterable[Node]) -> str:
        return "".join(self.expand_node(node) for node in nodes)

    def expand_node(self, node: Node) -> str:
        match node:
            case Text(text=text):
                return text
            case MathSegment():
                return self._segment(node)
            case IfBlock():
                return self._if_block(node)
            case DefineBlock():
                self._define_block(node)
                return ""
            case ForeachBlock():
                return self._foreach_block(node)
            case FactSheetRef():
                return self._fact_sheet(node)
            case ErrorMarker():
                return ""
        raise TypeError(f"Cannot expand {node!r}")

    def _bind(self, key: Optional[str], expression: str, raw: str) -> Binding:
        return self.session.append(
            key, expression, raw=raw, forbidden_words=self.words, options=self.options
        )

    def _segment(self, node: MathSegment) -> str:
        key, expression = split_assignment(node.raw)
        binding = self._bind(key, expression, node.raw)
        if not binding.valid:
            return node.source
        if binding.is_html:
            return binding.display

        match node.kind:
            case SegmentKind.VALUE:
                return binding.text
            case SegmentKind.IMPLICIT:
                return rf"\({{{binding.display}}}\)"
            case _:
                return f"{{{binding.display}}}"

    def _if_block(self, node: IfBlock) -> str:
        binding = self._bind(None, node.test, node.test)
        if not binding.valid:
            return ""
        if binding.truth is None:
            self.errors.append(
                EvaluatorRuntimeError(
                    f"If-block test {node.test} must evaluate to true or false, "
                    f"but gave {binding.text}.",
                    node.position,
                )
            )
            return ""

        logger.debug(f"if {node.test} -> {binding.truth}")
        if not binding.truth:
            return ""

        snapshot = self.session.snapshot()
        output = self.expand_nodes(node.children)
        self.session.restore(snapshot)
        return output

    def _define_block(self, node: DefineBlock):
        logger.debug(f"define {node.name}={node.expression}")
        self._bind(node.name, node.expression, f"{node.name}:{node.expression}")

    def _foreach_block(self, node: ForeachBlock) -> str:
        sources = []
        failed = False
        for name, expression in node.iterators:
            binding = self._bind(None, expression, expression)
            if not binding.valid:
                failed = True
            elif binding.elements is None:
                self.errors.append(
                    EvaluatorRuntimeError(
                        f"Foreach-block variable {name} must evaluate to a list or set, "
                        f"but {expression} gave {binding.text}.",
                        node.position,
                    )
                )
                failed = True
            else:
                values = element_values(binding.value)
                if values is None:
                    values = list(binding.elements)
                sources.append(list(zip(binding.elements, values)))
        if failed:
            return ""

        lengths = [len(items) for items in sources]
        if len(set(lengths)) > 1:
            self.errors.append(IterationLengthMismatchError(lengths, node.position))
            return ""

        logger.debug(f"foreach {', '.join(node.names)} over {lengths[0]} items")
        # one scope for the whole loop: a variable that shadows an existing
        # key keeps its final loop value afterwards
        snapshot = self.session.snapshot()
        pieces = []
        for row in zip(*sources):
            # elements are bound as values: nothing is re-parsed or re-checked
            for name, (text, value) in zip(node.names, row):
                self.session.bind_value(name, value, text, options=self.options)
            pieces.append(self.expand_nodes(node.children))
        self.session.restore(snapshot)
        return "".join(pieces)

    def _fact_sheet(self, node: FactSheetRef) -> str:
        sheet = self.fact_sheets.lookup(node.key)
        if sheet is None:
            self.errors.append(UnknownFactSheetError(node.key, node.position))
            return ""
        return render_fact_sheet(sheet)


def expand(
    tree: ParsedTemplate,
    session: Optional[Session] = None,
    options: Optional[RenderOptions] = None,
    forbidden_words: Sequence[str] = (),
    fact_sheets: Optional[FactSheetProvider] = None,
    strict: Optional[bool] = None,
) -> ExpansionResult:
    """Expand a parsed template against a session.

    Args:
        tree: result of parse_castext
        session: session to evaluate in; a fresh one if None
        options: render options; defaults to the session's
        forbidden_words: extra words template expressions may not use
        fact_sheets: provider for [[facts:KEY]]; the built-in registry if None
        strict: overrides tree.strict when given

    Returns:
        ExpansionResult. A template with parse errors is not expanded: its
        display is the raw text and only the parse errors are reported.
    """
    if session is None:
        session = Session(options=options)
    if strict is None:
        strict = tree.strict

    if tree.errors:
        report = ValidationReport()
        report.extend(tree.errors)
        return ExpansionResult.from_report(tree.raw, report)

    expander = BlockExpander(
        session,
        options=options,
        forbidden_words=forbidden_words,
        fact_sheets=fact_sheets,
        strict=strict,
    )
    display = expander.expand_nodes(tree.nodes)
    report = ValidationReport.collect(session=session, expander_errors=expander.errors)
    session.mark_reported()
    return ExpansionResult.from_report(display, report)
