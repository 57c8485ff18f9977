"""Template parser for CASText.

A template is scanned once, left to right. Block tags ``[[ ... ]]`` are found
with a regex and their inner body is parsed with a small Lark grammar. Math
segments ``{@ @}`` / ``{# #}`` are matched against their closing delimiter,
and LaTeX math delimiters are tracked so a segment knows whether it already
sits inside math.

The parser never raises on malformed input: problems are recorded as
ParseError instances and an ErrorMarker node is left in the tree.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

from lark import Lark, Token, Transformer
from lark.exceptions import LarkError

from .errors import MissingAttributeError, ParseError
from .nodes import (DefineBlock, ErrorMarker, FactSheetRef, ForeachBlock,
                    IfBlock, MathSegment, Node, ParsedTemplate, SegmentKind,
                    Text)

logger = logging.getLogger(__name__)

# file-upload placeholder, always literal text
PLUGINFILE = "@@PLUGINFILE@@"

# [[...]] block tags; quoted attribute values may themselves contain ]] or [[
TAG_PATTERN = re.compile(r"""\[\[((?:"[^"]*"|'[^']*'|[^\]"'])*)\]\]""")

BEGIN_PATTERN = re.compile(r"\\begin\{([A-Za-z]+\*?)\}")
END_PATTERN = re.compile(r"\\end\{([A-Za-z]+\*?)\}")

MATH_ENVIRONMENTS = frozenset(
    {
        "align", "align*", "alignat", "alignat*", "array", "displaymath",
        "eqnarray", "eqnarray*", "equation", "equation*", "gather", "gather*",
        "math", "matrix", "multline", "multline*", "pmatrix", "bmatrix",
        "cases", "split",
    }
)

SEGMENT_CLOSERS = {"{@": "@}", "{#": "#}"}

# Mini-grammar for the inner content of [[...]] tags
_tag_body_grammar = r"""
start: tag

tag: SLASH NAME                -> close_tag
   | NAME attribute* SLASH?    -> open_tag
   | FACTS_REF                 -> facts_tag

attribute: NAME "=" STRING

SLASH: "/"
NAME: /[A-Za-z_][A-Za-z0-9_]*/
FACTS_REF.2: /facts\s*:\s*[A-Za-z0-9_]+/
STRING: /"[^"]*"/ | /'[^']*'/

%import common.WS
%ignore WS
"""

_cached_tag_parser = None


def _get_tag_body_parser():
    """Get cached mini-parser for tag body content."""
    global _cached_tag_parser
    if _cached_tag_parser is None:
        _cached_tag_parser = Lark(_tag_body_grammar, parser="lalr")
    return _cached_tag_parser


class TagBodyTransformer(Transformer):
    """Turns a tag body parse tree into a plain dict.

    Returns one of:
    - {'kind': 'open', 'name', 'attributes': [(name, value), ...], 'self_closing'}
    - {'kind': 'close', 'name'}
    - {'kind': 'facts', 'key'}
    """

    def open_tag(self, items):
        attributes = [item for item in items[1:] if isinstance(item, tuple)]
        self_closing = any(
            isinstance(item, Token) and item.type == "SLASH" for item in items[1:]
        )
        return {
            "kind": "open",
            "name": str(items[0]),
            "attributes": attributes,
            "self_closing": self_closing,
        }

    def close_tag(self, items):
        return {"kind": "close", "name": str(items[1])}

    def facts_tag(self, items):
        return {"kind": "facts", "key": str(items[0]).split(":", 1)[1].strip()}

    def attribute(self, items):
        # strip the quotes from the STRING token
        return (str(items[0]), str(items[1])[1:-1])

    def start(self, items):
        return items[0]


def parse_tag_body(inner_text: str) -> dict:
    """Parse the content between [[ and ]].

    Raises:
        lark.exceptions.LarkError: if the body is not a recognisable tag
    """
    tree = _get_tag_body_parser().parse(inner_text.strip())
    return TagBodyTransformer().transform(tree)


def _find_closing(text: str, closer: str, start: int) -> int:
    """Find the closing delimiter, skipping over PLUGINFILE markers."""
    i = start
    while True:
        j = text.find(closer, i)
        if j < 0:
            return -1
        k = text.find(PLUGINFILE, i)
        if k != -1 and k <= j < k + len(PLUGINFILE):
            i = k + len(PLUGINFILE)
            continue
        return j


@dataclass
class _OpenBlock:
    name: str
    position: int
    source: str
    test: Optional[str] = None
    iterators: Tuple[Tuple[str, str], ...] = ()
    children: List[Node] = field(default_factory=list)

    def build(self) -> Node:
        if self.name == "if":
            return IfBlock(self.test, tuple(self.children), self.position)
        return ForeachBlock(self.iterators, tuple(self.children), self.position)


class TemplateScanner:
    """Single left-to-right scan of one template.

    State carried through the scan:
    - buf: literal text accumulated since the last node
    - stack: open if/foreach blocks (stack discipline)
    - math_stack: LaTeX math delimiters currently open
    - errors: ParseErrors in the order found
    """

    def __init__(self, raw: str):
        self.raw = raw
        self.pos = 0
        self.buf: List[str] = []
        self.root: List[Node] = []
        self.stack: List[_OpenBlock] = []
        self.math_stack: List[str] = []
        self.errors: List[ParseError] = []

    @property
    def _children(self) -> List[Node]:
        return self.stack[-1].children if self.stack else self.root

    def _flush_text(self):
        if self.buf:
            self._children.append(Text("".join(self.buf)))
            self.buf = []

    def _emit(self, node: Node):
        self._flush_text()
        self._children.append(node)

    def _error(self, error: ParseError):
        logger.debug(f"Parse error: {error.message}")
        self.errors.append(error)
        self._emit(ErrorMarker(error.message, error.position or 0))

    def _math_kind(self) -> SegmentKind:
        if not self.math_stack:
            return SegmentKind.IMPLICIT
        if self.math_stack[-1] in ("\\(", "$"):
            return SegmentKind.INLINE
        return SegmentKind.DISPLAY

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def scan(self) -> Tuple[Tuple[Node, ...], Tuple[ParseError, ...]]:
        raw = self.raw
        while self.pos < len(raw):
            if raw.startswith(PLUGINFILE, self.pos):
                self.buf.append(PLUGINFILE)
                self.pos += len(PLUGINFILE)
                continue

            if raw.startswith("[[", self.pos):
                match = TAG_PATTERN.match(raw, self.pos)
                if match:
                    self._handle_tag(match)
                    continue

            if raw.startswith(("{@", "{#"), self.pos) and not raw.startswith(
                PLUGINFILE, self.pos + 1
            ):
                self._handle_segment()
                continue

            if raw[self.pos] in "\\$" and self._handle_math_delimiter():
                continue

            self.buf.append(raw[self.pos])
            self.pos += 1

        self._close_unterminated()
        self._flush_text()
        nodes = tuple(self.root) or (Text(""),)
        return nodes, tuple(self.errors)

    # -------------------------------------------------------------------------
    # Math segments and LaTeX delimiters
    # -------------------------------------------------------------------------

    def _handle_segment(self):
        start = self.pos
        opener = self.raw[start : start + 2]
        closer = SEGMENT_CLOSERS[opener]
        end = _find_closing(self.raw, closer, start + 2)

        if end < 0:
            self._error(
                ParseError(
                    f"Unbalanced delimiters: {opener} at position {start} is never closed by {closer}.",
                    start,
                )
            )
            # keep the opener as text and carry on looking for later problems
            self.buf.append(opener)
            self.pos = start + 2
            return

        source = self.raw[start : end + 2]
        expression = self.raw[start + 2 : end].strip()
        self.pos = end + 2

        if not expression:
            self._error(ParseError(f"Empty CAS expression {source} at position {start}.", start))
            return

        kind = SegmentKind.VALUE if opener == "{#" else self._math_kind()
        self._emit(MathSegment(kind, expression, source, start))

    def _handle_math_delimiter(self) -> bool:
        """Track LaTeX math mode. Delimiters are kept as literal text."""
        raw, pos = self.raw, self.pos
        two = raw[pos : pos + 2]

        if two in ("\\$", "\\\\"):
            pass
        elif two in ("\\(", "\\["):
            self.math_stack.append(two)
        elif two in ("\\)", "\\]"):
            opener = "\\(" if two == "\\)" else "\\["
            if self.math_stack and self.math_stack[-1] == opener:
                self.math_stack.pop()
        elif two == "$$":
            if self.math_stack and self.math_stack[-1] == "$$":
                self.math_stack.pop()
            else:
                self.math_stack.append("$$")
        elif raw[pos] == "$":
            if self.math_stack and self.math_stack[-1] == "$":
                self.math_stack.pop()
            else:
                self.math_stack.append("$")
            self.buf.append("$")
            self.pos += 1
            return True
        else:
            return self._handle_environment()

        self.buf.append(two)
        self.pos += 2
        return True

    def _handle_environment(self) -> bool:
        begin = BEGIN_PATTERN.match(self.raw, self.pos)
        end = None if begin else END_PATTERN.match(self.raw, self.pos)
        match = begin or end
        if not match:
            return False

        env = match.group(1)
        if env in MATH_ENVIRONMENTS:
            marker = f"env:{env}"
            if begin:
                self.math_stack.append(marker)
            elif self.math_stack and self.math_stack[-1] == marker:
                self.math_stack.pop()

        self.buf.append(match.group(0))
        self.pos = match.end()
        return True

    # -------------------------------------------------------------------------
    # Block tags
    # -------------------------------------------------------------------------

    def _handle_tag(self, match: re.Match):
        start = self.pos
        source = match.group(0)
        self.pos = match.end()

        try:
            tag = parse_tag_body(match.group(1))
        except LarkError:
            self._error(ParseError(f"Unrecognised block tag {source} at position {start}.", start))
            return

        match tag["kind"]:
            case "facts":
                self._emit(FactSheetRef(tag["key"], start))
            case "close":
                self._close_block(tag["name"].lower(), source, start)
            case "open":
                self._open_block(tag, source, start)

    def _open_block(self, tag: dict, source: str, start: int):
        name = tag["name"].lower()
        attributes = tag["attributes"]

        if name == "define":
            if not attributes:
                self._error(
                    ParseError(f"Define-block {source} needs at least one attribute.", start)
                )
            for var, expression in attributes:
                self._emit(DefineBlock(var, expression.strip(), start))
            return

        if name not in ("if", "foreach"):
            self._error(ParseError(f"Unknown block type '{tag['name']}' in {source}.", start))
            return

        if tag["self_closing"]:
            self._error(ParseError(f"The {name}-block {source} cannot be self-closing.", start))
            return

        frame = _OpenBlock(name=name, position=start, source=source)

        if name == "if":
            for attr, value in attributes:
                if attr == "test":
                    frame.test = value.strip() or None
                else:
                    self._error(
                        ParseError(f"If-block has an unknown attribute '{attr}'.", start)
                    )
            if frame.test is None:
                self._error(MissingAttributeError("If-block needs a test attribute.", start))
        else:
            seen = set()
            iterators = []
            for var, value in attributes:
                if var in seen:
                    self._error(
                        ParseError(f"Foreach-block repeats the variable '{var}'.", start)
                    )
                    continue
                seen.add(var)
                iterators.append((var, value.strip()))
            if not iterators:
                self._error(
                    MissingAttributeError(
                        "Foreach-block needs at least one variable to iterate over.", start
                    )
                )
            frame.iterators = tuple(iterators)

        self._flush_text()
        self.stack.append(frame)

    def _close_block(self, name: str, source: str, start: int):
        if not self.stack:
            self._error(
                ParseError(
                    f"Closing tag {source} at position {start} has no matching opening tag.",
                    start,
                )
            )
            return

        frame = self.stack[-1]
        if frame.name != name:
            self._error(
                ParseError(
                    f"Closing tag {source} at position {start} does not match the open "
                    f"{frame.source} at position {frame.position}.",
                    start,
                )
            )
            return

        self._flush_text()
        self.stack.pop()
        self._children.append(frame.build())

    def _close_unterminated(self):
        while self.stack:
            frame = self.stack[-1]
            self._error(
                ParseError(f"Unclosed block {frame.source} at position {frame.position}.", frame.position)
            )
            self._flush_text()
            self.stack.pop()
            self._children.append(frame.build())


def parse_castext(raw: Optional[str], strict: bool = False) -> ParsedTemplate:
    """Parse a CASText template into a node tree.

    Args:
        raw: Template text. None is treated as the empty template.
        strict: True for student-facing text (stricter word policy)

    Returns:
        ParsedTemplate; check `.errors` / `.valid` for parse problems
    """
    raw = raw or ""
    nodes, errors = TemplateScanner(raw).scan()
    if errors:
        logger.debug(f"Template parsed with {len(errors)} error(s)")
    return ParsedTemplate(raw=raw, nodes=nodes, strict=strict, errors=errors)


def raw_expressions(tree: Union[ParsedTemplate, Iterable[Node]]) -> List[str]:
    """List every expression in a tree, in document order, without evaluating.

    Block children are listed once: foreach bodies are not unrolled and if
    bodies are included whatever their test would give.
    """
    nodes = tree.nodes if isinstance(tree, ParsedTemplate) else tree
    found = []
    for node in nodes:
        match node:
            case MathSegment(raw=raw):
                found.append(raw)
            case IfBlock(test=test, children=children):
                if test:
                    found.append(test)
                found.extend(raw_expressions(children))
            case DefineBlock(name=name, expression=expression):
                found.append(f"{name}:{expression}")
            case ForeachBlock(iterators=iterators, children=children):
                found.extend(expression for _, expression in iterators)
                found.extend(raw_expressions(children))
    return found
