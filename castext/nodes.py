"""Node types for parsed CASText templates.

A template parses into a tuple of these nodes. All are frozen dataclasses, so
two parses of the same text compare equal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


class SegmentKind(str, Enum):
    """How a math segment is wrapped when it is displayed."""

    INLINE = "inline"  # {@ @} inside \( \) or $ $
    DISPLAY = "display"  # {@ @} inside \[ \], $$ $$ or a math environment
    IMPLICIT = "implicit"  # {@ @} in plain text, wrapped as \( \)
    VALUE = "value"  # {# #}, bare value


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class MathSegment:
    kind: SegmentKind
    raw: str
    source: str  # original markup, e.g. "{@x^2@}"
    position: int = 0


@dataclass(frozen=True)
class IfBlock:
    test: Optional[str]
    children: Tuple["Node", ...] = ()
    position: int = 0


@dataclass(frozen=True)
class DefineBlock:
    name: str
    expression: str
    position: int = 0


@dataclass(frozen=True)
class ForeachBlock:
    iterators: Tuple[Tuple[str, str], ...]
    children: Tuple["Node", ...] = ()
    position: int = 0

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.iterators)


@dataclass(frozen=True)
class FactSheetRef:
    key: str
    position: int = 0


@dataclass(frozen=True)
class ErrorMarker:
    message: str
    position: int = 0


Node = Union[Text, MathSegment, IfBlock, DefineBlock, ForeachBlock, FactSheetRef, ErrorMarker]


@dataclass(frozen=True)
class ParsedTemplate:
    """A parsed template: the source, its node tree and any parse errors."""

    raw: str
    nodes: Tuple[Node, ...]
    strict: bool = False
    # ErrorMarker nodes carry the comparable part of each error
    errors: Tuple = field(default=(), compare=False)

    @property
    def valid(self) -> bool:
        return not self.errors

    def __iter__(self):
        return iter(self.nodes)
