from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

from sheetl10n.cellref import col_to_letter


FindingKind = Literal["structural", "content", "configuration"]
Severity = Literal["error", "warn", "info"]
SpanKind = Literal["paired", "standalone"]


@dataclass(frozen=True)
class CellRef:
    sheet: str
    row: int
    col: int

    @property
    def address(self) -> str:
        return f"{col_to_letter(self.col)}{self.row}"


@dataclass(frozen=True)
class CellInput:
    """A raw cell value handed over by the workbook reader.

    `metadata` holds opaque pass-through fields (header text, row notes,
    comments, a style snapshot) that are carried into the interchange
    document untouched.
    """

    ref: CellRef
    value: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SpanEntry:
    span_id: int
    kind: SpanKind
    tag: str
    attributes: tuple[tuple[str, str | None], ...]
    open_literal: str
    close_literal: str = ""


# Skeleton variants. `run` is the index of the flat-text run the node belongs to.


@dataclass(frozen=True)
class LiteralNode:
    text: str


@dataclass(frozen=True)
class TextSlot:
    slot: int
    run: int


@dataclass(frozen=True)
class ContentSlot:
    run: int


@dataclass(frozen=True)
class SpanOpen:
    span_id: int
    run: int


@dataclass(frozen=True)
class SpanClose:
    span_id: int
    run: int


SkeletonNode = Union[LiteralNode, TextSlot, ContentSlot, SpanOpen, SpanClose]
Skeleton = tuple[SkeletonNode, ...]


@dataclass(frozen=True)
class Decomposition:
    skeleton: Skeleton
    spans: dict[int, SpanEntry]
    flat_text: str
    malformed: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class Finding:
    kind: FindingKind
    code: str
    message: str
    unit_id: str | None = None
    segment_id: str | None = None
    severity: Severity = "warn"


@dataclass
class Segment:
    seg_id: str
    source: str
    offset: int = -1
    length: int = 0
    target: str | None = None
    # Source as exported: protected spans replaced by tokens.
    masked: str | None = None


@dataclass
class TranslatableUnit:
    unit_id: str
    cell: CellRef | None
    source_text: str
    skeleton: Skeleton
    spans: dict[int, SpanEntry]
    segments: list[Segment]
    protected: dict[str, dict[str, str]] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)


@dataclass(frozen=True)
class MergeResult:
    unit_id: str
    cell: CellRef | None
    text: str
    intact: bool
    findings: tuple[Finding, ...] = ()
