from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from sheetl10n.errors import MarkupParseError
from sheetl10n.ir import (
    ContentSlot,
    Decomposition,
    LiteralNode,
    SkeletonNode,
    SpanClose,
    SpanEntry,
    SpanOpen,
    TextSlot,
)
from sheetl10n.markup import ElementNode, Node, RawNode, TextNode, parse_fragment
from sheetl10n.sentinels import BOUNDARY, span_close, span_code, span_open


logger = logging.getLogger(__name__)

DEFAULT_INLINE_TAGS = frozenset(
    {
        "a",
        "abbr",
        "b",
        "bdi",
        "bdo",
        "cite",
        "code",
        "dfn",
        "em",
        "font",
        "i",
        "kbd",
        "mark",
        "q",
        "s",
        "samp",
        "small",
        "span",
        "strike",
        "strong",
        "sub",
        "sup",
        "time",
        "u",
        "var",
    }
)


@dataclass
class _Cursor:
    """Id allocation shared, in identical traversal order, by both builders."""

    next_span: int = 1
    next_slot: int = 1
    run: int = 0
    dirty: bool = False

    def take_span(self) -> int:
        span_id = self.next_span
        self.next_span += 1
        return span_id

    def take_slot(self) -> int:
        slot = self.next_slot
        self.next_slot += 1
        return slot

    def mark(self) -> None:
        self.dirty = True

    def break_run(self) -> bool:
        if not self.dirty:
            return False
        self.run += 1
        self.dirty = False
        return True


def _has_text(node: Node) -> bool:
    if isinstance(node, TextNode):
        return not node.blank
    if isinstance(node, ElementNode):
        return any(_has_text(child) for child in node.children)
    return False


def _is_structural(node: Node, inline_tags: frozenset[str]) -> bool:
    if not isinstance(node, ElementNode) or not _has_text(node):
        return False
    if node.name not in inline_tags:
        return True
    return any(_is_structural(child, inline_tags) for child in node.children)


def _is_pure_inline(node: Node, inline_tags: frozenset[str]) -> bool:
    if not isinstance(node, ElementNode) or node.name not in inline_tags or not _has_text(node):
        return False
    return all(
        isinstance(child, TextNode) or _is_pure_inline(child, inline_tags) for child in node.children
    )


def _collapses(children: Sequence[Node], inline_tags: frozenset[str]) -> bool:
    return not any(_is_structural(child, inline_tags) for child in children)


def _standalone_entry(span_id: int, node: Node) -> SpanEntry:
    if isinstance(node, ElementNode):
        return SpanEntry(span_id, "standalone", node.name, node.attributes, node.raw)
    if isinstance(node, RawNode):
        return SpanEntry(span_id, "standalone", node.name, (), node.raw)
    raise TypeError(f"not a standalone node: {node!r}")


# Skeleton and span table.


def _content_spans(nodes: Iterable[Node], cursor: _Cursor, spans: dict[int, SpanEntry]) -> None:
    for node in nodes:
        if isinstance(node, TextNode):
            continue
        span_id = cursor.take_span()
        if isinstance(node, ElementNode) and _has_text(node):
            spans[span_id] = SpanEntry(
                span_id, "paired", node.name, node.attributes, node.open_raw, node.close_raw
            )
            _content_spans(node.children, cursor, spans)
        else:
            spans[span_id] = _standalone_entry(span_id, node)


def _skeleton_content(
    nodes: Sequence[Node], cursor: _Cursor, spans: dict[int, SpanEntry]
) -> list[SkeletonNode]:
    cursor.break_run()
    slot = ContentSlot(cursor.run)
    _content_spans(nodes, cursor, spans)
    cursor.mark()
    cursor.break_run()
    return [slot]


def _skeleton_container(
    open_raw: str,
    close_raw: str,
    children: Sequence[Node],
    inline_tags: frozenset[str],
    cursor: _Cursor,
    spans: dict[int, SpanEntry],
) -> list[SkeletonNode]:
    out: list[SkeletonNode] = []
    cursor.break_run()
    if open_raw:
        out.append(LiteralNode(open_raw))
    if _collapses(children, inline_tags):
        out.extend(_skeleton_content(children, cursor, spans))
    else:
        for child in children:
            out.extend(_skeleton_mixed(child, inline_tags, cursor, spans))
    cursor.break_run()
    if close_raw:
        out.append(LiteralNode(close_raw))
    return out


def _skeleton_mixed(
    node: Node, inline_tags: frozenset[str], cursor: _Cursor, spans: dict[int, SpanEntry]
) -> list[SkeletonNode]:
    if isinstance(node, TextNode):
        if node.blank:
            return [LiteralNode(node.raw)]
        cursor.mark()
        return [TextSlot(cursor.take_slot(), cursor.run)]
    if not _has_text(node):
        cursor.break_run()
        return [LiteralNode(node.raw)]
    assert isinstance(node, ElementNode)
    if _is_structural(node, inline_tags):
        return _skeleton_container(node.open_raw, node.close_raw, node.children, inline_tags, cursor, spans)
    if _is_pure_inline(node, inline_tags):
        span_id = cursor.take_span()
        spans[span_id] = SpanEntry(span_id, "paired", node.name, node.attributes, node.open_raw, node.close_raw)
        cursor.mark()
        out: list[SkeletonNode] = [SpanOpen(span_id, cursor.run)]
        for child in node.children:
            out.extend(_skeleton_mixed(child, inline_tags, cursor, spans))
        out.append(SpanClose(span_id, cursor.run))
        return out
    # Inline element carrying text-free children: rendered as its own content island.
    return _skeleton_content([node], cursor, spans)


def build_skeleton(
    nodes: Sequence[Node], inline_tags: frozenset[str]
) -> tuple[tuple[SkeletonNode, ...], dict[int, SpanEntry]]:
    cursor = _Cursor()
    spans: dict[int, SpanEntry] = {}
    skeleton = _skeleton_container("", "", nodes, inline_tags, cursor, spans)
    return tuple(skeleton), spans


# Flat text.


@dataclass
class _FlatWriter:
    cursor: _Cursor = field(default_factory=_Cursor)
    runs: list[list[str]] = field(default_factory=lambda: [[]])

    def write(self, text: str) -> None:
        self.runs[-1].append(text)
        self.cursor.mark()

    def break_run(self) -> None:
        if self.cursor.break_run():
            self.runs.append([])

    def text(self) -> str:
        return BOUNDARY.join("".join(run) for run in self.runs if run)


def _flat_content(nodes: Iterable[Node], writer: _FlatWriter) -> None:
    for node in nodes:
        if isinstance(node, TextNode):
            writer.write(node.raw)
            continue
        span_id = writer.cursor.take_span()
        if isinstance(node, ElementNode) and _has_text(node):
            writer.write(span_open(span_id))
            _flat_content(node.children, writer)
            writer.write(span_close(span_id))
        else:
            writer.write(span_code(span_id))


def _flat_container(children: Sequence[Node], inline_tags: frozenset[str], writer: _FlatWriter) -> None:
    writer.break_run()
    if _collapses(children, inline_tags):
        _flat_content(children, writer)
        writer.break_run()
    else:
        for child in children:
            _flat_mixed(child, inline_tags, writer)
    writer.break_run()


def _flat_mixed(node: Node, inline_tags: frozenset[str], writer: _FlatWriter) -> None:
    if isinstance(node, TextNode):
        if not node.blank:
            writer.cursor.take_slot()
            writer.write(node.raw)
        return
    if not _has_text(node):
        writer.break_run()
        return
    assert isinstance(node, ElementNode)
    if _is_structural(node, inline_tags):
        _flat_container(node.children, inline_tags, writer)
        return
    if _is_pure_inline(node, inline_tags):
        span_id = writer.cursor.take_span()
        writer.write(span_open(span_id))
        for child in node.children:
            _flat_mixed(child, inline_tags, writer)
        writer.write(span_close(span_id))
        return
    writer.break_run()
    _flat_content([node], writer)
    writer.break_run()


def build_flat_text(nodes: Sequence[Node], inline_tags: frozenset[str]) -> str:
    writer = _FlatWriter()
    _flat_container(nodes, inline_tags, writer)
    return writer.text()


def decompose(markup: str, inline_tags: frozenset[str] = DEFAULT_INLINE_TAGS) -> Decomposition:
    """Split a cell value into skeleton, span table and flat translatable text.

    Never raises on bad markup: a fragment that does not parse becomes a
    single content slot whose flat text is the literal input.
    """
    try:
        nodes = parse_fragment(markup)
    except MarkupParseError as exc:
        logger.debug("Treating fragment as opaque text: %s", exc)
        return Decomposition(
            skeleton=(ContentSlot(0),),
            spans={},
            flat_text=markup,
            malformed=True,
            reason=str(exc),
        )

    if not any(_has_text(node) for node in nodes):
        skeleton = (LiteralNode(markup),) if markup else ()
        return Decomposition(skeleton=skeleton, spans={}, flat_text="")

    skeleton, spans = build_skeleton(nodes, inline_tags)
    return Decomposition(skeleton=skeleton, spans=spans, flat_text=build_flat_text(nodes, inline_tags))
