from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Iterable

from sheetl10n.cellref import parse_unit_id
from sheetl10n.codec import InlineCodec
from sheetl10n.freezer import remask, unfreeze_text
from sheetl10n.ir import (
    CellRef,
    ContentSlot,
    Finding,
    LiteralNode,
    Segment,
    Skeleton,
    SkeletonNode,
    SpanClose,
    SpanEntry,
    SpanOpen,
    TextSlot,
    TranslatableUnit,
)


logger = logging.getLogger(__name__)

META_PREFIX = "meta:"


def skeleton_to_json(skeleton: Skeleton) -> str:
    items: list[list[object]] = []
    for node in skeleton:
        if isinstance(node, LiteralNode):
            items.append(["L", node.text])
        elif isinstance(node, TextSlot):
            items.append(["T", node.slot, node.run])
        elif isinstance(node, ContentSlot):
            items.append(["C", node.run])
        elif isinstance(node, SpanOpen):
            items.append(["O", node.span_id, node.run])
        elif isinstance(node, SpanClose):
            items.append(["X", node.span_id, node.run])
    return json.dumps(items, ensure_ascii=False)


def skeleton_from_json(raw: str) -> Skeleton:
    nodes: list[SkeletonNode] = []
    for item in json.loads(raw):
        kind = item[0]
        if kind == "L":
            nodes.append(LiteralNode(str(item[1])))
        elif kind == "T":
            nodes.append(TextSlot(int(item[1]), int(item[2])))
        elif kind == "C":
            nodes.append(ContentSlot(int(item[1])))
        elif kind == "O":
            nodes.append(SpanOpen(int(item[1]), int(item[2])))
        elif kind == "X":
            nodes.append(SpanClose(int(item[1]), int(item[2])))
        else:
            raise ValueError(f"unknown skeleton node kind {kind!r}")
    return tuple(nodes)


def spans_to_json(spans: dict[int, SpanEntry]) -> str:
    return json.dumps(
        [
            {
                "id": entry.span_id,
                "kind": entry.kind,
                "tag": entry.tag,
                "attrs": [list(pair) for pair in entry.attributes],
                "open": entry.open_literal,
                "close": entry.close_literal,
            }
            for entry in sorted(spans.values(), key=lambda e: e.span_id)
        ],
        ensure_ascii=False,
    )


def spans_from_json(raw: str) -> dict[int, SpanEntry]:
    out: dict[int, SpanEntry] = {}
    for item in json.loads(raw):
        entry = SpanEntry(
            span_id=int(item["id"]),
            kind="standalone" if item.get("kind") == "standalone" else "paired",
            tag=str(item.get("tag") or ""),
            attributes=tuple((str(k), None if v is None else str(v)) for k, v in item.get("attrs") or []),
            open_literal=str(item.get("open") or ""),
            close_literal=str(item.get("close") or ""),
        )
        out[entry.span_id] = entry
    return out


def unit_notes(unit: TranslatableUnit) -> list[tuple[str, str]]:
    """Out-of-band notes that let a unit survive the interchange round trip."""
    notes: list[tuple[str, str]] = []
    if unit.cell is not None:
        location = {
            "sheet": unit.cell.sheet,
            "row": unit.cell.row,
            "col": unit.cell.col,
            "address": unit.cell.address,
        }
        notes.append(("location", json.dumps(location, ensure_ascii=False)))
    notes.append(("skeleton", skeleton_to_json(unit.skeleton)))
    notes.append(("spans", spans_to_json(unit.spans)))
    if unit.protected:
        notes.append(("protected", json.dumps(unit.protected, ensure_ascii=False, sort_keys=True)))
    notes.append(("source", unit.source_text))
    offsets = {seg.seg_id: [seg.offset, seg.length] for seg in unit.segments}
    notes.append(("offsets", json.dumps(offsets, ensure_ascii=False)))
    for key, value in unit.metadata.items():
        notes.append((f"{META_PREFIX}{key}", value))
    return notes


def masked_pair(unit: TranslatableUnit, seg: Segment) -> tuple[str, str | None, dict[str, str]]:
    mapping = unit.protected.get(seg.seg_id, {})
    source = seg.masked if seg.masked is not None else remask(seg.source, mapping)
    target = remask(seg.target, mapping) if seg.target is not None else None
    return source, target, mapping


def _cell_from_notes(unit_id: str, raw: str | None) -> CellRef | None:
    if raw:
        try:
            data = json.loads(raw)
            return CellRef(str(data["sheet"]), int(data["row"]), int(data["col"]))
        except (ValueError, KeyError, TypeError):
            logger.debug("Unreadable location note on %s: %r", unit_id, raw)
    parsed = parse_unit_id(unit_id)
    if parsed is None:
        return None
    return CellRef(*parsed)


def _bad_note(unit_id: str, category: str, exc: Exception) -> Finding:
    return Finding("structural", "bad-note", f"unreadable {category} note: {exc}", unit_id=unit_id)


def restore_unit(
    codec: InlineCodec,
    unit_id: str,
    notes: dict[str, str],
    wire_segments: Iterable[tuple[str, str, str | None]],
) -> TranslatableUnit:
    """Rebuild a unit from its notes and (segment id, source wire, target wire) triples."""
    findings: list[Finding] = []

    skeleton: Skeleton = (ContentSlot(0),)
    if "skeleton" in notes:
        try:
            skeleton = skeleton_from_json(notes["skeleton"])
        except (ValueError, TypeError, IndexError) as exc:
            findings.append(_bad_note(unit_id, "skeleton", exc))

    spans: dict[int, SpanEntry] = {}
    if "spans" in notes:
        try:
            spans = spans_from_json(notes["spans"])
        except (ValueError, TypeError, KeyError) as exc:
            findings.append(_bad_note(unit_id, "spans", exc))

    protected: dict[str, dict[str, str]] = {}
    if "protected" in notes:
        try:
            protected = {str(k): {str(t): str(v) for t, v in m.items()} for k, m in json.loads(notes["protected"]).items()}
        except (ValueError, TypeError, AttributeError) as exc:
            findings.append(_bad_note(unit_id, "protected", exc))

    offsets: dict[str, list[int]] = {}
    if "offsets" in notes:
        try:
            offsets = {str(k): [int(v[0]), int(v[1])] for k, v in json.loads(notes["offsets"]).items()}
        except (ValueError, TypeError, IndexError, AttributeError) as exc:
            findings.append(_bad_note(unit_id, "offsets", exc))

    decoded_spans: dict[int, SpanEntry] = {}
    segments: list[Segment] = []
    for seg_id, source_wire, target_wire in wire_segments:
        mapping = protected.get(seg_id, {})
        decoded = codec.decode(source_wire, spans)
        decoded_spans.update(decoded.spans)
        findings.extend(replace(f, unit_id=unit_id, segment_id=seg_id) for f in decoded.findings)
        target = None
        if target_wire is not None:
            decoded_target = codec.decode(target_wire, spans)
            decoded_spans.update(decoded_target.spans)
            findings.extend(replace(f, unit_id=unit_id, segment_id=seg_id) for f in decoded_target.findings)
            target = decoded_target.text
        source = unfreeze_text(decoded.text, mapping)
        offset, length = offsets.get(seg_id, [-1, len(source)])
        segments.append(Segment(seg_id, source, offset, length, target, decoded.text))

    if "source" in notes:
        source_text = notes["source"]
    else:
        source_text = " ".join(seg.source for seg in segments)
        pos = 0
        for seg in segments:
            seg.offset = source_text.find(seg.source, pos)
            seg.length = len(seg.source)
            pos = seg.offset + seg.length

    metadata = {k[len(META_PREFIX) :]: v for k, v in notes.items() if k.startswith(META_PREFIX)}
    return TranslatableUnit(
        unit_id=unit_id,
        cell=_cell_from_notes(unit_id, notes.get("location")),
        source_text=source_text,
        skeleton=skeleton,
        spans={**spans, **decoded_spans},
        segments=segments,
        protected=protected,
        metadata=metadata,
        findings=findings,
    )
