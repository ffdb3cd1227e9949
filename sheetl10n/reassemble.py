from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Mapping

from sheetl10n.freezer import unfreeze_text
from sheetl10n.ir import (
    ContentSlot,
    Finding,
    LiteralNode,
    MergeResult,
    Segment,
    Skeleton,
    SpanClose,
    SpanEntry,
    SpanOpen,
    TextSlot,
    TranslatableUnit,
)
from sheetl10n.sentinels import BOUNDARY, Token, pair_markers, readable, tokenize


logger = logging.getLogger(__name__)

MergeFallback = Literal["source", "empty"]

# Compose findings that mean part of the original markup was not rebuilt.
STRUCTURE_LOSS_CODES = frozenset({"unmatched-span-marker", "unknown-span"})


def effective_text(seg: Segment, fallback: MergeFallback = "source") -> str:
    if seg.target:
        return seg.target
    return seg.source if fallback == "source" else ""


def _ordered(segments: list[Segment]) -> list[Segment]:
    if segments and all(seg.offset >= 0 for seg in segments):
        return sorted(segments, key=lambda seg: seg.offset)
    return list(segments)


def restore_gaps(
    unit: TranslatableUnit, fallback: MergeFallback = "source"
) -> tuple[str, bool, list[Finding]]:
    """Concatenate resolved segment texts with the source's inter-segment gaps.

    Returns (text, located, findings); `located` is False when any segment's
    source could not be found and its text was appended without its gap.
    """
    source = unit.source_text
    findings: list[Finding] = []
    pieces: list[str] = []
    located = True
    pos = 0
    seen_any = False
    prev_changed = False

    for seg in _ordered(unit.segments):
        resolved = unfreeze_text(effective_text(seg, fallback), unit.protected.get(seg.seg_id, {}))
        changed = resolved != seg.source
        idx = source.find(seg.source, pos)
        if idx < 0:
            located = False
            findings.append(
                Finding(
                    "structural",
                    "unlocatable-source",
                    f"source of {seg.seg_id} not found after offset {pos}; appended without gap recovery",
                    unit_id=unit.unit_id,
                    segment_id=seg.seg_id,
                )
            )
            pieces.append(resolved)
            seen_any = True
            prev_changed = changed
            continue

        gap = source[pos:idx]
        if (
            not gap
            and seen_any
            and (changed or prev_changed)
            and resolved[:1].strip()
            and pieces
            and pieces[-1][-1:].strip()
        ):
            gap = " "
        pieces.append(gap)
        pieces.append(resolved)
        pos = idx + len(seg.source)
        seen_any = True
        prev_changed = changed

    pieces.append(source[pos:])
    return "".join(pieces), located, findings


@dataclass
class _Run:
    tokens: list[Token]
    keep: set[int]
    cursor: int = 0
    present: set[int] = field(default_factory=set)
    rendered: set[int] = field(default_factory=set)


@dataclass
class _Renderer:
    spans: Mapping[int, SpanEntry]
    unit_id: str | None
    findings: list[Finding] = field(default_factory=list)

    def literal(self, tok: Token) -> str:
        entry = self.spans.get(tok.span_id)
        if entry is None:
            self.findings.append(
                Finding(
                    "structural",
                    "unknown-span",
                    f"no markup known for span {tok.value}; marker dropped",
                    unit_id=self.unit_id,
                )
            )
            return ""
        return entry.close_literal if tok.kind == "ic" else entry.open_literal

    def token(self, run: _Run, index: int) -> str:
        tok = run.tokens[index]
        if tok.kind == "text":
            return tok.value
        if tok.kind in ("io", "ic"):
            if index not in run.keep:
                self.findings.append(
                    Finding(
                        "structural",
                        "unmatched-span-marker",
                        f"unbalanced marker {readable(tok.raw)} dropped",
                        unit_id=self.unit_id,
                    )
                )
                return ""
            if tok.kind == "io":
                run.rendered.add(tok.span_id)
            return self.literal(tok)
        if tok.kind == "is":
            return self.literal(tok)
        # Leftover protected token without a mapping.
        return readable(tok.raw)

    def consume(self, run: _Run, stop: tuple[str, int] | None) -> str:
        out: list[str] = []
        while run.cursor < len(run.tokens):
            tok = run.tokens[run.cursor]
            if stop is not None and tok.kind == stop[0] and tok.span_id == stop[1]:
                break
            out.append(self.token(run, run.cursor))
            run.cursor += 1
        return "".join(out)


def _make_run(text: str) -> _Run:
    tokens = tokenize(text)
    keep = pair_markers(tokens)
    present = {tok.span_id for i, tok in enumerate(tokens) if tok.kind == "io" and i in keep}
    return _Run(tokens=tokens, keep=keep, present=present)


def _next_marker(skeleton: Skeleton, start: int, run_index: int, run: _Run) -> tuple[str, int] | None:
    for node in skeleton[start:]:
        if isinstance(node, (SpanOpen, SpanClose)) and node.run == run_index:
            if node.span_id in run.present and node.span_id not in run.rendered:
                return ("io" if isinstance(node, SpanOpen) else "ic", node.span_id)
    return None


def compose(
    skeleton: Skeleton,
    spans: Mapping[int, SpanEntry],
    text: str,
    *,
    unit_id: str | None = None,
) -> tuple[str, list[Finding]]:
    """Rebuild markup from a skeleton and gap-restored flat text."""
    renderer = _Renderer(spans=spans, unit_id=unit_id)
    runs = [_make_run(chunk) for chunk in text.split(BOUNDARY)]
    last_node: dict[int, int] = {}
    for idx, node in enumerate(skeleton):
        if not isinstance(node, LiteralNode):
            last_node[node.run] = idx

    out: list[str] = []
    for idx, node in enumerate(skeleton):
        if isinstance(node, LiteralNode):
            out.append(node.text)
            continue
        if node.run >= len(runs):
            continue
        run = runs[node.run]
        if isinstance(node, ContentSlot):
            out.append(renderer.consume(run, None))
        elif isinstance(node, TextSlot):
            out.append(renderer.consume(run, _next_marker(skeleton, idx + 1, node.run, run)))
        elif isinstance(node, (SpanOpen, SpanClose)):
            kind = "io" if isinstance(node, SpanOpen) else "ic"
            if node.span_id in run.present and node.span_id not in run.rendered:
                # Text the translator moved ahead of this marker comes out first.
                out.append(renderer.consume(run, (kind, node.span_id)))
                if run.cursor < len(run.tokens):
                    out.append(renderer.literal(run.tokens[run.cursor]))
                    run.cursor += 1
                if kind == "ic":
                    run.present.discard(node.span_id)
        if last_node.get(node.run) == idx:
            out.append(renderer.consume(run, None))

    for index, run in enumerate(runs):
        if index not in last_node:
            out.append(renderer.consume(run, None))
    return "".join(out), renderer.findings


def reassemble(unit: TranslatableUnit, fallback: MergeFallback = "source") -> MergeResult:
    text, located, findings = restore_gaps(unit, fallback)
    rendered, compose_findings = compose(unit.skeleton, unit.spans, text, unit_id=unit.unit_id)
    findings.extend(compose_findings)
    intact = located and not any(f.code in STRUCTURE_LOSS_CODES for f in compose_findings)
    if not intact:
        logger.debug("Unit %s reassembled without its full structure", unit.unit_id)
    return MergeResult(
        unit_id=unit.unit_id,
        cell=unit.cell,
        text=rendered,
        intact=intact,
        findings=tuple(findings),
    )
