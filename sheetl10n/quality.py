from __future__ import annotations

from collections import Counter
from typing import Iterable

from sheetl10n.freezer import icu_signature, remask, tokens_in, unfreeze_text
from sheetl10n.ir import Finding, Segment, TranslatableUnit
from sheetl10n.sentinels import SPAN_RE, strip_sentinels


ERROR_CODES: set[str] = {
    "missing-target",
    "placeholder-mismatch",
    "icu-category-mismatch",
}


def _span_markers(text: str) -> Counter[str]:
    return Counter(f"{m.group(1)}:{m.group(2)}" for m in SPAN_RE.finditer(text))


def _content(unit: TranslatableUnit, seg: Segment, code: str, message: str, severity: str = "warn") -> Finding:
    return Finding("content", code, message, unit_id=unit.unit_id, segment_id=seg.seg_id, severity=severity)  # type: ignore[arg-type]


def _masked_source(unit: TranslatableUnit, seg: Segment) -> str:
    if seg.masked is not None:
        return seg.masked
    return remask(seg.source, unit.protected.get(seg.seg_id, {}))


def validate_segment(unit: TranslatableUnit, seg: Segment, *, length_factor: float = 2.0) -> list[Finding]:
    if not seg.target:
        if strip_sentinels(seg.source).strip():
            return [_content(unit, seg, "missing-target", "no translation supplied", "error")]
        return []

    findings: list[Finding] = []
    mapping = unit.protected.get(seg.seg_id, {})
    source = _masked_source(unit, seg)
    target = remask(seg.target, mapping)

    src_tokens = Counter(tokens_in(source))
    tgt_tokens = Counter(tokens_in(target))
    if src_tokens != tgt_tokens:
        missing = sorted((src_tokens - tgt_tokens).elements())
        extra = sorted((tgt_tokens - src_tokens).elements())
        findings.append(
            _content(
                unit,
                seg,
                "placeholder-mismatch",
                f"protected tokens differ (missing={missing}, extra={extra})",
                "error",
            )
        )

    if _span_markers(source) != _span_markers(target):
        findings.append(_content(unit, seg, "span-mismatch", "inline markup markers differ from source"))

    src_icu = icu_signature(seg.source)
    if src_icu:
        tgt_icu = icu_signature(unfreeze_text(target, mapping))
        if src_icu != tgt_icu:
            findings.append(
                _content(
                    unit,
                    seg,
                    "icu-category-mismatch",
                    f"ICU blocks differ: source={src_icu} target={tgt_icu}",
                    "error",
                )
            )

    src_len = len(strip_sentinels(source).strip())
    tgt_len = len(strip_sentinels(target).strip())
    if src_len and tgt_len > src_len * length_factor:
        findings.append(
            _content(unit, seg, "length-ratio", f"target is {tgt_len / src_len:.1f}x the source length")
        )

    if target == source and strip_sentinels(source).strip():
        findings.append(_content(unit, seg, "untranslated", "target is identical to source", "info"))
    return findings


def validate_unit(unit: TranslatableUnit, *, length_factor: float = 2.0) -> list[Finding]:
    findings: list[Finding] = []
    for seg in unit.segments:
        findings.extend(validate_segment(unit, seg, length_factor=length_factor))
    return findings


def validate(units: Iterable[TranslatableUnit], *, length_factor: float = 2.0) -> list[Finding]:
    findings: list[Finding] = []
    for unit in units:
        findings.extend(validate_unit(unit, length_factor=length_factor))
    return findings


def errors_only(findings: Iterable[Finding]) -> list[Finding]:
    return [f for f in findings if f.severity == "error" or f.code in ERROR_CODES]
