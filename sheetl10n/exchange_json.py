from __future__ import annotations

import json
import logging
from typing import Iterable

from sheetl10n.codec import InlineCodec, codec_for
from sheetl10n.errors import CodecError, InterchangeError
from sheetl10n.interchange import masked_pair, restore_unit, unit_notes
from sheetl10n.ir import TranslatableUnit


logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def build_json(
    units: Iterable[TranslatableUnit],
    codec: InlineCodec,
    *,
    source_lang: str = "en",
    target_lang: str | None = None,
) -> str:
    out_units: list[dict[str, object]] = []
    for unit in units:
        segments: list[dict[str, object]] = []
        for seg in unit.segments:
            source, target, mapping = masked_pair(unit, seg)
            entry: dict[str, object] = {"id": seg.seg_id, "source": codec.encode(source, unit.spans, mapping)}
            if target is not None:
                entry["target"] = codec.encode(target, unit.spans, mapping)
            segments.append(entry)
        out_units.append(
            {
                "id": unit.unit_id,
                "notes": dict(unit_notes(unit)),
                "segments": segments,
            }
        )
    doc = {
        "version": FORMAT_VERSION,
        "dialect": codec.dialect,
        "srcLang": source_lang,
        "trgLang": target_lang,
        "units": out_units,
    }
    return json.dumps(doc, ensure_ascii=False, indent=2)


def parse_json(raw: str | bytes, *, name: str = "<json>") -> tuple[dict[str, object], list[TranslatableUnit]]:
    """Read a JSON interchange document; returns (header fields, units)."""
    try:
        doc = json.loads(raw)
    except ValueError as exc:
        raise InterchangeError(f"Failed to parse JSON interchange {name}: {exc}") from exc
    if not isinstance(doc, dict) or not isinstance(doc.get("units"), list):
        raise InterchangeError(f"{name}: expected an object with a 'units' list")
    try:
        codec = codec_for(str(doc.get("dialect") or "2.1"))
    except CodecError as exc:
        raise InterchangeError(f"{name}: {exc}") from exc

    units: list[TranslatableUnit] = []
    for n, item in enumerate(doc["units"], start=1):
        if not isinstance(item, dict):
            raise InterchangeError(f"{name}: unit #{n} is not an object")
        unit_id = str(item.get("id") or "")
        notes = {str(k): str(v) for k, v in (item.get("notes") or {}).items()}
        wire = []
        for i, seg in enumerate(item.get("segments") or [], start=1):
            target = seg.get("target")
            wire.append(
                (
                    str(seg.get("id") or f"{unit_id}_s{i}"),
                    str(seg.get("source") or ""),
                    None if target is None else str(target),
                )
            )
        units.append(restore_unit(codec, unit_id, notes, wire))

    header = {key: doc.get(key) for key in ("version", "dialect", "srcLang", "trgLang")}
    logger.debug("Parsed %d units from %s (dialect %s)", len(units), name, codec.dialect)
    return header, units
