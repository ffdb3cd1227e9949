from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from lxml import etree

from sheetl10n.codec import InlineCodec, codec_for, inner_markup
from sheetl10n.errors import InterchangeError
from sheetl10n.interchange import masked_pair, restore_unit, unit_notes
from sheetl10n.ir import TranslatableUnit


logger = logging.getLogger(__name__)

_XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


@dataclass
class XliffDocument:
    version: str
    source_lang: str | None
    target_lang: str | None
    original: str | None = None
    units: list[TranslatableUnit] = field(default_factory=list)


def _local(el: etree._Element) -> str:
    return etree.QName(el).localname if isinstance(el.tag, str) else ""


def _children(el: etree._Element, name: str) -> list[etree._Element]:
    return [child for child in el if _local(child) == name]


def _first(el: etree._Element, name: str) -> etree._Element | None:
    found = _children(el, name)
    return found[0] if found else None


def _preserve(el: etree._Element) -> etree._Element:
    el.set(_XML_SPACE, "preserve")
    return el


def _write_unit_v2(codec: InlineCodec, parent: etree._Element, unit: TranslatableUnit) -> None:
    q = codec.qname
    unit_el = etree.SubElement(parent, q("unit"), id=unit.unit_id)
    if unit.cell is not None:
        unit_el.set("name", f"{unit.cell.sheet}!{unit.cell.address}")
    notes_el = etree.SubElement(unit_el, q("notes"))
    for category, text in unit_notes(unit):
        etree.SubElement(notes_el, q("note"), category=category).text = text
    for seg in unit.segments:
        source, target, mapping = masked_pair(unit, seg)
        seg_el = etree.SubElement(unit_el, q("segment"), id=seg.seg_id)
        codec.encode_into(_preserve(etree.SubElement(seg_el, q("source"))), source, unit.spans, mapping)
        if target is not None:
            codec.encode_into(_preserve(etree.SubElement(seg_el, q("target"))), target, unit.spans, mapping)


def _write_unit_v12(codec: InlineCodec, parent: etree._Element, unit: TranslatableUnit) -> None:
    q = codec.qname
    group = etree.SubElement(parent, q("group"), id=unit.unit_id)
    if unit.cell is not None:
        group.set("resname", f"{unit.cell.sheet}!{unit.cell.address}")
    for category, text in unit_notes(unit):
        etree.SubElement(group, q("note"), {"from": category}).text = text
    for seg in unit.segments:
        source, target, mapping = masked_pair(unit, seg)
        tu = _preserve(etree.SubElement(group, q("trans-unit"), id=seg.seg_id))
        codec.encode_into(etree.SubElement(tu, q("source")), source, unit.spans, mapping)
        if target is not None:
            codec.encode_into(etree.SubElement(tu, q("target")), target, unit.spans, mapping)


def build_xliff(
    units: Iterable[TranslatableUnit],
    codec: InlineCodec,
    *,
    source_lang: str = "en",
    target_lang: str | None = None,
    original: str = "workbook",
) -> bytes:
    q = codec.qname
    root = etree.Element(q("xliff"), nsmap={None: codec.namespace})
    root.set("version", codec.dialect)
    if codec.dialect.startswith("1"):
        file_el = etree.SubElement(
            root,
            q("file"),
            {"original": original, "source-language": source_lang, "datatype": "x-spreadsheet"},
        )
        if target_lang:
            file_el.set("target-language", target_lang)
        body = etree.SubElement(file_el, q("body"))
        for unit in units:
            _write_unit_v12(codec, body, unit)
    else:
        root.set("srcLang", source_lang)
        if target_lang:
            root.set("trgLang", target_lang)
        file_el = etree.SubElement(root, q("file"), id="f1", original=original)
        for unit in units:
            _write_unit_v2(codec, file_el, unit)
    return etree.tostring(root, encoding="UTF-8", xml_declaration=True)


def _read_unit_v2(codec: InlineCodec, unit_el: etree._Element) -> TranslatableUnit:
    notes: dict[str, str] = {}
    notes_el = _first(unit_el, "notes")
    if notes_el is not None:
        for note in _children(notes_el, "note"):
            notes[note.get("category") or "comment"] = note.text or ""
    wire: list[tuple[str, str, str | None]] = []
    for n, seg_el in enumerate(_children(unit_el, "segment"), start=1):
        src = _first(seg_el, "source")
        tgt = _first(seg_el, "target")
        wire.append(
            (
                seg_el.get("id") or f"{unit_el.get('id')}_s{n}",
                inner_markup(src) if src is not None else "",
                inner_markup(tgt) if tgt is not None else None,
            )
        )
    return restore_unit(codec, unit_el.get("id") or "", notes, wire)


def _read_trans_units(
    codec: InlineCodec, unit_id: str, notes: dict[str, str], trans_units: list[etree._Element]
) -> TranslatableUnit:
    wire: list[tuple[str, str, str | None]] = []
    for n, tu in enumerate(trans_units, start=1):
        src = _first(tu, "source")
        tgt = _first(tu, "target")
        wire.append(
            (
                tu.get("id") or f"{unit_id}_s{n}",
                inner_markup(src) if src is not None else "",
                inner_markup(tgt) if tgt is not None else None,
            )
        )
    return restore_unit(codec, unit_id, notes, wire)


def parse_xliff(xml_bytes: bytes, *, name: str = "<xliff>") -> XliffDocument:
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True, recover=False)
        root = etree.fromstring(xml_bytes, parser=parser)
    except Exception as exc:  # noqa: BLE001
        raise InterchangeError(f"Failed to parse XLIFF {name}: {exc}") from exc
    if _local(root) != "xliff":
        raise InterchangeError(f"{name}: root element is <{_local(root)}>, expected <xliff>")

    version = root.get("version") or "2.1"
    codec = codec_for("1.2" if version.startswith("1") else "2.1")
    file_el = _first(root, "file")
    if codec.dialect == "1.2":
        doc = XliffDocument(
            version=version,
            source_lang=file_el.get("source-language") if file_el is not None else None,
            target_lang=file_el.get("target-language") if file_el is not None else None,
            original=file_el.get("original") if file_el is not None else None,
        )
        for el in root.iter():
            if _local(el) == "group" and (_children(el, "trans-unit") or _children(el, "note")):
                notes = {(n.get("from") or "comment"): (n.text or "") for n in _children(el, "note")}
                doc.units.append(
                    _read_trans_units(codec, el.get("id") or "", notes, _children(el, "trans-unit"))
                )
            elif _local(el) == "trans-unit" and _local(el.getparent()) != "group":
                # Ungrouped trans-unit: one single-segment unit.
                doc.units.append(_read_trans_units(codec, el.get("id") or "", {}, [el]))
    else:
        doc = XliffDocument(
            version=version,
            source_lang=root.get("srcLang"),
            target_lang=root.get("trgLang"),
            original=file_el.get("original") if file_el is not None else None,
        )
        for el in root.iter():
            if _local(el) == "unit":
                doc.units.append(_read_unit_v2(codec, el))
    logger.debug("Parsed %d units from %s (XLIFF %s)", len(doc.units), name, version)
    return doc
