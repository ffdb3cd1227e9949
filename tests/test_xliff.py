from __future__ import annotations

import pytest
from lxml import etree

from sheetl10n.codec import XLIFF_12_NS, XLIFF_2_NS, Xliff12Codec, Xliff21Codec
from sheetl10n.errors import InterchangeError
from sheetl10n.ir import CellRef, ContentSlot
from sheetl10n.reassemble import reassemble
from sheetl10n.sentinels import ph_token, span_close, span_open
from sheetl10n.xliff import build_xliff, parse_xliff


MARKUP = '<p>Visit <a href="/shop" class="link">our shop</a>. Pay {0} now!</p>'


@pytest.mark.parametrize("codec", [Xliff21Codec(), Xliff12Codec()])
def test_document_roundtrip_rebuilds_units(pipeline, make_cell, codec) -> None:
    unit = pipeline.extract_unit(make_cell(MARKUP, sheet="Price list", row=4, col=3, header="Notes"))
    data = build_xliff([unit], codec, source_lang="en", target_lang="de")
    doc = parse_xliff(data)
    assert doc.version == codec.dialect
    assert (doc.source_lang, doc.target_lang) == ("en", "de")
    (back,) = doc.units
    assert back.unit_id == "Price%20list::R4CC"
    assert back.cell == CellRef("Price list", 4, 3)
    assert back.metadata == {"header": "Notes"}
    assert back.source_text == unit.source_text
    assert back.skeleton == unit.skeleton
    assert back.spans == unit.spans
    assert back.protected == unit.protected
    assert [(s.seg_id, s.source, s.offset, s.length) for s in back.segments] == [
        (s.seg_id, s.source, s.offset, s.length) for s in unit.segments
    ]
    assert reassemble(back).text == MARKUP


def test_dialect_b_document_layout(pipeline, make_cell) -> None:
    unit = pipeline.extract_unit(make_cell(MARKUP))
    root = etree.fromstring(build_xliff([unit], Xliff21Codec(), target_lang="fr"))
    ns = {"x": XLIFF_2_NS}
    assert root.get("version") == "2.1"
    assert root.get("trgLang") == "fr"
    unit_el = root.find("x:file/x:unit", ns)
    assert unit_el.get("name") == "Sheet1!A1"
    categories = [n.get("category") for n in unit_el.findall("x:notes/x:note", ns)]
    assert categories[:3] == ["location", "skeleton", "spans"]
    pc = unit_el.find("x:segment/x:source/x:pc", ns)
    assert pc.get("equivStart") == '<a href="/shop" class="link">'
    ph = unit_el.find("x:segment[2]/x:source/x:ph", ns)
    assert ph.get("id") == "ph1"
    assert ph.get("equiv") == "{0}"


def test_dialect_a_document_layout(pipeline, make_cell) -> None:
    unit = pipeline.extract_unit(make_cell(MARKUP))
    root = etree.fromstring(build_xliff([unit], Xliff12Codec()))
    ns = {"x": XLIFF_12_NS}
    assert root.get("version") == "1.2"
    group = root.find("x:file/x:body/x:group", ns)
    assert group.get("resname") == "Sheet1!A1"
    assert [tu.get("id") for tu in group.findall("x:trans-unit", ns)] == ["Sheet1::R1CA_s1", "Sheet1::R1CA_s2"]
    g = group.find("x:trans-unit/x:source/x:g", ns)
    assert g.get("ctype") == "link"
    assert g.get("href") is None


@pytest.mark.parametrize("codec", [Xliff21Codec(), Xliff12Codec()])
def test_translated_targets_survive_and_merge(pipeline, make_cell, codec) -> None:
    unit = pipeline.extract_unit(make_cell(MARKUP))
    first, second = unit.segments
    first.target = f"Besuchen Sie {span_open(1)}unseren Laden{span_close(1)}."
    second.target = f"Zahlen Sie {ph_token('ph1')} jetzt!"
    (back,) = parse_xliff(build_xliff([unit], codec)).units
    assert [s.target for s in back.segments] == [first.target, second.target]
    assert reassemble(back).text == (
        '<p>Besuchen Sie <a href="/shop" class="link">unseren Laden</a>. Zahlen Sie {0} jetzt!</p>'
    )


def test_target_with_raw_literal_is_remasked(pipeline, make_cell) -> None:
    unit = pipeline.extract_unit(make_cell("Pay {0} now."))
    unit.segments[0].target = "Zahle {0} jetzt."
    data = build_xliff([unit], Xliff21Codec())
    assert b'<target xml:space="preserve">Zahle <ph id="ph1" equiv="{0}"/> jetzt.</target>' in data


def test_editor_markers_are_ignored() -> None:
    data = f"""<?xml version="1.0" encoding="UTF-8"?>
<xliff xmlns="{XLIFF_2_NS}" version="2.1" srcLang="en" trgLang="de">
  <file id="f1">
    <unit id="Sheet1::R2CB">
      <segment id="s1">
        <source>Hello <pc id="1" equivStart="&lt;b&gt;" equivEnd="&lt;/b&gt;">you</pc>.</source>
        <target>Hallo <mrk id="m1" type="term"><pc id="1" equivStart="&lt;b&gt;" equivEnd="&lt;/b&gt;">du</pc></mrk>.</target>
      </segment>
    </unit>
  </file>
</xliff>""".encode()
    (unit,) = parse_xliff(data).units
    assert unit.cell == CellRef("Sheet1", 2, 2)
    assert unit.skeleton == (ContentSlot(0),)
    assert unit.segments[0].target == f"Hallo {span_open(1)}du{span_close(1)}."
    assert reassemble(unit).text == "Hallo <b>du</b>."


def test_missing_notes_degrade_to_joined_sources() -> None:
    data = f"""<xliff xmlns="{XLIFF_12_NS}" version="1.2">
  <file original="x" source-language="en" datatype="plaintext"><body>
    <trans-unit id="a"><source>One.</source><target>Eins.</target></trans-unit>
    <trans-unit id="b"><source>Two.</source></trans-unit>
  </body></file>
</xliff>""".encode()
    doc = parse_xliff(data)
    assert [u.unit_id for u in doc.units] == ["a", "b"]
    assert doc.units[0].source_text == "One."
    assert reassemble(doc.units[0]).text == "Eins."
    assert reassemble(doc.units[1]).text == "Two."


def test_unreadable_documents_raise() -> None:
    with pytest.raises(InterchangeError):
        parse_xliff(b"<xliff><file>")
    with pytest.raises(InterchangeError):
        parse_xliff(b"<root/>")


def test_token_ids_are_unique_across_segments(pipeline, make_cell) -> None:
    unit = pipeline.extract_unit(make_cell("Use {0}. Then {1}."))
    root = etree.fromstring(build_xliff([unit], Xliff21Codec()))
    ids = [ph.get("id") for ph in root.iter(f"{{{XLIFF_2_NS}}}ph")]
    assert ids == ["ph1", "ph2"]
