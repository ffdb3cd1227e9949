from __future__ import annotations

import io

import pytest

from sheetl10n.ir import CellInput, CellRef
from sheetl10n.pipeline import CellPipeline
from sheetl10n.progress import ConsoleProgress, NullProgress
from sheetl10n.pseudo import pseudo_translate
from sheetl10n.reassemble import reassemble
from sheetl10n.segmenter import parse_srx
from sheetl10n.settings import Settings


CELLS = [
    ("Sheet1", 1, 1, "Plain text. Second sentence."),
    ("Sheet1", 2, 1, '<p>Go to <a href="/x" title=\'t\'>the page</a>!</p>'),
    ("Sheet1", 3, 2, "<div>Unclosed div"),
    ("UI strings", 1, 1, "Welcome back, {user}! You have %d messages."),
    ("UI strings", 2, 1, "{count, plural, one {# file} other {# files}}"),
    ("Sheet1", 4, 1, "<br/>"),
]


def cells() -> list[CellInput]:
    return [CellInput(CellRef(sheet, row, col), value) for sheet, row, col, value in CELLS]


@pytest.mark.parametrize("dialect", ["2.1", "1.2"])
@pytest.mark.parametrize("workers", [1, 3])
def test_untouched_workbook_roundtrips_through_xliff(dialect, workers) -> None:
    pipeline = CellPipeline(Settings(dialect=dialect, target_lang="de"), progress=NullProgress())
    units = pipeline.extract(cells(), workers=workers)
    assert [u.unit_id for u in units] == [
        "Sheet1::R1CA",
        "Sheet1::R2CA",
        "Sheet1::R3CB",
        "UI%20strings::R1CA",
        "UI%20strings::R2CA",
        "Sheet1::R4CA",
    ]
    doc = pipeline.import_xliff(pipeline.export_xliff(units))
    results = pipeline.merge(doc.units, workers=workers)
    assert [r.text for r in results] == [value for *_, value in CELLS]
    assert all(r.intact for r in results)
    assert [r.cell for r in results] == [c.ref for c in cells()]


def test_malformed_cell_gets_a_finding(pipeline) -> None:
    (unit,) = pipeline.extract([CellInput(CellRef("S", 1, 1), "<b>bold</i>")])
    assert [f.code for f in unit.findings] == ["malformed-markup"]
    assert unit.source_text == "<b>bold</i>"


def test_pseudo_translation_through_json(pipeline) -> None:
    units = pipeline.extract(cells())
    pseudo_translate(units)
    back = pipeline.import_json(pipeline.export_json(units))
    results = pipeline.merge(back)
    by_id = {r.unit_id: r.text for r in results}
    assert by_id["Sheet1::R2CA"].startswith("<p>[Ĝö ţö <a href=\"/x\" title='t'>ţĥé þåĝé</a>!")
    assert "{user}" in by_id["UI%20strings::R1CA"] and "%d" in by_id["UI%20strings::R1CA"]
    assert by_id["Sheet1::R4CA"] == "<br/>"
    assert [f for f in pipeline.validate(back) if f.severity == "error"] == []


def test_validate_reports_missing_targets(pipeline) -> None:
    units = pipeline.extract(cells()[:1])
    assert [f.code for f in pipeline.validate(units)] == ["missing-target", "missing-target"]


def test_context_patterns_replace_defaults(make_cell) -> None:
    settings = Settings(context_inline_codes=(("Legal*", (r"§\s?\d+",)),))
    pipeline = CellPipeline(settings, progress=NullProgress())
    legal = pipeline.extract_unit(make_cell("See § 12 and {0}.", sheet="Legal terms"))
    other = pipeline.extract_unit(make_cell("See § 12 and {0}.", sheet="Other"))
    assert list(legal.protected[legal.segments[0].seg_id].values()) == ["§ 12"]
    assert list(other.protected[other.segments[0].seg_id].values()) == ["{0}"]


def test_invalid_configuration_becomes_findings() -> None:
    srx = b"""<srx><body><languagerules><languagerule languagerulename="r">
        <rule><beforebreak>(</beforebreak></rule></languagerule></languagerules></body></srx>"""
    pipeline = CellPipeline(
        Settings(inline_code_patterns=(r"\{\d+\}", r"[unclosed")),
        rule_set=parse_srx(srx),
        progress=NullProgress(),
    )
    assert sorted(f.code for f in pipeline.config_findings) == ["invalid-pattern", "invalid-segmentation-rule"]
    assert all(f.kind == "configuration" for f in pipeline.config_findings)
    unit = pipeline.extract_unit(CellInput(CellRef("S", 1, 1), "Pay {0}."))
    assert list(unit.protected.values()) == [{"ph1": "{0}"}]


def test_segmentation_can_be_disabled(make_cell) -> None:
    pipeline = CellPipeline(Settings(segment=False), progress=NullProgress())
    unit = pipeline.extract_unit(make_cell("<p>One. Two.</p><p>Three.</p>"))
    assert [s.source for s in unit.segments] == ["One. Two.", "Three."]


def test_locale_selects_rules(make_cell) -> None:
    pipeline = CellPipeline(Settings(source_lang="ja"), progress=NullProgress())
    unit = pipeline.extract_unit(make_cell("晴れ。雨。"))
    assert [s.source for s in unit.segments] == ["晴れ。", "雨。"]


def test_merge_failure_does_not_abort_siblings(pipeline, monkeypatch) -> None:
    units = pipeline.extract(cells()[:2])

    def boom(unit, fallback):
        if unit.unit_id == "Sheet1::R1CA":
            raise RuntimeError("boom")
        return reassemble(unit, fallback)

    monkeypatch.setattr("sheetl10n.pipeline.reassemble", boom)
    first, second = pipeline.merge(units)
    assert not first.intact
    assert first.text == "Plain text. Second sentence."
    assert [f.code for f in first.findings] == ["merge-failed"]
    assert second.intact


def test_extract_failure_falls_back_to_plain_text(pipeline, monkeypatch) -> None:
    def boom(markup, inline_tags):
        raise RuntimeError("boom")

    monkeypatch.setattr("sheetl10n.pipeline.decompose", boom)
    (unit,) = pipeline.extract([CellInput(CellRef("S", 1, 1), "Hi <b>x</b>")])
    assert [f.code for f in unit.findings] == ["extract-failed"]
    assert pipeline.merge_unit(unit).text == "Hi <b>x</b>"


def test_console_progress_reports_to_stream() -> None:
    stream = io.StringIO()
    pipeline = CellPipeline(Settings(), progress=ConsoleProgress(stream=stream))
    pipeline.extract(cells())
    out = stream.getvalue()
    assert "Extracting 6 cells" in out
    assert "Extracting 6/6" in out
    assert "Extracted 6 units" in out


def test_icu_leaf_with_sentences_stays_protected(pipeline, make_cell) -> None:
    value = "{n, plural, one {One file. Delete it?} other {# files. Delete them?}}"
    unit = pipeline.extract_unit(make_cell(value))
    (seg,) = unit.segments
    assert unit.protected[seg.seg_id] == {"icu1": "{One file. Delete it?}", "icu2": "{# files. Delete them?}"}
    assert "Delete" not in seg.masked
    assert "plural" in seg.masked and "other" in seg.masked
    seg.target = seg.masked
    assert pipeline.merge_unit(unit).text == value


def test_default_progress_follows_settings() -> None:
    quiet = CellPipeline(Settings())
    assert isinstance(quiet._progress, ConsoleProgress)
    assert not quiet._progress.enabled
    loud = CellPipeline(Settings(progress=True))
    assert loud._progress.enabled
