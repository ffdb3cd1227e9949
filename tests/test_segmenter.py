from __future__ import annotations

import time

import pytest

from sheetl10n.errors import RuleSetError
from sheetl10n.segmenter import RuleSet, builtin_rules, load_srx, parse_srx, segment, split_segments
from sheetl10n.sentinels import BOUNDARY, span_close, span_open


SRX = b"""<?xml version="1.0" encoding="UTF-8"?>
<srx xmlns="http://www.lisa.org/srx20" version="2.0">
  <header segmentsubflows="yes" cascade="no"/>
  <body>
    <languagerules>
      <languagerule languagerulename="German">
        <rule break="no"><beforebreak>\\bca\\.</beforebreak><afterbreak>\\s</afterbreak></rule>
        <rule break="yes"><beforebreak>[.?!]+</beforebreak><afterbreak>\\s</afterbreak></rule>
      </languagerule>
      <languagerule languagerulename="Broken">
        <rule break="yes"><beforebreak>([</beforebreak></rule>
      </languagerule>
    </languagerules>
    <maprules>
      <languagemap languagepattern="de.*" languagerulename="German"/>
      <languagemap languagepattern="xx.*" languagerulename="Missing"/>
    </maprules>
  </body>
</srx>
"""


def test_two_sentences_are_split_deterministically() -> None:
    text = "Hello world. How are you?"
    first = segment(text, "en")
    assert first == ["Hello world.", "How are you?"]
    assert segment(text, "en") == first


def test_offsets_point_into_the_source() -> None:
    text = "A. B. C."
    spans = split_segments(text, builtin_rules("en"))
    assert spans == [(0, 2), (3, 5), (6, 8)]
    assert [text[s:e] for s, e in spans] == ["A.", "B.", "C."]


@pytest.mark.parametrize(
    "text",
    ["Talk to Dr. Smith today.", "Pi is 3.14 roughly.", "Use e.g. this one."],
)
def test_no_break_exceptions(text: str) -> None:
    assert segment(text, "en") == [text]


def test_whitespace_is_trimmed_and_empty_segments_dropped() -> None:
    assert segment("  One.   Two.  ", "en") == ["One.", "Two."]
    assert split_segments("   ", builtin_rules()) == [(0, 3)]


def test_run_boundary_always_breaks() -> None:
    text = f"First part{BOUNDARY}second part"
    assert segment(text, "en") == ["First part", "second part"]
    assert split_segments(text, ()) == [(0, 10), (10 + len(BOUNDARY), len(text))]


def test_breaks_inside_open_span_are_suppressed() -> None:
    text = f"{span_open(1)}One. Two.{span_close(1)} Three."
    assert segment(text, "en") == [f"{span_open(1)}One. Two.{span_close(1)}", "Three."]


def test_closing_span_stays_with_its_sentence() -> None:
    text = f"Go {span_open(1)}now.{span_close(1)} Then stop."
    assert segment(text, "en") == [f"Go {span_open(1)}now.{span_close(1)}", "Then stop."]


def test_cjk_rules() -> None:
    assert segment("今日は晴れ。明日は雨。", "ja-JP") == ["今日は晴れ。", "明日は雨。"]
    assert segment("今日は晴れ。明日は雨。", "en") == ["今日は晴れ。明日は雨。"]


def test_srx_rules_resolve_by_language_pattern() -> None:
    rule_set = parse_srx(SRX)
    assert set(rule_set.rules) == {"German", "Broken"}
    assert rule_set.rules["Broken"] == ()
    assert len(rule_set.problems) == 1
    assert segment("Das kostet ca. fünf Euro. Danke.", "de-DE", rule_set) == [
        "Das kostet ca. fünf Euro.",
        "Danke.",
    ]
    # Case-insensitive full match on the locale.
    assert rule_set.rules_for("DE") == rule_set.rules["German"]


def test_unresolvable_locale_falls_back_to_builtin_rules() -> None:
    rule_set = parse_srx(SRX)
    assert rule_set.rules_for("xx-YY") == builtin_rules("xx-YY")
    assert rule_set.rules_for("fr") == builtin_rules("fr")
    assert RuleSet().rules_for(None) == builtin_rules()


def test_unreadable_rule_files_raise(tmp_path) -> None:
    with pytest.raises(RuleSetError):
        parse_srx(b"<srx><unclosed></srx>")
    with pytest.raises(RuleSetError):
        load_srx(tmp_path / "missing.srx")
    path = tmp_path / "rules.srx"
    path.write_bytes(SRX)
    assert "German" in load_srx(path).rules


def test_icu_block_is_never_split() -> None:
    icu = "{n, plural, one {One file. Delete it?} other {# files. Delete them?}}"
    assert segment(icu, "en") == [icu]
    assert segment(f"{icu} Careful. Done.", "en") == [f"{icu} Careful.", "Done."]


def test_long_cell_segments_in_linear_time() -> None:
    text = "word " * 6000 + "End. " + "Next sentence here. " * 500
    started = time.perf_counter()
    spans = split_segments(text, builtin_rules("en"))
    assert time.perf_counter() - started < 5
    assert len(spans) == 501
    assert text[spans[0][0] : spans[0][1]].endswith("word End.")
