from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from lxml import etree

from sheetl10n.errors import RuleSetError
from sheetl10n.freezer import find_icu_blocks
from sheetl10n.sentinels import ANY_SENTINEL_RE, BOUNDARY, strip_sentinels


logger = logging.getLogger(__name__)

_ABBREVIATIONS = r"(?:Mr|Mrs|Ms|Dr|Prof|Sr|Jr|St|vs|etc|e\.g|i\.e|approx|No)"
_CLOSERS = "\"'”’»)\\]"
_OPENERS = "\"'“‘«(\\["
_UPPER_OR_DIGIT = "A-Z0-9À-ÖØ-ÞΑ-ΩА-Я"
_CJK_LOCALES = ("ja", "zh", "ko")

# Longest before-break context a rule may look at.
LOOKBEHIND = 256


@dataclass(frozen=True)
class SegmentRule:
    breaks: bool
    before: re.Pattern[str] | None
    after: re.Pattern[str] | None

    def matches(self, plain: str, pos: int) -> bool:
        if self.after is not None and self.after.match(plain, pos) is None:
            return False
        if self.before is not None and self.before.search(plain, max(0, pos - LOOKBEHIND), pos) is None:
            return False
        return True


def make_rule(breaks: bool, before: str | None, after: str | None, flags: int = 0) -> SegmentRule:
    """Compile one rule. `before` must end at the candidate position, `after` start there."""
    return SegmentRule(
        breaks=breaks,
        before=re.compile(rf"(?:{before})\Z", flags) if before else None,
        after=re.compile(after, flags) if after else None,
    )


_BASE_RULES = (
    make_rule(False, rf"\b{_ABBREVIATIONS}\.", None),
    make_rule(False, r"\d[.,]", r"\d"),
    make_rule(True, rf"[.!?;]+[{_CLOSERS}]*", rf"\s*[{_OPENERS}]?[{_UPPER_OR_DIGIT}]"),
)
_CJK_RULES = (make_rule(True, "[。！？]+[」』”’）]*", None),)


def builtin_rules(locale: str | None = None) -> tuple[SegmentRule, ...]:
    lang = (locale or "").split("-")[0].split("_")[0].lower()
    if lang in _CJK_LOCALES:
        return _BASE_RULES + _CJK_RULES
    return _BASE_RULES


@dataclass(frozen=True)
class LanguageMap:
    pattern: re.Pattern[str]
    rule_name: str


@dataclass(frozen=True)
class RuleSet:
    """Locale-to-rules mapping, usually loaded from an SRX file."""

    maps: tuple[LanguageMap, ...] = ()
    rules: dict[str, tuple[SegmentRule, ...]] = field(default_factory=dict)
    problems: tuple[str, ...] = ()

    def rules_for(self, locale: str | None) -> tuple[SegmentRule, ...]:
        if locale:
            for language_map in self.maps:
                if language_map.pattern.fullmatch(locale) is None:
                    continue
                found = self.rules.get(language_map.rule_name)
                if found is not None:
                    return found
                logger.warning(
                    "Locale %s maps to unknown rule set %r; using built-in rules",
                    locale,
                    language_map.rule_name,
                )
                break
        return builtin_rules(locale)


def _local(el: etree._Element) -> str:
    return etree.QName(el).localname if isinstance(el.tag, str) else ""


def _child(el: etree._Element, name: str) -> etree._Element | None:
    for child in el:
        if _local(child) == name:
            return child
    return None


def parse_srx(xml_bytes: bytes, *, name: str = "<srx>") -> RuleSet:
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True, recover=False)
        root = etree.fromstring(xml_bytes, parser=parser)
    except Exception as exc:  # noqa: BLE001
        raise RuleSetError(f"Failed to parse segmentation rules {name}: {exc}") from exc

    problems: list[str] = []
    rules: dict[str, tuple[SegmentRule, ...]] = {}
    for language_rule in root.iter():
        if _local(language_rule) != "languagerule":
            continue
        rule_name = language_rule.get("languagerulename") or language_rule.get("name")
        if not rule_name:
            problems.append("languagerule without a name")
            continue
        compiled: list[SegmentRule] = []
        for rule in language_rule:
            if _local(rule) != "rule":
                continue
            before_el = _child(rule, "beforebreak")
            after_el = _child(rule, "afterbreak")
            before = before_el.text if before_el is not None else None
            after = after_el.text if after_el is not None else None
            breaks = (rule.get("break") or "yes").strip().lower() != "no"
            try:
                compiled.append(make_rule(breaks, before, after))
            except re.error as exc:
                msg = f"{rule_name}: skipping rule before={before!r} after={after!r}: {exc}"
                logger.warning("Invalid segmentation rule in %s: %s", name, msg)
                problems.append(msg)
        rules[rule_name] = tuple(compiled)

    maps: list[LanguageMap] = []
    for language_map in root.iter():
        if _local(language_map) != "languagemap":
            continue
        pattern = language_map.get("languagepattern") or ""
        rule_name = language_map.get("languagerulename") or ""
        try:
            maps.append(LanguageMap(re.compile(pattern, re.IGNORECASE), rule_name))
        except re.error as exc:
            msg = f"skipping language pattern {pattern!r}: {exc}"
            logger.warning("Invalid language map in %s: %s", name, msg)
            problems.append(msg)

    return RuleSet(maps=tuple(maps), rules=rules, problems=tuple(problems))


def load_srx(path: str | Path) -> RuleSet:
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise RuleSetError(f"Cannot read segmentation rules {path}: {exc}") from exc
    return parse_srx(data, name=str(path))


def _plain_view(text: str, start: int, end: int) -> tuple[str, list[int]]:
    chars: list[str] = []
    index: list[int] = []
    pos = start
    for m in ANY_SENTINEL_RE.finditer(text, start, end):
        for i in range(pos, m.start()):
            chars.append(text[i])
            index.append(i)
        pos = m.end()
    for i in range(pos, end):
        chars.append(text[i])
        index.append(i)
    return "".join(chars), index


def _span_depth(text: str, start: int, end: int) -> int:
    depth = 0
    for m in ANY_SENTINEL_RE.finditer(text, start, end):
        if m.group(1) == "io":
            depth += 1
        elif m.group(1) == "ic":
            depth -= 1
    return depth


def _skip_closers(text: str, pos: int, end: int) -> int:
    while pos < end:
        m = ANY_SENTINEL_RE.match(text, pos, end)
        if m is None or m.group(1) != "ic":
            break
        pos = m.end()
    return pos


def _inside(blocks: list[tuple[int, int]], starts: list[int], pos: int) -> bool:
    i = bisect.bisect_right(starts, pos) - 1
    return i >= 0 and blocks[i][0] < pos < blocks[i][1]


def _cuts(
    text: str,
    start: int,
    end: int,
    rules: tuple[SegmentRule, ...],
    blocks: list[tuple[int, int]],
) -> list[int]:
    plain, index = _plain_view(text, start, end)
    starts = [block[0] for block in blocks]
    cuts: list[int] = []
    depth = 0
    scanned = start
    for k in range(1, len(plain)):
        decision = next((rule.breaks for rule in rules if rule.matches(plain, k)), False)
        if not decision:
            continue
        cut = _skip_closers(text, index[k - 1] + 1, end)
        if cut > scanned:
            depth += _span_depth(text, scanned, cut)
            scanned = cut
        if depth > 0 or _inside(blocks, starts, cut):
            continue
        if not cuts or cut > cuts[-1]:
            cuts.append(cut)
    return cuts


def _trimmed(text: str, start: int, end: int) -> tuple[int, int] | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if not strip_sentinels(text[start:end]).strip():
        return None
    return start, end


def split_segments(text: str, rules: tuple[SegmentRule, ...]) -> list[tuple[int, int]]:
    """Ordered, trimmed (start, end) offsets of the segments of `text`.

    Run boundaries always split; inside a run the first matching rule decides
    each position and silence means no break. Breaks inside an open inline
    span or an ICU plural/select block are ignored, so segments keep balanced
    span markers and whole ICU blocks.
    """
    blocks = find_icu_blocks(text)
    out: list[tuple[int, int]] = []
    piece_start = 0
    while piece_start <= len(text):
        boundary = text.find(BOUNDARY, piece_start)
        piece_end = len(text) if boundary < 0 else boundary
        prev = piece_start
        for cut in [*_cuts(text, piece_start, piece_end, rules, blocks), piece_end]:
            trimmed = _trimmed(text, prev, cut)
            if trimmed is not None:
                out.append(trimmed)
            prev = cut
        if boundary < 0:
            break
        piece_start = boundary + len(BOUNDARY)
    if not out:
        return [(0, len(text))]
    return out


def segment(text: str, locale: str | None = None, rule_set: RuleSet | None = None) -> list[str]:
    rules = (rule_set or RuleSet()).rules_for(locale)
    return [text[start:end] for start, end in split_segments(text, rules)]
