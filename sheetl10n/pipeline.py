from __future__ import annotations

import fnmatch
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence, TypeVar

from sheetl10n.cellref import make_unit_id
from sheetl10n.codec import InlineCodec, codec_for
from sheetl10n.decompose import decompose
from sheetl10n.exchange_json import build_json, parse_json
from sheetl10n.freezer import TokenNumbering, compile_patterns, freeze_text
from sheetl10n.ir import CellInput, ContentSlot, Finding, MergeResult, Segment, TranslatableUnit
from sheetl10n.progress import ConsoleProgress, Progress
from sheetl10n.quality import validate as validate_units
from sheetl10n.reassemble import reassemble
from sheetl10n.segmenter import RuleSet, SegmentRule, load_srx, split_segments
from sheetl10n.sentinels import strip_sentinels
from sheetl10n.settings import Settings
from sheetl10n.xliff import XliffDocument, build_xliff, parse_xliff


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class CellPipeline:
    settings: Settings = field(default_factory=Settings)
    rule_set: RuleSet | None = None
    progress: Progress | None = None

    def __post_init__(self) -> None:
        self._progress: Progress = (
            self.progress if self.progress is not None else ConsoleProgress(enabled=self.settings.progress)
        )

        self.codec: InlineCodec = codec_for(self.settings.dialect)
        self.config_findings: list[Finding] = []

        self._default_patterns = self._compile(self.settings.inline_code_patterns)
        self._context_patterns: list[tuple[str, tuple[re.Pattern[str], ...]]] = [
            (glob, self._compile(sources)) for glob, sources in self.settings.context_inline_codes
        ]

        if self.rule_set is None:
            self.rule_set = load_srx(self.settings.srx_path) if self.settings.srx_path else RuleSet()
        for problem in self.rule_set.problems:
            self.config_findings.append(Finding("configuration", "invalid-segmentation-rule", problem))
        self._rules: tuple[SegmentRule, ...] = (
            self.rule_set.rules_for(self.settings.source_lang) if self.settings.segment else ()
        )

    def _compile(self, sources: Iterable[str]) -> tuple[re.Pattern[str], ...]:
        compiled, rejected = compile_patterns(sources)
        for source, error in rejected:
            self.config_findings.append(
                Finding("configuration", "invalid-pattern", f"skipped inline-code pattern {source!r}: {error}")
            )
        return compiled

    def patterns_for(self, sheet: str) -> tuple[re.Pattern[str], ...]:
        for glob, patterns in self._context_patterns:
            if fnmatch.fnmatchcase(sheet, glob):
                return patterns
        return self._default_patterns

    def _map(self, label: str, fn: Callable[[T], R], items: Sequence[T], workers: int | None) -> list[R]:
        workers = workers or self.settings.workers
        total = len(items)
        out: list[R] = []
        if workers <= 1 or total <= 1:
            for i, item in enumerate(items, start=1):
                out.append(fn(item))
                self._progress.progress(label, i, total)
            return out
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for i, result in enumerate(pool.map(fn, items), start=1):
                out.append(result)
                self._progress.progress(label, i, total)
        return out

    # Extraction

    def extract_unit(self, cell: CellInput) -> TranslatableUnit:
        unit_id = make_unit_id(cell.ref.sheet, cell.ref.row, cell.ref.col)
        decomposition = decompose(cell.value, self.settings.inline_tags)
        findings: list[Finding] = []
        if decomposition.malformed:
            findings.append(
                Finding(
                    "structural",
                    "malformed-markup",
                    f"treated as plain text: {decomposition.reason}",
                    unit_id=unit_id,
                )
            )

        flat = decomposition.flat_text
        patterns = self.patterns_for(cell.ref.sheet)
        segments: list[Segment] = []
        protected: dict[str, dict[str, str]] = {}
        # Token ids must stay unique within the unit on the wire.
        numbering = TokenNumbering()
        if strip_sentinels(flat).strip():
            for n, (start, end) in enumerate(split_segments(flat, self._rules), start=1):
                seg_id = f"{unit_id}_s{n}"
                source = flat[start:end]
                frozen = freeze_text(source, patterns, numbering=numbering)
                if frozen.nt_map:
                    protected[seg_id] = frozen.nt_map
                segments.append(Segment(seg_id, source, start, end - start, masked=frozen.text))

        return TranslatableUnit(
            unit_id=unit_id,
            cell=cell.ref,
            source_text=flat,
            skeleton=decomposition.skeleton,
            spans=decomposition.spans,
            segments=segments,
            protected=protected,
            metadata=dict(cell.metadata),
            findings=findings,
        )

    def _extract_safe(self, cell: CellInput) -> TranslatableUnit:
        try:
            return self.extract_unit(cell)
        except Exception as exc:  # noqa: BLE001
            unit_id = make_unit_id(cell.ref.sheet, cell.ref.row, cell.ref.col)
            logger.warning("Extraction failed for %s, exporting it as plain text: %s", unit_id, exc)
            segments = [Segment(f"{unit_id}_s1", cell.value, 0, len(cell.value))] if cell.value.strip() else []
            return TranslatableUnit(
                unit_id=unit_id,
                cell=cell.ref,
                source_text=cell.value,
                skeleton=(ContentSlot(0),),
                spans={},
                segments=segments,
                metadata=dict(cell.metadata),
                findings=[Finding("structural", "extract-failed", str(exc), unit_id=unit_id, severity="error")],
            )

    def extract(self, cells: Iterable[CellInput], workers: int | None = None) -> list[TranslatableUnit]:
        items = list(cells)
        self._progress.info(f"Extracting {len(items)} cells")
        units = self._map("Extracting", self._extract_safe, items, workers)
        segments = sum(len(u.segments) for u in units)
        self._progress.info(f"Extracted {len(units)} units, {segments} segments")
        return units

    # Interchange

    def export_xliff(self, units: Iterable[TranslatableUnit], *, original: str = "workbook") -> bytes:
        return build_xliff(
            units,
            self.codec,
            source_lang=self.settings.source_lang,
            target_lang=self.settings.target_lang,
            original=original,
        )

    def import_xliff(self, data: bytes, *, name: str = "<xliff>") -> XliffDocument:
        return parse_xliff(data, name=name)

    def export_json(self, units: Iterable[TranslatableUnit]) -> str:
        return build_json(
            units,
            self.codec,
            source_lang=self.settings.source_lang,
            target_lang=self.settings.target_lang,
        )

    def import_json(self, raw: str | bytes, *, name: str = "<json>") -> list[TranslatableUnit]:
        _, units = parse_json(raw, name=name)
        return units

    # Merge

    def merge_unit(self, unit: TranslatableUnit) -> MergeResult:
        try:
            result = reassemble(unit, self.settings.merge_fallback)  # type: ignore[arg-type]
        except Exception as exc:  # noqa: BLE001
            logger.warning("Reassembly failed for %s, writing plain text: %s", unit.unit_id, exc)
            return MergeResult(
                unit_id=unit.unit_id,
                cell=unit.cell,
                text=strip_sentinels(unit.source_text),
                intact=False,
                findings=(
                    Finding("structural", "merge-failed", str(exc), unit_id=unit.unit_id, severity="error"),
                ),
            )
        if result.findings:
            logger.debug("Unit %s merged with %d findings", unit.unit_id, len(result.findings))
        return result

    def merge(self, units: Iterable[TranslatableUnit], workers: int | None = None) -> list[MergeResult]:
        items = list(units)
        results = self._map("Merging", self.merge_unit, items, workers)
        broken = sum(1 for r in results if not r.intact)
        self._progress.info(f"Merged {len(results)} units ({broken} not intact)")
        return results

    def validate(self, units: Iterable[TranslatableUnit]) -> list[Finding]:
        return validate_units(units, length_factor=self.settings.length_factor)
