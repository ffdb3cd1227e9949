from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from sheetl10n.decompose import DEFAULT_INLINE_TAGS
from sheetl10n.freezer import DEFAULT_INLINE_CODE_PATTERNS


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except Exception:  # noqa: BLE001
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(str(raw).strip())
    except Exception:  # noqa: BLE001
        return default


def _list_env(name: str, sep: str = ",") -> tuple[str, ...] | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return tuple(item.strip() for item in raw.split(sep) if item.strip())


def _context_env(name: str) -> tuple[tuple[str, tuple[str, ...]], ...]:
    raw = os.getenv(name)
    if not raw:
        return ()
    try:
        data = json.loads(raw)
    except Exception:  # noqa: BLE001
        return ()
    if not isinstance(data, dict):
        return ()
    out: list[tuple[str, tuple[str, ...]]] = []
    for glob, patterns in data.items():
        if isinstance(patterns, str):
            patterns = [patterns]
        if isinstance(patterns, list):
            out.append((str(glob), tuple(str(p) for p in patterns)))
    return tuple(out)


@dataclass(frozen=True)
class Settings:
    dialect: str = "2.1"
    merge_fallback: str = "source"
    source_lang: str = "en"
    target_lang: str | None = None
    segment: bool = True
    srx_path: Path | None = None
    inline_tags: frozenset[str] = DEFAULT_INLINE_TAGS
    inline_code_patterns: tuple[str, ...] = DEFAULT_INLINE_CODE_PATTERNS
    # (sheet-name glob, patterns); first match replaces the defaults.
    context_inline_codes: tuple[tuple[str, tuple[str, ...]], ...] = field(default_factory=tuple)
    length_factor: float = 2.0
    workers: int = 1
    progress: bool = False

    @staticmethod
    def from_env() -> "Settings":
        dialect = (os.getenv("SHEETL10N_DIALECT") or "2.1").strip().lower()
        if dialect not in {"2.1", "1.2"}:
            dialect = "2.1"

        merge_fallback = (os.getenv("SHEETL10N_MERGE_FALLBACK") or "source").strip().lower()
        if merge_fallback not in {"source", "empty"}:
            merge_fallback = "source"

        source_lang = (os.getenv("SHEETL10N_SOURCE_LANG") or "en").strip() or "en"
        target_lang = (os.getenv("SHEETL10N_TARGET_LANG") or "").strip() or None

        srx_env = (os.getenv("SHEETL10N_SRX") or "").strip()
        srx_path = Path(srx_env) if srx_env else None

        tags = _list_env("SHEETL10N_INLINE_TAGS")
        inline_tags = frozenset(t.lower() for t in tags) if tags else DEFAULT_INLINE_TAGS
        extra = _list_env("SHEETL10N_EXTRA_INLINE_TAGS")
        if extra:
            inline_tags = inline_tags | {t.lower() for t in extra}

        patterns = _list_env("SHEETL10N_INLINE_CODES", "\n")
        inline_code_patterns = patterns if patterns is not None else DEFAULT_INLINE_CODE_PATTERNS

        length_factor = _float_env("SHEETL10N_LENGTH_FACTOR", 2.0)
        if length_factor <= 0:
            length_factor = 2.0

        workers = _int_env("SHEETL10N_WORKERS", 1)
        if workers < 1:
            workers = 1

        return Settings(
            dialect=dialect,
            merge_fallback=merge_fallback,
            source_lang=source_lang,
            target_lang=target_lang,
            segment=_bool_env("SHEETL10N_SEGMENT", True),
            srx_path=srx_path,
            inline_tags=inline_tags,
            inline_code_patterns=inline_code_patterns,
            context_inline_codes=_context_env("SHEETL10N_CONTEXT_INLINE_CODES"),
            length_factor=length_factor,
            workers=workers,
            progress=_bool_env("SHEETL10N_PROGRESS", False),
        )
