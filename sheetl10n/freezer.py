from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

from sheetl10n.sentinels import PH_RE, ph_token, readable, split_plain


logger = logging.getLogger(__name__)

DEFAULT_INLINE_CODE_PATTERNS = (
    r"\{\{[^{}]+\}\}",
    r"\$\{[^{}]+\}",
    r"\{\d+\}",
    r"\{[A-Za-z_][\w.]*\}",
    r"%(?:\d+\$)?[-+0#]*\d*(?:\.\d+)?[sdifuxXoeEgGc@%]",
)

_ICU_HEAD_RE = re.compile(r"\{\s*([\w.]+)\s*,\s*(plural|selectordinal|select)\s*,")
_ICU_LEAF_RE = re.compile(r"\{[^{}]*\}")
_ICU_CATEGORY_RE = re.compile(r"(=?[\w-]+)\s*$")


@dataclass
class FreezeResult:
    text: str
    nt_map: dict[str, str] = field(default_factory=dict)


@dataclass
class TokenNumbering:
    """Next free `icu<N>` / `ph<N>` numbers; share one across the segments of a unit."""

    icu: int = 1
    ph: int = 1

    def take(self, kind: str) -> str:
        if kind == "icu":
            self.icu += 1
            return f"icu{self.icu - 1}"
        self.ph += 1
        return f"ph{self.ph - 1}"


def compile_patterns(sources: Iterable[str]) -> tuple[tuple[re.Pattern[str], ...], list[tuple[str, str]]]:
    """Compile inline-code patterns, skipping (and logging) the invalid ones."""
    compiled: list[re.Pattern[str]] = []
    rejected: list[tuple[str, str]] = []
    for source in sources:
        try:
            compiled.append(re.compile(source))
        except re.error as exc:
            logger.warning("Skipping invalid inline-code pattern %r: %s", source, exc)
            rejected.append((source, str(exc)))
    return tuple(compiled), rejected


def _matching_brace(text: str, start: int) -> int | None:
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def find_icu_blocks(text: str) -> list[tuple[int, int]]:
    blocks: list[tuple[int, int]] = []
    pos = 0
    while True:
        m = _ICU_HEAD_RE.search(text, pos)
        if m is None:
            break
        end = _matching_brace(text, m.start())
        if end is None:
            pos = m.end()
            continue
        blocks.append((m.start(), end + 1))
        pos = end + 1
    return blocks


def _top_level_categories(block: str, start: int) -> tuple[str, ...]:
    categories: list[str] = []
    depth = 1
    seg_start = start
    for i in range(start, len(block)):
        ch = block[i]
        if ch == "{":
            if depth == 1:
                m = _ICU_CATEGORY_RE.search(block[seg_start:i])
                if m:
                    categories.append(m.group(1))
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 1:
                seg_start = i + 1
            elif depth == 0:
                break
    return tuple(categories)


def icu_signature(text: str) -> list[tuple[str, str, tuple[str, ...]]]:
    """(argument, keyword, categories) for every ICU plural/select block in text."""
    out: list[tuple[str, str, tuple[str, ...]]] = []
    for start, end in find_icu_blocks(text):
        block = text[start:end]
        head = _ICU_HEAD_RE.match(block)
        if head is None:
            continue
        out.append((head.group(1), head.group(2), _top_level_categories(block, head.end())))
    return out


def _map_plain(text: str, fn: Callable[[str], str]) -> str:
    return "".join(fn(piece) if plain else piece for plain, piece in split_plain(text))


def freeze_text(
    text: str,
    patterns: Iterable[re.Pattern[str]] = (),
    *,
    icu: bool = True,
    numbering: TokenNumbering | None = None,
) -> FreezeResult:
    """Mask ICU leaves, then every inline-code pattern match, as `ph:` tokens.

    ICU leaves get `icu<N>` tokens and pattern matches `ph<N>`, numbered from
    `numbering` when given. Text already masked (any sentinel) is never rescanned.
    """
    nt_map: dict[str, str] = {}
    numbering = numbering if numbering is not None else TokenNumbering()

    def add_token(kind: str, original: str) -> str:
        token = numbering.take(kind)
        nt_map[token] = original
        return ph_token(token)

    def mask_icu(plain: str) -> str:
        pieces: list[str] = []
        pos = 0
        for start, end in find_icu_blocks(plain):
            pieces.append(plain[pos:start])
            pieces.append(_ICU_LEAF_RE.sub(lambda m: add_token("icu", m.group(0)), plain[start:end]))
            pos = end
        pieces.append(plain[pos:])
        return "".join(pieces)

    def mask_pattern(pattern: re.Pattern[str]) -> Callable[[str], str]:
        def repl(m: re.Match[str]) -> str:
            if not m.group(0):
                return ""
            return add_token("ph", m.group(0))

        return lambda plain: pattern.sub(repl, plain)

    if icu:
        text = _map_plain(text, mask_icu)
    for pattern in patterns:
        text = _map_plain(text, mask_pattern(pattern))
    return FreezeResult(text=text, nt_map=nt_map)


def unfreeze_text(text: str, nt_map: dict[str, str]) -> str:
    def repl(m: re.Match[str]) -> str:
        original = nt_map.get(m.group(1))
        return original if original is not None else readable(m.group(0))

    return PH_RE.sub(repl, text)


def tokens_in(text: str) -> list[str]:
    return PH_RE.findall(text)


def _replace_first_plain(text: str, literal: str, replacement: str) -> str:
    pieces = split_plain(text)
    for i, (plain, piece) in enumerate(pieces):
        if plain and literal in piece:
            pieces[i] = (plain, piece.replace(literal, replacement, 1))
            break
    return "".join(piece for _, piece in pieces)


def remask(text: str, nt_map: dict[str, str]) -> str:
    """Put tokens back where a target still carries the raw protected literal."""
    present = set(tokens_in(text))
    for token, literal in sorted(nt_map.items(), key=lambda kv: -len(kv[1])):
        if token in present or not literal:
            continue
        text = _replace_first_plain(text, literal, ph_token(token))
    return text
