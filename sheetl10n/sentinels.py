from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

# In-memory markers carried inside flat text, delimited by private-use code points.

LEFT = "\ue000"
RIGHT = "\ue001"

BOUNDARY = f"{LEFT}bk{RIGHT}"

TokenKind = Literal["text", "io", "ic", "is", "ph", "bk"]


def span_open(span_id: int) -> str:
    return f"{LEFT}io:{span_id}{RIGHT}"


def span_close(span_id: int) -> str:
    return f"{LEFT}ic:{span_id}{RIGHT}"


def span_code(span_id: int) -> str:
    return f"{LEFT}is:{span_id}{RIGHT}"


def ph_token(token: str) -> str:
    return f"{LEFT}ph:{token}{RIGHT}"


ANY_SENTINEL_RE = re.compile(f"{LEFT}(?:(io|ic|is):(\\d+)|(ph):([A-Za-z]+\\d+)|(bk)){RIGHT}")
PH_RE = re.compile(f"{LEFT}ph:([A-Za-z]+\\d+){RIGHT}")
SPAN_RE = re.compile(f"{LEFT}(io|ic|is):(\\d+){RIGHT}")


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    raw: str

    @property
    def span_id(self) -> int:
        return int(self.value)


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    for m in ANY_SENTINEL_RE.finditer(text):
        if m.start() > pos:
            chunk = text[pos : m.start()]
            tokens.append(Token("text", chunk, chunk))
        if m.group(1):
            tokens.append(Token(m.group(1), m.group(2), m.group(0)))  # type: ignore[arg-type]
        elif m.group(3):
            tokens.append(Token("ph", m.group(4), m.group(0)))
        else:
            tokens.append(Token("bk", "", m.group(0)))
        pos = m.end()
    if pos < len(text):
        tokens.append(Token("text", text[pos:], text[pos:]))
    return tokens


def split_plain(text: str) -> list[tuple[bool, str]]:
    """Split into (is_plain, piece) pairs, keeping sentinels as their own pieces."""
    pieces: list[tuple[bool, str]] = []
    pos = 0
    for m in ANY_SENTINEL_RE.finditer(text):
        pieces.append((True, text[pos : m.start()]))
        pieces.append((False, m.group(0)))
        pos = m.end()
    pieces.append((True, text[pos:]))
    return pieces


def strip_sentinels(text: str) -> str:
    return ANY_SENTINEL_RE.sub("", text)


def readable(text: str) -> str:
    """Render markers as `[[io:1]]`-style text, for logs and literal fallbacks."""

    def repl(m: re.Match[str]) -> str:
        inner = m.group(0)[len(LEFT) : -len(RIGHT)]
        return f"[[{inner}]]"

    return ANY_SENTINEL_RE.sub(repl, text)


def pair_markers(tokens: list[Token]) -> set[int]:
    """Indices of span open/close tokens that form properly nested pairs.

    Opens left unclosed and closes without an open are excluded; a close that
    matches an outer open drops the inner opens it crosses.
    """
    keep: set[int] = set()
    stack: list[tuple[int, str]] = []
    for i, tok in enumerate(tokens):
        if tok.kind == "io":
            stack.append((i, tok.value))
        elif tok.kind == "ic":
            for depth in range(len(stack) - 1, -1, -1):
                if stack[depth][1] == tok.value:
                    keep.add(stack[depth][0])
                    keep.add(i)
                    del stack[depth:]
                    break
    return keep
