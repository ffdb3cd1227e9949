from __future__ import annotations

import re
from urllib.parse import quote, unquote


# Characters encodeURIComponent leaves alone, beyond quote()'s own safe set.
_ID_SAFE = "!*'()"
_UNIT_ID_RE = re.compile(r"^(?P<sheet>.*)::R(?P<row>\d+)C(?P<col>[A-Z]+)$")


def col_to_letter(col: int) -> str:
    if col < 1:
        raise ValueError(f"column index must be >= 1, got {col}")
    letters = ""
    n = col
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def letter_to_col(letters: str) -> int:
    letters = letters.strip().upper()
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"invalid column letters: {letters!r}")
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - 64)
    return n


def make_unit_id(sheet: str, row: int, col: int) -> str:
    return f"{quote(sheet, safe=_ID_SAFE)}::R{row}C{col_to_letter(col)}"


def parse_unit_id(unit_id: str) -> tuple[str, int, int] | None:
    m = _UNIT_ID_RE.match(unit_id)
    if not m:
        return None
    return unquote(m.group("sheet")), int(m.group("row")), letter_to_col(m.group("col"))
