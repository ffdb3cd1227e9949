from __future__ import annotations

import math
from typing import Iterable

from sheetl10n.freezer import find_icu_blocks, remask
from sheetl10n.ir import TranslatableUnit
from sheetl10n.sentinels import split_plain, strip_sentinels


_ACCENTED = str.maketrans(
    "AaBbCcDdEeFfGgHhIiJjKkLlMmNnOoPpRrSsTtUuWwYyZz",
    "ÅåƁƀÇçĐđÉéƑƒĜĝĤĥÎîĴĵĶķĹĺṀṁÑñÖöÞþŔŕŠšŢţÛûŴŵÝýŽž",
)


def _accent(text: str) -> str:
    return "".join(piece.translate(_ACCENTED) if plain else piece for plain, piece in split_plain(text))


def pseudo_text(text: str, expand: float = 0.3) -> str:
    """Accent letters, pad to the expansion factor and bracket, leaving markers intact.

    ICU plural/select blocks keep their keywords and category names.
    """
    visible = strip_sentinels(text)
    if not visible.strip():
        return text
    pieces: list[str] = []
    pos = 0
    for start, end in find_icu_blocks(text):
        pieces.append(_accent(text[pos:start]))
        pieces.append(text[start:end])
        pos = end
    pieces.append(_accent(text[pos:]))
    pad = "~" * max(0, math.ceil(len(visible) * expand))
    return f"[{''.join(pieces)}{pad}]"


def pseudo_translate(units: Iterable[TranslatableUnit], expand: float = 0.3) -> None:
    for unit in units:
        for seg in unit.segments:
            source = seg.masked if seg.masked is not None else remask(seg.source, unit.protected.get(seg.seg_id, {}))
            seg.target = pseudo_text(source, expand)
