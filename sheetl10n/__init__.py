from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sheetl10n.ir import Decomposition, MergeResult, TranslatableUnit


def decompose(markup: str) -> "Decomposition":
    # Lazy imports keep `import sheetl10n` cheap.
    from sheetl10n.decompose import decompose as _decompose

    return _decompose(markup)


def reassemble(unit: "TranslatableUnit") -> "MergeResult":
    from sheetl10n.reassemble import reassemble as _reassemble

    return _reassemble(unit)

__all__ = ["decompose", "reassemble"]
