from __future__ import annotations

import pytest

from sheetl10n.ir import CellInput, CellRef
from sheetl10n.pipeline import CellPipeline
from sheetl10n.progress import NullProgress
from sheetl10n.settings import Settings


@pytest.fixture
def pipeline() -> CellPipeline:
    return CellPipeline(Settings(), progress=NullProgress())


@pytest.fixture
def make_cell():
    def make(value: str, sheet: str = "Sheet1", row: int = 1, col: int = 1, **metadata: str) -> CellInput:
        return CellInput(CellRef(sheet, row, col), value, metadata)

    return make
