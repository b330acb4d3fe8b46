from __future__ import annotations
from dataclasses import dataclass, field
from typing import List

import numpy as np
from numpy.typing import NDArray

from decoder import NOP_CELL, Cell, decode_line


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


def split_rows(text: str) -> List[str]:
    """Split source text into grid rows.

    A trailing newline does not open an extra row, and a final line without
    one is kept. Carriage returns before the newline are dropped.
    """
    if text == "":
        return []
    rows = text.split("\n")
    if rows[-1] == "":
        rows.pop()
    return [row.rstrip("\r") for row in rows]


@dataclass(frozen=True)
class Space:
    filename: str
    rows: List[str]
    cells: NDArray[np.object_] = field(repr=False)
    row_lengths: NDArray[np.int64] = field(repr=False)

    @property
    def height(self) -> int:
        return int(self.cells.shape[0])

    @property
    def width(self) -> int:
        return int(self.cells.shape[1])

    @property
    def empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def cell_at(self, x: int, y: int) -> Cell:
        if x < self.row_lengths[y]:
            return self.cells[y, x]
        return NOP_CELL

    def glyph_at(self, x: int, y: int) -> str:
        row = self.rows[y]
        return row[x] if x < len(row) else ""

    def location(self, x: int, y: int) -> SourceLocation:
        return SourceLocation(file=self.filename, line=y + 1, column=x + 1, statement=self.rows[y])


def load_space(text: str, filename: str = "<string>") -> Space:
    rows = split_rows(text)
    height = len(rows)
    width = max((len(row) for row in rows), default=0)

    # Short rows are padded with the shared no-op cell.
    cells = np.full((height, width), NOP_CELL, dtype=object)
    row_lengths = np.zeros(height, dtype=np.int64)
    for y, row in enumerate(rows):
        decoded = decode_line(row)
        row_lengths[y] = len(decoded)
        for x, cell in enumerate(decoded):
            cells[y, x] = cell
    return Space(filename=filename, rows=rows, cells=cells, row_lengths=row_lengths)
