"""Map the ordered channel list onto the dashboard grid."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .pipeline import VisibleChannel

GRID_COLUMNS = 3


@dataclass(frozen=True, slots=True)
class GridCell:
    row: int
    column: int
    channel: Optional[VisibleChannel] = None

    @property
    def is_add_cell(self) -> bool:
        return self.channel is None


@dataclass(frozen=True, slots=True)
class GridLayout:
    cells: tuple[GridCell, ...]
    rows: int
    columns: int = GRID_COLUMNS

    @property
    def channel_cells(self) -> tuple[GridCell, ...]:
        return tuple(cell for cell in self.cells if not cell.is_add_cell)

    @property
    def add_cell(self) -> GridCell:
        return self.cells[-1]


def layout_grid(channels: Sequence[VisibleChannel], columns: int = GRID_COLUMNS) -> GridLayout:
    """Place each channel at ``(index // columns, index % columns)``.

    One trailing cell is always reserved for the "add channel" tile, so the
    row count is ``ceil((len(channels) + 1) / columns)``.
    """

    if columns <= 0:
        raise ValueError("columns must be positive")
    cells = [
        GridCell(index // columns, index % columns, channel)
        for index, channel in enumerate(channels)
    ]
    count = len(channels)
    cells.append(GridCell(count // columns, count % columns))
    rows = -(-(count + 1) // columns)
    return GridLayout(cells=tuple(cells), rows=rows, columns=columns)


__all__ = ["GRID_COLUMNS", "GridCell", "GridLayout", "layout_grid"]
