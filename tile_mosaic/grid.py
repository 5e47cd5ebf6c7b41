"""Grid assignment helpers.

A grid assignment is a ``(height, width)`` int array of material indices;
``EMPTY`` marks a cell that has not been placed yet. Adjacency is
4-connected.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import NamedTuple

import numpy as np

EMPTY = -1


class GridPosition(NamedTuple):
    x: int
    y: int


def new_grid(width: int, height: int) -> np.ndarray:
    return np.full((height, width), EMPTY, dtype=np.int64)


def adjacent_positions(pos: GridPosition, width: int, height: int) -> list[GridPosition]:
    """In-bounds neighbours of *pos*: up, down, left, right."""
    x, y = pos
    adjacent = []
    if y > 0:
        adjacent.append(GridPosition(x, y - 1))
    if y < height - 1:
        adjacent.append(GridPosition(x, y + 1))
    if x > 0:
        adjacent.append(GridPosition(x - 1, y))
    if x < width - 1:
        adjacent.append(GridPosition(x + 1, y))
    return adjacent


def iter_positions(width: int, height: int) -> Iterator[GridPosition]:
    """Row-major walk over every cell."""
    for y in range(height):
        for x in range(width):
            yield GridPosition(x, y)


def is_complete(grid: np.ndarray) -> bool:
    return bool(np.all(grid != EMPTY))


def usage_counts(grid: np.ndarray, material_count: int) -> np.ndarray:
    """How many cells hold each material index."""
    placed = grid[grid != EMPTY]
    return np.bincount(placed, minlength=material_count)
