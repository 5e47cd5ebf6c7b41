"""Neighbour-similarity cost of a grid assignment.

Each pair of 4-connected placed cells costs ``w * s(a, b)`` where
``s = 1 / (1 + distance)`` comes from the similarity database and ``w``
is the adjacency weight. Costs are summed, not averaged, so edge and
corner cells simply have fewer terms.
"""

from __future__ import annotations

import numpy as np

from tile_mosaic.errors import ConfigurationError
from tile_mosaic.grid import EMPTY, GridPosition, adjacent_positions
from tile_mosaic.similarity import SimilarityDatabase


class AdjacencyPenaltyCalculator:
    """Penalty for a single placement, total grid cost, and swap deltas."""

    def __init__(self, similarity: np.ndarray, weight: float) -> None:
        if not 0.0 <= weight <= 1.0:
            msg = f"Adjacency weight must be within [0, 1], got {weight}"
            raise ConfigurationError(msg)
        self._sim = np.asarray(similarity, dtype=np.float32)
        self.weight = float(weight)

    @classmethod
    def from_database(cls, db: SimilarityDatabase, weight: float) -> AdjacencyPenaltyCalculator:
        return cls(db.similarity_matrix(), weight)

    @property
    def enabled(self) -> bool:
        return self.weight > 0.0

    def penalty(self, candidate: int, pos: GridPosition, grid: np.ndarray) -> float:
        """Weighted similarity between *candidate* and the placed neighbours of *pos*."""
        if not self.enabled:
            return 0.0
        height, width = grid.shape
        total = 0.0
        for n in adjacent_positions(pos, width, height):
            neighbour = grid[n.y, n.x]
            if neighbour != EMPTY:
                total += float(self._sim[candidate, neighbour])
        return self.weight * total

    def total_cost(self, grid: np.ndarray) -> float:
        """Sum over every adjacent placed pair, each pair counted once."""
        if not self.enabled:
            return 0.0
        total = 0.0
        for a, b in ((grid[:, :-1], grid[:, 1:]), (grid[:-1, :], grid[1:, :])):
            mask = (a != EMPTY) & (b != EMPTY)
            total += float(np.sum(self._sim[a[mask], b[mask]], dtype=np.float64))
        return self.weight * total

    def swap_delta(self, grid: np.ndarray, a: GridPosition, b: GridPosition) -> float:
        """Change in :meth:`total_cost` if the materials at *a* and *b* were swapped.

        Only the neighbourhoods of *a* and *b* are inspected. When the two
        cells are adjacent their shared edge keeps the same pair and cancels.
        Either cell may be empty; an empty cell has no edges.
        """
        if not self.enabled or a == b:
            return 0.0
        m1 = int(grid[a.y, a.x])
        m2 = int(grid[b.y, b.x])
        if m1 == m2:
            return 0.0

        height, width = grid.shape
        delta = 0.0
        for pos, old, new, other in ((a, m1, m2, b), (b, m2, m1, a)):
            for n in adjacent_positions(pos, width, height):
                if n == other:
                    continue
                neighbour = grid[n.y, n.x]
                if neighbour == EMPTY:
                    continue
                if new != EMPTY:
                    delta += float(self._sim[new, neighbour])
                if old != EMPTY:
                    delta -= float(self._sim[old, neighbour])
        return self.weight * delta
