"""Per-cell tile selection with an ordered fallback chain.

Every cell runs through the stages in order until one places a tile:

1. ``PRIMARY``: nearest candidates by colour that are still under their
   usage cap, scored by colour distance, usage and adjacency.
2. ``RESET_RETRY``: every material is at its cap; reset the usage tracker
   and score again.
3. ``UNCONSTRAINED``: the single nearest colour, ignoring usage and
   adjacency.

Selection is deterministic: it depends only on the target colour, the
grid, the usage counts and the material order.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import Counter
from collections.abc import Callable
from typing import NamedTuple

import numpy as np

from tile_mosaic.adjacency import AdjacencyPenaltyCalculator
from tile_mosaic.errors import InternalInvariantViolation, ResourceExhaustion
from tile_mosaic.grid import GridPosition, is_complete, iter_positions, new_grid
from tile_mosaic.spatial_index import SpatialIndex
from tile_mosaic.usage import UsageTracker

logger = logging.getLogger(__name__)


class SelectionStage(enum.Enum):
    PRIMARY = "primary"
    RESET_RETRY = "reset_retry"
    UNCONSTRAINED = "unconstrained"


class Selection(NamedTuple):
    index: int
    stage: SelectionStage
    score: float


StageFn = Callable[[np.ndarray, GridPosition, np.ndarray], "Selection | None"]


class TileSelector:
    """Fills grid cells one at a time, mutating the grid and the usage tracker."""

    def __init__(
        self,
        index: SpatialIndex,
        usage: UsageTracker,
        adjacency: AdjacencyPenaltyCalculator,
        candidate_count: int = 50,
        usage_weight: float = 0.3,
    ) -> None:
        self.index = index
        self.usage = usage
        self.adjacency = adjacency
        self.candidate_count = max(1, candidate_count)
        self.usage_weight = usage_weight
        self.stats: Counter[SelectionStage] = Counter()
        self.chain: tuple[tuple[SelectionStage, StageFn], ...] = (
            (SelectionStage.PRIMARY, self.select_primary),
            (SelectionStage.RESET_RETRY, self.select_after_reset),
            (SelectionStage.UNCONSTRAINED, self.select_unconstrained),
        )

    def usage_penalty(self, index: int) -> float:
        return self.usage_weight * self.usage.usage_ratio(index)

    def score(self, index: int, distance: float, pos: GridPosition, grid: np.ndarray) -> float:
        """``distance * (1 + usage penalty) * (1 + weighted adjacency penalty)``."""
        return (
            distance
            * (1.0 + self.usage_penalty(index))
            * (1.0 + self.adjacency.penalty(index, pos, grid))
        )

    def _best_usable(
        self, target: np.ndarray, pos: GridPosition, grid: np.ndarray,
    ) -> tuple[int, float] | None:
        # Widen k until some candidate is under its cap or every material was seen.
        total = len(self.index)
        k = min(self.candidate_count, total)
        seen = 0
        while k > seen:
            distances, indices = self.index.query_with_distances(target, k)
            best: tuple[int, float] | None = None
            for distance, idx in zip(distances[seen:], indices[seen:], strict=True):
                idx = int(idx)
                if not self.usage.can_use(idx):
                    continue
                s = self.score(idx, float(distance), pos, grid)
                if best is None or s < best[1]:
                    best = (idx, s)
            if best is not None:
                return best
            seen = k
            k = min(k * 2, total)
        return None

    def _place(
        self,
        index: int,
        pos: GridPosition,
        grid: np.ndarray,
        stage: SelectionStage,
        score: float,
        mark_used: bool = True,
    ) -> Selection:
        grid[pos.y, pos.x] = index
        if mark_used:
            self.usage.use(index)
        self.stats[stage] += 1
        return Selection(index, stage, score)

    # -- Stages ------------------------------------------------------------

    def select_primary(
        self, target: np.ndarray, pos: GridPosition, grid: np.ndarray,
    ) -> Selection | None:
        best = self._best_usable(target, pos, grid)
        if best is None:
            return None
        return self._place(best[0], pos, grid, SelectionStage.PRIMARY, best[1])

    def select_after_reset(
        self, target: np.ndarray, pos: GridPosition, grid: np.ndarray,
    ) -> Selection | None:
        logger.debug("All candidates at usage cap at (%d, %d); resetting usage", pos.x, pos.y)
        self.usage.reset()
        best = self._best_usable(target, pos, grid)
        if best is None:
            return None
        return self._place(best[0], pos, grid, SelectionStage.RESET_RETRY, best[1])

    def select_unconstrained(
        self, target: np.ndarray, pos: GridPosition, grid: np.ndarray,
    ) -> Selection:
        distances, indices = self.index.query_with_distances(target, 1)
        if len(indices) == 0:
            msg = f"No material available for cell ({pos.x}, {pos.y})"
            raise ResourceExhaustion(msg)
        return self._place(
            int(indices[0]), pos, grid, SelectionStage.UNCONSTRAINED,
            float(distances[0]), mark_used=False,
        )

    # -- Driving -----------------------------------------------------------

    def select(self, target: np.ndarray, pos: GridPosition, grid: np.ndarray) -> Selection:
        """Run the fallback chain for one cell; the first stage that places wins."""
        for _stage, fn in self.chain:
            selection = fn(target, pos, grid)
            if selection is not None:
                return selection
        msg = f"Fallback chain exhausted at ({pos.x}, {pos.y})"
        raise ResourceExhaustion(msg)

    def fill(self, cell_colors: np.ndarray, grid: np.ndarray | None = None) -> np.ndarray:
        """Fill every cell row-major from (rows, cols, 3) Lab target colours.

        Raises:
            ResourceExhaustion: there are no materials at all.
        """
        rows, cols = cell_colors.shape[:2]
        if len(self.index) == 0:
            msg = "Cannot place tiles: the material set is empty"
            raise ResourceExhaustion(msg)
        if grid is None:
            grid = new_grid(cols, rows)

        logger.info("Placing tiles | grid=%dx%d  materials=%d", cols, rows, len(self.index))
        t0 = time.perf_counter()
        for pos in iter_positions(cols, rows):
            self.select(cell_colors[pos.y, pos.x], pos, grid)

        if not is_complete(grid):
            msg = "Placement finished with empty cells"
            raise InternalInvariantViolation(msg)

        logger.info(
            "Placement done | primary=%d  reset_retry=%d  unconstrained=%d  resets=%d  (%.2f s)",
            self.stats[SelectionStage.PRIMARY],
            self.stats[SelectionStage.RESET_RETRY],
            self.stats[SelectionStage.UNCONSTRAINED],
            self.usage.reset_count,
            time.perf_counter() - t0,
        )
        return grid
