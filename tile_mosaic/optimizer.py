"""Simulated annealing over a placed grid to lower the adjacency cost."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, replace

import numpy as np

from tile_mosaic.adjacency import AdjacencyPenaltyCalculator
from tile_mosaic.errors import ConfigurationError, InternalInvariantViolation
from tile_mosaic.grid import EMPTY, GridPosition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationConfig:
    """Parameters of one optimization run.

    Attributes:
        max_iterations:      Number of swap proposals; 0 is a no-op.
        initial_temperature: Starting temperature T0.
        temperature_decay:   T <- T * decay after every proposal.
        report_interval:     Log progress every N iterations.
        seed:                Random seed (None = non-deterministic).
        greedy:              Accept only strictly improving swaps.
        verify_interval:     Recompute the full cost every N iterations and
                             compare with the running cost (0 = never).
    """

    max_iterations: int = 1000
    initial_temperature: float = 1.0
    temperature_decay: float = 0.9995
    report_interval: int = 100
    seed: int | None = None
    greedy: bool = False
    verify_interval: int = 0

    def validate(self) -> OptimizationConfig:
        if self.max_iterations < 0:
            msg = f"max_iterations must be >= 0, got {self.max_iterations}"
            raise ConfigurationError(msg)
        if self.initial_temperature <= 0:
            msg = f"initial_temperature must be > 0, got {self.initial_temperature}"
            raise ConfigurationError(msg)
        if not 0.0 < self.temperature_decay < 1.0:
            msg = f"temperature_decay must be within (0, 1), got {self.temperature_decay}"
            raise ConfigurationError(msg)
        if self.report_interval < 1:
            msg = f"report_interval must be >= 1, got {self.report_interval}"
            raise ConfigurationError(msg)
        if self.verify_interval < 0:
            msg = f"verify_interval must be >= 0, got {self.verify_interval}"
            raise ConfigurationError(msg)
        return self


@dataclass
class OptimizationState:
    """Annealing walk state. ``current`` may be worse than ``best``."""

    current: np.ndarray
    current_cost: float
    best: np.ndarray
    best_cost: float
    temperature: float


@dataclass(frozen=True)
class OptimizationResult:
    initial_cost: float = 0.0
    final_cost: float = 0.0  # cost where the walk ended
    best_cost: float = 0.0  # cost of the grid handed back
    improved_count: int = 0
    accepted_count: int = 0
    iterations: int = 0

    def improvement_percentage(self) -> float:
        if self.initial_cost > 0.0:
            return (self.initial_cost - self.best_cost) / self.initial_cost * 100.0
        return 0.0


class PlacementOptimizer:
    """Swap-based local search minimising :meth:`AdjacencyPenaltyCalculator.total_cost`."""

    def __init__(
        self,
        calculator: AdjacencyPenaltyCalculator,
        config: OptimizationConfig | None = None,
    ) -> None:
        self.calculator = calculator
        self.config = (config or OptimizationConfig()).validate()

    def optimize_greedy(self, grid: np.ndarray, max_iterations: int | None = None) -> OptimizationResult:
        """Hill climbing: same loop, only strictly improving swaps are taken."""
        config = replace(
            self.config,
            greedy=True,
            max_iterations=self.config.max_iterations if max_iterations is None else max_iterations,
        )
        return PlacementOptimizer(self.calculator, config).optimize(grid)

    def optimize(self, grid: np.ndarray) -> OptimizationResult:
        """Improve *grid* in place; on return it holds the best assignment seen.

        Args:
            grid: (rows, cols) material indices.

        Returns:
            Costs and counters of the run.
        """
        cfg = self.config
        calc = self.calculator
        initial_cost = calc.total_cost(grid)

        placed = np.flatnonzero(grid.ravel() != EMPTY)
        m = len(placed)
        if cfg.max_iterations == 0 or m < 2:
            logger.info("Optimization skipped | iterations=%d  placed=%d", cfg.max_iterations, m)
            return OptimizationResult(initial_cost, initial_cost, initial_cost, 0, 0, 0)

        width = grid.shape[1]
        rng = np.random.default_rng(cfg.seed)
        state = OptimizationState(
            current=grid,
            current_cost=initial_cost,
            best=grid.copy(),
            best_cost=initial_cost,
            temperature=cfg.initial_temperature,
        )
        mode = "greedy" if cfg.greedy else "SA"

        logger.info(
            "%s start  | iterations=%s  cost=%.4f  temp=%.4f  decay=%.6f",
            mode, f"{cfg.max_iterations:,}", initial_cost,
            cfg.initial_temperature, cfg.temperature_decay,
        )

        accepted = 0
        improved = 0
        t0 = time.perf_counter()

        for it in range(cfg.max_iterations):
            i = int(rng.integers(m))
            j = int(rng.integers(m - 1))
            if j >= i:
                j += 1
            ay, ax = divmod(int(placed[i]), width)
            by, bx = divmod(int(placed[j]), width)
            a = GridPosition(ax, ay)
            b = GridPosition(bx, by)

            delta = calc.swap_delta(state.current, a, b)

            if cfg.greedy:
                accept = delta < 0
            else:
                accept = delta <= 0 or rng.random() < math.exp(
                    -delta / max(state.temperature, 1e-12)
                )

            if accept:
                cur = state.current
                cur[ay, ax], cur[by, bx] = cur[by, bx], cur[ay, ax]
                state.current_cost += delta
                accepted += 1
                if state.current_cost < state.best_cost:
                    np.copyto(state.best, cur)
                    state.best_cost = state.current_cost
                    improved += 1

            state.temperature *= cfg.temperature_decay

            if cfg.verify_interval and (it + 1) % cfg.verify_interval == 0:
                self._verify(state, it + 1)

            if (it + 1) % cfg.report_interval == 0:
                logger.debug(
                    "  %s %5.1f%%  cost=%.4f  best=%.4f  temp=%.2e  accepted=%s",
                    mode, (it + 1) / cfg.max_iterations * 100, state.current_cost,
                    state.best_cost, state.temperature, f"{accepted:,}",
                )

        final_cost = state.current_cost
        np.copyto(grid, state.best)

        logger.info(
            "%s done   | initial=%.4f  best=%.4f  final=%.4f  accepted=%s/%s  (%.2f s)",
            mode, initial_cost, state.best_cost, final_cost,
            f"{accepted:,}", f"{cfg.max_iterations:,}", time.perf_counter() - t0,
        )
        return OptimizationResult(
            initial_cost=initial_cost,
            final_cost=final_cost,
            best_cost=state.best_cost,
            improved_count=improved,
            accepted_count=accepted,
            iterations=cfg.max_iterations,
        )

    def _verify(self, state: OptimizationState, iteration: int) -> None:
        actual = self.calculator.total_cost(state.current)
        if abs(actual - state.current_cost) > 1e-6 * max(1.0, abs(actual)):
            msg = (
                f"Running cost {state.current_cost:.9f} diverged from recomputed "
                f"cost {actual:.9f} at iteration {iteration}"
            )
            raise InternalInvariantViolation(msg)
