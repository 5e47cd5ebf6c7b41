"""Centralised configuration via a frozen dataclass."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path

from tile_mosaic.errors import ConfigurationError

AUTO = "auto"


@dataclass(frozen=True)
class MosaicConfig:
    """All tuneable parameters for a mosaic run.

    Attributes:
        grid_width:        Number of tiles horizontally.
        grid_height:       Number of tiles vertically.
        max_materials:     Upper bound on the number of materials loaded.
        max_usage_per_image: Usage cap per material, or ``"auto"`` for
                           ``ceil(cells / materials)``.
        aspect_tolerance:  Accepted |material aspect - cell aspect|.
        adjacency_penalty_weight: Neighbour-similarity weight in [0, 1]; 0 disables.
        usage_penalty_weight: Soft penalty for already-used materials.
        candidate_count:   Nearest neighbours inspected per cell.
        enable_optimization: Run simulated annealing after placement.
        optimization_iterations: Iteration count for the optimizer.
        initial_temperature: Starting annealing temperature.
        temperature_decay: Multiplicative cooling factor per iteration.
        greedy_optimization: Only accept improving swaps.
        color_adjustment_strength: HSV shift strength in [0, 1]; 0 disables.
        similarity_db:     Path of the persisted similarity cache.
        rebuild_similarity_db: Ignore any existing cache.
        seed:              Random seed for the optimizer (None = non-deterministic).
        workers:           Threads used to load materials (None = default).
    """

    # Grid
    grid_width: int = 50
    grid_height: int = 28

    # Materials
    max_materials: int = 500
    max_usage_per_image: int | str = 3  # int or "auto"
    aspect_tolerance: float = 0.1

    # Selection
    adjacency_penalty_weight: float = 0.3
    usage_penalty_weight: float = 0.3
    candidate_count: int = 50

    # Optimization
    enable_optimization: bool = True
    optimization_iterations: int = 1000
    initial_temperature: float = 1.0
    temperature_decay: float = 0.9995
    greedy_optimization: bool = False

    # Compositing
    color_adjustment_strength: float = 0.3

    # Similarity cache (None = keep in memory only)
    similarity_db: Path | None = field(default_factory=lambda: Path("similarity_db.npz"))
    rebuild_similarity_db: bool = False

    seed: int | None = None
    workers: int | None = None

    SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
        {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}
    )

    @property
    def total_cells(self) -> int:
        return self.grid_width * self.grid_height

    def validate(self) -> MosaicConfig:
        """Raise :class:`ConfigurationError` on the first out-of-range field."""
        if self.grid_width < 1 or self.grid_height < 1:
            msg = f"Grid must be at least 1x1, got {self.grid_width}x{self.grid_height}"
            raise ConfigurationError(msg)
        if self.max_materials < 1:
            msg = f"max_materials must be >= 1, got {self.max_materials}"
            raise ConfigurationError(msg)
        if isinstance(self.max_usage_per_image, str):
            if self.max_usage_per_image != AUTO:
                msg = f"max_usage_per_image must be an integer or 'auto', got {self.max_usage_per_image!r}"
                raise ConfigurationError(msg)
        elif self.max_usage_per_image < 1:
            msg = f"max_usage_per_image must be >= 1, got {self.max_usage_per_image}"
            raise ConfigurationError(msg)
        if self.aspect_tolerance < 0:
            msg = f"aspect_tolerance must be >= 0, got {self.aspect_tolerance}"
            raise ConfigurationError(msg)
        for name in ("adjacency_penalty_weight", "color_adjustment_strength"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                msg = f"{name} must be within [0, 1], got {value}"
                raise ConfigurationError(msg)
        if self.usage_penalty_weight < 0:
            msg = f"usage_penalty_weight must be >= 0, got {self.usage_penalty_weight}"
            raise ConfigurationError(msg)
        if self.candidate_count < 1:
            msg = f"candidate_count must be >= 1, got {self.candidate_count}"
            raise ConfigurationError(msg)
        if self.optimization_iterations < 0:
            msg = f"optimization_iterations must be >= 0, got {self.optimization_iterations}"
            raise ConfigurationError(msg)
        if self.initial_temperature <= 0:
            msg = f"initial_temperature must be > 0, got {self.initial_temperature}"
            raise ConfigurationError(msg)
        if not 0.0 < self.temperature_decay < 1.0:
            msg = f"temperature_decay must be within (0, 1), got {self.temperature_decay}"
            raise ConfigurationError(msg)
        if self.workers is not None and self.workers < 1:
            msg = f"workers must be >= 1, got {self.workers}"
            raise ConfigurationError(msg)
        return self

    def resolve_max_usage(self, material_count: int) -> int:
        """Concrete usage cap for *material_count* materials."""
        if self.max_usage_per_image == AUTO:
            return max(1, math.ceil(self.total_cells / max(1, material_count)))
        return int(self.max_usage_per_image)


def parse_max_usage(value: str) -> int | str:
    """Parse a ``--max-usage`` style value: a positive integer or ``"auto"``."""
    value = value.strip().lower()
    if value == AUTO:
        return AUTO
    try:
        return int(value)
    except ValueError:
        msg = f"max usage must be an integer or 'auto', got {value!r}"
        raise ConfigurationError(msg) from None
