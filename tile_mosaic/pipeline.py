"""End-to-end mosaic generation: index → place → optimize → composite."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from tile_mosaic.adjacency import AdjacencyPenaltyCalculator
from tile_mosaic.color_utils import cell_size, grid_cell_colors, grid_cell_rgb
from tile_mosaic.config import MosaicConfig
from tile_mosaic.errors import ConfigurationError, ResourceExhaustion
from tile_mosaic.image_io import compose_mosaic, load_rgb, save_image
from tile_mosaic.materials import Material, load_materials
from tile_mosaic.optimizer import OptimizationConfig, OptimizationResult, PlacementOptimizer
from tile_mosaic.selector import SelectionStage, TileSelector
from tile_mosaic.similarity import SimilarityDatabase
from tile_mosaic.spatial_index import SpatialIndex
from tile_mosaic.usage import UsageTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MosaicResult:
    """A fully placed grid plus how it was obtained.

    Attributes:
        grid:            (rows, cols) material indices, no empty cells.
        selection_stats: Cells placed per fallback stage.
        optimization:    Optimizer report, or None when disabled.
        max_usage:       The usage cap that was applied.
    """

    grid: np.ndarray
    selection_stats: dict[SelectionStage, int]
    optimization: OptimizationResult | None
    max_usage: int


class MosaicGenerator:
    """Owns the read-only indexes for one material set and runs placements."""

    def __init__(
        self,
        materials: Sequence[Material],
        config: MosaicConfig | None = None,
        similarity_db: SimilarityDatabase | None = None,
    ) -> None:
        self.config = (config or MosaicConfig()).validate()
        if not materials:
            msg = "No materials available; at least one tile image is required"
            raise ResourceExhaustion(msg)
        self.materials = list(materials)

        if similarity_db is None:
            similarity_db = SimilarityDatabase.load_or_build(
                self.materials,
                self.config.similarity_db,
                rebuild=self.config.rebuild_similarity_db,
            )
        elif not similarity_db.matches([m.id for m in self.materials]):
            msg = "Similarity database was built for a different material list"
            raise ConfigurationError(msg)
        self.similarity = similarity_db

        self.index = SpatialIndex.build(self.materials)
        self.adjacency = AdjacencyPenaltyCalculator.from_database(
            self.similarity, self.config.adjacency_penalty_weight,
        )
        self.max_usage = self.config.resolve_max_usage(len(self.materials))

    def new_selector(self, usage: UsageTracker | None = None) -> TileSelector:
        return TileSelector(
            self.index,
            usage or UsageTracker(self.max_usage),
            self.adjacency,
            candidate_count=self.config.candidate_count,
            usage_weight=self.config.usage_penalty_weight,
        )

    def place(self, cell_colors: np.ndarray) -> tuple[np.ndarray, dict[SelectionStage, int]]:
        """Fill a fresh grid from (rows, cols, 3) Lab cell colours."""
        rows, cols = cell_colors.shape[:2]
        if (cols, rows) != (self.config.grid_width, self.config.grid_height):
            msg = (
                f"Cell colours are {cols}x{rows} but the configured grid is "
                f"{self.config.grid_width}x{self.config.grid_height}"
            )
            raise ConfigurationError(msg)
        selector = self.new_selector()
        grid = selector.fill(cell_colors)
        return grid, dict(selector.stats)

    def optimization_config(self) -> OptimizationConfig:
        cfg = self.config
        return OptimizationConfig(
            max_iterations=cfg.optimization_iterations,
            initial_temperature=cfg.initial_temperature,
            temperature_decay=cfg.temperature_decay,
            report_interval=max(1, cfg.optimization_iterations // 10),
            seed=cfg.seed,
            greedy=cfg.greedy_optimization,
        )

    def optimize(self, grid: np.ndarray) -> OptimizationResult | None:
        """Run the optimizer in place unless optimization is disabled."""
        if not self.config.enable_optimization:
            logger.info("Optimization disabled")
            return None
        optimizer = PlacementOptimizer(self.adjacency, self.optimization_config())
        result = optimizer.optimize(grid)
        logger.info("Optimization improved cost by %.1f%%", result.improvement_percentage())
        return result

    def generate(self, cell_colors: np.ndarray) -> MosaicResult:
        grid, stats = self.place(cell_colors)
        optimization = self.optimize(grid)
        return MosaicResult(grid, stats, optimization, self.max_usage)

    def tile_pixels(self, index: int) -> np.ndarray:
        material = self.materials[index]
        if material.path is None:
            msg = f"Material {material.id!r} has no source file"
            raise ValueError(msg)
        return load_rgb(material.path)

    def compose(
        self,
        grid: np.ndarray,
        tile_width: int,
        tile_height: int,
        cell_rgb: np.ndarray | None = None,
        tile_source: Callable[[int], np.ndarray] | None = None,
    ) -> np.ndarray:
        return compose_mosaic(
            grid,
            tile_source or self.tile_pixels,
            tile_width,
            tile_height,
            cell_rgb=cell_rgb,
            adjustment_strength=self.config.color_adjustment_strength,
        )


def load_for_target(
    target_path: str | Path,
    material_paths: Sequence[str | Path],
    config: MosaicConfig,
) -> tuple[np.ndarray, tuple[int, int], list[Material]]:
    """Load the target and the materials that fit its grid cells.

    Materials are filtered by the cell aspect ratio, so the resulting id
    list (the similarity cache key) depends on the target and the grid.

    Returns:
        ``(target pixels, (tile_w, tile_h), materials)``.
    """
    target = load_rgb(target_path)
    h, w = target.shape[:2]
    tile_w, tile_h = cell_size(w, h, config.grid_width, config.grid_height)
    logger.info(
        "Target: %dx%d  grid: %dx%d  tile: %dx%d",
        w, h, config.grid_width, config.grid_height, tile_w, tile_h,
    )

    materials = load_materials(
        material_paths,
        max_materials=config.max_materials,
        target_aspect=tile_w / tile_h,
        aspect_tolerance=config.aspect_tolerance,
        workers=config.workers,
    )
    return target, (tile_w, tile_h), materials


def generate_from_files(
    target_path: str | Path,
    material_paths: Sequence[str | Path],
    output_path: str | Path,
    config: MosaicConfig | None = None,
) -> MosaicResult:
    """Load a target and material files, build the mosaic and save it.

    The output has ``grid_width * tile_w`` by ``grid_height * tile_h``
    pixels, where the tile size is the integer cell size of the target.
    """
    config = (config or MosaicConfig()).validate()
    t0 = time.perf_counter()

    target, (tile_w, tile_h), materials = load_for_target(target_path, material_paths, config)
    generator = MosaicGenerator(materials, config)

    cell_colors = grid_cell_colors(target, config.grid_width, config.grid_height)
    result = generator.generate(cell_colors)

    cell_rgb = grid_cell_rgb(target, config.grid_width, config.grid_height)
    raster = generator.compose(result.grid, tile_w, tile_h, cell_rgb=cell_rgb)
    save_image(raster, output_path)

    logger.info("Mosaic saved: %s  (%.1f s total)", output_path, time.perf_counter() - t0)
    return result
