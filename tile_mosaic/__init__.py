"""
Tile Mosaic Generator
=====================

Assign a tile image to every cell of a grid laid over a target image so
that colours match, no tile is overused and look-alike tiles are kept
apart, then refine the layout by local search. Ships:

- a cached **similarity database** and a **k-d tree** over tile colours
- a **tile selector** with a primary / reset / unconstrained fallback chain
- a **simulated annealing** (or greedy) placement optimizer
"""

__version__ = "0.3.0"

from tile_mosaic.adjacency import AdjacencyPenaltyCalculator
from tile_mosaic.color_adjustment import ColorAdjustment
from tile_mosaic.color_utils import average_lab, grid_cell_colors, lab_distance, rgb_to_lab
from tile_mosaic.config import MosaicConfig
from tile_mosaic.errors import (
    CacheError,
    ConfigurationError,
    InternalInvariantViolation,
    MaterialLoadError,
    MosaicError,
    ResourceExhaustion,
    UnknownMaterial,
)
from tile_mosaic.grid import EMPTY, GridPosition, new_grid
from tile_mosaic.materials import Material, load_materials, material_from_pixels
from tile_mosaic.optimizer import OptimizationConfig, OptimizationResult, PlacementOptimizer
from tile_mosaic.pipeline import MosaicGenerator, MosaicResult, generate_from_files
from tile_mosaic.selector import Selection, SelectionStage, TileSelector
from tile_mosaic.similarity import SimilarityDatabase
from tile_mosaic.spatial_index import SpatialIndex
from tile_mosaic.usage import UsageTracker

__all__ = [
    "EMPTY",
    "AdjacencyPenaltyCalculator",
    "CacheError",
    "ColorAdjustment",
    "ConfigurationError",
    "GridPosition",
    "InternalInvariantViolation",
    "Material",
    "MaterialLoadError",
    "MosaicConfig",
    "MosaicError",
    "MosaicGenerator",
    "MosaicResult",
    "OptimizationConfig",
    "OptimizationResult",
    "PlacementOptimizer",
    "ResourceExhaustion",
    "Selection",
    "SelectionStage",
    "SimilarityDatabase",
    "SpatialIndex",
    "TileSelector",
    "UnknownMaterial",
    "UsageTracker",
    "average_lab",
    "generate_from_files",
    "grid_cell_colors",
    "lab_distance",
    "load_materials",
    "material_from_pixels",
    "new_grid",
    "rgb_to_lab",
]
