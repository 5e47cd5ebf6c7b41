"""Image loading, tile resampling and mosaic compositing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import numpy as np
from PIL import Image

from tile_mosaic.color_adjustment import ColorAdjustment

logger = logging.getLogger(__name__)


def load_rgb(path: str | Path) -> np.ndarray:
    """Load an image file as an (H, W, 3) uint8 array."""
    with Image.open(path) as img:
        return np.array(img.convert("RGB"), dtype=np.uint8)


def resize_rgb(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resample an (H, W, 3) uint8 array to *width* x *height* (Lanczos)."""
    img = Image.fromarray(pixels.astype(np.uint8))
    if img.size == (width, height):
        return np.array(img, dtype=np.uint8)
    return np.array(img.resize((width, height), Image.LANCZOS), dtype=np.uint8)


def save_image(array: np.ndarray, path: str | Path) -> None:
    """Write an (H, W, 3) uint8 array, creating parent folders."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(array.astype(np.uint8)).save(path)


def compose_mosaic(
    grid: np.ndarray,
    tile_source: Callable[[int], np.ndarray],
    tile_width: int,
    tile_height: int,
    cell_rgb: np.ndarray | None = None,
    adjustment_strength: float = 0.0,
) -> np.ndarray:
    """Paste one resized tile per grid cell into a new raster.

    Args:
        grid:         (rows, cols) material indices; must be fully placed.
        tile_source:  Returns the (H, W, 3) uint8 pixels for a material index.
        tile_width:   Output pixel width of one cell.
        tile_height:  Output pixel height of one cell.
        cell_rgb:     (rows, cols, 3) average target RGB per cell, needed
                      when *adjustment_strength* > 0.
        adjustment_strength: Colour adjustment strength in [0, 1].

    Returns:
        (rows * tile_height, cols * tile_width, 3) uint8 array.
    """
    rows, cols = grid.shape
    if np.any(grid < 0):
        msg = "Cannot composite a grid with empty cells"
        raise ValueError(msg)
    adjust = adjustment_strength > 0.0
    if adjust and cell_rgb is None:
        msg = "cell_rgb is required when adjustment_strength > 0"
        raise ValueError(msg)

    out = np.zeros((rows * tile_height, cols * tile_width, 3), dtype=np.uint8)
    resized: dict[int, np.ndarray] = {}
    tile_avg: dict[int, np.ndarray] = {}

    for y in range(rows):
        for x in range(cols):
            idx = int(grid[y, x])
            tile = resized.get(idx)
            if tile is None:
                tile = resize_rgb(tile_source(idx), tile_width, tile_height)
                resized[idx] = tile
                tile_avg[idx] = tile.reshape(-1, 3).mean(axis=0).astype(np.uint8)

            if adjust:
                adjustment = ColorAdjustment.from_colors(
                    tile_avg[idx], cell_rgb[y, x], adjustment_strength,
                )
                tile = adjustment.apply(tile)

            oy, ox = y * tile_height, x * tile_width
            out[oy : oy + tile_height, ox : ox + tile_width] = tile

    logger.debug("Composited %d cells from %d distinct tiles", rows * cols, len(resized))
    return out
