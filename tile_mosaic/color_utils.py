"""Colour-space conversion, perceptual distance and per-cell target colours.

Lab coordinates come from :func:`skimage.color.rgb2lab` (sRGB, D65 white
point, 2 degree observer). Pure black maps to ``L = 0, a = b = 0``; that
is a legitimate colour, not a sentinel.

Two distance metrics are offered:

- ``"cie76"``: plain Euclidean distance in Lab. A true metric.
- ``"ciede2000"``: :func:`skimage.color.deltaE_ciede2000`. Closer to human
  perception but the triangle inequality only holds approximately.
"""

from __future__ import annotations

import numpy as np
from skimage.color import deltaE_ciede2000, rgb2lab

from tile_mosaic.errors import ConfigurationError

METRICS = ("cie76", "ciede2000")

# Euclidean span of the Lab box L in [0, 100], a/b in [-128, 127].
LAB_DIAMETER = float(np.sqrt(100.0 ** 2 + 255.0 ** 2 + 255.0 ** 2))


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert flat (N, 3) uint8 RGB → (N, 3) float64 CIELAB."""
    return rgb2lab(rgb.astype(np.float64).reshape(1, -1, 3) / 255.0).reshape(-1, 3)


def average_lab(pixels: np.ndarray) -> np.ndarray:
    """Mean Lab colour of an (H, W, 3) or (N, 3) uint8 pixel buffer.

    Every pixel is converted to Lab first and the Lab values are averaged,
    which differs from converting the mean RGB.
    """
    flat = np.asarray(pixels).reshape(-1, 3)
    if len(flat) == 0:
        msg = "Cannot average an empty pixel buffer"
        raise ValueError(msg)
    return rgb_to_lab(flat).mean(axis=0)


def average_rgb(pixels: np.ndarray) -> np.ndarray:
    """Mean RGB of an (H, W, 3) or (N, 3) uint8 buffer as a (3,) uint8 array."""
    flat = np.asarray(pixels).reshape(-1, 3)
    if len(flat) == 0:
        msg = "Cannot average an empty pixel buffer"
        raise ValueError(msg)
    return (flat.astype(np.uint64).sum(axis=0) // len(flat)).astype(np.uint8)


def lab_distance(a: np.ndarray, b: np.ndarray, metric: str = "cie76") -> float:
    """Perceptual difference between two Lab colours (symmetric, >= 0)."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if metric == "cie76":
        return float(np.sqrt(np.sum((a - b) ** 2)))
    if metric == "ciede2000":
        if np.array_equal(a, b):
            return 0.0
        return float(deltaE_ciede2000(a, b))
    msg = f"Unknown colour metric '{metric}'. Available: {', '.join(METRICS)}"
    raise ValueError(msg)


def normalized_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean Lab distance scaled into [0, 1] by the Lab gamut diameter."""
    return min(1.0, lab_distance(a, b) / LAB_DIAMETER)


def pairwise_distances(
    a: np.ndarray,
    b: np.ndarray,
    chunk_size: int = 512,
) -> np.ndarray:
    """Euclidean distance between every row of *a* and every row of *b*.

    Args:
        a: (N, 3) Lab colours.
        b: (M, 3) Lab colours.
        chunk_size: Rows computed per batch (controls peak RAM).

    Returns:
        (N, M) float32 distance matrix.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    n = len(a)
    out = np.empty((n, len(b)), dtype=np.float32)
    for i in range(0, n, chunk_size):
        j = min(i + chunk_size, n)
        diff = a[i:j, np.newaxis, :] - b[np.newaxis, :, :]
        out[i:j] = np.sqrt(np.sum(diff ** 2, axis=2))
    return out


def cell_size(image_width: int, image_height: int, grid_w: int, grid_h: int) -> tuple[int, int]:
    """Integer (tile_w, tile_h) of one grid cell; leftover pixels are dropped."""
    tile_w = image_width // grid_w
    tile_h = image_height // grid_h
    if tile_w < 1 or tile_h < 1:
        msg = (
            f"Grid {grid_w}x{grid_h} is finer than the target image "
            f"{image_width}x{image_height}"
        )
        raise ConfigurationError(msg)
    return tile_w, tile_h


def _cell_blocks(target: np.ndarray, grid_w: int, grid_h: int) -> np.ndarray:
    h, w = target.shape[:2]
    tile_w, tile_h = cell_size(w, h, grid_w, grid_h)
    region = target[: tile_h * grid_h, : tile_w * grid_w]
    return region.reshape(grid_h, tile_h, grid_w, tile_w, -1)


def grid_cell_colors(target: np.ndarray, grid_w: int, grid_h: int) -> np.ndarray:
    """Average Lab colour of every grid cell.

    Args:
        target: (H, W, 3) uint8 target image.
        grid_w: Cells per row.
        grid_h: Cells per column.

    Returns:
        (grid_h, grid_w, 3) float64 Lab.
    """
    blocks = _cell_blocks(target, grid_w, grid_h)
    h_cells, tile_h, w_cells, tile_w, _ = blocks.shape
    lab = rgb_to_lab(blocks.reshape(-1, 3)).reshape(h_cells, tile_h, w_cells, tile_w, 3)
    return lab.mean(axis=(1, 3))


def grid_cell_rgb(target: np.ndarray, grid_w: int, grid_h: int) -> np.ndarray:
    """Average RGB of every grid cell as (grid_h, grid_w, 3) uint8."""
    blocks = _cell_blocks(target, grid_w, grid_h).astype(np.float64)
    return np.floor(blocks.mean(axis=(1, 3))).astype(np.uint8)
