"""Material records and parallel material loading."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from tile_mosaic.color_utils import average_lab
from tile_mosaic.errors import MaterialLoadError
from tile_mosaic.image_io import load_rgb

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Material:
    """A candidate tile with its precomputed average colour.

    Attributes:
        id:           Stable identifier (usually the file path).
        lab:          Average (L, a, b) colour.
        aspect_ratio: width / height of the source image.
        path:         Source file, if the material came from disk.
    """

    id: str
    lab: tuple[float, float, float]
    aspect_ratio: float = 1.0
    path: Path | None = None


def material_from_pixels(
    material_id: str,
    pixels: np.ndarray,
    path: Path | None = None,
) -> Material:
    """Build a :class:`Material` from an (H, W, 3) uint8 buffer."""
    h, w = pixels.shape[:2]
    if h == 0 or w == 0:
        raise MaterialLoadError(path or material_id, "image has no pixels")
    lab = average_lab(pixels)
    return Material(
        id=material_id,
        lab=(float(lab[0]), float(lab[1]), float(lab[2])),
        aspect_ratio=w / h,
        path=path,
    )


def load_material(path: str | Path) -> Material:
    """Decode one image file into a :class:`Material`."""
    path = Path(path)
    try:
        pixels = load_rgb(path)
    except (OSError, ValueError) as exc:
        raise MaterialLoadError(path, str(exc)) from exc
    return material_from_pixels(str(path), pixels, path=path)


def collect_material_paths(folder: Path, extensions: Iterable[str]) -> list[Path]:
    """Image files directly inside *folder*, sorted by name."""
    if not folder.is_dir():
        return []
    extensions = frozenset(extensions)
    return sorted(
        f for f in folder.iterdir()
        if f.is_file() and f.suffix.lower() in extensions
    )


def is_aspect_ratio_match(aspect: float, target_aspect: float, tolerance: float) -> bool:
    return abs(aspect - target_aspect) <= tolerance


def _try_load(path: Path) -> Material | None:
    try:
        return load_material(path)
    except MaterialLoadError as exc:
        logger.warning("Skipping material: %s", exc)
        return None


def _load_all(paths: Sequence[Path], workers: int | None) -> list[Material]:
    # executor.map keeps input order, so material indices stay stable.
    with ThreadPoolExecutor(max_workers=workers) as ex:
        return [m for m in ex.map(_try_load, paths) if m is not None]


def load_materials(
    paths: Sequence[str | Path],
    max_materials: int | None = None,
    target_aspect: float | None = None,
    aspect_tolerance: float = 0.1,
    workers: int | None = None,
) -> list[Material]:
    """Decode *paths* in parallel into an index-stable list of materials.

    Files that fail to decode are logged and left out. When
    *target_aspect* is given only materials within *aspect_tolerance* are
    kept; if none match, up to ``2 * max_materials`` files are loaded
    without the aspect filter instead.

    Args:
        paths: Image files, in the order that defines material indices.
        max_materials: Truncate the result to this many materials.
        target_aspect: Aspect ratio (w / h) of one grid cell.
        aspect_tolerance: Accepted absolute aspect difference.
        workers: Thread count (``None`` = executor default).

    Returns:
        Materials in input order.
    """
    paths = [Path(p) for p in paths]
    logger.info("Loading %d material images ...", len(paths))
    t0 = time.perf_counter()

    materials = _load_all(paths, workers)

    if target_aspect is not None:
        matched = [
            m for m in materials
            if is_aspect_ratio_match(m.aspect_ratio, target_aspect, aspect_tolerance)
        ]
        if matched:
            materials = matched
        else:
            limit = len(paths) if max_materials is None else min(len(paths), max_materials * 2)
            logger.info(
                "No material matched aspect %.3f; using %d of %d without aspect filter",
                target_aspect, limit, len(paths),
            )
            sampled = set(paths[:limit])
            materials = [m for m in materials if m.path in sampled]

    if max_materials is not None and len(materials) > max_materials:
        materials = materials[:max_materials]

    logger.info(
        "Materials ready | loaded=%d  excluded=%d  (%.1f s)",
        len(materials), len(paths) - len(materials), time.perf_counter() - t0,
    )
    return materials
