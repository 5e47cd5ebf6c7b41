"""Pairwise colour-distance cache over all materials.

Distances are stored as the strict upper triangle of the symmetric
N x N matrix, row-major, so the pair ``(i, j)`` with ``i < j`` lives at
``i * n - i * (i + 1) / 2 + j - i - 1``. The diagonal is implicitly 0.

The cache can be persisted as a numpy ``.npz`` archive holding the
ordered id list, the Lab colours and the triangle. The ordered id list is
the cache key: a cache written for a different material list is never
used, it is rebuilt.

Stored values are raw Euclidean Lab distances (0 to about 375), not
distances normalised into [0, 1]; use
:func:`tile_mosaic.color_utils.normalized_distance` for the scaled form.
Adjacency works on ``1 / (1 + distance)``, which is always in (0, 1].
"""

from __future__ import annotations

import logging
import time
import zipfile
import zlib
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from tile_mosaic.color_utils import pairwise_distances
from tile_mosaic.errors import CacheError, UnknownMaterial
from tile_mosaic.materials import Material

logger = logging.getLogger(__name__)

CACHE_VERSION = 1

_LOAD_ERRORS = (
    OSError, ValueError, KeyError, TypeError, IndexError, EOFError,
    zipfile.BadZipFile, zlib.error,
)


def triangle_size(n: int) -> int:
    return n * (n - 1) // 2


class SimilarityDatabase:
    """Symmetric distance matrix between materials, keyed by material id."""

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._index: dict[str, int] = {}
        self._labs: list[tuple[float, float, float]] = []
        self._distances: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, material_id: object) -> bool:
        return material_id in self._index

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._ids)

    @property
    def is_built(self) -> bool:
        return self._distances is not None

    # -- Construction ----------------------------------------------------

    def add(self, material_id: str, lab: Sequence[float]) -> int:
        """Register a material colour; returns its index. Invalidates the matrix."""
        if material_id in self._index:
            msg = f"Material {material_id!r} already added"
            raise ValueError(msg)
        index = len(self._ids)
        self._ids.append(material_id)
        self._index[material_id] = index
        self._labs.append((float(lab[0]), float(lab[1]), float(lab[2])))
        self._distances = None
        return index

    def add_material(self, material: Material) -> int:
        return self.add(material.id, material.lab)

    def build(self, chunk_size: int = 256) -> None:
        """Compute every pairwise Lab distance (O(n^2) time and space)."""
        n = len(self._ids)
        t0 = time.perf_counter()
        labs = self.labs()
        out = np.empty(triangle_size(n), dtype=np.float32)

        pos = 0
        for start in range(0, n, chunk_size):
            stop = min(start + chunk_size, n)
            block = pairwise_distances(labs[start:stop], labs)
            for row in range(start, stop):
                tail = block[row - start, row + 1 :]
                out[pos : pos + len(tail)] = tail
                pos += len(tail)

        self._distances = out
        logger.info(
            "Similarity matrix built | materials=%d  pairs=%d  (%.2f s)",
            n, len(out), time.perf_counter() - t0,
        )

    @classmethod
    def from_materials(cls, materials: Sequence[Material]) -> SimilarityDatabase:
        db = cls()
        for m in materials:
            db.add_material(m)
        db.build()
        return db

    # -- Queries ---------------------------------------------------------

    def index_of(self, material_id: str) -> int:
        try:
            return self._index[material_id]
        except KeyError:
            raise UnknownMaterial(material_id) from None

    def labs(self) -> np.ndarray:
        """(N, 3) float64 Lab colours in index order."""
        return np.array(self._labs, dtype=np.float64).reshape(-1, 3)

    def _triangle(self) -> np.ndarray:
        if self._distances is None:
            msg = "Similarity matrix is not built (call build() after add())"
            raise CacheError(msg)
        return self._distances

    def distance_at(self, i: int, j: int) -> float:
        """Distance between the materials at indices *i* and *j*."""
        n = len(self._ids)
        if not (0 <= i < n and 0 <= j < n):
            raise UnknownMaterial((i, j))
        triangle = self._triangle()
        if i == j:
            return 0.0
        if i > j:
            i, j = j, i
        return float(triangle[i * n - i * (i + 1) // 2 + j - i - 1])

    def get(self, id1: str, id2: str) -> float:
        """Distance between two materials by id. Raises :class:`UnknownMaterial`."""
        return self.distance_at(self.index_of(id1), self.index_of(id2))

    def similarity(self, id1: str, id2: str) -> float:
        """``1 / (1 + distance)``: 1 for identical colours, towards 0 when far apart."""
        return 1.0 / (1.0 + self.get(id1, id2))

    def square_matrix(self) -> np.ndarray:
        """Dense symmetric (N, N) float64 distance matrix."""
        n = len(self._ids)
        triangle = self._triangle()
        full = np.zeros((n, n), dtype=np.float64)
        iu = np.triu_indices(n, k=1)
        full[iu] = triangle
        full[(iu[1], iu[0])] = triangle
        return full

    def similarity_matrix(self) -> np.ndarray:
        """Dense (N, N) float32 matrix of ``1 / (1 + distance)``."""
        n = len(self._ids)
        triangle = self._triangle()
        full = np.zeros((n, n), dtype=np.float32)
        iu = np.triu_indices(n, k=1)
        full[iu] = triangle
        full[(iu[1], iu[0])] = triangle
        full += 1.0
        np.reciprocal(full, out=full)
        return full

    def matches(self, material_ids: Sequence[str]) -> bool:
        """True if this database was built for exactly *material_ids*, in order."""
        return self._ids == list(material_ids)

    # -- Persistence -----------------------------------------------------

    def persist(self, path: str | Path) -> None:
        """Write ids, colours and the distance triangle to an ``.npz`` archive."""
        triangle = self._triangle()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as fh:
            np.savez_compressed(
                fh,
                version=np.array(CACHE_VERSION),
                ids=np.array(self._ids, dtype=str),
                labs=self.labs(),
                distances=triangle,
            )
        logger.info("Similarity cache saved: %s (%d materials)", path, len(self))

    @classmethod
    def load(cls, path: str | Path) -> SimilarityDatabase:
        """Read a cache written by :meth:`persist`. Raises :class:`CacheError`."""
        path = Path(path)
        try:
            with path.open("rb") as fh:
                data = np.load(fh, allow_pickle=False)
                if not isinstance(data, np.lib.npyio.NpzFile):
                    msg = f"Similarity cache {path} is not an .npz archive"
                    raise CacheError(msg)
                with data:
                    version = int(data["version"])
                    ids = [str(i) for i in data["ids"]]
                    labs = np.asarray(data["labs"], dtype=np.float64)
                    distances = np.asarray(data["distances"], dtype=np.float32)
        except _LOAD_ERRORS as exc:
            msg = f"Unreadable similarity cache {path}: {exc}"
            raise CacheError(msg) from exc

        if version != CACHE_VERSION:
            msg = f"Similarity cache {path} has version {version}, expected {CACHE_VERSION}"
            raise CacheError(msg)
        n = len(ids)
        if labs.shape != (n, 3) or distances.shape != (triangle_size(n),):
            msg = f"Similarity cache {path} is inconsistent for {n} materials"
            raise CacheError(msg)
        if len(set(ids)) != n:
            msg = f"Similarity cache {path} contains duplicate ids"
            raise CacheError(msg)

        db = cls()
        for material_id, lab in zip(ids, labs, strict=True):
            db.add(material_id, lab)
        db._distances = distances
        return db

    @classmethod
    def load_or_build(
        cls,
        materials: Sequence[Material],
        path: str | Path | None = None,
        rebuild: bool = False,
    ) -> SimilarityDatabase:
        """Reuse the cache at *path* if it matches *materials*, else rebuild it.

        A missing, corrupt or mismatched cache is rebuilt and, when *path*
        is given, saved again. A failure to save is logged, not raised.
        """
        ids = [m.id for m in materials]

        if path is not None and not rebuild and Path(path).exists():
            try:
                db = cls.load(path)
            except CacheError as exc:
                logger.warning("%s; rebuilding", exc)
            else:
                if db.matches(ids):
                    logger.info("Loaded similarity cache from %s", path)
                    return db
                logger.info(
                    "Similarity cache %s is stale (%d cached vs %d current materials); rebuilding",
                    path, len(db), len(ids),
                )

        logger.info("Building similarity database for %d materials ...", len(ids))
        db = cls.from_materials(materials)

        if path is not None:
            try:
                db.persist(path)
            except OSError as exc:
                logger.warning("Failed to save similarity cache %s: %s", path, exc)
        return db
