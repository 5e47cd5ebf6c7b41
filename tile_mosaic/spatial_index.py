"""Nearest-neighbour lookup over material Lab colours (scipy k-d tree)."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

import numpy as np
from scipy.spatial import cKDTree

from tile_mosaic.errors import ResourceExhaustion
from tile_mosaic.materials import Material

logger = logging.getLogger(__name__)

# Relative slack when widening the k-th radius so that tied points are kept.
_TIE_EPS = 1e-9


class SpatialIndex:
    """Balanced k-d tree over (N, 3) Lab points.

    Results are ordered by Euclidean distance; equal distances are
    ordered by the lower material index, so queries are deterministic.
    """

    def __init__(self, labs: np.ndarray, leafsize: int = 256) -> None:
        self._points = np.asarray(labs, dtype=np.float64).reshape(-1, 3)
        self._tree = (
            cKDTree(self._points, leafsize=leafsize, balanced_tree=True)
            if len(self._points) else None
        )

    @classmethod
    def build(cls, materials: Sequence[Material], leafsize: int = 256) -> SpatialIndex:
        t0 = time.perf_counter()
        index = cls(np.array([m.lab for m in materials], dtype=np.float64), leafsize=leafsize)
        logger.info(
            "k-d tree built | materials=%d  leafsize=%d  (%.3f s)",
            len(index), leafsize, time.perf_counter() - t0,
        )
        return index

    def __len__(self) -> int:
        return len(self._points)

    def query_with_distances(
        self, lab: Sequence[float] | np.ndarray, k: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """The *k* nearest materials to *lab*.

        Returns:
            ``(distances, indices)``, both of length ``min(k, N)``, sorted by
            ascending distance then ascending index.
        """
        n = len(self._points)
        k = min(int(k), n)
        if k <= 0 or self._tree is None:
            return np.empty(0, dtype=np.float64), np.empty(0, dtype=np.intp)

        q = np.asarray(lab, dtype=np.float64).reshape(3)
        if k == n:
            candidates = np.arange(n)
        else:
            d, idx = self._tree.query(q, k=k)
            radius = float(np.max(np.atleast_1d(d)))
            ball = self._tree.query_ball_point(q, r=radius * (1.0 + _TIE_EPS) + _TIE_EPS)
            candidates = np.union1d(np.asarray(ball, dtype=np.intp), np.atleast_1d(idx))

        dist = np.sqrt(np.sum((self._points[candidates] - q) ** 2, axis=1))
        order = np.lexsort((candidates, dist))[:k]
        return dist[order], candidates[order]

    def query(self, lab: Sequence[float] | np.ndarray, k: int) -> list[int]:
        """Indices of the *k* nearest materials, closest first."""
        _, indices = self.query_with_distances(lab, k)
        return [int(i) for i in indices]

    def nearest(self, lab: Sequence[float] | np.ndarray) -> int:
        """Index of the single closest material."""
        indices = self.query(lab, 1)
        if not indices:
            msg = "Spatial index is empty"
            raise ResourceExhaustion(msg)
        return indices[0]
