"""Per-material usage counting against a cap."""

from __future__ import annotations

from collections import Counter

from tile_mosaic.errors import ConfigurationError


class UsageTracker:
    """Counts how often each material index has been placed.

    ``use`` does not check the cap; callers ask ``can_use`` first. Only
    ``reset`` lowers counts. One tracker belongs to one generation run.
    """

    def __init__(self, max_usage: int) -> None:
        if max_usage < 1:
            msg = f"max_usage must be >= 1, got {max_usage}"
            raise ConfigurationError(msg)
        self.max_usage = max_usage
        self._counts: Counter[int] = Counter()
        self.reset_count = 0

    def can_use(self, index: int) -> bool:
        return self._counts[index] < self.max_usage

    def use(self, index: int) -> None:
        self._counts[index] += 1

    def count(self, index: int) -> int:
        return self._counts[index]

    def usage_ratio(self, index: int) -> float:
        """``count / max_usage``: 0 for unused, 1 at the cap."""
        return self._counts[index] / self.max_usage

    def reset(self) -> None:
        self._counts.clear()
        self.reset_count += 1

    def __len__(self) -> int:
        """Number of distinct materials used since the last reset."""
        return sum(1 for c in self._counts.values() if c > 0)
