"""Exception hierarchy shared by every stage of the mosaic engine."""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for all errors raised by :mod:`tile_mosaic`."""


class ConfigurationError(MosaicError, ValueError):
    """A parameter is out of its valid range. Raised before any work starts."""


class ResourceExhaustion(MosaicError):
    """No material is available to fill a cell."""


class CacheError(MosaicError):
    """The persisted similarity cache is unreadable, stale or inconsistent."""


class MaterialLoadError(MosaicError):
    """A single material image could not be decoded."""

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"Cannot load material {path}: {reason}")
        self.path = path
        self.reason = reason


class UnknownMaterial(MosaicError, KeyError):
    """A material id was looked up that was never added."""

    def __str__(self) -> str:
        return f"Unknown material: {self.args[0]!r}"


class InternalInvariantViolation(MosaicError, AssertionError):
    """An internal consistency check failed; signals a defect."""
