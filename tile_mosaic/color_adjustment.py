"""Per-tile colour correction towards the target cell colour.

The adjustment is derived from two average colours (tile and target
cell) and a strength ``s`` in [0, 1]; ``s = 0`` yields the identity.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from skimage.color import hsv2rgb, rgb2hsv

_LUMA = np.array([0.299, 0.587, 0.114])


@dataclass(frozen=True)
class ColorAdjustment:
    """Brightness / contrast / hue / saturation shift.

    Attributes:
        brightness: Additive offset in [-1, 1] on the 0..1 channel scale.
        contrast:   Multiplier around mid-grey in [0, 2]; 1 = unchanged.
        hue_shift:  Degrees in [-180, 180].
        saturation: Multiplier in [0, 2]; 1 = unchanged.
    """

    brightness: float = 0.0
    contrast: float = 1.0
    hue_shift: float = 0.0
    saturation: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "brightness", float(np.clip(self.brightness, -1.0, 1.0)))
        object.__setattr__(self, "contrast", float(np.clip(self.contrast, 0.0, 2.0)))
        object.__setattr__(self, "hue_shift", float(np.clip(self.hue_shift, -180.0, 180.0)))
        object.__setattr__(self, "saturation", float(np.clip(self.saturation, 0.0, 2.0)))

    @property
    def is_identity(self) -> bool:
        return (
            self.brightness == 0.0
            and self.contrast == 1.0
            and self.hue_shift == 0.0
            and self.saturation == 1.0
        )

    @classmethod
    def from_colors(
        cls,
        tile_rgb: np.ndarray,
        target_rgb: np.ndarray,
        strength: float,
    ) -> ColorAdjustment:
        """Adjustment moving *tile_rgb* towards *target_rgb*.

        Hue and saturation corrections are damped (x0.5 and x0.7) and hue
        is only shifted when both colours carry some saturation.
        """
        strength = float(np.clip(strength, 0.0, 1.0))
        if strength == 0.0:
            return cls()

        tile = np.asarray(tile_rgb, dtype=np.float64) / 255.0
        target = np.asarray(target_rgb, dtype=np.float64) / 255.0

        brightness = float((target @ _LUMA - tile @ _LUMA) * strength)

        tile_h, tile_s, _ = rgb2hsv(tile.reshape(1, 1, 3))[0, 0]
        target_h, target_s, _ = rgb2hsv(target.reshape(1, 1, 3))[0, 0]

        hue_shift = 0.0
        if tile_s > 0.1 and target_s > 0.1:
            diff = (target_h - tile_h) * 360.0
            if diff > 180.0:
                diff -= 360.0
            elif diff < -180.0:
                diff += 360.0
            hue_shift = diff * strength * 0.5

        saturation = 1.0
        if tile_s > 0.01:
            saturation = 1.0 + (target_s / tile_s - 1.0) * strength * 0.7

        return cls(brightness, 1.0, float(hue_shift), float(saturation))

    def apply(self, pixels: np.ndarray) -> np.ndarray:
        """Apply to an (H, W, 3) uint8 array, returning a new uint8 array."""
        if self.is_identity:
            return pixels.copy()

        f = pixels.astype(np.float64) / 255.0
        if self.contrast != 1.0 or self.brightness != 0.0:
            f = np.clip((f - 0.5) * self.contrast + 0.5, 0.0, 1.0)
            f = np.clip(f + self.brightness, 0.0, 1.0)

        if self.hue_shift != 0.0 or self.saturation != 1.0:
            hsv = rgb2hsv(f)
            hsv[..., 0] = (hsv[..., 0] + self.hue_shift / 360.0) % 1.0
            hsv[..., 1] = np.clip(hsv[..., 1] * self.saturation, 0.0, 1.0)
            f = hsv2rgb(hsv)

        return np.clip(np.rint(f * 255.0), 0, 255).astype(np.uint8)
