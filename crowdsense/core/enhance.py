"""Low-light enhancement applied to frames before detection.

Auto-levels followed by gamma correction, skipped when the frame already has
enough contrast. The transform is pure: the input array is never modified.
"""

from __future__ import annotations

import numpy as np

from crowdsense.core.types import Frame

# Arbitrary, not calibrated: frames whose mean-intensity spread exceeds this
# value (0-255 scale) are considered well exposed and left untouched.
LOW_LIGHT_SPREAD_THRESHOLD = 100.0
GAMMA = 0.8


def intensity_range(frame: Frame) -> tuple[float, float]:
    """Return (min, max) of the per-pixel mean of the colour channels."""

    if frame.ndim == 2:
        intensity = frame.astype(np.float64)
    else:
        intensity = frame[..., :3].astype(np.float64).mean(axis=-1)
    return float(intensity.min()), float(intensity.max())


def needs_enhancement(frame: Frame, threshold: float = LOW_LIGHT_SPREAD_THRESHOLD) -> bool:
    lo, hi = intensity_range(frame)
    return (hi - lo) <= threshold


def enhance_low_light(
    frame: Frame,
    threshold: float = LOW_LIGHT_SPREAD_THRESHOLD,
    gamma: float = GAMMA,
) -> Frame:
    """Return an auto-levelled, gamma-corrected copy of a dark/flat frame.

    Frames with an intensity spread above `threshold` are returned as-is.
    A fourth (alpha) channel is copied through unchanged.
    """

    if frame.size == 0:
        return frame
    lo, hi = intensity_range(frame)
    spread = hi - lo
    if spread > threshold:
        return frame

    factor = 255.0 / spread if spread > 0 else 1.0
    colour = frame if frame.ndim == 2 else frame[..., :3]
    levelled = np.rint(np.clip((colour.astype(np.float64) - lo) * factor, 0.0, 255.0))
    corrected = np.rint(np.power(levelled / 255.0, gamma) * 255.0).astype(np.uint8)

    if frame.ndim == 2:
        return corrected
    out = np.empty(frame.shape, dtype=np.uint8)
    out[..., :3] = corrected
    if frame.shape[-1] > 3:
        out[..., 3:] = frame[..., 3:]
    return out
