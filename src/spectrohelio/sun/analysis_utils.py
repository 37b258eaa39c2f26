"""Shared statistics helpers for the correction stages."""

import logging
from typing import Optional

import numpy as np

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import MAX_PIXEL_VALUE

__all__ = [
    'ellipse_mask',
    'estimate_background_level',
    'estimate_background',
    'bilinear_smoothing',
]

logger = logging.getLogger(__name__)

DEFAULT_RING_WIDTH = 3.0


def ellipse_mask(ellipse: Ellipse, shape) -> np.ndarray:
    """Boolean ``(height, width)`` mask, True inside the ellipse."""
    height, width = shape
    ys, xs = np.mgrid[0:height, 0:width]
    return ellipse.is_within(xs, ys)


def estimate_background_level(data: np.ndarray, bins: int = 64) -> float:
    """Background level from the histogram of ``data``.

    Walks the histogram from the dark end until a bin holds less than half
    of the previous one, then slides through any further decreasing bins.
    """
    values, _ = np.histogram(data, bins=bins, range=(0, MAX_PIXEL_VALUE))
    cur = values[0]
    idx = 0
    for i in range(1, bins):
        idx = i + 1
        previous = cur
        cur = values[i]
        if cur < 0.5 * previous:
            break
    while idx + 1 < bins and values[idx + 1] <= cur:
        idx += 1
        cur = values[idx]
    return MAX_PIXEL_VALUE * idx / bins


def estimate_background(data: np.ndarray, ellipse: Ellipse,
                        mask: Optional[np.ndarray] = None, margin: float = 1.0) -> float:
    """Mean of the positive pixels outside the ellipse (0 when there are none).

    With ``margin`` > 1 the ellipse is grown by that factor around its centre
    first, so that limb pixels do not leak into the estimate.
    """
    if mask is None:
        if margin != 1.0:
            cx, cy = ellipse.center
            ellipse = ellipse.translate(-cx, -cy).rescale(margin, margin).translate(cx, cy)
        mask = ellipse_mask(ellipse, data.shape)
    outside = data[~mask]
    outside = outside[outside > 0]
    if outside.size == 0:
        return 0.0
    return float(outside.mean())


def bilinear_smoothing(original: np.ndarray, corrected: np.ndarray, ellipse: Ellipse,
                       ring_width: float = DEFAULT_RING_WIDTH) -> np.ndarray:
    """Blend ``corrected`` into ``original`` across a ring around the limb.

    The weight of the corrected image ramps linearly from 0 at
    ``ring_width`` pixels outside the boundary to 1 at ``ring_width``
    pixels inside it, hiding the seam left by masked corrections.
    """
    height, width = original.shape
    ys, xs = np.mgrid[0:height, 0:width]
    distance = ellipse.radial_distance(xs, ys)
    inside = ellipse.is_within(xs, ys)
    signed = np.where(inside, distance, -distance)
    weight = np.clip(0.5 + signed / (2 * ring_width), 0.0, 1.0).astype(np.float32)
    return (weight * corrected + (1 - weight) * original).astype(np.float32)
