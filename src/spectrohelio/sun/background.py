"""Background neutralization and sky-gradient removal.

The blind neutralization estimates a background level from the image
histogram (or from the off-disk mean when an ellipse is known), samples
pixels darker than that level on a coarse grid, fits a 2nd order surface
through them and subtracts it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.sun.analysis_utils import (
    bilinear_smoothing,
    ellipse_mask,
    estimate_background,
    estimate_background_level,
)

__all__ = [
    'NeutralizationResult',
    'remove_zero_pixels',
    'blind_background_neutralization',
    'neutralize_background',
    'background_model',
    'remove_background',
]

logger = logging.getLogger(__name__)

PENALTY = 1e-6
SAMPLING_STEP = 8
MIN_SAMPLES = 16
MAX_BINS = 1024
MIN_LEVEL = 1.0


@dataclass(frozen=True)
class NeutralizationResult:
    """Neutralized image and the average background level that was removed."""
    neutralized: MonoImage
    background: float


def remove_zero_pixels(image: MonoImage) -> MonoImage:
    """Replace zero pixels by the smallest value >= 1 of the image."""
    data = image.data
    positive = data[data >= 1]
    if positive.size == 0:
        return image.copy()
    floor = positive.min()
    return image.with_data(np.where(data == 0, floor, data))


def _neutralize_once(image: MonoImage, bins: int,
                     floor_zeros: bool) -> Optional[NeutralizationResult]:
    copy = remove_zero_pixels(image) if floor_zeros else image.copy()
    data = copy.data
    height, width = data.shape
    background = 0.8 * estimate_background_level(data, bins)
    ellipse = image.metadata.ellipse
    outside = None
    if ellipse is not None:
        mask = ellipse_mask(ellipse, data.shape)
        outside = ~mask
        background = 0.8 * estimate_background(image.data, ellipse, mask)
    logger.debug("Background neutralization level: %.2f (%d bins)", background, bins)

    ys, xs = np.mgrid[0:height:SAMPLING_STEP, 0:width:SAMPLING_STEP]
    grid = data[ys, xs]
    eligible = np.ones_like(grid, dtype=bool) if outside is None else outside[ys, xs]
    if floor_zeros:
        eligible = eligible & (grid > 0)

    selected = np.zeros_like(grid, dtype=bool)
    for _ in range(10):
        selected = eligible & (grid < background)
        if selected.sum() >= MIN_SAMPLES:
            break
        background *= 1.2

    if selected.sum() < MIN_SAMPLES:
        logger.warning("Cannot perform background neutralization: not enough background samples")
        return NeutralizationResult(copy, 0.0)

    sx = xs[selected].astype(float)
    sy = ys[selected].astype(float)
    design = np.column_stack([np.ones_like(sx), sx, sy, sx * sx, sy * sy, sx * sy])
    try:
        coeffs, *_ = np.linalg.lstsq(design, grid[selected].astype(float), rcond=None)
    except np.linalg.LinAlgError:
        logger.warning("Cannot perform background neutralization: singular regression")
        return NeutralizationResult(copy, 0.0)

    fy, fx = np.mgrid[0:height, 0:width].astype(float)
    estimated = (coeffs[0] + coeffs[1] * fx + coeffs[2] * fy
                 + coeffs[3] * fx * fx + coeffs[4] * fy * fy + coeffs[5] * fx * fy)
    avg_background = float(estimated.mean())
    if avg_background > 8 * background:
        return None
    neutralized = np.maximum(0, data - estimated)
    return NeutralizationResult(copy.with_data(neutralized), avg_background)


def blind_background_neutralization(image: MonoImage, floor_zeros: bool = True) -> NeutralizationResult:
    """One neutralization pass, doubling histogram bins (64 to 1024) until the
    estimated background is consistent.

    With ``floor_zeros`` the zero pixels are first raised to the darkest
    non-zero value. Images that were already neutralized must keep their
    zeros: the darkest remaining value may well be on the disk.
    """
    bins = 64
    result = _neutralize_once(image, bins, floor_zeros)
    while result is None and bins < MAX_BINS:
        bins *= 2
        result = _neutralize_once(image, bins, floor_zeros)
    if result is None:
        return NeutralizationResult(image, 0.0)
    return result


def neutralize_background(image: MonoImage, max_iterations: int,
                          tolerance: float = 0.02) -> MonoImage:
    """Repeat neutralization until the removed level becomes negligible.

    The first pass sets the scale: iteration stops once a pass removes less
    than ``tolerance`` times the first level (and at least ``MIN_LEVEL``
    ADU), or after ``max_iterations`` passes.
    """
    result = blind_background_neutralization(image)
    current = result.neutralized
    epsilon = max(MIN_LEVEL, tolerance * abs(result.background))
    for i in range(1, max_iterations):
        result = blind_background_neutralization(current, floor_zeros=False)
        current = result.neutralized
        if abs(result.background) <= epsilon:
            logger.debug("Background converged after %d iterations (%.2f <= %.2f)",
                         i + 1, result.background, epsilon)
            break
    return current


def _polynomial_terms(x, y, width: int, height: int, degree: int) -> np.ndarray:
    xn = np.asarray(x, dtype=float) / max(width - 1, 1)
    yn = np.asarray(y, dtype=float) / max(height - 1, 1)
    terms = []
    for s in range(degree + 1):
        for i in range(s, -1, -1):
            terms.append(xn ** i * yn ** (s - i))
    return np.stack(terms, axis=-1)


def background_model(image: MonoImage, degree: int, sigma: float) -> Optional[MonoImage]:
    """Smooth polynomial model of the sky background.

    Off-disk pixels on a coarse grid are sigma-clipped and fitted with a
    ridge-regularized polynomial over normalized coordinates.

    Returns
    -------
    MonoImage or None
        The background model (same metadata), or None when too few samples
        survive clipping.
    """
    data = image.data
    height, width = data.shape
    step = max(1, max(width, height) // 32)
    ys, xs = np.mgrid[0:height:step, 0:width:step]
    values = data[ys, xs].astype(float)
    eligible = np.ones_like(values, dtype=bool)
    if image.metadata.ellipse is not None:
        eligible = ~image.metadata.ellipse.is_within(xs, ys)
    values, xs, ys = values[eligible], xs[eligible], ys[eligible]
    if values.size < 2:
        return None

    mean = values.mean()
    stddev = values.std(ddof=1)
    keep = (values > 0) & (values < mean + sigma * stddev) & (values > mean - sigma * stddev)
    n_terms = (degree + 1) * (degree + 2) // 2
    if keep.sum() < n_terms:
        logger.debug("Insufficient samples: %d < %d for background model", keep.sum(), n_terms)
        return None

    design = _polynomial_terms(xs[keep], ys[keep], width, height, degree)
    xtx = design.T @ design + PENALTY * np.eye(n_terms)
    xty = design.T @ values[keep]
    coeffs = np.linalg.solve(xtx, xty)

    fy, fx = np.mgrid[0:height, 0:width]
    model = _polynomial_terms(fx, fy, width, height, degree) @ coeffs
    return image.with_data(np.clip(model, 0, MAX_PIXEL_VALUE))


def remove_background(image: MonoImage, tolerance: float, background: float) -> MonoImage:
    """Subtract a gradient growing with the squared off-centre distance
    outside the disk, then smooth the limb seam."""
    ellipse = image.metadata.ellipse
    if ellipse is None:
        raise ValueError("remove_background requires an ellipse in the image metadata")
    data = image.data
    height, width = data.shape
    cx, cy = ellipse.center
    radius = sum(ellipse.semi_axes) / 2
    fy, fx = np.mgrid[0:height, 0:width]
    offcenter = np.hypot(fx - cx, fy - cy) / radius
    corrected = np.maximum(0, data - tolerance * offcenter ** 2 * background)
    inside = ellipse_mask(ellipse, data.shape)
    corrected = np.where(inside, data, corrected)
    return image.with_data(bilinear_smoothing(corrected, data, ellipse))
