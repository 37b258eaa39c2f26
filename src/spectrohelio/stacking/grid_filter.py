"""Outlier filtering and smoothing of displacement grids.

Three steps, applied to a ``(rows, cols, 2)`` grid of (dx, dy) values with
a parallel ``sampled`` mask:

1. Inverse-distance-squared interpolation of unsampled cells from the
   sampled cells of the surrounding window (centre excluded).
2. Per-axis Median Absolute Deviation rejection, against both the global
   and a local (sliding window) distribution. A rejected value is replaced
   by its local median.
3. Separable Gaussian smoothing, horizontal then vertical, with weights
   renormalized where the kernel leaves the grid.

Two implementations share these semantics: a reference one with explicit
loops and a vectorized one (numpy sliding windows and scipy.ndimage
correlations). :func:`filter_and_smooth` uses the vectorized path when
asked to, and falls back to the reference path if it raises.
"""

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Tuple, TYPE_CHECKING

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy.ndimage import convolve, correlate1d

if TYPE_CHECKING:
    from spectrohelio.schemas.internal import InternalDistortionConfig

__all__ = ['FilterParameters', 'FilterOutput', 'filter_and_smooth', 'mad']

logger = logging.getLogger(__name__)

MAD_SCALE = 1.4826
MIN_MAD = 0.1


@dataclass(frozen=True)
class FilterParameters:
    """Parameters derived from the grid step."""
    window: int
    sigma: float
    radius: int
    mad_multiplier: float
    global_mad_multiplier: float

    @classmethod
    def for_step(cls, step: int, config: "InternalDistortionConfig") -> "FilterParameters":
        """Window and sigma grow as the step shrinks relative to the reference step."""
        scale = config.reference_step / step
        window = int(round(config.base_window * scale))
        window = min(max(window, config.min_window), config.max_window)
        if window % 2 == 0:
            window = window + 1 if window + 1 <= config.max_window else window - 1
        sigma = max(config.base_sigma * scale, config.sigma_floor)
        return cls(window, sigma, config.interpolation_radius,
                   config.mad_multiplier, config.global_mad_multiplier)


@dataclass(frozen=True)
class FilterOutput:
    dxy: np.ndarray
    rejected: np.ndarray


def mad(values: np.ndarray, median: float) -> float:
    """Scaled median absolute deviation with a floor."""
    return max(float(np.median(np.abs(values - median))) * MAD_SCALE, MIN_MAD)


def _idw_offsets(radius: int):
    for oy in range(-radius, radius + 1):
        for ox in range(-radius, radius + 1):
            if ox or oy:
                yield oy, ox, 1.0 / (ox * ox + oy * oy)


def _idw_kernel(radius: int) -> np.ndarray:
    size = 2 * radius + 1
    kernel = np.zeros((size, size))
    for oy, ox, w in _idw_offsets(radius):
        kernel[oy + radius, ox + radius] = w
    return kernel


def _gaussian_kernel(sigma: float) -> np.ndarray:
    radius = int(math.ceil(3 * sigma))
    k = np.arange(-radius, radius + 1, dtype=float)
    return np.exp(-(k * k) / (2 * sigma * sigma))


# ----------------------------------------------------------------------
# Reference implementation
# ----------------------------------------------------------------------

def _interpolate_reference(dxy, sampled, radius) -> Tuple[np.ndarray, np.ndarray]:
    rows, cols = sampled.shape
    out = dxy.copy()
    valid = sampled.copy()
    for r in range(rows):
        for c in range(cols):
            if sampled[r, c]:
                continue
            num = np.zeros(2)
            den = 0.0
            for oy, ox, w in _idw_offsets(radius):
                rr, cc = r + oy, c + ox
                if 0 <= rr < rows and 0 <= cc < cols and sampled[rr, cc]:
                    num += w * dxy[rr, cc]
                    den += w
            if den > 0:
                out[r, c] = num / den
                valid[r, c] = True
    return out, valid


def _mad_reference(dxy, valid, params: FilterParameters) -> Tuple[np.ndarray, np.ndarray]:
    rows, cols = valid.shape
    half = params.window // 2
    out = dxy.copy()
    rejected = np.zeros_like(valid)
    for axis in range(2):
        component = dxy[..., axis]
        values = component[valid]
        if values.size == 0:
            continue
        g_median = float(np.median(values))
        g_mad = mad(values, g_median)
        for r in range(rows):
            for c in range(cols):
                if not valid[r, c]:
                    continue
                r0, r1 = max(0, r - half), min(rows, r + half + 1)
                c0, c1 = max(0, c - half), min(cols, c + half + 1)
                window = component[r0:r1, c0:c1][valid[r0:r1, c0:c1]]
                l_median = float(np.median(window))
                l_mad = mad(window, l_median)
                v = component[r, c]
                if (abs(v - g_median) > params.global_mad_multiplier * g_mad
                        or abs(v - l_median) > params.mad_multiplier * l_mad):
                    out[r, c, axis] = l_median
                    rejected[r, c] = True
    return out, rejected


def _smooth_axis_reference(values, mask, kernel, axis):
    radius = kernel.size // 2
    out = np.zeros_like(values)
    out_mask = np.zeros_like(mask)
    rows, cols = mask.shape
    for r in range(rows):
        for c in range(cols):
            total = 0.0
            weight = 0.0
            for k in range(-radius, radius + 1):
                rr, cc = (r, c + k) if axis == 1 else (r + k, c)
                if 0 <= rr < rows and 0 <= cc < cols and mask[rr, cc]:
                    w = kernel[k + radius]
                    total += w * values[rr, cc]
                    weight += w
            if weight > 0:
                out[r, c] = total / weight
                out_mask[r, c] = True
    return out, out_mask


def _smooth_reference(dxy, valid, sigma):
    kernel = _gaussian_kernel(sigma)
    out = np.zeros_like(dxy)
    for axis in range(2):
        h, h_mask = _smooth_axis_reference(dxy[..., axis], valid, kernel, axis=1)
        v, _ = _smooth_axis_reference(h, h_mask, kernel, axis=0)
        out[..., axis] = v
    return out


def _filter_reference(dxy, sampled, params: FilterParameters) -> FilterOutput:
    interpolated, valid = _interpolate_reference(dxy, sampled, params.radius)
    filtered, rejected = _mad_reference(interpolated, valid, params)
    smoothed = _smooth_reference(filtered, valid, params.sigma)
    smoothed[~valid] = 0.0
    return FilterOutput(smoothed, rejected)


# ----------------------------------------------------------------------
# Vectorized implementation
# ----------------------------------------------------------------------

def _interpolate_vectorized(dxy, sampled, radius) -> Tuple[np.ndarray, np.ndarray]:
    kernel = _idw_kernel(radius)
    weight = sampled.astype(float)
    den = convolve(weight, kernel, mode='constant', cval=0.0)
    out = dxy.copy()
    fill = ~sampled & (den > 0)
    for axis in range(2):
        num = convolve(dxy[..., axis] * weight, kernel, mode='constant', cval=0.0)
        out[..., axis][fill] = num[fill] / den[fill]
    return out, sampled | fill


def _mad_vectorized(dxy, valid, params: FilterParameters) -> Tuple[np.ndarray, np.ndarray]:
    half = params.window // 2
    out = dxy.copy()
    rejected = np.zeros_like(valid)
    for axis in range(2):
        component = dxy[..., axis]
        values = component[valid]
        if values.size == 0:
            continue
        g_median = float(np.median(values))
        g_mad = mad(values, g_median)

        masked = np.where(valid, component, np.nan)
        padded = np.pad(masked, half, mode='constant', constant_values=np.nan)
        windows = sliding_window_view(padded, (params.window, params.window))
        with np.errstate(all='ignore'), warnings.catch_warnings():
            # Windows entirely outside the data are all-NaN
            warnings.simplefilter("ignore", RuntimeWarning)
            l_median = np.nanmedian(windows, axis=(-2, -1))
            l_mad = np.nanmedian(np.abs(windows - l_median[..., None, None]), axis=(-2, -1))
        l_mad = np.maximum(np.nan_to_num(l_mad) * MAD_SCALE, MIN_MAD)

        bad = valid & (
            (np.abs(component - g_median) > params.global_mad_multiplier * g_mad)
            | (np.abs(component - l_median) > params.mad_multiplier * l_mad)
        )
        out[..., axis][bad] = l_median[bad]
        rejected |= bad
    return out, rejected


def _smooth_vectorized(dxy, valid, sigma):
    kernel = _gaussian_kernel(sigma)
    weight = valid.astype(float)
    out = np.zeros_like(dxy)
    h_den = correlate1d(weight, kernel, axis=1, mode='constant', cval=0.0)
    h_mask = h_den > 0
    v_den = correlate1d(h_mask.astype(float), kernel, axis=0, mode='constant', cval=0.0)
    for axis in range(2):
        num = correlate1d(dxy[..., axis] * weight, kernel, axis=1, mode='constant', cval=0.0)
        h = np.divide(num, h_den, out=np.zeros_like(num), where=h_mask)
        num = correlate1d(h * h_mask, kernel, axis=0, mode='constant', cval=0.0)
        out[..., axis] = np.divide(num, v_den, out=np.zeros_like(num), where=v_den > 0)
    return out


def _filter_vectorized(dxy, sampled, params: FilterParameters) -> FilterOutput:
    interpolated, valid = _interpolate_vectorized(dxy, sampled, params.radius)
    filtered, rejected = _mad_vectorized(interpolated, valid, params)
    smoothed = _smooth_vectorized(filtered, valid, params.sigma)
    smoothed[~valid] = 0.0
    return FilterOutput(smoothed, rejected)


def filter_and_smooth(dxy: np.ndarray, sampled: np.ndarray, params: FilterParameters,
                      accelerated: bool = True) -> FilterOutput:
    """Interpolate, reject outliers and smooth a displacement grid.

    Inputs are not modified.
    """
    if accelerated:
        try:
            return _filter_vectorized(dxy, sampled, params)
        except Exception as e:
            logger.warning("Vectorized grid filter failed (%s), falling back to reference path", e)
    return _filter_reference(dxy, sampled, params)
