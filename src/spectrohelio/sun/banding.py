"""Horizontal banding reduction.

Scan-line banding comes from dust on the slit and gain variations along
the scan: every reconstructed row gets a slightly different multiplicative
factor. Each row median (inside the disk) is compared to the median of
the surrounding band of rows and the row is rescaled towards it.
"""

import logging
from typing import Optional, TYPE_CHECKING

import numpy as np

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.sun.analysis_utils import bilinear_smoothing, ellipse_mask

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['BandingReduction']

logger = logging.getLogger(__name__)

_MIN_BAND_VALUES = 3


class BandingReduction:
    """Multi-pass, ellipse-masked banding reduction.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.banding``: ``passes``, ``band_size``,
        ``disk_average_weight``, ``max_correction`` and ``pole_exponent``.
    """

    def __init__(self, config: "InternalConfig"):
        banding = config.banding
        self.passes = banding.passes
        self.band_size = banding.band_size
        self.disk_weight = banding.disk_average_weight
        self.max_correction = banding.max_correction
        self.pole_exponent = banding.pole_exponent

    def apply(self, image: MonoImage) -> MonoImage:
        """Run all passes and record the operation in the history."""
        data = image.data.copy()
        ellipse = image.metadata.ellipse
        for _ in range(self.passes):
            data = self.reduce_banding(data, ellipse)
        logger.debug("Banding reduction: %d passes, band size %d", self.passes, self.band_size)
        return image.with_data(
            data, image.metadata.with_transform(f"banding reduction ({self.passes} passes)")
        )

    def reduce_banding(self, data: np.ndarray, ellipse: Optional[Ellipse]) -> np.ndarray:
        """One correction pass over ``data`` (not modified)."""
        height, width = data.shape
        mask = ellipse_mask(ellipse, data.shape) if ellipse is not None else np.ones_like(data, dtype=bool)
        min_y, max_y = 0, height
        global_median = -1.0
        if ellipse is not None:
            _, top, _, bottom = ellipse.bounding_box()
            min_y = int(max(0, np.floor(top)))
            max_y = int(min(height, np.ceil(bottom)))
            inside = data[mask]
            if inside.size:
                global_median = float(np.median(inside))

        medians = self.line_medians(data, mask)
        out = data.astype(np.float32, copy=True)
        for y in range(min_y, max_y):
            band = self.band_median(y, min_y, max_y, medians, global_median)
            line = medians[y]
            if band <= 0 or line <= 0:
                continue
            correction = band / line
            if not np.isfinite(correction):
                continue
            correction = min(max(correction, 1 - self.max_correction), 1 + self.max_correction)
            row_mask = mask[y]
            out[y, row_mask] = data[y, row_mask] * correction

        if ellipse is not None:
            out = bilinear_smoothing(data, out, ellipse)
        return np.minimum(out, MAX_PIXEL_VALUE)

    @staticmethod
    def line_medians(data: np.ndarray, mask: np.ndarray) -> np.ndarray:
        """Median of each row inside ``mask``; -1 for rows with no pixel."""
        medians = np.full(data.shape[0], -1.0)
        for y in range(data.shape[0]):
            values = data[y, mask[y]]
            if values.size:
                medians[y] = float(np.median(values))
        return medians

    def effective_band_size(self, y: int, min_y: int, max_y: int) -> int:
        """Band size shrinks towards the poles, where rows get shorter."""
        half_height = (max_y - min_y) / 2
        if half_height <= 0:
            return self.band_size
        centre = (min_y + max_y) / 2
        proximity = min(1.0, abs(y - centre) / half_height)
        size = int(round(self.band_size * (1 - proximity) ** self.pole_exponent))
        return max(2 * _MIN_BAND_VALUES, size)

    def band_median(self, y: int, min_y: int, max_y: int, medians: np.ndarray,
                    global_median: float) -> float:
        """Inverse-distance weighted median of the neighbouring row medians.

        The current row is excluded. The result is blended with the disk
        median when one is known. Returns -1 when fewer than three rows
        contribute.
        """
        half = self.effective_band_size(y, min_y, max_y) // 2
        start = max(min_y, y - half)
        end = min(max_y, y + half + 1)
        # Slide the band back inside [min_y, max_y) instead of truncating it
        if y - half < min_y:
            end = min(end + (min_y - (y - half)), max_y)
        if y + half + 1 > max_y:
            start = max(start - (y + half + 1 - max_y), min_y)

        rows = np.arange(start, end)
        rows = rows[rows != y]
        values = medians[rows]
        valid = values >= 0
        if valid.sum() < _MIN_BAND_VALUES:
            return -1.0
        values = values[valid]
        weights = 1.0 / np.abs(rows[valid] - y)
        median = _weighted_median(values, weights)
        if not np.isfinite(median):
            return -1.0
        if global_median >= 0:
            return median * (1.0 - self.disk_weight) + global_median * self.disk_weight
        return median


def _weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    order = np.argsort(values)
    values = values[order]
    cumulative = np.cumsum(weights[order])
    idx = int(np.searchsorted(cumulative, 0.5 * cumulative[-1]))
    return float(values[min(idx, values.size - 1)])
