"""Artificial flat correction along the scan direction."""

import logging
from typing import Optional, TYPE_CHECKING

import numpy as np
from scipy.ndimage import gaussian_filter

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.core.regression import fit_polynomial
from spectrohelio.sun.analysis_utils import bilinear_smoothing, ellipse_mask

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['FlatCorrection']

logger = logging.getLogger(__name__)

_VALID_ROW_WEIGHT = 4.0
_FILLED_ROW_WEIGHT = 1.0


class FlatCorrection:
    """Percentile-clipped polynomial flat-field correction per row.

    Row averages of the (lightly blurred) disk are computed from pixels
    between the low and high percentiles of the disk histogram, a weighted
    polynomial is fitted through them and each row is divided by the
    normalized fit.
    """

    def __init__(self, config: "InternalConfig"):
        self.lo_percentile = config.flat.lo_percentile
        self.hi_percentile = config.flat.hi_percentile
        self.order = config.flat.order

    def compute_correction_factors(self, data: np.ndarray, ellipse: Ellipse) -> Optional[np.ndarray]:
        """Per-row factors normalized to a maximum of 1, or None when the
        disk is empty or the row profile cannot be fitted."""
        blurred = gaussian_filter(data.astype(np.float64), sigma=1.0)
        height = blurred.shape[0]
        mask = ellipse_mask(ellipse, blurred.shape)
        disk = blurred[mask]
        if disk.size == 0:
            return None
        lo, hi = np.quantile(disk, [self.lo_percentile, self.hi_percentile])

        averages = np.zeros(height)
        for y in range(height):
            row = blurred[y, mask[y]]
            row = row[(row > lo) & (row < hi)]
            if row.size:
                averages[y] = row.mean()

        weights = np.full(height, _VALID_ROW_WEIGHT)
        filled = averages.copy()
        for y in range(height):
            if averages[y] >= lo:
                continue
            weights[y] = _FILLED_ROW_WEIGHT
            left = y
            while left > 0 and averages[left] < lo:
                left -= 1
            right = y
            while right < height - 1 and averages[right] < lo:
                right += 1
            if averages[left] > lo and averages[right] > lo:
                filled[y] = (averages[left] + averages[right]) / 2
            elif averages[left] > lo:
                filled[y] = averages[left]
            elif averages[right] > lo:
                filled[y] = averages[right]

        rows = np.arange(height, dtype=float)
        polynomial = fit_polynomial(rows, filled, self.order, weights=np.sqrt(weights))
        if polynomial is None:
            return None
        fitted = polynomial(rows)
        peak = fitted.max()
        if not np.isfinite(peak) or peak <= 0:
            return None
        return fitted / peak

    def apply(self, image: MonoImage) -> MonoImage:
        """Correct ``image``; returned unchanged when it carries no ellipse."""
        ellipse = image.metadata.ellipse
        if ellipse is None:
            logger.debug("Flat correction skipped: no ellipse")
            return image
        factors = self.compute_correction_factors(image.data, ellipse)
        if factors is None:
            logger.warning("Flat correction skipped: unable to compute correction factors")
            return image
        data = image.data
        out = data.copy()
        mask = ellipse_mask(ellipse, data.shape)
        with np.errstate(divide='ignore', invalid='ignore'):
            for y, factor in enumerate(factors):
                if not np.isfinite(factor) or factor <= 0:
                    continue
                out[y, mask[y]] = data[y, mask[y]] / factor
        out = np.minimum(bilinear_smoothing(data, out, ellipse), MAX_PIXEL_VALUE)
        return image.with_data(out, image.metadata.with_transform("flat correction"))
