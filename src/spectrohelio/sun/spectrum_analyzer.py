"""Per-frame dispersion curve detection.

A frame is one slit exposure: columns are positions along the slit, rows
are wavelengths. The absorption line shows as a dark, slightly curved
trace; this module locates it column by column and fits a polynomial.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np

from spectrohelio.core.image import MAX_PIXEL_VALUE
from spectrohelio.core.regression import DistortionPolynomial, fit_polynomial

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['SpectrumAnalysisResult', 'SpectrumFrameAnalyzer']

logger = logging.getLogger(__name__)

# Outlier rejection factors for the first (central) pass
_FIRST_PASS_FACTORS = (2.0, 2.5, 3.0)
# Second pass keeps points within max(_MIN_DEVIATION, _DEVIATION_MULTIPLIER * stddev)
_MIN_DEVIATION = 4.0
_DEVIATION_MULTIPLIER = 8.0
_MIN_POINTS = 3


@dataclass(frozen=True)
class SpectrumAnalysisResult:
    """Outcome of analyzing one frame.

    ``polynomial`` is None when too few usable minima were found; callers
    fall back to a forced or previously detected polynomial.
    """
    left_border: Optional[int]
    right_border: Optional[int]
    polynomial: Optional[DistortionPolynomial]
    sample_points: Tuple[Tuple[float, float], ...] = ()


class SpectrumFrameAnalyzer:
    """Finds the illuminated x-range and the spectral line curve of a frame.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.spectrum``: ``detection_threshold`` (explicit column
        average threshold, None for automatic detection),
        ``auto_threshold_ratio``, ``sampling_step``, ``vertical_margin``
        and ``overexposure_ratio``.
    """

    def __init__(self, config: "InternalConfig"):
        spectrum = config.spectrum
        self.threshold = spectrum.detection_threshold
        self.auto_ratio = spectrum.auto_threshold_ratio
        self.step = spectrum.sampling_step
        self.margin = spectrum.vertical_margin
        self.overexposed = spectrum.overexposure_ratio * MAX_PIXEL_VALUE

    def analyze(self, frame: np.ndarray) -> SpectrumAnalysisResult:
        """Detect sun borders and fit the dispersion polynomial of ``frame``."""
        data = np.asarray(frame, dtype=np.float64)
        left, right = self.find_borders(data)
        if left is None:
            logger.debug("No illuminated column found in frame")
            return SpectrumAnalysisResult(None, None, None)
        polynomial, points = self.find_polynomial(data, left, right)
        return SpectrumAnalysisResult(left, right, polynomial, points)

    def find_borders(self, data: np.ndarray) -> Tuple[Optional[int], Optional[int]]:
        """First and last column whose average marks the sun region."""
        averages = data.mean(axis=0)
        if self.threshold is not None:
            mask = averages >= self.threshold
        else:
            lo, hi = averages.min(), averages.max()
            if hi <= lo:
                return None, None
            mask = (averages - lo) / (hi - lo) >= self.auto_ratio
        columns = np.flatnonzero(mask)
        if columns.size == 0:
            return None, None
        return int(columns[0]), int(columns[-1])

    def find_line_minimum(self, data: np.ndarray, x: int) -> Optional[float]:
        """Row of minimal intensity in column ``x``, None when overexposed.

        The integer minimum is refined with a three-point parabola.
        """
        height = data.shape[0]
        top, bottom = self.margin, height - self.margin
        if bottom - top < 3:
            return None
        column = data[top:bottom, x]
        idx = int(np.argmin(column))
        if column[idx] >= self.overexposed:
            return None
        y = float(idx)
        if 0 < idx < column.size - 1:
            ym, y0, yp = column[idx - 1], column[idx], column[idx + 1]
            denom = ym - 2 * y0 + yp
            if denom > 0:
                y += 0.5 * (ym - yp) / denom
        return y + top

    def sample(self, data: np.ndarray, start: int, end: int) -> np.ndarray:
        """Sample (x, y) minima every ``sampling_step`` columns in [start, end]."""
        points = []
        for x in range(start, end + 1, self.step):
            y = self.find_line_minimum(data, x)
            if y is not None:
                points.append((float(x), y))
        return np.asarray(points, dtype=float).reshape(-1, 2)

    def find_polynomial(self, data: np.ndarray, left: int, right: int
                        ) -> Tuple[Optional[DistortionPolynomial], Tuple[Tuple[float, float], ...]]:
        """Two-pass robust fit, with an unfiltered fallback."""
        span = right - left
        central = self.sample(data, left + span // 4, right - span // 4)
        central, stddev = self._filter_central(central)

        all_points = self.sample(data, left, right)
        if central.shape[0] >= _MIN_POINTS:
            first = fit_polynomial(central[:, 0], central[:, 1], 2)
            if first is not None:
                threshold = max(_MIN_DEVIATION, _DEVIATION_MULTIPLIER * stddev)
                deviation = np.abs(all_points[:, 1] - first(all_points[:, 0]))
                kept = all_points[deviation <= threshold]
                if kept.shape[0] >= _MIN_POINTS:
                    polynomial = fit_polynomial(kept[:, 0], kept[:, 1], min(3, kept.shape[0] - 1))
                    if polynomial is not None:
                        return polynomial, _as_tuple(kept)

        logger.debug("Robust fit failed, retrying without filtering over [%d, %d]", left, right)
        if all_points.shape[0] >= _MIN_POINTS:
            order = min(3, all_points.shape[0] - 1)
            polynomial = fit_polynomial(all_points[:, 0], all_points[:, 1], order)
            if polynomial is not None:
                return polynomial, _as_tuple(all_points)
        return None, _as_tuple(all_points)

    def _filter_central(self, points: np.ndarray) -> Tuple[np.ndarray, float]:
        """Remove y outliers with an escalating stddev cutoff.

        Returns the surviving points and the residual stddev of a 2nd order
        fit through them.
        """
        for factor in _FIRST_PASS_FACTORS:
            if points.shape[0] < _MIN_POINTS:
                break
            ys = points[:, 1]
            std = ys.std()
            if std == 0:
                break
            keep = np.abs(ys - ys.mean()) <= factor * std
            if keep.all():
                break
            points = points[keep]
        stddev = 0.0
        if points.shape[0] >= _MIN_POINTS:
            fit = fit_polynomial(points[:, 0], points[:, 1], 2)
            if fit is not None:
                stddev = float(np.std(points[:, 1] - fit(points[:, 0])))
        return points, stddev


def _as_tuple(points: np.ndarray) -> Tuple[Tuple[float, float], ...]:
    return tuple((float(x), float(y)) for x, y in points)
