"""Solar disk detection by robust ellipse regression.

Processing steps:

1. Prepare: truncate zero pixels, blur, square, blur again, then run the
   blind background neutralization and stretch to the full range.
2. Sample: threshold, keep the largest connected region, then scan every
   row and every column from both ends for its first pixel.
3. Filter: drop rows/columns with abnormally many samples (spectral
   artifacts), drop samples far from a provisional ellipse, keep the
   samples farthest from the image centre.
4. Solve: least-squares ellipse regression, decimating and retrying on
   failure.

Failure to find enough samples is an expected outcome: :meth:`run`
returns None and the caller treats the geometry as undetectable.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np
from scipy.ndimage import gaussian_filter
from skimage.measure import label

from spectrohelio.core.ellipse import Ellipse, FitResult, fit_ellipse
from spectrohelio.core.events import Broadcaster, ProgressEvent
from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.sun.background import neutralize_background, remove_zero_pixels

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['EllipseFittingResult', 'EllipseFittingTask']

logger = logging.getLogger(__name__)

_LINE_BASE_COUNT = 8
_MAX_DISTANCE_ITERATIONS = 10
_TASK_NAME = "Fitting ellipse"


@dataclass(frozen=True)
class EllipseFittingResult:
    """Detected disk and the samples the final regression used."""
    ellipse: Ellipse
    samples: Tuple[Tuple[float, float], ...]


class EllipseFittingTask:
    """Locates the solar disk of a reconstructed image.

    Parameters
    ----------
    config : InternalConfig
        Uses the ``config.ellipse`` section.
    broadcaster : Broadcaster, optional
        Receives progress events.
    """

    def __init__(self, config: "InternalConfig", broadcaster: Optional[Broadcaster] = None):
        cfg = config.ellipse
        self.blur_sigma = cfg.blur_sigma
        self.max_iterations = cfg.max_neutralization_iterations
        self.tolerance = cfg.neutralization_tolerance
        self.sensitivity = cfg.sensitivity
        self.line_padding = cfg.line_padding
        self.min_samples = cfg.min_samples
        self.decimation_fraction = cfg.decimation_fraction
        self.sigma_start = cfg.sigma_start
        self.sigma_step = cfg.sigma_step
        self.sigma_max = cfg.sigma_max
        self.broadcaster = broadcaster

    def _progress(self, value: float) -> None:
        if self.broadcaster is not None:
            self.broadcaster.broadcast(ProgressEvent.of(value, _TASK_NAME))

    def run(self, image: MonoImage) -> Optional[EllipseFittingResult]:
        """Detect the disk of ``image``; None when no ellipse can be found."""
        self._progress(0.0)
        prepared = self.prepare(image)
        self._progress(0.25)
        xs, ys = self.sample_edges(prepared)
        logger.debug("Edge sampling produced %d samples", xs.size)
        if xs.size < self.min_samples:
            logger.warning("Not enough edge samples to fit an ellipse: %d < %d", xs.size, self.min_samples)
            self._progress(1.0)
            return None

        lx, ly = self.filter_lines(xs, ys)
        self._progress(0.5)
        fx, fy = self.filter_by_distance(lx, ly)
        dx, dy = self.decimate(fx, fy, image.width, image.height)
        self._progress(0.75)
        result = self.solve(dx, dy, (lx, ly), image.width, image.height)
        self._progress(1.0)
        if result is None:
            logger.warning("Ellipse regression failed")
        else:
            logger.info("Detected %s", result.ellipse)
        return result

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self, image: MonoImage) -> np.ndarray:
        """Contrast-enhanced, background-neutralized copy of ``image``."""
        truncated = remove_zero_pixels(MonoImage(image.data))
        data = gaussian_filter(truncated.data.astype(np.float64), self.blur_sigma)
        data = data * data / MAX_PIXEL_VALUE
        data = gaussian_filter(data, self.blur_sigma)
        neutralized = neutralize_background(
            MonoImage(data.astype(np.float32)), self.max_iterations, self.tolerance
        )
        return _stretch(neutralized.data.astype(np.float64))

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_edges(self, prepared: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """First pixel above threshold scanning each row and column from both ends."""
        normalized = prepared / MAX_PIXEL_VALUE
        threshold = self.sensitivity * (prepared.min() + prepared.std()) / MAX_PIXEL_VALUE
        above = _largest_region(normalized > threshold)
        if not above.any():
            return np.empty(0), np.empty(0)
        height, width = above.shape
        xs, ys = [], []

        rows = np.flatnonzero(above.any(axis=1))
        for y in rows:
            hits = np.flatnonzero(above[y])
            xs.extend((hits[0], hits[-1]))
            ys.extend((y, y))

        cols = np.flatnonzero(above.any(axis=0))
        for x in cols:
            hits = np.flatnonzero(above[:, x])
            xs.extend((x, x))
            ys.extend((hits[0], hits[-1]))

        points = np.unique(np.column_stack([xs, ys]).astype(float).reshape(-1, 2), axis=0)
        # Hits on the frame border are truncation artifacts, not limb points
        inner = ((points[:, 0] > 0) & (points[:, 0] < width - 1)
                 & (points[:, 1] > 0) & (points[:, 1] < height - 1))
        points = points[inner]
        return points[:, 0], points[:, 1]

    # ------------------------------------------------------------------
    # Outlier rejection
    # ------------------------------------------------------------------

    def filter_lines(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Drop samples on rows or columns holding abnormally many samples.

        Falls back to a decimated copy of the input when too few samples
        would remain.
        """
        n = xs.size
        limit = _LINE_BASE_COUNT + math.sqrt(n / 2)
        reject = np.zeros(n, dtype=bool)
        for coords in (xs, ys):
            idx = coords.astype(int)
            values, counts = np.unique(idx, return_counts=True)
            flagged = values[counts > limit]
            if flagged.size == 0:
                continue
            padded = np.unique(
                (flagged[:, None] + np.arange(-self.line_padding, self.line_padding + 1)).ravel()
            )
            reject |= np.isin(idx, padded)
        if reject.any():
            logger.debug("Line filter rejected %d of %d samples", reject.sum(), n)
        kept = ~reject
        if kept.sum() < self.min_samples:
            step = max(1, int(round(1 / max(self.decimation_fraction, 1e-6))))
            logger.debug("Line filter left too few samples, using decimated originals")
            return xs[::step], ys[::step]
        return xs[kept], ys[kept]

    def filter_by_distance(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Iteratively drop samples far from a provisional ellipse.

        The cutoff is ``sigma * std + mean`` of the radial distances, with
        sigma growing by ``sigma_step`` per iteration up to ``sigma_max``.
        Stops when the sample count is stable or would fall below the
        minimum.
        """
        sigma = self.sigma_start
        for _ in range(_MAX_DISTANCE_ITERATIONS):
            fit = fit_ellipse(xs, ys)
            if not fit.ok:
                break
            distance = fit.ellipse.radial_distance(xs, ys)
            keep = distance <= sigma * distance.std() + distance.mean()
            if keep.all() or keep.sum() < self.min_samples:
                break
            xs, ys = xs[keep], ys[keep]
            sigma = min(sigma + self.sigma_step, self.sigma_max)
        return xs, ys

    def decimate(self, xs: np.ndarray, ys: np.ndarray, width: int, height: int
                 ) -> Tuple[np.ndarray, np.ndarray]:
        """Keep the ``decimation_fraction`` of samples farthest from the image centre."""
        keep_count = int(xs.size * self.decimation_fraction)
        if keep_count < self.min_samples:
            return xs, ys
        distance = np.hypot(xs - width / 2, ys - height / 2)
        order = np.argsort(distance)[::-1][:keep_count]
        return xs[order], ys[order]

    # ------------------------------------------------------------------
    # Regression
    # ------------------------------------------------------------------

    def solve(self, xs: np.ndarray, ys: np.ndarray, fallback: Tuple[np.ndarray, np.ndarray],
              width: int, height: int) -> Optional[EllipseFittingResult]:
        """Fit, decimating and retrying on failure.

        Gives up when the sample count falls below the minimum twice in a
        row; the first time, ``fallback`` samples are used instead.
        """
        below_minimum = 0
        while True:
            if xs.size < self.min_samples:
                below_minimum += 1
                if below_minimum >= 2:
                    return None
                xs, ys = fallback
                continue
            result: FitResult = fit_ellipse(xs, ys)
            if result.ok and _plausible(result.ellipse, width, height):
                samples = tuple((float(x), float(y)) for x, y in zip(xs, ys))
                return EllipseFittingResult(result.ellipse, samples)
            logger.debug("Ellipse fit failed (%s) with %d samples, decimating",
                         result.error, xs.size)
            keep = max(int(xs.size * self.decimation_fraction), 0)
            if keep == xs.size:
                keep -= 1
            idx = np.linspace(0, xs.size - 1, keep).astype(int) if keep > 0 else np.array([], dtype=int)
            xs, ys = xs[idx], ys[idx]


def _stretch(data: np.ndarray) -> np.ndarray:
    lo, hi = data.min(), data.max()
    if hi <= lo:
        return np.zeros_like(data)
    return (data - lo) / (hi - lo) * MAX_PIXEL_VALUE


def _plausible(ellipse: Ellipse, width: int, height: int) -> bool:
    try:
        cx, cy = ellipse.center
        major, minor = ellipse.semi_axes
    except (ValueError, ZeroDivisionError):
        return False
    size = max(width, height)
    return (-size <= cx <= 2 * size and -size <= cy <= 2 * size
            and 0 < minor <= major < 4 * size)


def _largest_region(mask: np.ndarray) -> np.ndarray:
    """Keep the largest connected region of ``mask`` (the disk), dropping specks."""
    labels = label(mask, connectivity=2)
    if labels.max() <= 1:
        return mask
    counts = np.bincount(labels.ravel())
    counts[0] = 0
    return labels == int(np.argmax(counts))
