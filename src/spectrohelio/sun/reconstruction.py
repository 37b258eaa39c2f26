"""Per-line image reconstruction along the dispersion curve.

For a pixel shift ``s`` the reconstructed line of a frame is the frame
sampled at ``y = p(x) + s`` for every column ``x``, linearly interpolated
between the two bracketing rows.
"""

import logging
from typing import Tuple

import numpy as np

from spectrohelio.contracts import ProcessingError
from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.core.regression import DistortionPolynomial

__all__ = ['LineReconstructor', 'orient_reconstruction']

logger = logging.getLogger(__name__)


class LineReconstructor:
    """Samples one frame along ``polynomial + pixel_shift``.

    Sampling positions are computed once; columns whose position falls
    outside the frame reuse the position of the previous in-range column
    (or of the first in-range column for a leading run).
    """

    def __init__(self, polynomial: DistortionPolynomial, pixel_shift: float,
                 width: int, height: int):
        self.pixel_shift = pixel_shift
        self.width = width
        self.height = height
        self.rows, self.frac = self._positions(polynomial, pixel_shift, width, height)
        self.columns = np.arange(width)

    @staticmethod
    def _positions(polynomial: DistortionPolynomial, shift: float, width: int,
                   height: int) -> Tuple[np.ndarray, np.ndarray]:
        yd = polynomial(np.arange(width, dtype=float)) + shift
        yi = np.floor(yd).astype(np.int64)
        valid = (yi >= 0) & (yi + 1 < height)
        if not valid.any():
            logger.warning("Pixel shift %.2f samples outside the frame for every column", shift)
            return np.zeros(width, dtype=np.int64), np.zeros(width)
        index = np.where(valid, np.arange(width), -1)
        index = np.maximum.accumulate(index)
        index[index < 0] = int(np.flatnonzero(valid)[0])
        yd = yd[index]
        yi = yi[index]
        return yi, yd - yi

    def reconstruct(self, frame: np.ndarray) -> np.ndarray:
        """Reconstructed line of ``frame`` (float32, length ``width``).

        Raises
        ------
        ProcessingError
            If an interpolated value falls outside [0, 65535].
        """
        lower = frame[self.rows, self.columns]
        upper = frame[np.minimum(self.rows + 1, self.height - 1), self.columns]
        line = lower * (1 - self.frac) + upper * self.frac
        if line.size and (line.min() < 0 or line.max() > MAX_PIXEL_VALUE):
            raise ProcessingError(
                f"Reconstructed value out of range [0, {MAX_PIXEL_VALUE:.0f}] "
                f"at pixel shift {self.pixel_shift}"
            )
        return line.astype(np.float32)


def _moved(metadata, fn, matrix, description):
    ellipse = metadata.ellipse.transform(matrix) if metadata.ellipse is not None else None
    return metadata.transform_points(fn, description, ellipse=ellipse)


def orient_reconstruction(image: MonoImage, horizontal_mirror: bool,
                          vertical_mirror: bool) -> MonoImage:
    """Rotate the raw reconstruction left, then apply the optional mirrors.

    The raw buffer has one row per frame; rotating left puts the scan
    direction on the x axis. Metadata points follow the pixels.
    """
    source_width = image.width
    data = np.rot90(image.data)
    metadata = _moved(image.metadata, lambda xs, ys: (ys, source_width - 1 - xs),
                      [[0, 1, 0], [-1, 0, source_width - 1], [0, 0, 1]], "rotate left")
    height, width = data.shape
    if horizontal_mirror:
        data = data[:, ::-1]
        metadata = _moved(metadata, lambda xs, ys: (width - 1 - xs, ys),
                          [[-1, 0, width - 1], [0, 1, 0], [0, 0, 1]], "horizontal mirror")
    if vertical_mirror:
        data = data[::-1, :]
        metadata = _moved(metadata, lambda xs, ys: (xs, height - 1 - ys),
                          [[1, 0, 0], [0, -1, height - 1], [0, 0, 1]], "vertical mirror")
    return MonoImage(np.ascontiguousarray(data), metadata)
