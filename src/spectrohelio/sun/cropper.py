"""Crop a corrected image around the solar disk."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import MonoImage

__all__ = ['CropResult', 'crop_to_square', 'crop_to_rectangle']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropResult:
    """Cropped image and the source coordinates of its top-left corner.

    A source point ``(x, y)`` lands at ``(x - shift_x, y - shift_y)``.
    """
    cropped: MonoImage
    center_shift: Tuple[float, float]


def _round_to_multiple(value: int, rounding: int) -> int:
    remainder = value % rounding
    if remainder == 0:
        return value
    if remainder <= rounding // 2:
        return value - remainder
    return value + rounding - remainder


def _extract(image: MonoImage, ellipse: Ellipse, black_point: float,
             width: int, height: int, description: str) -> CropResult:
    cx, cy = ellipse.center
    x0 = int(round(cx)) - width // 2
    y0 = int(round(cy)) - height // 2
    source = image.data
    out = np.full((height, width), black_point, dtype=np.float32)

    sx0, sy0 = max(x0, 0), max(y0, 0)
    sx1 = min(x0 + width, image.width)
    sy1 = min(y0 + height, image.height)
    if sx1 > sx0 and sy1 > sy0:
        out[sy0 - y0:sy1 - y0, sx0 - x0:sx1 - x0] = source[sy0:sy1, sx0:sx1]

    def shift(xs, ys):
        return xs - x0, ys - y0

    metadata = image.metadata.transform_points(
        shift, description, ellipse=ellipse.translate(-x0, -y0)
    )
    return CropResult(MonoImage(out, metadata), (float(x0), float(y0)))


def crop_to_square(image: MonoImage, ellipse: Ellipse, black_point: float,
                   diameter_factor: Optional[float] = None, rounding: int = 16) -> CropResult:
    """Square crop centred on the disk.

    Without ``diameter_factor`` the square side is the smaller image
    dimension, or the larger one when the disk does not fit. With a factor,
    the side is ``diameter * factor`` rounded to the nearest multiple of
    ``rounding``. Areas outside the source are filled with ``black_point``.
    """
    major, minor = ellipse.semi_axes
    diameter = major + minor
    width, height = image.width, image.height
    if diameter > width or diameter > height:
        square = max(width, height)
    else:
        square = min(width, height)
    if diameter_factor is not None:
        square = _round_to_multiple(int(diameter * diameter_factor), rounding)
    logger.info("Disk diameter: %.2f px, crop to %dx%d", diameter, square, square)
    return _extract(image, ellipse, black_point, square, square, f"crop to square {square}")


def crop_to_rectangle(image: MonoImage, ellipse: Ellipse, black_point: float,
                      width: int, height: int) -> CropResult:
    """``width`` x ``height`` crop centred on the disk, filled with ``black_point``."""
    return _extract(image, ellipse, black_point, width, height,
                    f"crop to rectangle {width}x{height}")
