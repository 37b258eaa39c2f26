"""Rectify a tilted, sheared elliptical disk into an upright circle.

The correction is a horizontal shear followed by an anisotropic scale:

    x' = (x - shift + y * shear) * sx
    y' = y * sy

The shear is applied with sub-pixel linear splatting, the scale with
bilinear resampling. Every point-bearing metadata field goes through the
exact same point function so overlays stay aligned with the pixels.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple, TYPE_CHECKING

import numpy as np
from scipy.ndimage import affine_transform

from spectrohelio.contracts import GeometryError, assert_geometry_corrected
from spectrohelio.core.ellipse import Ellipse, fit_ellipse
from spectrohelio.core.image import MonoImage
from spectrohelio.schemas.param import AutocropMode
from spectrohelio.sun.analysis_utils import estimate_background
from spectrohelio.sun.cropper import crop_to_rectangle, crop_to_square

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['GeometryCorrectionResult', 'GeometryCorrector', 'compute_shear', 'compute_scale']

logger = logging.getLogger(__name__)

_EPSILON = 1e-9
# Disk radius factor excluded from the blackpoint estimate
_LIMB_MARGIN = 1.05

_AUTOCROP_FACTORS = {
    AutocropMode.RADIUS_1_1.value: 1.1,
    AutocropMode.RADIUS_1_2.value: 1.2,
    AutocropMode.RADIUS_1_5.value: 1.5,
}


@dataclass(frozen=True)
class GeometryCorrectionResult:
    """Corrected image plus the parameters of the applied transform."""
    corrected: MonoImage
    circle: Ellipse
    blackpoint: float
    shear: float
    shift: float
    sx: float
    sy: float


def compute_shear(theta: float, semi_a: float, semi_b: float) -> float:
    """Horizontal shear factor that makes the ellipse axis-aligned.

    ``semi_a`` is the semi-axis along direction ``theta``.
    """
    m = math.tan(-theta)
    c, s = math.cos(theta), math.sin(theta)
    a2, b2 = semi_a * semi_a, semi_b * semi_b
    return (m * c * a2 + s * b2) / (b2 * c - a2 * m * s)


def compute_scale(theta: float, semi_a: float, semi_b: float) -> float:
    """Vertical scale turning the sheared ellipse into a circle."""
    m = math.tan(-theta)
    c, s = math.cos(theta), math.sin(theta)
    a2, b2 = semi_a * semi_a, semi_b * semi_b
    return abs(semi_a * semi_b * math.sqrt((a2 * m * m + b2) / (a2 * s * s + b2 * c * c))
               / (b2 * c - a2 * m * s))


class GeometryCorrector:
    """Applies shear, scale, optional rotation and autocrop.

    Parameters
    ----------
    config : InternalConfig
        Uses the ``config.geometry`` section.
    """

    def __init__(self, config: "InternalConfig"):
        geometry = config.geometry
        self.forced_tilt = geometry.forced_tilt
        self.forced_xy_ratio = geometry.forced_xy_ratio
        self.disallow_downsampling = geometry.disallow_downsampling
        self.autocrop = geometry.autocrop
        self.crop_rounding = geometry.crop_rounding
        self.parallactic_angle = geometry.parallactic_angle
        self.min_circle_samples = geometry.min_circle_samples
        self.max_circle_samples = geometry.max_circle_samples

    def correct(self, image: MonoImage, ellipse: Ellipse) -> GeometryCorrectionResult:
        """Rectify ``image`` whose disk is ``ellipse``.

        Raises
        ------
        GeometryError
            If no circle can be fitted to the transformed ellipse samples.
        """
        semi_a, semi_b = ellipse.semi_axes
        theta = math.radians(self.forced_tilt) if self.forced_tilt is not None else ellipse.rotation_angle
        shear = compute_shear(theta, semi_a, semi_b)
        if abs(shear) < _EPSILON:
            shear = 0.0
        sx, sy = self._scale_ratios(compute_scale(theta, semi_a, semi_b))

        height, width = image.height, image.width
        max_dx = height * shear
        shift = max_dx if max_dx < 0 else 0.0
        extended_width = width + int(math.ceil(abs(max_dx)))
        logger.info("Geometry correction: theta=%.2f deg, shear=%.5f, sx=%.5f, sy=%.5f",
                    math.degrees(theta), shear, sx, sy)

        data = self.apply_shear(image.data, shear, shift, extended_width)
        data = self.apply_scale(data, sx, sy)

        def transform(xs, ys):
            return (xs - shift + ys * shear) * sx, ys * sy

        circle = self.derive_circle(ellipse, transform)
        metadata = image.metadata.transform_points(
            transform,
            f"geometry correction (shear={shear:.5f}, sx={sx:.5f}, sy={sy:.5f})",
            ellipse=circle,
        )
        corrected = MonoImage(data, metadata)
        blackpoint = estimate_background(corrected.data, circle, margin=_LIMB_MARGIN)

        if self.parallactic_angle is not None:
            corrected, circle = self.rotate(corrected, circle, math.radians(self.parallactic_angle))
        corrected, circle = self.crop(corrected, circle, blackpoint, width)

        result = GeometryCorrectionResult(corrected, circle, blackpoint, shear, shift, sx, sy)
        assert_geometry_corrected(result)
        return result

    def _scale_ratios(self, sy: float) -> Tuple[float, float]:
        if self.forced_xy_ratio is not None:
            sy = self.forced_xy_ratio
        if abs(sy - 1) < _EPSILON:
            return 1.0, 1.0
        # Keep the disk resolution: expand x instead of shrinking y
        if sy < 1 or not self.disallow_downsampling:
            return 1.0 / sy, 1.0
        return 1.0, sy

    @staticmethod
    def apply_shear(data: np.ndarray, shear: float, shift: float, extended_width: int) -> np.ndarray:
        """Shear rows horizontally by ``y * shear - shift`` with linear splatting.

        Each source pixel is split between the two destination columns
        bracketing its new position; pixels whose bracket leaves the buffer
        are dropped and the border columns are filled with the edge values.
        """
        height, width = data.shape
        if shear == 0 and shift == 0 and extended_width == width:
            return data.astype(np.float32, copy=True)

        out = np.zeros((height, extended_width), dtype=np.float64)
        ys, xs = np.mgrid[0:height, 0:width]
        nx = xs - shift + ys * shear
        i0 = np.floor(nx).astype(np.int64)
        frac = nx - i0
        valid = (i0 >= 0) & (i0 + 1 < extended_width)
        values = data.astype(np.float64)
        np.add.at(out, (ys[valid], i0[valid]), values[valid] * (1 - frac[valid]))
        np.add.at(out, (ys[valid], i0[valid] + 1), values[valid] * frac[valid])

        for y in range(height):
            left = -shift + y * shear
            left_end = min(int(math.ceil(left)), extended_width)
            if left_end > 0:
                out[y, :left_end] = data[y, 0]
            right = width - 1 - shift + y * shear
            right_start = max(int(right), 0)
            if right_start < extended_width:
                out[y, right_start:] = data[y, width - 1]
        return out.astype(np.float32)

    @staticmethod
    def apply_scale(data: np.ndarray, sx: float, sy: float) -> np.ndarray:
        """Bilinear resampling so that ``(x, y)`` maps to ``(x * sx, y * sy)``."""
        if sx == 1 and sy == 1:
            return data
        height, width = data.shape
        out_shape = (max(1, int(math.ceil(height * sy))), max(1, int(math.ceil(width * sx))))
        return affine_transform(
            data, np.diag([1.0 / sy, 1.0 / sx]), output_shape=out_shape, order=1, mode='nearest'
        ).astype(np.float32)

    def derive_circle(self, ellipse: Ellipse, transform) -> Ellipse:
        """Fit the transformed boundary of ``ellipse``, doubling samples on failure."""
        count = self.min_circle_samples
        while count <= self.max_circle_samples:
            xs, ys = ellipse.sample_boundary(count)
            txs, tys = transform(xs, ys)
            result = fit_ellipse(txs, tys)
            if result.ok:
                return result.ellipse
            logger.debug("Circle fit failed with %d samples (%s)", count, result.error)
            count *= 2
        raise GeometryError(
            f"Unable to fit a circle to the corrected disk with up to {self.max_circle_samples} samples"
        )

    @staticmethod
    def rotate(image: MonoImage, circle: Ellipse, angle: float) -> Tuple[MonoImage, Ellipse]:
        """Rotate counter-clockwise by ``angle`` radians around the image centre."""
        height, width = image.height, image.width
        cx, cy = (width - 1) / 2, (height - 1) / 2
        c, s = math.cos(angle), math.sin(angle)
        # Inverse map in (row, col) order
        matrix = np.array([[c, -s], [s, c]])
        centre = np.array([cy, cx])
        offset = centre - matrix @ centre
        data = affine_transform(image.data, matrix, offset=offset, order=1, mode='constant', cval=0.0)

        def transform(xs, ys):
            dx, dy = xs - cx, ys - cy
            return cx + c * dx - s * dy, cy + s * dx + c * dy

        rotated = circle.rotate(angle, (cx, cy))
        metadata = image.metadata.transform_points(
            transform, f"parallactic rotation ({math.degrees(angle):.2f} deg)", ellipse=rotated
        )
        return MonoImage(data.astype(np.float32), metadata), rotated

    def crop(self, image: MonoImage, circle: Ellipse, blackpoint: float,
             source_width: int) -> Tuple[MonoImage, Ellipse]:
        mode = AutocropMode(self.autocrop)
        if mode is AutocropMode.OFF:
            return image, circle
        if mode is AutocropMode.SOURCE_WIDTH:
            diameter = sum(circle.semi_axes)
            if source_width < diameter:
                logger.warning("Autocrop to source width (%d) skipped: it would clip the disk (%.1f px)",
                               source_width, diameter)
                return image, circle
            result = crop_to_rectangle(image, circle, blackpoint, source_width, source_width)
        else:
            result = crop_to_square(image, circle, blackpoint, _AUTOCROP_FACTORS[mode.value],
                                    self.crop_rounding)
        return result.cropped, result.cropped.metadata.ellipse
