"""Core value types: images, metadata, ellipse model and regressions."""

from spectrohelio.core.ellipse import Ellipse, FitError, FitResult, fit_ellipse
from spectrohelio.core.metadata import (
    ImageMetadata,
    RedshiftArea,
    ActiveRegion,
    ReferenceCoords,
)
from spectrohelio.core.image import (
    MAX_PIXEL_VALUE,
    MonoImage,
    RGBImage,
    FileBackedImage,
    Image,
    materialize,
)
from spectrohelio.core.regression import DistortionPolynomial, fit_polynomial
from spectrohelio.core.concurrency import Accumulator, CountDownLatch, IncrementalAverage, pool_size
from spectrohelio.core.results import ShiftResult, ShiftStatus, results_dataframe

__all__ = [
    "Ellipse",
    "FitError",
    "FitResult",
    "fit_ellipse",
    "ImageMetadata",
    "RedshiftArea",
    "ActiveRegion",
    "ReferenceCoords",
    "MAX_PIXEL_VALUE",
    "MonoImage",
    "RGBImage",
    "FileBackedImage",
    "Image",
    "materialize",
    "DistortionPolynomial",
    "fit_polynomial",
    "Accumulator",
    "CountDownLatch",
    "IncrementalAverage",
    "pool_size",
    "ShiftResult",
    "ShiftStatus",
    "results_dataframe",
]
