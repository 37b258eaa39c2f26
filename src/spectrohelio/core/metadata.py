"""Typed metadata registry attached to every image.

Metadata must follow an image through every geometric transform. Each
known kind has its own optional field; ``extra`` is the escape hatch for
values without a dedicated slot. Point-bearing fields are transformed
together through :meth:`ImageMetadata.transform_points` so overlays stay
numerically identical to the pixel transform applied to the image.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from spectrohelio.core.ellipse import Ellipse

__all__ = [
    'RedshiftArea',
    'ActiveRegion',
    'ReferenceCoords',
    'ImageMetadata',
    'PointTransform',
]

# Vectorized (xs, ys) -> (xs, ys) mapping
PointTransform = Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]


@dataclass(frozen=True)
class RedshiftArea:
    """Rectangular area where a Doppler shift was measured."""
    pixel_shift: float
    km_per_sec: float
    x1: float
    y1: float
    x2: float
    y2: float
    max_x: float
    max_y: float

    def transform(self, fn: PointTransform) -> "RedshiftArea":
        xs, ys = fn(np.array([self.x1, self.x2, self.max_x], dtype=float),
                    np.array([self.y1, self.y2, self.max_y], dtype=float))
        return replace(
            self,
            x1=float(min(xs[0], xs[1])), y1=float(min(ys[0], ys[1])),
            x2=float(max(xs[0], xs[1])), y2=float(max(ys[0], ys[1])),
            max_x=float(xs[2]), max_y=float(ys[2]),
        )


@dataclass(frozen=True)
class ActiveRegion:
    """Labelled active region outline in pixel coordinates."""
    label: str
    points: Tuple[Tuple[float, float], ...]

    def transform(self, fn: PointTransform) -> "ActiveRegion":
        if not self.points:
            return self
        pts = np.asarray(self.points, dtype=float)
        xs, ys = fn(pts[:, 0], pts[:, 1])
        return replace(self, points=tuple((float(x), float(y)) for x, y in zip(xs, ys)))


@dataclass(frozen=True)
class ReferenceCoords:
    """Reference points tracked back to the original reconstruction frame.

    ``original`` holds the positions in the raw reconstruction, ``current``
    where those points are after all transforms applied so far.
    """
    original: Tuple[Tuple[float, float], ...]
    current: Tuple[Tuple[float, float], ...]

    @classmethod
    def of(cls, points) -> "ReferenceCoords":
        pts = tuple((float(x), float(y)) for x, y in points)
        return cls(original=pts, current=pts)

    def transform(self, fn: PointTransform) -> "ReferenceCoords":
        if not self.current:
            return self
        pts = np.asarray(self.current, dtype=float)
        xs, ys = fn(pts[:, 0], pts[:, 1])
        return replace(self, current=tuple((float(x), float(y)) for x, y in zip(xs, ys)))


@dataclass(frozen=True)
class ImageMetadata:
    """Sparse registry of optional, typed metadata fields.

    Attributes
    ----------
    ellipse : Ellipse, optional
        Fitted solar disk. Recomputed (never mutated) by geometric stages.
    redshifts : tuple of RedshiftArea
        Doppler measurement areas.
    active_regions : tuple of ActiveRegion
        Detected active region outlines.
    reference_coords : ReferenceCoords, optional
        Points tracked through every transform.
    transformation_history : tuple of str
        Human-readable list of transforms applied so far.
    pixel_shift : float, optional
        Pixel shift the image was reconstructed at.
    extra : dict
        Values without a dedicated field.
    """
    ellipse: Optional[Ellipse] = None
    redshifts: Tuple[RedshiftArea, ...] = ()
    active_regions: Tuple[ActiveRegion, ...] = ()
    reference_coords: Optional[ReferenceCoords] = None
    transformation_history: Tuple[str, ...] = ()
    pixel_shift: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def with_transform(self, description: str) -> "ImageMetadata":
        """Return a copy with ``description`` appended to the history."""
        return replace(self, transformation_history=self.transformation_history + (description,))

    def with_ellipse(self, ellipse: Optional[Ellipse]) -> "ImageMetadata":
        return replace(self, ellipse=ellipse)

    def replace(self, **changes) -> "ImageMetadata":
        return replace(self, **changes)

    def transform_points(self, fn: PointTransform, description: Optional[str] = None,
                         ellipse: Optional[Ellipse] = None) -> "ImageMetadata":
        """Co-transform every point-bearing field through ``fn``.

        The ellipse is not derived from ``fn``: geometric stages compute the
        new ellipse themselves and pass it here. When ``ellipse`` is None the
        previous ellipse is dropped, since it no longer matches the pixels.
        """
        updated = replace(
            self,
            ellipse=ellipse,
            redshifts=tuple(r.transform(fn) for r in self.redshifts),
            active_regions=tuple(a.transform(fn) for a in self.active_regions),
            reference_coords=self.reference_coords.transform(fn) if self.reference_coords else None,
            extra=dict(self.extra),
        )
        if description:
            updated = updated.with_transform(description)
        return updated
