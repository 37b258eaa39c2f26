"""Ellipse model and direct least-squares ellipse regression.

An ellipse is stored as the coefficients of the general conic

    a*x**2 + b*x*y + c*y**2 + d*x + e*y + f = 0

normalized so that the quadratic part is positive definite (``a + c > 0``).
Instances are immutable value objects: every geometric operation returns a
new Ellipse.

Regression follows Halir & Flusser, "Numerically stable direct least squares
fitting of ellipses" (1998). Fitting never raises for expected failures; it
returns a FitResult carrying either the ellipse or a FitError.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np

__all__ = ['Ellipse', 'FitError', 'FitResult', 'fit_ellipse']

MIN_FIT_SAMPLES = 6


@dataclass(frozen=True)
class Ellipse:
    """Immutable conic-section ellipse.

    Parameters
    ----------
    a, b, c, d, e, f : float
        Cartesian conic coefficients. Use :meth:`from_coefficients` or
        :meth:`from_parameters` rather than building instances directly,
        so the sign normalization is applied.
    """
    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    @classmethod
    def from_coefficients(cls, a, b, c, d, e, f) -> "Ellipse":
        coeffs = np.array([a, b, c, d, e, f], dtype=float)
        if coeffs[0] + coeffs[2] < 0:
            coeffs = -coeffs
        return cls(*(float(v) for v in coeffs))

    @classmethod
    def from_parameters(cls, cx: float, cy: float, semi_a: float, semi_b: float,
                        theta: float = 0.0) -> "Ellipse":
        """Build an ellipse from centre, semi-axes and rotation (radians).

        ``semi_a`` is the semi-axis along the direction ``theta``.
        """
        s, c = math.sin(theta), math.cos(theta)
        a2, b2 = semi_a * semi_a, semi_b * semi_b
        qa = a2 * s * s + b2 * c * c
        qb = 2 * (b2 - a2) * s * c
        qc = a2 * c * c + b2 * s * s
        qd = -2 * qa * cx - qb * cy
        qe = -qb * cx - 2 * qc * cy
        qf = qa * cx * cx + qb * cx * cy + qc * cy * cy - a2 * b2
        return cls.from_coefficients(qa, qb, qc, qd, qe, qf)

    @classmethod
    def circle(cls, cx: float, cy: float, radius: float) -> "Ellipse":
        return cls.from_parameters(cx, cy, radius, radius, 0.0)

    @property
    def coefficients(self) -> Tuple[float, float, float, float, float, float]:
        return (self.a, self.b, self.c, self.d, self.e, self.f)

    # ------------------------------------------------------------------
    # Derived parameters
    # ------------------------------------------------------------------

    @property
    def center(self) -> Tuple[float, float]:
        disc = self.b * self.b - 4 * self.a * self.c
        cx = (2 * self.c * self.d - self.b * self.e) / disc
        cy = (2 * self.a * self.e - self.b * self.d) / disc
        return cx, cy

    @property
    def semi_axes(self) -> Tuple[float, float]:
        """Semi-axes as (major, minor)."""
        cx, cy = self.center
        f0 = self.f + (self.d * cx + self.e * cy) / 2
        lambdas = np.linalg.eigvalsh(np.array([[self.a, self.b / 2], [self.b / 2, self.c]]))
        l_small, l_large = float(lambdas[0]), float(lambdas[1])
        if f0 >= 0 or l_small <= 0:
            raise ValueError("Conic is not a real ellipse")
        return math.sqrt(-f0 / l_small), math.sqrt(-f0 / l_large)

    @property
    def rotation_angle(self) -> float:
        """Direction of the major axis in radians, in (-pi/2, pi/2]."""
        if self.b == 0 and self.a == self.c:
            return 0.0
        angle = 0.5 * math.atan2(-self.b, self.c - self.a)
        if angle <= -math.pi / 2:
            angle += math.pi
        return angle

    @property
    def xy_ratio(self) -> float:
        major, minor = self.semi_axes
        return minor / major

    @property
    def eccentricity(self) -> float:
        major, minor = self.semi_axes
        return math.sqrt(max(0.0, 1 - (minor * minor) / (major * major)))

    def point_at(self, angle) -> Tuple[np.ndarray, np.ndarray]:
        """Boundary point(s) for parametric angle(s) ``angle``."""
        cx, cy = self.center
        major, minor = self.semi_axes
        theta = self.rotation_angle
        t = np.asarray(angle, dtype=float)
        ct, st = np.cos(t), np.sin(t)
        x = cx + major * ct * math.cos(theta) - minor * st * math.sin(theta)
        y = cy + major * ct * math.sin(theta) + minor * st * math.cos(theta)
        return x, y

    def sample_boundary(self, count: int) -> Tuple[np.ndarray, np.ndarray]:
        angles = np.linspace(0, 2 * math.pi, count, endpoint=False)
        return self.point_at(angles)

    def value_at(self, x, y):
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        return self.a * x * x + self.b * x * y + self.c * y * y + self.d * x + self.e * y + self.f

    def is_within(self, x, y):
        """True where (x, y) lies inside or on the ellipse."""
        return self.value_at(x, y) <= 0

    def radial_distance(self, x, y) -> np.ndarray:
        """Distance from points to the boundary, measured along the ray from the centre."""
        cx, cy = self.center
        major, minor = self.semi_axes
        theta = self.rotation_angle
        dx = np.asarray(x, dtype=float) - cx
        dy = np.asarray(y, dtype=float) - cy
        u = dx * math.cos(theta) + dy * math.sin(theta)
        v = -dx * math.sin(theta) + dy * math.cos(theta)
        phi = np.arctan2(v, u)
        r = np.hypot(u, v)
        r_edge = (major * minor) / np.sqrt((minor * np.cos(phi)) ** 2 + (major * np.sin(phi)) ** 2)
        return np.abs(r - r_edge)

    def bounding_box(self) -> Tuple[float, float, float, float]:
        """Axis-aligned bounding box as (xmin, ymin, xmax, ymax)."""
        cx, cy = self.center
        major, minor = self.semi_axes
        theta = self.rotation_angle
        c, s = math.cos(theta), math.sin(theta)
        half_w = math.sqrt(major * major * c * c + minor * minor * s * s)
        half_h = math.sqrt(major * major * s * s + minor * minor * c * c)
        return cx - half_w, cy - half_h, cx + half_w, cy + half_h

    def find_y(self, x: float) -> Tuple[float, ...]:
        """Boundary y values at abscissa ``x`` (empty when the line misses)."""
        return _real_roots(self.c, self.b * x + self.e, self.a * x * x + self.d * x + self.f)

    def find_x(self, y: float) -> Tuple[float, ...]:
        """Boundary x values at ordinate ``y`` (empty when the line misses)."""
        return _real_roots(self.a, self.b * y + self.d, self.c * y * y + self.e * y + self.f)

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def transform(self, matrix) -> "Ellipse":
        """Apply the affine map ``p' = M p`` (3x3 homogeneous) to the ellipse."""
        m = np.asarray(matrix, dtype=float)
        q = np.array([
            [self.a, self.b / 2, self.d / 2],
            [self.b / 2, self.c, self.e / 2],
            [self.d / 2, self.e / 2, self.f],
        ])
        inv = np.linalg.inv(m)
        q2 = inv.T @ q @ inv
        return Ellipse.from_coefficients(
            q2[0, 0], 2 * q2[0, 1], q2[1, 1], 2 * q2[0, 2], 2 * q2[1, 2], q2[2, 2]
        )

    def translate(self, dx: float, dy: float) -> "Ellipse":
        return self.transform([[1, 0, dx], [0, 1, dy], [0, 0, 1]])

    def rescale(self, sx: float, sy: float) -> "Ellipse":
        return self.transform([[sx, 0, 0], [0, sy, 0], [0, 0, 1]])

    def rotate(self, theta: float, center: Tuple[float, float] = (0.0, 0.0)) -> "Ellipse":
        """Rotate by ``theta`` radians (counter-clockwise in x/y axes) around ``center``."""
        c, s = math.cos(theta), math.sin(theta)
        ox, oy = center
        to_origin = np.array([[1, 0, -ox], [0, 1, -oy], [0, 0, 1]], dtype=float)
        rot = np.array([[c, -s, 0], [s, c, 0], [0, 0, 1]], dtype=float)
        back = np.array([[1, 0, ox], [0, 1, oy], [0, 0, 1]], dtype=float)
        return self.transform(back @ rot @ to_origin)

    def hflip(self, width: int) -> "Ellipse":
        return self.transform([[-1, 0, width - 1], [0, 1, 0], [0, 0, 1]])

    def vflip(self, height: int) -> "Ellipse":
        return self.transform([[1, 0, 0], [0, -1, height - 1], [0, 0, 1]])

    def __str__(self) -> str:
        try:
            cx, cy = self.center
            major, minor = self.semi_axes
            return (f"Ellipse(center=({cx:.2f}, {cy:.2f}), axes=({major:.2f}, {minor:.2f}), "
                    f"theta={math.degrees(self.rotation_angle):.2f} deg)")
        except (ValueError, ZeroDivisionError):
            return f"Ellipse(degenerate, coefficients={self.coefficients})"


def _real_roots(qa: float, qb: float, qc: float) -> Tuple[float, ...]:
    if qa == 0:
        return () if qb == 0 else (-qc / qb,)
    disc = qb * qb - 4 * qa * qc
    if disc < 0:
        return ()
    root = math.sqrt(disc)
    return tuple(sorted(((-qb - root) / (2 * qa), (-qb + root) / (2 * qa))))


# ============================================================================
# REGRESSION
# ============================================================================

class FitError(str, Enum):
    """Reasons an ellipse regression can fail."""
    TOO_FEW_SAMPLES = "too_few_samples"
    SINGULAR = "singular"
    NOT_AN_ELLIPSE = "not_an_ellipse"


@dataclass(frozen=True)
class FitResult:
    """Outcome of an ellipse regression: either ``ellipse`` or ``error`` is set."""
    ellipse: Optional[Ellipse] = None
    error: Optional[FitError] = None
    samples: int = 0

    @property
    def ok(self) -> bool:
        return self.ellipse is not None

    @classmethod
    def success(cls, ellipse: Ellipse, samples: int) -> "FitResult":
        return cls(ellipse=ellipse, samples=samples)

    @classmethod
    def failure(cls, error: FitError, samples: int) -> "FitResult":
        return cls(error=error, samples=samples)


def fit_ellipse(xs, ys) -> FitResult:
    """Direct least-squares ellipse fit over sample points.

    Coordinates are centred and scaled before solving, then the conic is
    mapped back to pixel coordinates.

    Parameters
    ----------
    xs, ys : array-like
        Sample coordinates (same length).

    Returns
    -------
    FitResult
        ``ok`` with the ellipse, or an error describing why no ellipse
        could be produced.
    """
    x = np.asarray(xs, dtype=float).ravel()
    y = np.asarray(ys, dtype=float).ravel()
    n = x.size
    if n < MIN_FIT_SAMPLES:
        return FitResult.failure(FitError.TOO_FEW_SAMPLES, n)

    mx, my = x.mean(), y.mean()
    scale = max(np.abs(x - mx).max(), np.abs(y - my).max())
    if scale == 0:
        return FitResult.failure(FitError.SINGULAR, n)
    u = (x - mx) / scale
    v = (y - my) / scale

    d1 = np.column_stack([u * u, u * v, v * v])
    d2 = np.column_stack([u, v, np.ones_like(u)])
    s1 = d1.T @ d1
    s2 = d1.T @ d2
    s3 = d2.T @ d2
    try:
        t = -np.linalg.solve(s3, s2.T)
    except np.linalg.LinAlgError:
        return FitResult.failure(FitError.SINGULAR, n)
    m = s1 + s2 @ t
    # Premultiply by inverse of the constraint matrix [[0,0,2],[0,-1,0],[2,0,0]]
    m = np.array([m[2] / 2, -m[1], m[0] / 2])
    try:
        _, eigvec = np.linalg.eig(m)
    except np.linalg.LinAlgError:
        return FitResult.failure(FitError.SINGULAR, n)
    eigvec = np.real(eigvec)
    cond = 4 * eigvec[0] * eigvec[2] - eigvec[1] ** 2
    candidates = np.nonzero(cond > 0)[0]
    if candidates.size == 0:
        return FitResult.failure(FitError.NOT_AN_ELLIPSE, n)
    a1 = eigvec[:, candidates[0]]
    a2 = t @ a1
    qa, qb, qc = a1
    qd, qe, qf = a2

    # Undo scaling, then undo centring
    normalized = Ellipse.from_coefficients(
        qa / scale ** 2, qb / scale ** 2, qc / scale ** 2, qd / scale, qe / scale, qf
    )
    ellipse = normalized.translate(mx, my)
    try:
        ellipse.semi_axes
    except (ValueError, ZeroDivisionError):
        return FitResult.failure(FitError.NOT_AN_ELLIPSE, n)
    return FitResult.success(ellipse, n)
