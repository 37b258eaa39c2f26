"""Least-squares polynomial regression for dispersion curves."""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

__all__ = ['DistortionPolynomial', 'fit_polynomial']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DistortionPolynomial:
    """Polynomial mapping a column x to the spectral line row y.

    Coefficients are stored in descending powers (``numpy.polyval`` order).
    """
    coefficients: Tuple[float, ...]

    @property
    def degree(self) -> int:
        return len(self.coefficients) - 1

    def __call__(self, x):
        return np.polyval(self.coefficients, x)

    def shifted(self, offset: float) -> "DistortionPolynomial":
        coeffs = list(self.coefficients)
        coeffs[-1] += offset
        return DistortionPolynomial(tuple(coeffs))

    def __str__(self) -> str:
        terms = []
        for power, coeff in zip(range(self.degree, -1, -1), self.coefficients):
            if power == 0:
                terms.append(f"{coeff:.6g}")
            elif power == 1:
                terms.append(f"{coeff:.6g}*x")
            else:
                terms.append(f"{coeff:.6g}*x^{power}")
        return "y = " + " + ".join(terms)


def fit_polynomial(xs: Sequence[float], ys: Sequence[float], order: int,
                   weights: Optional[Sequence[float]] = None) -> Optional[DistortionPolynomial]:
    """Fit a polynomial of the given order.

    Returns None when there are not enough points for the order or when
    the system is singular.
    """
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    if x.size < order + 1:
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", np.exceptions.RankWarning)
            coeffs = np.polyfit(x, y, order, w=weights)
    except (np.linalg.LinAlgError, np.exceptions.RankWarning, ValueError) as e:
        logger.debug("Polynomial fit of order %d failed: %s", order, e)
        return None
    if not np.all(np.isfinite(coeffs)):
        return None
    return DistortionPolynomial(tuple(float(c) for c in coeffs))
