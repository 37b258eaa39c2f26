"""Range of pixel shifts a dispersion curve allows."""

import math
from dataclasses import dataclass
from typing import List

import numpy as np

from spectrohelio.core.regression import DistortionPolynomial

__all__ = ['PixelShiftRange']


@dataclass(frozen=True)
class PixelShiftRange:
    """Valid pixel shifts ``[min_shift, max_shift]`` sampled every ``step``.

    Derived once per video from the detected polynomial and frame height;
    shared read-only afterwards.
    """
    min_shift: float
    max_shift: float
    step: float

    @classmethod
    def compute(cls, polynomial: DistortionPolynomial, left: int, right: int,
                height: int, step: float) -> "PixelShiftRange":
        xs = np.arange(left, right + 1, dtype=float)
        ys = polynomial(xs)
        min_shift = -math.floor(float(ys.min()))
        max_shift = math.floor(height - 2 - float(ys.max()))
        return cls(float(min_shift), float(max_shift), step)

    def contains(self, shift: float) -> bool:
        return self.min_shift <= shift <= self.max_shift

    def values(self) -> List[float]:
        count = int(math.floor((self.max_shift - self.min_shift) / self.step + 1e-9)) + 1
        return [self.min_shift + i * self.step for i in range(max(count, 0))]
