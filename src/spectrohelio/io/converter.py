"""Raw frame to float mono buffer conversion."""

import numpy as np

from spectrohelio.core.image import MAX_PIXEL_VALUE
from spectrohelio.io.video import FrameGeometry

__all__ = ['FrameConverter']


class FrameConverter:
    """Converts raw frames into float32 mono buffers in the [0, 65535] range.

    RGB frames are averaged into a single channel and 8-bit data is
    rescaled to the 16-bit range.
    """

    def __init__(self, geometry: FrameGeometry):
        self.geometry = geometry
        self._scale = 256.0 if geometry.bit_depth <= 8 else 1.0

    def create_buffer(self) -> np.ndarray:
        return np.zeros((self.geometry.height, self.geometry.width), dtype=np.float32)

    def convert(self, frame: np.ndarray, out: np.ndarray = None) -> np.ndarray:
        data = np.asarray(frame, dtype=np.float32)
        if data.ndim == 3:
            data = data.mean(axis=2)
        if self._scale != 1.0:
            data = data * self._scale
        if out is None:
            out = self.create_buffer()
        np.clip(data, 0, MAX_PIXEL_VALUE, out=out)
        return out
