"""Grid of local displacement vectors used to register images.

A map covers an image with a grid of cells ``step`` pixels apart. Each
cell holds the (dx, dy) displacement measured on the tile centred on it,
plus a flag telling a real measurement from interpolated fill. Lookups
use bicubic interpolation (Catmull-Rom kernel, ``a = -0.5``) through a
precomputed weight table, and return (0, 0) outside the grid interior.

Binary format (big-endian)::

    int32 version (= 2)
    int32 step, tile_size, rows, cols
    float64 dx, dy  for each cell, row-major
    packed bits     sampled flags, row-major, MSB first

Version 1 payloads lack the version field and the sampled bitmap; every
cell of such a map is treated as sampled.
"""

import io
import logging
import struct
import threading
from typing import BinaryIO, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
from scipy.ndimage import uniform_filter

from spectrohelio.contracts import ProcessingError, assert_same_grid
from spectrohelio.stacking.grid_filter import FilterParameters, filter_and_smooth

if TYPE_CHECKING:
    from spectrohelio.schemas.internal import InternalDistortionConfig

__all__ = ['DistortionMap', 'LUT_SIZE', 'CUBIC_WEIGHT_LUT']

logger = logging.getLogger(__name__)

FORMAT_VERSION = 2
LUT_SIZE = 256
CUBIC_A = -0.5

_HEADER_V1 = struct.Struct(">4i")
_HEADER_V2 = struct.Struct(">5i")


def _cubic_weight(t: float) -> float:
    a = CUBIC_A
    t = abs(t)
    if t <= 1.0:
        return (a + 2.0) * t ** 3 - (a + 3.0) * t ** 2 + 1.0
    if t < 2.0:
        return a * t ** 3 - 5.0 * a * t ** 2 + 8.0 * a * t - 4.0 * a
    return 0.0


def _precompute_cubic_weights() -> np.ndarray:
    lut = np.zeros((LUT_SIZE, 4))
    for i in range(LUT_SIZE):
        t = i / (LUT_SIZE - 1)
        for offset in range(4):
            lut[i, offset] = _cubic_weight(t - (offset - 1))
    return lut


# Row i holds the weights of the 4 support points for a fraction i / 255
CUBIC_WEIGHT_LUT = _precompute_cubic_weights()


class DistortionMap:
    """Sampled displacement grid for one reference/target image pair.

    Parameters
    ----------
    width, height : int
        Size of the measured images.
    tile_size : int
        Size of the tiles displacements are measured on.
    step : int
        Distance in pixels between grid cells.
    """

    def __init__(self, width: int, height: int, tile_size: int, step: int):
        if step <= 0 or tile_size <= 0:
            raise ValueError("step and tile_size must be positive")
        self.step = step
        self.tile_size = tile_size
        cols = (width + tile_size) // step + 1
        rows = (height + tile_size) // step + 1
        self.dxy = np.zeros((rows, cols, 2), dtype=np.float64)
        self.sampled = np.zeros((rows, cols), dtype=bool)
        self.rejected = np.zeros((rows, cols), dtype=bool)
        self._tile_errors: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    @classmethod
    def from_arrays(cls, step: int, tile_size: int, dxy: np.ndarray,
                    sampled: Optional[np.ndarray] = None) -> "DistortionMap":
        """Build a map from an existing ``(rows, cols, 2)`` grid."""
        dxy = np.asarray(dxy, dtype=np.float64)
        if dxy.ndim != 3 or dxy.shape[2] != 2:
            raise ValueError(f"Expected a (rows, cols, 2) grid, got {dxy.shape}")
        instance = cls.__new__(cls)
        instance.step = step
        instance.tile_size = tile_size
        instance.dxy = dxy.copy()
        rows, cols = dxy.shape[:2]
        if sampled is None:
            sampled = np.ones((rows, cols), dtype=bool)
        instance.sampled = np.asarray(sampled, dtype=bool).reshape(rows, cols).copy()
        instance.rejected = np.zeros((rows, cols), dtype=bool)
        instance._tile_errors = None
        instance._lock = threading.Lock()
        return instance

    @property
    def rows(self) -> int:
        return self.dxy.shape[0]

    @property
    def cols(self) -> int:
        return self.dxy.shape[1]

    @property
    def grid_shape(self) -> Tuple[int, int]:
        return self.rows, self.cols

    # ------------------------------------------------------------------
    # Recording and lookup
    # ------------------------------------------------------------------

    def cell_of(self, x: int, y: int) -> Tuple[int, int]:
        """Grid (row, col) of the tile whose centre is at pixel (x, y)."""
        offset = self.tile_size // 2
        return (y - offset) // self.step, (x - offset) // self.step

    def record(self, x: int, y: int, dx: float, dy: float) -> None:
        """Store the displacement measured on the tile centred on (x, y)."""
        row, col = self.cell_of(x, y)
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(f"Tile centre ({x}, {y}) is outside the {self.cols}x{self.rows} grid")
        self.dxy[row, col] = (dx, dy)
        self.sampled[row, col] = True

    def find(self, x: float, y: float) -> Tuple[float, float]:
        """Interpolated displacement at pixel (x, y); (0, 0) outside the grid."""
        dx, dy = self.find_many(np.array([x], dtype=float), np.array([y], dtype=float))
        return float(dx[0]), float(dy[0])

    def find_many(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Vectorized :meth:`find` over arrays of pixel coordinates."""
        ax = np.asarray(xs, dtype=float) / self.step
        ay = np.asarray(ys, dtype=float) / self.step
        shape = ax.shape
        ax, ay = ax.ravel(), ay.ravel()
        inside = (ax >= 0) & (ax < self.cols - 1) & (ay >= 0) & (ay < self.rows - 1)
        out_dx = np.zeros(ax.size)
        out_dy = np.zeros(ax.size)
        if inside.any():
            px, py = ax[inside], ay[inside]
            x0 = np.floor(px).astype(np.int64)
            y0 = np.floor(py).astype(np.int64)
            wx = CUBIC_WEIGHT_LUT[((px - x0) * (LUT_SIZE - 1)).astype(np.int64)]
            wy = CUBIC_WEIGHT_LUT[((py - y0) * (LUT_SIZE - 1)).astype(np.int64)]
            offsets = np.arange(-1, 3)
            xi = np.clip(x0[:, None] + offsets, 0, self.cols - 1)
            yi = np.clip(y0[:, None] + offsets, 0, self.rows - 1)
            # (n, 4, 4, 2) support values, rows along axis 1
            support = self.dxy[yi[:, :, None], xi[:, None, :]]
            weights = wy[:, :, None] * wx[:, None, :]
            result = np.einsum('nij,nijc->nc', weights, support)
            out_dx[inside] = result[:, 0]
            out_dy[inside] = result[:, 1]
        return out_dx.reshape(shape), out_dy.reshape(shape)

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def filter_and_smooth(self, config: "InternalDistortionConfig") -> "DistortionMap":
        """Interpolate gaps, reject outliers and smooth, in place.

        Returns ``self`` for chaining.
        """
        params = FilterParameters.for_step(self.step, config)
        output = filter_and_smooth(self.dxy, self.sampled, params, config.use_accelerated)
        rejected = int(output.rejected.sum())
        if rejected:
            logger.debug("Distortion filter replaced %d of %d cells", rejected, self.sampled.size)
        self.dxy = output.dxy
        self.rejected = output.rejected
        return self

    def total_magnitude(self) -> float:
        return float(np.hypot(self.dxy[..., 0], self.dxy[..., 1]).sum())

    def tile_errors(self) -> np.ndarray:
        """Mean displacement magnitude around each cell, computed once.

        The map must not be modified after this has been called.
        """
        errors = self._tile_errors
        if errors is None:
            with self._lock:
                errors = self._tile_errors
                if errors is None:
                    magnitude = np.hypot(self.dxy[..., 0], self.dxy[..., 1])
                    errors = uniform_filter(magnitude, size=3, mode='nearest')
                    self._tile_errors = errors
        return errors

    def tile_error(self, x: float, y: float) -> float:
        """Cached tile error of the cell containing pixel (x, y)."""
        row = min(max(int(y // self.step), 0), self.rows - 1)
        col = min(max(int(x // self.step), 0), self.cols - 1)
        return float(self.tile_errors()[row, col])

    # ------------------------------------------------------------------
    # Combination
    # ------------------------------------------------------------------

    @staticmethod
    def average(maps: Sequence["DistortionMap"]) -> "DistortionMap":
        """Per-cell mean over the maps that sampled each cell."""
        assert_same_grid(maps)
        first = maps[0]
        stacked = np.stack([m.dxy for m in maps])
        counts = np.stack([m.sampled for m in maps]).astype(float)
        totals = (stacked * counts[..., None]).sum(axis=0)
        n = counts.sum(axis=0)
        dxy = np.zeros_like(first.dxy)
        np.divide(totals, n[..., None], out=dxy, where=n[..., None] > 0)
        return DistortionMap.from_arrays(first.step, first.tile_size, dxy, n > 0)

    @staticmethod
    def synthesize(maps: Sequence["DistortionMap"]) -> "DistortionMap":
        """Compose a chain of maps into a single one.

        At each grid node the displacement of the first map is followed,
        then the second map is queried at the displaced position, and so on;
        the result holds the cumulative displacement.
        """
        assert_same_grid(maps)
        first = maps[0]
        rows, cols = first.grid_shape
        gy, gx = np.mgrid[0:rows, 0:cols].astype(float) * first.step
        px, py = gx.copy(), gy.copy()
        for m in maps:
            dx, dy = m.find_many(px, py)
            px += dx
            py += dy
        dxy = np.stack([px - gx, py - gy], axis=-1)
        return DistortionMap.from_arrays(first.step, first.tile_size, dxy)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        header = _HEADER_V2.pack(FORMAT_VERSION, self.step, self.tile_size, self.rows, self.cols)
        data = self.dxy.astype('>f8').tobytes(order='C')
        bitmap = np.packbits(self.sampled.ravel()).tobytes()
        return header + data + bitmap

    def save_to(self, stream: BinaryIO) -> None:
        stream.write(self.to_bytes())

    @staticmethod
    def _v2_size(rows: int, cols: int) -> int:
        cells = rows * cols
        return _HEADER_V2.size + cells * 16 + (cells + 7) // 8

    @staticmethod
    def _v1_size(rows: int, cols: int) -> int:
        return _HEADER_V1.size + rows * cols * 16

    @classmethod
    def from_bytes(cls, payload: bytes) -> "DistortionMap":
        """Decode a version 1 or version 2 payload.

        A legacy map whose step happens to equal the current version
        number is told apart by its payload length.

        Raises
        ------
        ProcessingError
            If the payload matches neither layout.
        """
        if len(payload) >= _HEADER_V2.size:
            version, step, tile_size, rows, cols = _HEADER_V2.unpack_from(payload)
            if (version == FORMAT_VERSION and rows >= 0 and cols >= 0
                    and len(payload) == cls._v2_size(rows, cols)):
                cells = rows * cols
                offset = _HEADER_V2.size
                dxy = np.frombuffer(payload, dtype='>f8', count=cells * 2, offset=offset)
                bits = np.frombuffer(payload, dtype=np.uint8, offset=offset + cells * 16)
                sampled = np.unpackbits(bits, count=cells).astype(bool)
                return cls.from_arrays(step, tile_size, dxy.reshape(rows, cols, 2).astype(np.float64),
                                       sampled.reshape(rows, cols))
        if len(payload) >= _HEADER_V1.size:
            step, tile_size, rows, cols = _HEADER_V1.unpack_from(payload)
            if rows >= 0 and cols >= 0 and len(payload) == cls._v1_size(rows, cols):
                dxy = np.frombuffer(payload, dtype='>f8', count=rows * cols * 2, offset=_HEADER_V1.size)
                logger.debug("Loaded legacy (version 1) distortion map %dx%d", cols, rows)
                return cls.from_arrays(step, tile_size, dxy.reshape(rows, cols, 2).astype(np.float64))
        raise ProcessingError(f"Unrecognized distortion map payload ({len(payload)} bytes)")

    @classmethod
    def load_from(cls, stream: BinaryIO) -> "DistortionMap":
        return cls.from_bytes(stream.read())

    def save(self, path) -> None:
        with open(path, "wb") as f:
            self.save_to(f)

    @classmethod
    def load(cls, path) -> "DistortionMap":
        with open(path, "rb") as f:
            return cls.load_from(f)

    def __repr__(self) -> str:
        return f"DistortionMap({self.cols}x{self.rows}, step={self.step}, tile_size={self.tile_size})"


def legacy_bytes(distortion_map: DistortionMap) -> bytes:
    """Encode ``distortion_map`` in the version 1 layout (no sampled flags)."""
    buffer = io.BytesIO()
    buffer.write(_HEADER_V1.pack(distortion_map.step, distortion_map.tile_size,
                                 distortion_map.rows, distortion_map.cols))
    buffer.write(distortion_map.dxy.astype('>f8').tobytes(order='C'))
    return buffer.getvalue()
