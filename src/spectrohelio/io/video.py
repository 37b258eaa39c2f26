"""Frame-sequential video reader abstraction.

Container decoding (SER and friends) is provided by external readers that
implement :class:`VideoReader`. Readers are looked up by file suffix through
:func:`open_video`; ``.npy`` stacks shaped ``(frames, height, width)`` or
``(frames, height, width, 3)`` are supported out of the box.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Literal, Optional, Protocol, runtime_checkable

import numpy as np

from spectrohelio.contracts import ProcessingError

__all__ = [
    'FrameGeometry',
    'VideoHeader',
    'VideoReader',
    'ArrayVideoReader',
    'register_reader',
    'open_video',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameGeometry:
    """Dimensions and pixel layout of a single frame."""
    width: int
    height: int
    color_mode: Literal["mono", "rgb"] = "mono"
    bit_depth: int = 16

    @property
    def bytes_per_pixel(self) -> int:
        planes = 3 if self.color_mode == "rgb" else 1
        return planes * (1 if self.bit_depth <= 8 else 2)

    @property
    def frame_bytes(self) -> int:
        return self.width * self.height * self.bytes_per_pixel


@dataclass(frozen=True)
class VideoHeader:
    """Header information of a scan video."""
    frame_count: int
    geometry: FrameGeometry
    timestamp: Optional[datetime] = None
    fps: Optional[float] = None


@runtime_checkable
class VideoReader(Protocol):
    """Minimal interface the processor needs from a video reader."""

    @property
    def header(self) -> VideoHeader: ...

    def seek_frame(self, index: int) -> None: ...

    def current_frame(self) -> np.ndarray: ...

    def next_frame(self) -> None: ...

    def estimate_fps(self) -> Optional[float]: ...

    def close(self) -> None: ...


class ArrayVideoReader:
    """VideoReader over an in-memory (or memory-mapped) numpy frame stack.

    Parameters
    ----------
    frames : np.ndarray
        ``(frames, height, width)`` mono or ``(frames, height, width, 3)`` RGB.
    bit_depth : int, optional
        Bit depth reported in the header (default: inferred from dtype).
    timestamp : datetime, optional
        Acquisition time reported in the header.
    fps : float, optional
        Frame rate, returned by :meth:`estimate_fps`.
    """

    def __init__(self, frames: np.ndarray, bit_depth: Optional[int] = None,
                 timestamp: Optional[datetime] = None, fps: Optional[float] = None):
        if frames.ndim not in (3, 4):
            raise ValueError(f"Expected a 3D or 4D frame stack, got shape {frames.shape}")
        self._frames = frames
        color_mode = "rgb" if frames.ndim == 4 else "mono"
        if bit_depth is None:
            bit_depth = 8 if frames.dtype == np.uint8 else 16
        geometry = FrameGeometry(frames.shape[2], frames.shape[1], color_mode, bit_depth)
        self._header = VideoHeader(frames.shape[0], geometry, timestamp, fps)
        self._index = 0

    @property
    def header(self) -> VideoHeader:
        return self._header

    def seek_frame(self, index: int) -> None:
        if not 0 <= index <= self._header.frame_count:
            raise ProcessingError(f"Frame index {index} out of range [0, {self._header.frame_count}]")
        self._index = index

    def current_frame(self) -> np.ndarray:
        """Copy of the current frame; the caller owns the returned buffer."""
        if self._index >= self._header.frame_count:
            raise ProcessingError("Read past the last frame")
        return np.array(self._frames[self._index], copy=True)

    def next_frame(self) -> None:
        self._index += 1

    def estimate_fps(self) -> Optional[float]:
        return self._header.fps

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def _open_npy(path: Path) -> VideoReader:
    return ArrayVideoReader(np.load(path, mmap_mode="r"))


_READERS: Dict[str, Callable[[Path], VideoReader]] = {".npy": _open_npy}


def register_reader(suffix: str, factory: Callable[[Path], VideoReader]) -> None:
    """Register a reader factory for files ending with ``suffix``."""
    _READERS[suffix.lower()] = factory


def open_video(path) -> VideoReader:
    """Open a video using the reader registered for its suffix.

    Raises
    ------
    ProcessingError
        If the file does not exist, no reader handles the suffix, or the
        reader fails to parse the header.
    """
    path = Path(path)
    if not path.exists():
        raise ProcessingError(f"Video not found: {path}")
    factory = _READERS.get(path.suffix.lower())
    if factory is None:
        raise ProcessingError(f"No video reader registered for '{path.suffix}' files")
    try:
        reader = factory(path)
    except ProcessingError:
        raise
    except Exception as e:
        raise ProcessingError(f"Unable to open {path.name}: {e}") from e
    logger.debug("Opened %s: %d frames", path.name, reader.header.frame_count)
    return reader
