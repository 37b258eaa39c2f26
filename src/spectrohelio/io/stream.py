"""Exclusive, back-pressured sequential frame reading."""

import logging
import threading
from typing import Iterator, Tuple

import numpy as np

from spectrohelio.io.video import VideoReader

__all__ = ['FrameStream']

logger = logging.getLogger(__name__)


class FrameStream:
    """Reads frames of a single video one at a time.

    Only one thread traverses the video at a time (``io_lock``), and at most
    ``max_in_flight`` frames may be handed out before consumers call
    :meth:`release`: the reader blocks before reading the next frame.

    Parameters
    ----------
    reader : VideoReader
        Source video.
    io_lock : threading.Lock
        Lock serializing access to ``reader``.
    max_in_flight : int
        Maximum number of frames read but not yet released.
    """

    def __init__(self, reader: VideoReader, io_lock: threading.Lock, max_in_flight: int):
        self.reader = reader
        self.io_lock = io_lock
        self._slots = threading.BoundedSemaphore(max_in_flight)

    def frames(self, start: int, end: int) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield ``(index, frame)`` for frames in ``[start, end)``.

        Each yielded frame is a private copy; consumers must call
        :meth:`release` once done with it.
        """
        with self.io_lock:
            self.reader.seek_frame(start)
            for index in range(start, end):
                self._slots.acquire()
                try:
                    frame = self.reader.current_frame()
                    self.reader.next_frame()
                except BaseException:
                    self._slots.release()
                    raise
                yield index, frame

    def read(self, index: int) -> np.ndarray:
        """Random access read of a single frame (no slot accounting)."""
        with self.io_lock:
            self.reader.seek_frame(index)
            return self.reader.current_frame()

    def release(self) -> None:
        self._slots.release()
