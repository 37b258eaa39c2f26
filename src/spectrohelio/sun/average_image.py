"""Average frame computation over the whole scan.

The average frame is what the dispersion curve is detected on: averaging
removes noise and the turbulence of individual exposures. Frames taken
off the disk are dark and would bias the average, so frames whose mean is
at most ``dark_frame_ratio`` of the brightest sampled mean are skipped.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, TYPE_CHECKING

import numpy as np

from spectrohelio.contracts import ProcessingError
from spectrohelio.core.concurrency import Accumulator, CountDownLatch, IncrementalAverage
from spectrohelio.core.events import Broadcaster, ProgressEvent
from spectrohelio.core.image import MonoImage
from spectrohelio.io.converter import FrameConverter
from spectrohelio.io.stream import FrameStream
from spectrohelio.io.video import VideoReader
from spectrohelio.sun.edge_detector import MagnitudeSunEdgeDetector

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['AverageImageResult', 'AverageImageCreator']

logger = logging.getLogger(__name__)

_TASK_NAME = "Computing average image"


@dataclass(frozen=True)
class AverageImageResult:
    """Average frame, per-frame magnitudes and number of frames averaged."""
    image: MonoImage
    magnitudes: np.ndarray
    frames_used: int


class AverageImageCreator:
    """Parallel frame averaging with a dark-frame threshold.

    Frames are read sequentially through a :class:`FrameStream`, converted
    on the worker pool and funneled to a single accumulator thread.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.processor``.
    executor : ThreadPoolExecutor
        Pool running frame conversion.
    io_lock : threading.Lock
        Lock guarding the video reader.
    broadcaster : Broadcaster, optional
        Receives progress events.
    """

    def __init__(self, config: "InternalConfig", executor: ThreadPoolExecutor,
                 io_lock: threading.Lock, broadcaster: Optional[Broadcaster] = None):
        self.dark_ratio = config.processor.dark_frame_ratio
        self.max_in_flight = config.processor.max_in_flight_frames
        self.edge_detector = MagnitudeSunEdgeDetector(config)
        self.executor = executor
        self.io_lock = io_lock
        self.broadcaster = broadcaster

    @staticmethod
    def sampling_interval(frame_count: int) -> int:
        return max(10, frame_count // 100)

    def find_max_mean(self, stream: FrameStream, converter: FrameConverter, frame_count: int) -> float:
        """Largest frame mean among frames sampled every ``sampling_interval``."""
        interval = self.sampling_interval(frame_count)
        max_mean = 0.0
        for index in range(0, frame_count, interval):
            frame = converter.convert(stream.read(index))
            max_mean = max(max_mean, float(frame.mean()))
        return max_mean

    def create(self, reader: VideoReader) -> AverageImageResult:
        """Average every bright-enough frame of ``reader``.

        Raises
        ------
        ProcessingError
            If reading or converting a frame fails.
        """
        header = reader.header
        frame_count = header.frame_count
        geometry = header.geometry
        converter = FrameConverter(geometry)
        stream = FrameStream(reader, self.io_lock, self.max_in_flight)

        threshold = self.dark_ratio * self.find_max_mean(stream, converter, frame_count)
        logger.debug("Average image dark-frame threshold: %.2f", threshold)

        average = IncrementalAverage((geometry.height, geometry.width))
        magnitudes = np.zeros(frame_count, dtype=np.float64)
        latch = CountDownLatch(frame_count)
        errors: List[BaseException] = []
        done = [0]
        progress_lock = threading.Lock()

        def process(index: int, raw: np.ndarray, acc: Accumulator) -> None:
            try:
                buffer = converter.convert(raw)
                magnitudes[index] = self.edge_detector.magnitude(buffer)
                if buffer.mean() > threshold:
                    acc.submit(lambda: average.add(buffer))
            except Exception as e:
                errors.append(e)
            finally:
                stream.release()
                latch.count_down()
                self._progress(done, progress_lock, frame_count)

        with Accumulator(name="AverageAccumulator") as acc:
            try:
                for index, raw in stream.frames(0, frame_count):
                    self.executor.submit(process, index, raw, acc)
            except Exception as e:
                raise ProcessingError.wrap(e)
            latch.wait()
            acc.drain()
        if errors:
            raise ProcessingError.wrap(errors[0])
        if acc.errors:
            raise ProcessingError.wrap(acc.errors[0])

        logger.info("Average image computed from %d of %d frames", average.count, frame_count)
        image = MonoImage(average.average.astype(np.float32))
        return AverageImageResult(image, magnitudes, average.count)

    def _progress(self, done, lock, total: int) -> None:
        if self.broadcaster is None:
            return
        with lock:
            done[0] += 1
            value = done[0] / total
        self.broadcaster.broadcast(ProgressEvent.of(value, _TASK_NAME))
