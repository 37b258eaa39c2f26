"""Threading primitives shared by the frame-stream stages.

- Accumulator: a dedicated thread that owns shared output buffers; other
  threads never touch those buffers and instead submit update callables
  through its queue.
- CountDownLatch: blocks until a fixed number of tasks reported completion.
- IncrementalAverage: running mean buffer, only ever updated from an
  Accumulator thread.
"""

import logging
import os
import queue
import threading
from typing import Callable, List, Optional

import numpy as np

__all__ = ['Accumulator', 'CountDownLatch', 'IncrementalAverage', 'pool_size']

logger = logging.getLogger(__name__)


def pool_size(multiplier: int, max_threads: int) -> int:
    """Worker pool size: ``multiplier`` threads per core, capped at ``max_threads``."""
    return max(1, min(max_threads, multiplier * (os.cpu_count() or 1)))


class CountDownLatch:
    """Waits for ``count`` calls to :meth:`count_down`."""

    def __init__(self, count: int):
        if count < 0:
            raise ValueError("count must be >= 0")
        self._count = count
        self._condition = threading.Condition()

    @property
    def count(self) -> int:
        with self._condition:
            return self._count

    def count_down(self) -> None:
        with self._condition:
            if self._count > 0:
                self._count -= 1
                if self._count == 0:
                    self._condition.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the count reaches zero. Returns False on timeout."""
        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout)


class Accumulator(threading.Thread):
    """Single consumer thread applying submitted updates in order.

    Updates are plain callables. An update that raises is logged and
    recorded in :attr:`errors`; the thread keeps draining the queue.

    Example usage::

        with Accumulator(name="AverageAccumulator") as acc:
            acc.submit(lambda: average.add(buffer))
            acc.drain()
    """

    def __init__(self, name: str = "Accumulator"):
        super().__init__(daemon=True, name=name)
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._stop_event = threading.Event()
        self.errors: List[BaseException] = []

    def submit(self, update: Callable[[], None]) -> None:
        if self._stop_event.is_set():
            raise RuntimeError(f"{self.name} is stopped")
        self._queue.put(update)

    def drain(self) -> None:
        """Block until every submitted update has been applied."""
        self._queue.join()

    def stop(self) -> None:
        self._stop_event.set()

    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self):
        logger.debug("%s started", self.name)
        while not self.stopped() or not self._queue.empty():
            try:
                update = self._queue.get(timeout=1)
            except queue.Empty:
                continue
            try:
                update()
            except Exception as e:
                logger.exception("%s: update failed", self.name)
                self.errors.append(e)
            finally:
                self._queue.task_done()
        logger.debug("%s stopped", self.name)

    def __enter__(self) -> "Accumulator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        self.join()
        return False


class IncrementalAverage:
    """Running mean of equally shaped buffers.

    Not thread-safe: only the owning Accumulator thread calls :meth:`add`.
    """

    def __init__(self, shape):
        self.average = np.zeros(shape, dtype=np.float64)
        self.count = 0

    def add(self, buffer: np.ndarray) -> None:
        self.count += 1
        self.average += (buffer - self.average) / self.count
