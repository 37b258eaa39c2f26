"""Detection of the first and last frames crossing the solar disk."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['SunEdges', 'MagnitudeSunEdgeDetector']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SunEdges:
    """Indices of the first and last frames showing the sun (inclusive)."""
    start: int
    end: int


class MagnitudeSunEdgeDetector:
    """Finds the scan edges from per-frame signal magnitudes.

    The magnitude of a frame is its mean, which grows with the length of the
    disk chord under the slit and peaks at the disk centre. Frames above
    ``edge_detection_ratio`` of the way from the darkest to the brightest
    magnitude belong to the disk.
    """

    def __init__(self, config: "InternalConfig"):
        self.ratio = config.processor.edge_detection_ratio
        self.margin = config.processor.edge_margin_frames

    @staticmethod
    def magnitude(frame: np.ndarray) -> float:
        return float(frame.mean())

    def find_edges(self, magnitudes: Sequence[float]) -> Optional[SunEdges]:
        values = np.asarray(magnitudes, dtype=float)
        if values.size == 0:
            return None
        lo, hi = values.min(), values.max()
        if hi <= lo:
            return None
        above = np.flatnonzero(values > lo + self.ratio * (hi - lo))
        if above.size == 0:
            return None
        return SunEdges(int(above[0]), int(above[-1]))

    def reconstruction_range(self, edges: Optional[SunEdges], frame_count: int) -> Tuple[int, int]:
        """Half-open frame range ``[start, end)`` to reconstruct.

        The detected edges are widened by the configured margin; without
        edges the whole video is used.
        """
        if edges is None:
            logger.warning("Sun edges not detected, using the full video")
            return 0, frame_count
        start = max(0, edges.start - self.margin)
        end = min(frame_count, edges.end + self.margin + 1)
        logger.info("Sun edges detected at frames %d and %d, reconstructing [%d, %d)",
                    edges.start, edges.end, start, end)
        return start, end
