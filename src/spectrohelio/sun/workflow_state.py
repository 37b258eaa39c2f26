"""Per pixel-shift processing state."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from spectrohelio.core.image import FileBackedImage, MonoImage, RGBImage

__all__ = ['WorkflowResults', 'WorkflowState']

logger = logging.getLogger(__name__)


class WorkflowResults(str, Enum):
    """Pipeline steps whose outcome is memoized in a WorkflowState."""
    RECONSTRUCTED = "reconstructed"
    ELLIPSE_FITTING = "ellipse_fitting"
    GEOMETRY_CORRECTION = "geometry_correction"
    BANDING_CORRECTION = "banding_correction"
    BACKGROUND_CORRECTION = "background_correction"
    FLAT_CORRECTION = "flat_correction"


class WorkflowState:
    """Mutable container for the images of one requested pixel shift.

    Created before reconstruction, populated stage by stage, then
    discarded once its images have been emitted. Image results recorded
    with ``spill_directory`` set are moved to disk and loaded back on
    :meth:`find_result`.

    Parameters
    ----------
    width, height : int
        Frame width and number of reconstructed lines.
    pixel_shift : float
        Target pixel shift.
    internal : bool
        True for states created only for ellipse detection; their images
        are not emitted.
    """

    def __init__(self, width: int, height: int, pixel_shift: float, internal: bool = False,
                 spill_directory: Optional[Path] = None):
        self.width = width
        self.height = height
        self.pixel_shift = pixel_shift
        self.internal = internal
        self.spill_directory = spill_directory
        self.reconstructed = np.zeros((height, width), dtype=np.float32)
        self.image: Optional[MonoImage] = None
        self._results: Dict[WorkflowResults, Any] = {}

    def record_result(self, step: WorkflowResults, result: Any) -> None:
        if self.spill_directory is not None and isinstance(result, (MonoImage, RGBImage)):
            result = FileBackedImage.wrap(result, self.spill_directory)
        previous = self._results.get(step)
        if isinstance(previous, FileBackedImage) and previous is not result:
            previous.discard()
        self._results[step] = result

    def find_result(self, step: WorkflowResults) -> Optional[Any]:
        result = self._results.get(step)
        if isinstance(result, FileBackedImage):
            return result.materialize()
        return result

    def has_result(self, step: WorkflowResults) -> bool:
        return step in self._results

    def discard(self) -> None:
        """Release buffers and delete spilled files."""
        for result in self._results.values():
            if isinstance(result, FileBackedImage):
                result.discard()
        self._results.clear()
        self.reconstructed = np.zeros((0, self.width), dtype=np.float32)
        self.image = None

    def __repr__(self) -> str:
        kind = "internal" if self.internal else "output"
        return f"WorkflowState(shift={self.pixel_shift}, {self.width}x{self.height}, {kind})"
