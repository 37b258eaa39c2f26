"""Image variants handled by the pipeline.

An image is one of three closed variants:

- MonoImage: a single float32 plane
- RGBImage: three float32 planes
- FileBackedImage: a Mono or RGB image spilled to disk, loaded back on demand

Code that needs pixels calls :func:`materialize` (or the method of the same
name) instead of testing for the file-backed case by hand.
"""

import logging
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal, Optional, Union

import numpy as np

from spectrohelio.core.metadata import ImageMetadata

__all__ = [
    'MAX_PIXEL_VALUE',
    'MonoImage',
    'RGBImage',
    'FileBackedImage',
    'Image',
    'materialize',
]

logger = logging.getLogger(__name__)

MAX_PIXEL_VALUE = 65535.0


@dataclass
class MonoImage:
    """Single-channel image, row-major ``(height, width)`` float32 data."""
    data: np.ndarray
    metadata: ImageMetadata = field(default_factory=ImageMetadata)

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=np.float32)
        if self.data.ndim != 2:
            raise ValueError(f"MonoImage expects 2D data, got shape {self.data.shape}")

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    def materialize(self) -> "MonoImage":
        return self

    def copy(self) -> "MonoImage":
        return MonoImage(self.data.copy(), self.metadata)

    def with_data(self, data: np.ndarray, metadata: Optional[ImageMetadata] = None) -> "MonoImage":
        return MonoImage(data, self.metadata if metadata is None else metadata)

    def with_metadata(self, metadata: ImageMetadata) -> "MonoImage":
        return replace(self, metadata=metadata)


@dataclass
class RGBImage:
    """Three-channel image, each plane ``(height, width)`` float32."""
    r: np.ndarray
    g: np.ndarray
    b: np.ndarray
    metadata: ImageMetadata = field(default_factory=ImageMetadata)

    def __post_init__(self):
        self.r = np.asarray(self.r, dtype=np.float32)
        self.g = np.asarray(self.g, dtype=np.float32)
        self.b = np.asarray(self.b, dtype=np.float32)
        if not (self.r.shape == self.g.shape == self.b.shape) or self.r.ndim != 2:
            raise ValueError("RGBImage planes must be 2D and share the same shape")

    @property
    def width(self) -> int:
        return self.r.shape[1]

    @property
    def height(self) -> int:
        return self.r.shape[0]

    def materialize(self) -> "RGBImage":
        return self

    def to_mono(self) -> MonoImage:
        return MonoImage((self.r + self.g + self.b) / 3.0, self.metadata)


@dataclass
class FileBackedImage:
    """Mono or RGB pixels stored in a ``.npy`` file; metadata stays in memory."""
    path: Path
    kind: Literal["mono", "rgb"]
    width: int
    height: int
    metadata: ImageMetadata = field(default_factory=ImageMetadata)

    @classmethod
    def wrap(cls, image: "Image", directory: Optional[Path] = None) -> "FileBackedImage":
        """Spill an in-memory image to disk. File-backed images are returned as-is."""
        if isinstance(image, FileBackedImage):
            return image
        handle = tempfile.NamedTemporaryFile(
            prefix="spectrohelio_", suffix=".npy",
            dir=str(directory) if directory else None, delete=False
        )
        with handle:
            if isinstance(image, MonoImage):
                np.save(handle, image.data)
                kind = "mono"
            else:
                np.save(handle, np.stack([image.r, image.g, image.b]))
                kind = "rgb"
        logger.debug("Spilled %s image %dx%d to %s", kind, image.width, image.height, handle.name)
        return cls(Path(handle.name), kind, image.width, image.height, image.metadata)

    def materialize(self) -> Union[MonoImage, RGBImage]:
        data = np.load(self.path)
        if self.kind == "mono":
            return MonoImage(data, self.metadata)
        return RGBImage(data[0], data[1], data[2], self.metadata)

    def discard(self) -> None:
        self.path.unlink(missing_ok=True)


Image = Union[MonoImage, RGBImage, FileBackedImage]


def materialize(image: Image) -> Union[MonoImage, RGBImage]:
    """Return an in-memory version of ``image``."""
    return image.materialize()
