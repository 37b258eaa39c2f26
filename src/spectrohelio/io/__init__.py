"""Video input: reader abstraction and frame conversion."""

from spectrohelio.io.video import (
    FrameGeometry,
    VideoHeader,
    VideoReader,
    ArrayVideoReader,
    register_reader,
    open_video,
)
from spectrohelio.io.converter import FrameConverter
from spectrohelio.io.stream import FrameStream

__all__ = [
    "FrameGeometry",
    "VideoHeader",
    "VideoReader",
    "ArrayVideoReader",
    "register_reader",
    "open_video",
    "FrameConverter",
    "FrameStream",
]
