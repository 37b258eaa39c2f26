"""Immutable ordered collection of distortion maps.

Binary layout (big-endian)::

    int32 version (= 1)
    int32 count
    repeated count times:
        int32 size
        size bytes of DistortionMap payload
"""

import logging
import struct
from typing import BinaryIO, Iterator, Sequence, Tuple

from spectrohelio.contracts import ProcessingError
from spectrohelio.stacking.distortion_map import DistortionMap

__all__ = ['DistortionMaps']

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

_INT = struct.Struct(">i")


class DistortionMaps:
    """Ordered, immutable list of :class:`DistortionMap`."""

    def __init__(self, maps: Sequence[DistortionMap] = ()):
        self._maps: Tuple[DistortionMap, ...] = tuple(maps)

    @classmethod
    def of(cls, *maps: DistortionMap) -> "DistortionMaps":
        return cls(maps)

    def append(self, distortion_map: DistortionMap) -> "DistortionMaps":
        """Return a new collection with ``distortion_map`` added at the end."""
        return DistortionMaps(self._maps + (distortion_map,))

    def size(self) -> int:
        return len(self._maps)

    def __len__(self) -> int:
        return len(self._maps)

    def __getitem__(self, index: int) -> DistortionMap:
        return self._maps[index]

    def __iter__(self) -> Iterator[DistortionMap]:
        return iter(self._maps)

    def first(self) -> DistortionMap:
        if not self._maps:
            raise IndexError("No distortion maps")
        return self._maps[0]

    def last(self) -> DistortionMap:
        if not self._maps:
            raise IndexError("No distortion maps")
        return self._maps[-1]

    def to_bytes(self) -> bytes:
        parts = [_INT.pack(FORMAT_VERSION), _INT.pack(len(self._maps))]
        for distortion_map in self._maps:
            blob = distortion_map.to_bytes()
            parts.append(_INT.pack(len(blob)))
            parts.append(blob)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, payload: bytes) -> "DistortionMaps":
        if len(payload) < 2 * _INT.size:
            raise ProcessingError("Truncated distortion map list")
        (version,) = _INT.unpack_from(payload, 0)
        if version != FORMAT_VERSION:
            raise ProcessingError(f"Unsupported distortion map list version {version}")
        (count,) = _INT.unpack_from(payload, _INT.size)
        offset = 2 * _INT.size
        maps = []
        for i in range(count):
            if offset + _INT.size > len(payload):
                raise ProcessingError(f"Truncated distortion map list at entry {i}")
            (size,) = _INT.unpack_from(payload, offset)
            offset += _INT.size
            if size < 0 or offset + size > len(payload):
                raise ProcessingError(f"Invalid size {size} for distortion map {i}")
            maps.append(DistortionMap.from_bytes(payload[offset:offset + size]))
            offset += size
        if offset != len(payload):
            logger.warning("Ignoring %d trailing bytes after %d distortion maps",
                           len(payload) - offset, count)
        return cls(maps)

    def save_to(self, stream: BinaryIO) -> None:
        stream.write(self.to_bytes())

    @classmethod
    def load_from(cls, stream: BinaryIO) -> "DistortionMaps":
        return cls.from_bytes(stream.read())

    def __repr__(self) -> str:
        return f"DistortionMaps({len(self._maps)} maps)"
