"""Local displacement measurement and image dedistortion."""

import logging
from typing import TYPE_CHECKING

import cv2
import numpy as np
from scipy.ndimage import map_coordinates

from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage
from spectrohelio.stacking.distortion_map import DistortionMap

if TYPE_CHECKING:
    from spectrohelio.schemas.internal import InternalDistortionConfig

__all__ = ['sampling_step', 'measure_distortion', 'dedistort']

logger = logging.getLogger(__name__)

MIN_STEP = 8
# Tiles with a lower standard deviation carry no usable structure
FLAT_TILE_STDDEV = 1e-3


def sampling_step(tile_size: int, sampling: float) -> int:
    return max(MIN_STEP, int(tile_size * sampling))


def measure_distortion(reference: MonoImage, target: MonoImage,
                       config: "InternalDistortionConfig",
                       filtered: bool = True) -> DistortionMap:
    """Measure per-tile displacement of ``target`` relative to ``reference``.

    Each tile is registered with phase correlation (Hanning windowed).
    The recorded (dx, dy) is such that ``target(x + dx, y + dy)`` matches
    ``reference(x, y)``.

    Parameters
    ----------
    reference, target : MonoImage
        Images of identical size.
    config : InternalDistortionConfig
        Provides the tile size, sampling ratio and filter parameters.
    filtered : bool
        Run :meth:`DistortionMap.filter_and_smooth` on the result.
    """
    if reference.data.shape != target.data.shape:
        raise ValueError(
            f"Image sizes differ: {reference.data.shape} vs {target.data.shape}"
        )
    tile = config.tile_size
    step = sampling_step(tile, config.sampling)
    height, width = reference.data.shape
    distortion_map = DistortionMap(width, height, tile, step)
    if width < tile or height < tile:
        logger.warning("Image %dx%d is smaller than tile size %d, no displacement measured",
                       width, height, tile)
        return distortion_map

    ref = reference.data.astype(np.float64) / MAX_PIXEL_VALUE
    tgt = target.data.astype(np.float64) / MAX_PIXEL_VALUE
    window = cv2.createHanningWindow((tile, tile), cv2.CV_64F)

    measured = 0
    skipped = 0
    for y in range(0, height - tile + 1, step):
        for x in range(0, width - tile + 1, step):
            ref_tile = ref[y:y + tile, x:x + tile]
            tgt_tile = tgt[y:y + tile, x:x + tile]
            if ref_tile.std() < FLAT_TILE_STDDEV or tgt_tile.std() < FLAT_TILE_STDDEV:
                skipped += 1
                continue
            (dx, dy), response = cv2.phaseCorrelate(
                np.ascontiguousarray(ref_tile), np.ascontiguousarray(tgt_tile), window
            )
            if not (np.isfinite(dx) and np.isfinite(dy)) or max(abs(dx), abs(dy)) > tile / 2:
                skipped += 1
                continue
            distortion_map.record(x + tile // 2, y + tile // 2, float(dx), float(dy))
            measured += 1

    logger.debug("Measured %d tiles (%d skipped) with tile=%d step=%d",
                 measured, skipped, tile, step)
    if filtered and measured:
        distortion_map.filter_and_smooth(config)
    return distortion_map


def dedistort(image: MonoImage, distortion_map: DistortionMap) -> MonoImage:
    """Resample ``image`` so that it lines up with the map's reference."""
    height, width = image.data.shape
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    dx, dy = distortion_map.find_many(xs, ys)
    coords = np.stack([ys + dy, xs + dx])
    data = map_coordinates(image.data.astype(np.float64), coords, order=1, mode='nearest')
    return image.with_data(np.clip(data, 0, MAX_PIXEL_VALUE),
                           image.metadata.with_transform("dedistortion"))
