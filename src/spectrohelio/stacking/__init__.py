"""Local distortion measurement, filtering and correction."""

from spectrohelio.stacking.grid_filter import FilterOutput, FilterParameters, filter_and_smooth
from spectrohelio.stacking.distortion_map import DistortionMap
from spectrohelio.stacking.distortion_maps import DistortionMaps
from spectrohelio.stacking.measure import dedistort, measure_distortion, sampling_step

__all__ = [
    "FilterOutput",
    "FilterParameters",
    "filter_and_smooth",
    "DistortionMap",
    "DistortionMaps",
    "dedistort",
    "measure_distortion",
    "sampling_step",
]
