"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and immutable. Optional fields here are optional by meaning
(e.g. "no forced tilt"), never as a stand-in for a missing default.
"""

from typing import Literal, Optional
from pydantic import ConfigDict
from spectrohelio.schemas.base import SolexBaseModel
from spectrohelio.schemas.param import AutocropMode


_FROZEN = ConfigDict(
    extra='forbid',
    validate_assignment=True,
    use_enum_values=True,
    str_strip_whitespace=True,
    frozen=True,
)


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalSpectrumConfig(SolexBaseModel):
    """Runtime spectral line detection configuration."""
    detection_threshold: Optional[float]
    auto_threshold_ratio: float
    sampling_step: int
    vertical_margin: int
    overexposure_ratio: float
    pixel_shift: float
    requested_shifts: tuple[float, ...]
    pixel_shift_step: float

    model_config = _FROZEN


class InternalEllipseConfig(SolexBaseModel):
    """Runtime ellipse fitting configuration."""
    blur_sigma: float
    max_neutralization_iterations: int
    neutralization_tolerance: float
    sensitivity: float
    line_padding: int
    min_samples: int
    decimation_fraction: float
    sigma_start: float
    sigma_step: float
    sigma_max: float
    detection_shift_offset: float

    model_config = _FROZEN


class InternalGeometryConfig(SolexBaseModel):
    """Runtime geometry correction configuration."""
    forced_tilt: Optional[float]
    forced_xy_ratio: Optional[float]
    disallow_downsampling: bool
    autocrop: AutocropMode
    crop_rounding: int
    parallactic_angle: Optional[float]
    horizontal_mirror: bool
    vertical_mirror: bool
    min_circle_samples: int
    max_circle_samples: int

    model_config = _FROZEN


class InternalBandingConfig(SolexBaseModel):
    """Runtime banding reduction configuration."""
    enabled: bool
    passes: int
    band_size: int
    disk_average_weight: float
    max_correction: float
    pole_exponent: float

    model_config = _FROZEN


class InternalBackgroundConfig(SolexBaseModel):
    """Runtime background neutralization configuration."""
    enabled: bool
    max_iterations: int
    tolerance: float
    degree: int

    model_config = _FROZEN


class InternalFlatConfig(SolexBaseModel):
    """Runtime flat correction configuration."""
    enabled: bool
    lo_percentile: float
    hi_percentile: float
    order: int

    model_config = _FROZEN


class InternalDistortionConfig(SolexBaseModel):
    """Runtime distortion map configuration."""
    tile_size: int
    sampling: float
    mad_multiplier: float
    global_mad_multiplier: float
    reference_step: int
    base_window: int
    min_window: int
    max_window: int
    base_sigma: float
    sigma_floor: float
    interpolation_radius: int
    use_accelerated: bool

    model_config = _FROZEN


class InternalProcessorConfig(SolexBaseModel):
    """Runtime processor configuration."""
    thread_multiplier: int
    max_threads: int
    io_parallelism_multiplier: int
    max_in_flight_frames: int
    memory_budget_mb: Optional[int]
    safety_multiplier: float
    edge_margin_frames: int
    dark_frame_ratio: float
    edge_detection_ratio: float
    generate_debug_images: bool

    model_config = _FROZEN


class InternalOutputConfig(SolexBaseModel):
    """Runtime output configuration."""
    save_images: bool
    image_format: Literal["npy", "png"]
    results_filename: str
    save_distortion_maps: bool

    model_config = _FROZEN


class InternalLoggingConfig(SolexBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

    model_config = _FROZEN


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(SolexBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that processing code sees.

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.passes = config.banding.passes  # NOT .get()
            self.min_samples = config.ellipse.min_samples

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    mode: Literal["single", "batch"]
    base_dir: str
    inputs: tuple[str, ...]
    spectrum: InternalSpectrumConfig
    ellipse: InternalEllipseConfig
    geometry: InternalGeometryConfig
    banding: InternalBandingConfig
    background: InternalBackgroundConfig
    flat: InternalFlatConfig
    distortion: InternalDistortionConfig
    processor: InternalProcessorConfig
    output: InternalOutputConfig
    logging: InternalLoggingConfig

    model_config = _FROZEN
