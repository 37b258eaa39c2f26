"""ParamConfig: Expert defaults for the reconstruction pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. Empirically tuned thresholds (MAD
multiplier, pole exponent, decimation fraction) live here as named values
so they can be calibrated against reference datasets.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from enum import Enum
from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from spectrohelio.schemas.base import SolexBaseModel


class AutocropMode(str, Enum):
    """Autocrop strategies applied after geometry correction."""
    OFF = "off"
    RADIUS_1_1 = "radius_1_1"
    RADIUS_1_2 = "radius_1_2"
    RADIUS_1_5 = "radius_1_5"
    SOURCE_WIDTH = "source_width"


# =============================================================================
# Nested Configuration Models
# =============================================================================

class SpectrumConfig(SolexBaseModel):
    """Spectral line detection and pixel shift selection."""
    detection_threshold: Optional[float] = Field(
        None, ge=0, description="Explicit column-average threshold; None selects automatic mode"
    )
    auto_threshold_ratio: float = Field(0.2, gt=0, lt=1)
    sampling_step: int = Field(4, ge=1)
    vertical_margin: int = Field(2, ge=0)
    overexposure_ratio: float = Field(0.95, gt=0, le=1.0)
    pixel_shift: float = 0.0
    requested_shifts: list[float] = Field(default_factory=lambda: [0.0])
    pixel_shift_step: float = Field(0.25, gt=0)

    @field_validator("requested_shifts", mode="before")
    @classmethod
    def coerce_shifts(cls, v):
        """Accept a single number or a list."""
        if isinstance(v, (int, float)):
            return [float(v)]
        return v


class EllipseConfig(SolexBaseModel):
    """Robust ellipse fitting parameters."""
    blur_sigma: float = Field(2.0, gt=0)
    max_neutralization_iterations: int = Field(16, ge=1)
    neutralization_tolerance: float = Field(0.02, gt=0)
    sensitivity: float = Field(0.5, gt=0)
    line_padding: int = Field(2, ge=0)
    min_samples: int = Field(32, ge=6)
    decimation_fraction: float = Field(0.8, gt=0, le=1.0)
    sigma_start: float = Field(2.0, gt=0)
    sigma_step: float = Field(0.5, gt=0)
    sigma_max: float = Field(4.0, gt=0)
    detection_shift_offset: float = -6.0


class GeometryConfig(SolexBaseModel):
    """Geometry correction parameters."""
    forced_tilt: Optional[float] = Field(None, description="Forced tilt in degrees")
    forced_xy_ratio: Optional[float] = Field(None, gt=0)
    disallow_downsampling: bool = False
    autocrop: AutocropMode = AutocropMode.OFF
    crop_rounding: int = Field(16, ge=1)
    parallactic_angle: Optional[float] = Field(None, description="Rotation in degrees for alt-az mounts")
    horizontal_mirror: bool = False
    vertical_mirror: bool = False
    min_circle_samples: int = Field(32, ge=8)
    max_circle_samples: int = Field(1024, ge=8)

    @model_validator(mode="after")
    def check_circle_samples(self):
        """Sample doubling must be able to start."""
        if self.max_circle_samples < self.min_circle_samples:
            raise ValueError("max_circle_samples must be >= min_circle_samples")
        return self


class BandingConfig(SolexBaseModel):
    """Banding reduction parameters."""
    enabled: bool = True
    passes: int = Field(4, ge=1)
    band_size: int = Field(24, ge=2)
    disk_average_weight: float = Field(0.15, ge=0, le=1.0)
    max_correction: float = Field(0.05, gt=0, lt=1.0)
    pole_exponent: float = Field(0.8, gt=0)


class BackgroundConfig(SolexBaseModel):
    """Background neutralization parameters."""
    enabled: bool = True
    max_iterations: int = Field(16, ge=1)
    tolerance: float = Field(0.02, gt=0)
    degree: int = Field(2, ge=1, le=4)


class FlatConfig(SolexBaseModel):
    """Flat correction parameters."""
    enabled: bool = False
    lo_percentile: float = Field(0.1, ge=0, lt=1.0)
    hi_percentile: float = Field(0.95, gt=0, le=1.0)
    order: int = Field(2, ge=1, le=4)

    @model_validator(mode="after")
    def check_percentiles(self):
        """Clipping window must be non-empty."""
        if self.lo_percentile >= self.hi_percentile:
            raise ValueError("lo_percentile must be lower than hi_percentile")
        return self


class DistortionConfig(SolexBaseModel):
    """Distortion map filtering and measurement parameters."""
    tile_size: int = Field(32, ge=4)
    sampling: float = Field(0.5, gt=0, le=1.0)
    mad_multiplier: float = Field(3.0, gt=0)
    global_mad_multiplier: float = Field(5.0, gt=0)
    reference_step: int = Field(64, ge=1)
    base_window: int = Field(5, ge=3)
    min_window: int = Field(3, ge=3)
    max_window: int = Field(11, ge=3)
    base_sigma: float = Field(1.0, gt=0)
    sigma_floor: float = Field(0.5, gt=0)
    interpolation_radius: int = Field(3, ge=1)
    use_accelerated: bool = True


class ProcessorConfig(SolexBaseModel):
    """Threading and memory parameters for video processing."""
    thread_multiplier: int = Field(8, ge=1)
    max_threads: int = Field(32, ge=1)
    io_parallelism_multiplier: int = Field(4, ge=1)
    max_in_flight_frames: int = Field(64, ge=1)
    memory_budget_mb: Optional[int] = Field(None, ge=1)
    safety_multiplier: float = Field(3.0, ge=1.0)
    edge_margin_frames: int = Field(40, ge=0)
    dark_frame_ratio: float = Field(0.5, ge=0, lt=1.0)
    edge_detection_ratio: float = Field(0.1, gt=0, lt=1.0)
    generate_debug_images: bool = False


class OutputConfig(SolexBaseModel):
    """Output file configuration."""
    save_images: bool = True
    image_format: Literal["npy", "png"] = "npy"
    results_filename: str = "results.csv"
    save_distortion_maps: bool = True


class LoggingConfig(SolexBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(SolexBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all pipeline parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    mode: Literal["single", "batch"] = "single"
    base_dir: str = "./output"
    inputs: list[str] = Field(default_factory=list)
    spectrum: SpectrumConfig = Field(default_factory=SpectrumConfig)
    ellipse: EllipseConfig = Field(default_factory=EllipseConfig)
    geometry: GeometryConfig = Field(default_factory=GeometryConfig)
    banding: BandingConfig = Field(default_factory=BandingConfig)
    background: BackgroundConfig = Field(default_factory=BackgroundConfig)
    flat: FlatConfig = Field(default_factory=FlatConfig)
    distortion: DistortionConfig = Field(default_factory=DistortionConfig)
    processor: ProcessorConfig = Field(default_factory=ProcessorConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
