"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., PIXEL_SHIFT -> pixel_shift,
BANDING_WIDTH -> banding.band_size).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults.
"""

from typing import Literal, Optional, Any
from pydantic import Field, field_validator, model_validator
from spectrohelio.schemas.base import SolexBaseModel


class UserGeometryConfig(SolexBaseModel):
    """User-facing geometry config."""
    forced_tilt: Optional[float] = None
    forced_xy_ratio: Optional[float] = None
    disallow_downsampling: Optional[bool] = None
    autocrop: Optional[str] = None
    crop_rounding: Optional[int] = None
    parallactic_angle: Optional[float] = None
    horizontal_mirror: Optional[bool] = None
    vertical_mirror: Optional[bool] = None

    @field_validator("autocrop", mode="before")
    @classmethod
    def normalize_autocrop(cls, v):
        """Normalize autocrop mode names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip().replace("-", "_")
        return v


class UserBandingConfig(SolexBaseModel):
    """User-facing banding config."""
    enabled: Optional[bool] = None
    passes: Optional[int] = None
    band_size: Optional[int] = None
    disk_average_weight: Optional[float] = None
    max_correction: Optional[float] = None
    pole_exponent: Optional[float] = None


class UserConfig(SolexBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    Usage
    -----
        user_cfg = UserConfig(
            inputs=["/data/sun_halpha.ser"],
            base_dir="/data/processed",
            pixel_shift=-1.5,
            banding_passes=6,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level operational settings
    mode: Optional[Literal["single", "batch"]] = Field(None, alias="MODE")
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    inputs: Optional[list[str]] = Field(None, alias="INPUTS")

    # Spectrum settings (flat aliases)
    detection_threshold: Optional[float] = Field(None, alias="DETECTION_THRESHOLD")
    pixel_shift: Optional[float] = Field(None, alias="PIXEL_SHIFT")
    requested_shifts: Optional[list[float]] = Field(None, alias="SHIFTS")

    # Geometry settings (flat aliases)
    forced_tilt: Optional[float] = Field(None, alias="FORCED_TILT")
    forced_xy_ratio: Optional[float] = Field(None, alias="FORCED_XY_RATIO")
    autocrop: Optional[str] = Field(None, alias="AUTOCROP")
    disallow_downsampling: Optional[bool] = Field(None, alias="DISALLOW_DOWNSAMPLING")

    # Corrections (flat aliases)
    banding_passes: Optional[int] = Field(None, alias="BANDING_PASSES")
    banding_width: Optional[int] = Field(None, alias="BANDING_WIDTH")
    background_iterations: Optional[int] = Field(None, alias="BACKGROUND_ITERATIONS")
    flat_correction: Optional[bool] = Field(None, alias="FLAT_CORRECTION")

    # Operational
    debug_images: Optional[bool] = Field(None, alias="DEBUG_IMAGES")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Nested sections
    spectrum: Optional[dict[str, Any]] = None
    ellipse: Optional[dict[str, Any]] = None
    geometry: Optional[UserGeometryConfig] = None
    banding: Optional[UserBandingConfig] = None
    background: Optional[dict[str, Any]] = None
    flat: Optional[dict[str, Any]] = None
    distortion: Optional[dict[str, Any]] = None
    processor: Optional[dict[str, Any]] = None
    output: Optional[dict[str, Any]] = None

    model_config = SolexBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("requested_shifts", mode="before")
    @classmethod
    def coerce_shifts(cls, v):
        """Accept a single number, a comma separated string or a list."""
        if isinstance(v, (int, float)):
            return [float(v)]
        if isinstance(v, str):
            return [float(s) for s in v.split(",") if s.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lowercase log levels."""
        if isinstance(v, str):
            return v.upper().strip()
        return v

    @field_validator("autocrop", mode="before")
    @classmethod
    def normalize_autocrop(cls, v):
        """Normalize autocrop mode names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip().replace("-", "_")
        return v

    @model_validator(mode="after")
    def infer_batch_mode_from_inputs(self):
        """Several inputs imply batch mode unless a mode was given."""
        if self.mode is None and self.inputs and len(self.inputs) > 1:
            self.mode = "batch"
        return self

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.mode is not None:
            overrides["mode"] = self.mode
        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)
        if self.inputs is not None:
            overrides["inputs"] = list(self.inputs)

        # Spectrum section
        spectrum = dict(self.spectrum or {})
        if self.detection_threshold is not None:
            spectrum["detection_threshold"] = self.detection_threshold
        if self.pixel_shift is not None:
            spectrum["pixel_shift"] = self.pixel_shift
        if self.requested_shifts is not None:
            spectrum["requested_shifts"] = list(self.requested_shifts)
        if spectrum:
            overrides["spectrum"] = spectrum

        if self.ellipse:
            overrides["ellipse"] = dict(self.ellipse)

        # Geometry section
        geometry = {}
        if self.forced_tilt is not None:
            geometry["forced_tilt"] = self.forced_tilt
        if self.forced_xy_ratio is not None:
            geometry["forced_xy_ratio"] = self.forced_xy_ratio
        if self.autocrop is not None:
            geometry["autocrop"] = self.autocrop
        if self.disallow_downsampling is not None:
            geometry["disallow_downsampling"] = self.disallow_downsampling
        if self.geometry is not None:
            geometry.update(self.geometry.model_dump(exclude_none=True))
        if geometry:
            overrides["geometry"] = geometry

        # Banding section
        banding = {}
        if self.banding_passes is not None:
            banding["passes"] = self.banding_passes
        if self.banding_width is not None:
            banding["band_size"] = self.banding_width
        if self.banding is not None:
            banding.update(self.banding.model_dump(exclude_none=True))
        if banding:
            overrides["banding"] = banding

        background = dict(self.background or {})
        if self.background_iterations is not None:
            background["max_iterations"] = self.background_iterations
        if background:
            overrides["background"] = background

        flat = dict(self.flat or {})
        if self.flat_correction is not None:
            flat["enabled"] = self.flat_correction
        if flat:
            overrides["flat"] = flat

        if self.distortion:
            overrides["distortion"] = dict(self.distortion)

        processor = dict(self.processor or {})
        if self.debug_images is not None:
            processor["generate_debug_images"] = self.debug_images
        if processor:
            overrides["processor"] = processor

        if self.output:
            overrides["output"] = dict(self.output)

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
