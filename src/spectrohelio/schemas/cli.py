"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: inputs, output directory, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from pydantic import model_validator
from spectrohelio.schemas.base import SolexBaseModel


class CLIConfig(SolexBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Notes
    -----
    If more than one input is provided and mode is not, mode is
    automatically set to "batch" (schema responsibility, not runtime).
    """

    mode: Optional[Literal["single", "batch"]] = None
    inputs: Optional[list[str]] = None
    base_dir: Optional[str] = None
    pixel_shift: Optional[float] = None
    debug_images: Optional[bool] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    @model_validator(mode="after")
    def infer_batch_mode_from_inputs(self):
        """If several inputs are given but mode is not, use batch mode."""
        if self.mode is None and self.inputs and len(self.inputs) > 1:
            self.mode = "batch"
        return self

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.mode is not None:
            overrides["mode"] = self.mode
        if self.inputs is not None:
            overrides["inputs"] = list(self.inputs)
        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)
        if self.pixel_shift is not None:
            overrides["spectrum"] = {"pixel_shift": self.pixel_shift}
        if self.debug_images is not None:
            overrides["processor"] = {"generate_debug_images": self.debug_images}
        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
