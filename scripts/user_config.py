"""Spectroheliograph pipeline user configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Advanced settings are the defaults of
spectrohelio.schemas.param.ParamConfig.

Usage:
    python scripts/run_solex_pipeline.py scripts/user_config.py
    python scripts/run_solex_pipeline.py scripts/user_config.py --pixel-shift -1.5
"""

CONFIG = {
    # ========================================================================
    # INPUTS & OUTPUT
    # ========================================================================
    "MODE": "single",          # "single" or "batch"
    "INPUTS": [],              # Scan videos (.npy frame stacks)
    "BASE_DIR": "./output",    # All outputs go here

    # ========================================================================
    # SPECTRAL LINE
    # ========================================================================
    "DETECTION_THRESHOLD": None,  # None = automatic border detection
    "PIXEL_SHIFT": 0.0,           # Main image pixel shift
    "SHIFTS": [0.0],              # Additional pixel shifts, e.g. [-1.0, 0.0, 1.0]

    # ========================================================================
    # GEOMETRY
    # ========================================================================
    "FORCED_TILT": None,          # Degrees, None = from the fitted ellipse
    "FORCED_XY_RATIO": None,      # None = from the fitted ellipse
    "AUTOCROP": "radius_1_2",     # off, radius_1_1, radius_1_2, radius_1_5, source_width
    "DISALLOW_DOWNSAMPLING": False,

    # ========================================================================
    # CORRECTIONS
    # ========================================================================
    "BANDING_PASSES": 3,
    "BANDING_WIDTH": 24,
    "BACKGROUND_ITERATIONS": 5,
    "FLAT_CORRECTION": False,

    # ========================================================================
    # OPERATIONAL
    # ========================================================================
    "DEBUG_IMAGES": False,
    "LOG_LEVEL": "INFO",
}
