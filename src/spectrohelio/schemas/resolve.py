"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig, UserConfig, and CLIConfig in
the correct precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. CLIConfig (command-line overrides)
2. UserConfig (user file)
3. ParamConfig (expert defaults)
"""

from typing import Union, Optional
from spectrohelio.schemas.param import ParamConfig
from spectrohelio.schemas.user import UserConfig
from spectrohelio.schemas.cli import CLIConfig
from spectrohelio.schemas.internal import InternalConfig


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively; other values are replaced.

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _coerce(model_cls, value):
    if value is None or (isinstance(value, dict) and not value):
        return model_cls()
    if isinstance(value, model_cls):
        return value
    return model_cls.model_validate(value)


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param, user, and CLI configs.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert configuration with complete defaults. Required.
    user_cfg : dict or UserConfig, optional
        User configuration with overrides.
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ValidationError
        If any config fails Pydantic validation

    Examples
    --------
    >>> config = resolve_config(ParamConfig(), UserConfig(banding_passes=6))
    >>> config.banding.passes
    6
    """
    param = param_cfg if isinstance(param_cfg, ParamConfig) else ParamConfig.model_validate(param_cfg)
    user = _coerce(UserConfig, user_cfg)
    cli = _coerce(CLIConfig, cli_cfg)

    param_dict = param.model_dump()
    merged = deep_merge(param_dict, user.to_internal_overrides(), cli.to_internal_overrides())

    # The configured pixel shift is always reconstructed
    spectrum = merged["spectrum"]
    shifts = list(spectrum.get("requested_shifts") or [])
    if spectrum["pixel_shift"] not in shifts:
        shifts.insert(0, spectrum["pixel_shift"])
    spectrum["requested_shifts"] = tuple(sorted(set(float(s) for s in shifts)))

    # Sliding MAD window bounds must be odd and ordered
    distortion = merged["distortion"]
    lo = distortion["min_window"] | 1
    hi = max(lo, distortion["max_window"] | 1)
    distortion["min_window"], distortion["max_window"] = lo, hi

    if merged["geometry"]["max_circle_samples"] < merged["geometry"]["min_circle_samples"]:
        merged["geometry"]["max_circle_samples"] = merged["geometry"]["min_circle_samples"]

    merged["inputs"] = tuple(merged.get("inputs") or ())
    if len(merged["inputs"]) > 1 and cli.mode is None and user.mode is None:
        merged["mode"] = "batch"

    return InternalConfig.model_validate(merged)
