"""Pydantic configuration schemas for the reconstruction pipeline.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
"""

from spectrohelio.schemas.resolve import resolve_config
from spectrohelio.schemas.internal import InternalConfig
from spectrohelio.schemas.param import ParamConfig, AutocropMode
from spectrohelio.schemas.user import UserConfig
from spectrohelio.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'InternalConfig',
    'ParamConfig',
    'AutocropMode',
    'UserConfig',
    'CLIConfig',
]
