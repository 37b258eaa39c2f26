"""Command-line interface modules for pipeline execution.

This package contains core execution logic, making scripts/ optional and deletable.
"""

from spectrohelio.cli.run_solex import build_config, load_user_config_dict, run_solex_pipeline

__all__ = ['build_config', 'load_user_config_dict', 'run_solex_pipeline']
