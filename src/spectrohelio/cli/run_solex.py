"""Core reconstruction pipeline execution logic.

This module contains the actual pipeline runner, separated from argument parsing.
Scripts are thin wrappers; this is the real implementation.
"""

import json
import logging
import importlib.util
from pathlib import Path
from typing import Optional, Dict, Any

import pandas as pd

from spectrohelio.setup_directories import setup_output_directories
from spectrohelio.pipeline.orchestrator import PipelineOrchestrator
from spectrohelio.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig

__all__ = ['load_user_config_dict', 'build_config', 'run_solex_pipeline', 'main']

logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str
        Path to user config Python file containing CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("config_module", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def build_config(user_config_path: Optional[str] = None,
                 cli_args: Optional[Dict[str, Any]] = None,
                 verbose: bool = False):
    """Resolve the runtime configuration (Param < User < CLI).

    ``None`` values in ``cli_args`` are ignored.
    """
    param_cfg = ParamConfig()
    user_cfg = None
    if user_config_path is not None:
        user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    cli_args = dict(cli_args or {})
    if verbose and cli_args.get("log_level") is None:
        cli_args["log_level"] = "DEBUG"
    cli_dict = {k: v for k, v in cli_args.items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()

    return resolve_config(param_cfg, user_cfg, cli_cfg)


def run_solex_pipeline(
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    rerun: bool = False,
    verbose: bool = False,
) -> pd.DataFrame:
    """Execute the reconstruction pipeline.

    1. Loads and resolves configuration (Param < User < CLI)
    2. Sets up output directories
    3. Optionally cleans directories if rerun=True
    4. Runs the orchestrator over every input video

    Parameters
    ----------
    user_config_path : str, optional
        Path to user config file (Python file with CONFIG dict).
    cli_args : dict, optional
        CLI argument overrides. Keys: inputs, mode, base_dir, pixel_shift,
        debug_images, log_level. All optional.
    rerun : bool, optional
        If True, delete the output directory before running.
    verbose : bool, optional
        If True, enable DEBUG logging and print full resolved config.

    Returns
    -------
    pd.DataFrame
        Run summary, one row per (video, pixel shift).

    Raises
    ------
    FileNotFoundError
        If user_config_path does not exist.
    ValueError
        If configuration validation fails or no input is given.
    """
    config = build_config(user_config_path, cli_args, verbose)
    if not config.inputs:
        raise ValueError("No input video given (INPUTS in the user config or --input)")

    if rerun:
        import shutil
        base_dir_path = Path(config.base_dir)
        if base_dir_path.exists():
            print(f"Cleaning output directory: {base_dir_path}")
            shutil.rmtree(base_dir_path)

    output_dirs = setup_output_directories(config.base_dir)

    print(f"\n{'='*60}")
    print("Spectroheliograph Reconstruction Pipeline")
    print('='*60)
    print(f"Config: {user_config_path or '(defaults)'}")
    print(f"Inputs: {len(config.inputs)} video(s)")
    print(f"Mode:   {config.mode}")
    print(f"Output: {output_dirs['base']}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(mode="json"), indent=2))
        print('='*60)

    orchestrator = PipelineOrchestrator(config, output_dirs)
    return orchestrator.start()


def main(argv=None):
    """Console entry point: parse arguments and run the pipeline."""
    import argparse

    parser = argparse.ArgumentParser(description="Reconstruct solar disk images from spectroheliograph scans")
    parser.add_argument("config", nargs="?", help="Path to user config file")
    parser.add_argument("--input", action="append", dest="inputs", help="Input video (repeatable)")
    parser.add_argument("--mode", choices=["single", "batch"], help="Override mode")
    parser.add_argument("--base-dir", help="Output directory")
    parser.add_argument("--pixel-shift", type=float, help="Pixel shift of the main image")
    parser.add_argument("--debug-images", action="store_true", default=None, help="Write debug plots")
    parser.add_argument("--rerun", action="store_true", help="Delete output directory before running")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    df = run_solex_pipeline(
        args.config,
        cli_args={
            "inputs": args.inputs,
            "mode": args.mode,
            "base_dir": args.base_dir,
            "pixel_shift": args.pixel_shift,
            "debug_images": args.debug_images,
        },
        rerun=args.rerun,
        verbose=args.verbose,
    )
    print(df.to_string(index=False))
    return df
