#!/usr/bin/env python3
"""Spectroheliograph reconstruction pipeline runner.

Usage:
    python scripts/run_solex_pipeline.py scripts/user_config.py
    python scripts/run_solex_pipeline.py scripts/user_config.py --input scan.npy --pixel-shift -1.5
    python scripts/run_solex_pipeline.py scripts/user_config.py --input a.npy --input b.npy

Note: User config in scripts/user_config.py, expert defaults in spectrohelio.schemas.param
"""

from spectrohelio.cli.run_solex import main


if __name__ == "__main__":
    main()
