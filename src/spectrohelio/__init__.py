"""`spectrohelio` - solar disk reconstruction from spectroheliograph scans.

Subpackages:
- core: Image union, metadata registry, ellipse model and regressions
- io: Frame-sequential video reader abstraction and frame conversion
- sun: Spectral line analysis, ellipse fitting, geometry and corrections
- stacking: Distortion maps for registration and stacking
- pipeline: Orchestrator, video processor, accumulator thread, events
- visualization: Debug plotting
"""

__version__ = "0.1.0"
