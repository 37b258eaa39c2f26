"""Solar image analysis and correction algorithms.

- spectrum_analyzer / pixel_shift: dispersion curve detection
- average_image / edge_detector: frame stream statistics
- reconstruction / workflow_state: per pixel-shift image reconstruction
- ellipse_fitting / geometry_corrector / cropper: disk geometry
- banding / background / flat: statistical corrections
"""

from spectrohelio.sun.spectrum_analyzer import SpectrumAnalysisResult, SpectrumFrameAnalyzer
from spectrohelio.sun.pixel_shift import PixelShiftRange
from spectrohelio.sun.edge_detector import MagnitudeSunEdgeDetector, SunEdges
from spectrohelio.sun.average_image import AverageImageCreator, AverageImageResult
from spectrohelio.sun.reconstruction import LineReconstructor, orient_reconstruction
from spectrohelio.sun.workflow_state import WorkflowResults, WorkflowState
from spectrohelio.sun.ellipse_fitting import EllipseFittingResult, EllipseFittingTask
from spectrohelio.sun.geometry_corrector import GeometryCorrectionResult, GeometryCorrector
from spectrohelio.sun.cropper import CropResult, crop_to_rectangle, crop_to_square
from spectrohelio.sun.banding import BandingReduction
from spectrohelio.sun.background import (
    NeutralizationResult,
    background_model,
    blind_background_neutralization,
    neutralize_background,
    remove_background,
    remove_zero_pixels,
)
from spectrohelio.sun.flat import FlatCorrection

__all__ = [
    "SpectrumAnalysisResult",
    "SpectrumFrameAnalyzer",
    "PixelShiftRange",
    "MagnitudeSunEdgeDetector",
    "SunEdges",
    "AverageImageCreator",
    "AverageImageResult",
    "LineReconstructor",
    "orient_reconstruction",
    "WorkflowResults",
    "WorkflowState",
    "EllipseFittingResult",
    "EllipseFittingTask",
    "GeometryCorrectionResult",
    "GeometryCorrector",
    "CropResult",
    "crop_to_rectangle",
    "crop_to_square",
    "BandingReduction",
    "NeutralizationResult",
    "background_model",
    "blind_background_neutralization",
    "neutralize_background",
    "remove_background",
    "remove_zero_pixels",
    "FlatCorrection",
]
