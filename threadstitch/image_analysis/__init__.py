"""Image preparation and structural analysis."""

from .edges import EdgeDetectionParameters, EdgeDetector, edge_density
from .gradients import GradientComputer, GradientParameters
from .pipeline import (
    PreprocessingConfig,
    PreprocessingPipeline,
    PreprocessingResult,
    estimate_memory_usage,
    validate_input,
)
from .preprocessor import ImagePreprocessor, PreprocessingParameters, ensure_rgb_uint8
from .structure_tensor import StructureTensorAnalyzer, StructureTensorParameters

__all__ = [
    "EdgeDetectionParameters",
    "EdgeDetector",
    "edge_density",
    "GradientComputer",
    "GradientParameters",
    "PreprocessingConfig",
    "PreprocessingPipeline",
    "PreprocessingResult",
    "estimate_memory_usage",
    "validate_input",
    "ImagePreprocessor",
    "PreprocessingParameters",
    "ensure_rgb_uint8",
    "StructureTensorAnalyzer",
    "StructureTensorParameters",
]
