"""Artistic stitch techniques and the fields that drive them."""

from .base import GeneratorOutput, StitchGenerator, validate_generator_inputs
from .opacity import AdaptiveOpacityController, OpacityMap, OpacityParameters
from .sfumato import SfumatoGenerator, SfumatoParameters, SfumatoResult
from .silk_shading import SilkShadingGenerator, SilkShadingResult
from .thread_flow import ThreadFlowAnalyzer, ThreadFlowField, ThreadFlowParameters

__all__ = [
    "AdaptiveOpacityController",
    "GeneratorOutput",
    "OpacityMap",
    "OpacityParameters",
    "SfumatoGenerator",
    "SfumatoParameters",
    "SfumatoResult",
    "SilkShadingGenerator",
    "SilkShadingResult",
    "StitchGenerator",
    "ThreadFlowAnalyzer",
    "ThreadFlowField",
    "ThreadFlowParameters",
    "validate_generator_inputs",
]
