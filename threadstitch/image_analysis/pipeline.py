"""Preprocessing pipeline: preprocess → edges → gradients → structure tensor.

The stages run sequentially; progress is reported at the stage boundaries and
the optional cancel token is polled before every stage.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from threadstitch.utils.fields import GradientField, OrientationField
from threadstitch.utils.result import (
    CancelToken,
    EmbroideryError,
    Failure,
    ParameterError,
    ProcessingCancelled,
    ProgressCallback,
    ResourceLimitError,
    Result,
    Success,
    check_cancelled,
    failure_from,
    guarded,
    report_progress,
    unwrap,
)

from .edges import EdgeDetectionParameters, EdgeDetector
from .gradients import GradientComputer, GradientParameters
from .preprocessor import MAX_DIMENSION, MIN_DIMENSION, ImagePreprocessor, PreprocessingParameters, ensure_rgb_uint8
from .structure_tensor import StructureTensorAnalyzer, StructureTensorParameters

LOGGER = logging.getLogger(__name__)

MAX_MEMORY_MB = 512
# original + processed RGBA, edge map, two float fields and scratch buffers
BYTES_PER_PIXEL = 4 + 4 + 1 + 8 + 8 + 12


@dataclass(frozen=True)
class PreprocessingConfig:
    preprocessing: PreprocessingParameters = field(default_factory=PreprocessingParameters)
    edges: EdgeDetectionParameters = field(default_factory=EdgeDetectionParameters)
    gradients: GradientParameters = field(default_factory=GradientParameters)
    structure_tensor: StructureTensorParameters = field(default_factory=StructureTensorParameters)

    @property
    def is_valid(self) -> bool:
        return (
            self.preprocessing.is_valid
            and self.edges.is_valid
            and self.gradients.is_valid
            and self.structure_tensor.is_valid
        )

    @classmethod
    def optimal_for(cls, width: int, height: int) -> "PreprocessingConfig":
        pixel_count = width * height
        return cls(
            preprocessing=ImagePreprocessor.optimal_parameters(width, height),
            edges=(
                EdgeDetectionParameters(low_threshold=60, high_threshold=180)
                if pixel_count > 1_000_000
                else EdgeDetectionParameters()
            ),
            gradients=(
                GradientParameters(smoothing_sigma=1.5) if pixel_count < 100_000 else GradientParameters()
            ),
            structure_tensor=(
                StructureTensorParameters(integration_sigma=3.0)
                if pixel_count > 500_000
                else StructureTensorParameters()
            ),
        )


@dataclass(frozen=True)
class PreprocessingResult:
    processed_image: np.ndarray
    edge_map: np.ndarray
    gradients: GradientField
    orientation_field: OrientationField
    processing_time_ms: float

    @property
    def width(self) -> int:
        return int(self.processed_image.shape[1])

    @property
    def height(self) -> int:
        return int(self.processed_image.shape[0])

    @property
    def is_valid(self) -> bool:
        shape = (self.height, self.width)
        return (
            self.edge_map.shape[:2] == shape
            and (self.gradients.height, self.gradients.width) == shape
            and (self.orientation_field.height, self.orientation_field.width) == shape
            and self.orientation_field.is_valid
        )

    def statistics(self) -> Dict[str, Any]:
        pixels = self.width * self.height
        return {
            "image_width": self.width,
            "image_height": self.height,
            "total_pixels": pixels,
            "average_gradient_magnitude": self.gradients.average_magnitude,
            "average_coherence": self.orientation_field.average_coherence,
            "processing_time_ms": self.processing_time_ms,
            "processing_time_per_pixel": self.processing_time_ms / pixels if pixels else 0.0,
        }


def estimate_memory_usage(width: int, height: int) -> int:
    return width * height * BYTES_PER_PIXEL


def estimate_processing_time(width: int, height: int) -> int:
    """Rough wall time in milliseconds."""

    pixels = width * height
    return int(round(pixels * (0.001 + 0.002 + 0.0015 + 0.003) + 100))


@guarded("Input validation")
def validate_input(width: int, height: int) -> "Result[None]":
    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        raise ResourceLimitError(f"Image too small: minimum {MIN_DIMENSION}x{MIN_DIMENSION} pixels required")
    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise ResourceLimitError(f"Image too large: maximum {MAX_DIMENSION}x{MAX_DIMENSION} pixels supported")
    memory = estimate_memory_usage(width, height)
    if memory > MAX_MEMORY_MB * 1024 * 1024:
        raise ResourceLimitError(
            f"Image requires too much memory: {round(memory / 1024 / 1024)}MB > {MAX_MEMORY_MB}MB"
        )
    return None


class PreprocessingPipeline:
    TOTAL_STAGES = 5

    def __init__(self) -> None:
        self.preprocessor = ImagePreprocessor()
        self.edge_detector = EdgeDetector()
        self.gradient_computer = GradientComputer()
        self.tensor_analyzer = StructureTensorAnalyzer()

    def process(
        self,
        image: Any,
        config: Optional[PreprocessingConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> "Result[PreprocessingResult]":
        config = config or PreprocessingConfig()
        started = time.perf_counter()
        try:
            if not config.is_valid:
                raise ParameterError("Invalid pipeline parameters")
            rgb = ensure_rgb_uint8(image)
            unwrap(validate_input(rgb.shape[1], rgb.shape[0]))

            report_progress(progress_callback, 0.0, "Preprocessing image")
            check_cancelled(cancel_token)
            processed = unwrap(self.preprocessor.process(rgb, config.preprocessing))

            report_progress(progress_callback, 0.2, "Detecting edges")
            check_cancelled(cancel_token)
            edge_map = unwrap(self.edge_detector.detect(processed, config.edges))

            report_progress(progress_callback, 0.4, "Computing gradients")
            check_cancelled(cancel_token)
            gradients = unwrap(self.gradient_computer.compute(processed, config.gradients))

            report_progress(progress_callback, 0.6, "Analyzing structure tensor")
            check_cancelled(cancel_token)
            orientation = unwrap(self.tensor_analyzer.analyze(processed, config.structure_tensor))

            report_progress(progress_callback, 0.8, "Finalizing results")
            check_cancelled(cancel_token)
            result = PreprocessingResult(
                processed_image=processed,
                edge_map=edge_map,
                gradients=gradients,
                orientation_field=orientation,
                processing_time_ms=(time.perf_counter() - started) * 1000.0,
            )
            if not result.is_valid:
                raise ValueError("Final preprocessing result validation failed")
        except (ParameterError, ProcessingCancelled) as exc:
            return failure_from(exc)
        except EmbroideryError as exc:
            # a stage already returned a Failure; keep its message and kind
            return Failure(str(exc), exc.kind)
        except ValueError as exc:
            return failure_from(exc, "Preprocessing pipeline")

        report_progress(progress_callback, 1.0, "Preprocessing pipeline complete")
        LOGGER.info(
            "Preprocessing finished for %sx%s in %.0f ms", result.width, result.height, result.processing_time_ms
        )
        return Success(result)


__all__ = [
    "PreprocessingConfig",
    "PreprocessingPipeline",
    "PreprocessingResult",
    "estimate_memory_usage",
    "estimate_processing_time",
    "validate_input",
]
