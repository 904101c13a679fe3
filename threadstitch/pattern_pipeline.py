"""Photo → embroidery pattern orchestrator.

Runs the stages in order (structural analysis, colour quantisation, thread
flow, opacity, artistic generators, sequence assembly), forwards progress
and polls the cancel token between stages.  Any stage failure is returned
unchanged; a failing artistic generator only loses its own stitches.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage as ndi

from threadstitch.config.config_loader import load_thread_catalogs
from threadstitch.config.pipeline_config import PipelineConfig
from threadstitch.image_analysis.pipeline import PreprocessingPipeline, PreprocessingResult, validate_input
from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8
from threadstitch.quantization.catalog import ThreadCatalog, ThreadColor
from threadstitch.quantization.kmeans import MAX_CLUSTERS
from threadstitch.quantization.quantizer import ColorQuantizer, QuantizationResult
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.slicer_core import SequenceAssembler
from threadstitch.slicer.stitches import EmbroideryPattern, StitchSequence, ThreadInfo
from threadstitch.techniques.base import StitchGenerator
from threadstitch.techniques.opacity import AdaptiveOpacityController, OpacityMap
from threadstitch.techniques.sfumato import SfumatoGenerator, build_layers
from threadstitch.techniques.silk_shading import SilkShadingGenerator
from threadstitch.techniques.thread_flow import ThreadFlowAnalyzer, ThreadFlowField
from threadstitch.utils.color_model import luminance
from threadstitch.utils.result import (
    CancelToken,
    EmbroideryError,
    Failure,
    ParameterError,
    ProcessingCancelled,
    ProgressCallback,
    Result,
    Success,
    check_cancelled,
    failure_from,
    report_progress,
    unwrap,
)

LOGGER = logging.getLogger(__name__)

# Progress checkpoints of the top level stages.
PROGRESS_PREPROCESS = (0.05, 0.30)
PROGRESS_QUANTIZE = (0.30, 0.50)
PROGRESS_FLOW = 0.50
PROGRESS_OPACITY = 0.55
PROGRESS_GENERATE = (0.60, 0.90)
PROGRESS_ASSEMBLE = 0.90

GeneratorJob = Tuple[StitchGenerator, ThreadColor, np.ndarray]


def scaled_progress(
    callback: Optional[ProgressCallback], low: float, high: float
) -> Optional[ProgressCallback]:
    """Map a sub-stage's 0..1 progress into ``[low, high]`` of the parent."""

    if callback is None:
        return None

    def forward(fraction: float, stage: str) -> None:
        callback(low + (high - low) * min(1.0, max(0.0, fraction)), stage)

    return forward


def smooth_region_mask(edge_map: np.ndarray) -> np.ndarray:
    """Pixels at least one pixel away from any detected edge."""

    edges = np.asarray(edge_map) > 0
    return ~ndi.binary_dilation(edges, structure=np.ones((3, 3), dtype=bool))


def unique_thread_codes(threads: Sequence[ThreadColor]) -> List[ThreadColor]:
    """Prefix codes shared by several catalogs with the catalog name.

    Stitch sequences refer to threads by code alone, so two catalogs that
    both ship e.g. ``"001"`` would otherwise end up as one pattern thread.
    """

    catalogs_per_code: Dict[str, set] = {}
    for thread in threads:
        catalogs_per_code.setdefault(thread.code, set()).add(thread.catalog)
    return [
        replace(thread, code=f"{thread.catalog}:{thread.code}")
        if len(catalogs_per_code[thread.code]) > 1
        else thread
        for thread in threads
    ]


class EmbroideryPipeline:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        catalogs: Optional[Sequence[ThreadCatalog]] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.catalogs = list(catalogs) if catalogs is not None else load_thread_catalogs()
        self.preprocessing = PreprocessingPipeline()
        self.quantizer = ColorQuantizer()
        self.flow_analyzer = ThreadFlowAnalyzer()
        self.opacity_controller = AdaptiveOpacityController()
        self.assembler = SequenceAssembler()

    def process(
        self,
        image: Any,
        parameters: EmbroideryParameters = EmbroideryParameters(),
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> "Result[EmbroideryPattern]":
        started = time.perf_counter()
        try:
            pattern = self._process(image, parameters, progress_callback, cancel_token)
        except ProcessingCancelled as exc:
            LOGGER.info("Pattern generation cancelled")
            return failure_from(exc)
        except EmbroideryError as exc:
            LOGGER.error("Pattern generation failed: %s", exc)
            return Failure(str(exc), exc.kind)
        except ValueError as exc:
            LOGGER.error("Pattern generation failed: %s", exc)
            return failure_from(exc, "Pattern generation")

        LOGGER.info(
            "Pattern %sx%s: %s stitches in %s sequences, %s threads (%.0f ms)",
            pattern.width,
            pattern.height,
            pattern.total_stitches,
            pattern.sequence_count,
            len(pattern.threads),
            (time.perf_counter() - started) * 1000.0,
        )
        return Success(pattern)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _process(
        self,
        image: Any,
        parameters: EmbroideryParameters,
        progress_callback: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> EmbroideryPattern:
        report_progress(progress_callback, 0.0, "Validating input")
        validation = parameters.validate()
        if not validation.is_valid:
            raise ParameterError("Invalid parameters: " + "; ".join(validation.errors))
        for warning in validation.warnings:
            LOGGER.warning("Parameter warning: %s", warning)

        rgb = ensure_rgb_uint8(image)
        unwrap(validate_input(rgb.shape[1], rgb.shape[0]))
        check_cancelled(cancel_token)

        report_progress(progress_callback, PROGRESS_PREPROCESS[0], "Analyzing image structure")
        analysis: PreprocessingResult = unwrap(
            self.preprocessing.process(
                rgb,
                self.config.preprocessing,
                scaled_progress(progress_callback, *PROGRESS_PREPROCESS),
                cancel_token,
            )
        )
        check_cancelled(cancel_token)

        report_progress(progress_callback, PROGRESS_QUANTIZE[0], "Quantizing colors")
        color_limit = min(parameters.color_limit, MAX_CLUSTERS)
        if color_limit != parameters.color_limit:
            LOGGER.warning("Color limit %s reduced to %s", parameters.color_limit, color_limit)
        quant_params = replace(self.config.quantization, color_limit=color_limit)
        quantized: QuantizationResult = unwrap(
            self.quantizer.quantize(
                analysis.processed_image,
                self.catalogs,
                quant_params,
                scaled_progress(progress_callback, *PROGRESS_QUANTIZE),
                cancel_token,
            )
        )
        check_cancelled(cancel_token)
        # flow, opacity and stitches follow the dithered thread colours
        stitch_image = quantized.quantized_image

        report_progress(progress_callback, PROGRESS_FLOW, "Analyzing thread flow")
        flow: ThreadFlowField = unwrap(
            self.flow_analyzer.analyze(stitch_image, analysis.orientation_field, self.config.thread_flow)
        )
        check_cancelled(cancel_token)

        report_progress(progress_callback, PROGRESS_OPACITY, "Generating opacity map")
        opacity: OpacityMap = unwrap(
            self.opacity_controller.generate(stitch_image, flow, self.config.opacity)
        )
        check_cancelled(cancel_token)

        jobs = self.generator_jobs(analysis, quantized, parameters)
        sequences = self._run_generators(
            jobs, stitch_image, flow, opacity, parameters, progress_callback, cancel_token
        )

        report_progress(progress_callback, PROGRESS_ASSEMBLE, "Assembling stitch sequences")
        check_cancelled(cancel_token)
        thread_order, threads = self.thread_table(quantized, jobs)
        pattern = self.assembler.assemble(sequences, thread_order, analysis.width, analysis.height, threads)
        for problem in self.assembler.validate(pattern, parameters):
            LOGGER.warning("Pattern check: %s", problem)

        report_progress(progress_callback, 1.0, "Embroidery pattern complete")
        return pattern

    def generator_jobs(
        self,
        analysis: PreprocessingResult,
        quantized: QuantizationResult,
        parameters: EmbroideryParameters,
    ) -> List[GeneratorJob]:
        """Which generator runs on which thread and region."""

        jobs: List[GeneratorJob] = []
        matched = quantized.used_threads
        threads = unique_thread_codes(matched)
        if parameters.enable_sfumato and len(threads) >= 2:
            ranked = sorted(threads, key=lambda t: luminance(t.rgb))
            darkest, lightest = ranked[0], ranked[-1]
            mask = smooth_region_mask(analysis.edge_map)
            jobs.append((SfumatoGenerator(lightest, self.config.sfumato), darkest, mask))
        if parameters.enable_silk_shading:
            silk = SilkShadingGenerator()
            for source, thread in zip(matched, threads):
                jobs.append((silk, thread, quantized.thread_mask(source.code, source.catalog)))
        return jobs

    def _run_generators(
        self,
        jobs: List[GeneratorJob],
        image: np.ndarray,
        flow: ThreadFlowField,
        opacity: OpacityMap,
        parameters: EmbroideryParameters,
        progress_callback: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> List[StitchSequence]:
        low, high = PROGRESS_GENERATE
        sequences: List[StitchSequence] = []
        for index, (generator, thread, mask) in enumerate(jobs):
            fraction = low + (high - low) * index / max(1, len(jobs))
            report_progress(progress_callback, fraction, f"Generating {generator.name} for {thread.code}")
            check_cancelled(cancel_token)
            result = generator.generate(image, flow, opacity, thread, mask, parameters)
            if not isinstance(result, Success):
                LOGGER.warning("%s failed for %s: %s", generator.name, thread.code, result.error)
                continue
            sequences.extend(result.data.sequences)
        return sequences

    @staticmethod
    def thread_table(
        quantized: QuantizationResult, jobs: List[GeneratorJob]
    ) -> Tuple[List[str], Dict[str, ThreadInfo]]:
        """Thread order (sfumato layers dark → light, then matched threads)."""

        order: List[str] = []
        threads: Dict[str, ThreadInfo] = {}

        def add(thread: ThreadColor) -> None:
            if thread.code not in threads:
                order.append(thread.code)
                threads[thread.code] = ThreadInfo(thread.code, thread.name, thread.rgb, thread.catalog)

        for generator, thread, _ in jobs:
            if isinstance(generator, SfumatoGenerator):
                for layer in build_layers(thread, generator.highlight, generator.params.layer_count, 1.0):
                    add(layer.thread)
        for thread in unique_thread_codes(quantized.used_threads):
            add(thread)
        return order, threads


__all__ = ["EmbroideryPipeline", "scaled_progress", "smooth_region_mask", "unique_thread_codes"]
