"""Colour quantisation service: K-means → thread matching → dithering.

Besides the quantised image the service reports which threads are used, how
much of each, and a set of quality scores that the caller can use to decide
whether the colour limit is adequate.
"""

from __future__ import annotations

import enum
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from threadstitch.image_analysis.preprocessor import MAX_DIMENSION, MIN_DIMENSION, ensure_rgb_uint8
from threadstitch.utils.color_model import similarity_percentage
from threadstitch.utils.metrics import deltaE_mean_p95, sample_step
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
    report_progress,
    unwrap,
)

from .catalog import ThreadCatalog, ThreadColor
from .dither import DitheringParameters, DitherResult, FloydSteinbergDitherer, nearest_palette_mapping
from .kmeans import MAX_CLUSTERS, ClusteringResult, KMeansColorQuantizer, KMeansParameters
from .matcher import ColorDistanceAlgorithm, ColorMatcher

LOGGER = logging.getLogger(__name__)

# Rough thread consumption and price used for the usage report.
PIXELS_PER_METRE = 1000.0
COST_PER_METRE = 0.50


class QualityLevel(enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"


@dataclass(frozen=True)
class QuantizationParameters:
    color_limit: int = 16
    enable_dithering: bool = True
    dithering_strength: float = 0.8
    algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000
    quality_threshold: float = 70.0
    kmeans: KMeansParameters = field(default_factory=KMeansParameters)

    @property
    def is_valid(self) -> bool:
        return (
            1 <= self.color_limit <= MAX_CLUSTERS
            and 0.0 <= self.dithering_strength <= 1.0
            and 0.0 <= self.quality_threshold <= 100.0
            and self.kmeans.is_valid
        )

    @classmethod
    def optimal_for(cls, width: int, height: int) -> "QuantizationParameters":
        pixels = width * height
        if pixels < 100_000:
            limit = 8
        elif pixels < 500_000:
            limit = 16
        else:
            limit = 24
        return cls(color_limit=limit)


@dataclass(frozen=True)
class ThreadUsageStatistics:
    threads: Tuple[ThreadColor, ...]
    pixel_counts: Tuple[int, ...]
    coverage_percentages: Tuple[float, ...]
    estimated_lengths: Tuple[float, ...]
    estimated_cost: float
    recommendations: Tuple[str, ...]

    @property
    def primary_thread(self) -> Optional[ThreadColor]:
        return self.threads[0] if self.threads else None

    @property
    def total_thread_length(self) -> float:
        return float(sum(self.estimated_lengths))

    @property
    def thread_count(self) -> int:
        return len(self.threads)


@dataclass(frozen=True)
class QuantizationQualityMetrics:
    color_accuracy: float
    dithering_quality: float
    clustering_quality: float
    thread_match_quality: float
    visual_similarity: float
    overall_score: float
    delta_e_mean: float = 0.0
    delta_e_p95: float = 0.0

    @property
    def quality_level(self) -> QualityLevel:
        if self.overall_score >= 90:
            return QualityLevel.EXCELLENT
        if self.overall_score >= 80:
            return QualityLevel.GOOD
        if self.overall_score >= 60:
            return QualityLevel.ACCEPTABLE
        return QualityLevel.POOR

    @property
    def improvement_areas(self) -> List[str]:
        areas = []
        if self.color_accuracy < 80:
            areas.append("Color accuracy needs improvement")
        if self.dithering_quality < 70:
            areas.append("Dithering quality could be enhanced")
        if self.clustering_quality < 75:
            areas.append("Color clustering needs refinement")
        if self.thread_match_quality < 80:
            areas.append("Thread color matching accuracy")
        if self.visual_similarity < 75:
            areas.append("Visual similarity to original")
        return areas


@dataclass(frozen=True)
class QuantizationResult:
    quantized_image: np.ndarray
    # cluster index per pixel after dithering
    index_map: np.ndarray
    # matched thread per cluster, index aligned with clustering.clusters
    cluster_threads: Tuple[ThreadColor, ...]
    clustering: ClusteringResult
    dithering: DitherResult
    thread_usage: ThreadUsageStatistics
    quality_metrics: QuantizationQualityMetrics
    quality_threshold: float = 70.0
    processing_time_ms: float = 0.0

    @property
    def width(self) -> int:
        return int(self.quantized_image.shape[1])

    @property
    def height(self) -> int:
        return int(self.quantized_image.shape[0])

    @property
    def used_threads(self) -> List[ThreadColor]:
        """Distinct matched threads in cluster order."""

        seen: "OrderedDict[Tuple[str, str], ThreadColor]" = OrderedDict()
        for thread in self.cluster_threads:
            seen.setdefault(thread.key, thread)
        return list(seen.values())

    @property
    def thread_count(self) -> int:
        return len(self.used_threads)

    @property
    def overall_quality(self) -> float:
        return self.quality_metrics.overall_score

    @property
    def meets_quality_standards(self) -> bool:
        return self.overall_quality >= self.quality_threshold

    def thread_mask(self, code: str, catalog: Optional[str] = None) -> np.ndarray:
        """Pixels whose cluster was matched to thread ``code``.

        Pass ``catalog`` when the same code can come from several catalogs.
        """

        clusters = [
            i
            for i, t in enumerate(self.cluster_threads)
            if t.code == code and (catalog is None or t.catalog == catalog)
        ]
        return np.isin(self.index_map, clusters)

    def summary(self) -> Dict[str, float]:
        return {
            "original_colors": self.dithering.original_color_count,
            "quantized_colors": self.dithering.quantized_color_count,
            "thread_count": self.thread_count,
            "color_reduction_percentage": self.dithering.color_reduction_ratio * 100.0,
            "overall_quality": self.overall_quality,
            "processing_time_ms": self.processing_time_ms,
        }


def thread_recommendations(
    threads: Sequence[ThreadColor], coverages: Sequence[float], lengths: Sequence[float]
) -> List[str]:
    notes: List[str] = []
    if not threads:
        return notes
    if coverages[0] > 50:
        notes.append(f"Primary thread ({threads[0].name}) covers {coverages[0]:.1f}% of design")
    minor = sum(1 for c in coverages if c < 5.0)
    if minor > len(threads) / 2:
        notes.append(f"Consider consolidating {minor} minor thread colors")
    total = float(sum(lengths))
    if total > 100:
        notes.append(f"High thread usage ({total:.1f}m) - consider reducing colors")
    catalogs = {t.catalog for t in threads}
    if len(catalogs) > 3:
        notes.append(f"Using threads from {len(catalogs)} catalogs - may affect availability")
    return notes


def thread_usage(index_map: np.ndarray, cluster_threads: Sequence[ThreadColor]) -> ThreadUsageStatistics:
    counts = np.bincount(index_map.reshape(-1), minlength=len(cluster_threads))
    per_thread: "OrderedDict[Tuple[str, str], List]" = OrderedDict()
    for cluster, thread in enumerate(cluster_threads):
        entry = per_thread.setdefault(thread.key, [thread, 0])
        entry[1] += int(counts[cluster])

    total = int(index_map.size)
    ranked = sorted((e for e in per_thread.values() if e[1] > 0), key=lambda e: e[1], reverse=True)
    threads = tuple(e[0] for e in ranked)
    pixel_counts = tuple(e[1] for e in ranked)
    coverages = tuple(c / total * 100.0 for c in pixel_counts) if total else tuple(0.0 for _ in pixel_counts)
    lengths = tuple(c / PIXELS_PER_METRE for c in pixel_counts)
    return ThreadUsageStatistics(
        threads=threads,
        pixel_counts=pixel_counts,
        coverage_percentages=coverages,
        estimated_lengths=lengths,
        estimated_cost=float(sum(lengths)) * COST_PER_METRE,
        recommendations=tuple(thread_recommendations(threads, coverages, lengths)),
    )


def visual_similarity(original: np.ndarray, quantized: np.ndarray) -> Tuple[float, float, float]:
    """Mean ΔE00 similarity on a sampling grid, plus ΔE76 mean and p95."""

    if original.shape != quantized.shape:
        return 0.0, 0.0, 0.0
    height, width = original.shape[:2]
    step = sample_step(width * height, 1000)
    a = original[::step, ::step].astype(np.float64)
    b = quantized[::step, ::step].astype(np.float64)
    if a.size == 0:
        return 0.0, 0.0, 0.0
    similarity = float(np.mean(similarity_percentage(a, b)))
    de_mean, de_p95 = deltaE_mean_p95(a / 255.0, b / 255.0)
    return similarity, de_mean, de_p95


def quality_metrics(
    original: np.ndarray,
    dithering: DitherResult,
    clustering: ClusteringResult,
    cluster_threads: Sequence[ThreadColor],
) -> QuantizationQualityMetrics:
    clustering_quality = max(0.0, 100.0 - clustering.total_variance)
    dithering_quality = dithering.quality_score

    if cluster_threads:
        centers = np.array([c.center_rgb for c in clustering.clusters], dtype=np.float64)
        thread_rgb = np.array([t.rgb for t in cluster_threads], dtype=np.float64)
        thread_match = float(np.mean(similarity_percentage(centers, thread_rgb)))
    else:
        thread_match = 0.0

    visual, de_mean, de_p95 = visual_similarity(original, dithering.dithered_image)
    accuracy = (clustering_quality + thread_match) / 2.0
    overall = (
        accuracy * 0.3
        + dithering_quality * 0.25
        + clustering_quality * 0.2
        + thread_match * 0.15
        + visual * 0.1
    )
    return QuantizationQualityMetrics(
        color_accuracy=accuracy,
        dithering_quality=dithering_quality,
        clustering_quality=clustering_quality,
        thread_match_quality=thread_match,
        visual_similarity=visual,
        overall_score=overall,
        delta_e_mean=de_mean,
        delta_e_p95=de_p95,
    )


def validate_image_size(width: int, height: int) -> None:
    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        raise ResourceLimitError(f"Image too small (minimum {MIN_DIMENSION}x{MIN_DIMENSION} pixels)")
    if width > MAX_DIMENSION or height > MAX_DIMENSION:
        raise ResourceLimitError(f"Image too large (maximum {MAX_DIMENSION}x{MAX_DIMENSION} pixels)")


class ColorQuantizer:
    def __init__(self) -> None:
        self.kmeans = KMeansColorQuantizer()
        self.ditherer = FloydSteinbergDitherer()

    def quantize(
        self,
        image,
        catalogs: Sequence[ThreadCatalog],
        params: QuantizationParameters = QuantizationParameters(),
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> "Result[QuantizationResult]":
        try:
            return Success(self._quantize(image, catalogs, params, progress_callback, cancel_token))
        except (ParameterError, ProcessingCancelled, ResourceLimitError) as exc:
            return failure_from(exc)
        except EmbroideryError as exc:
            return Failure(str(exc), exc.kind)
        except ValueError as exc:
            return failure_from(exc, "Color quantization")

    def _quantize(self, image, catalogs, params, progress_callback, cancel_token) -> QuantizationResult:
        if not params.is_valid:
            raise ParameterError("Invalid quantization parameters")
        if not catalogs:
            raise ParameterError("Thread catalogs cannot be empty")

        started = time.perf_counter()
        report_progress(progress_callback, 0.0, "Starting color quantization")
        check_cancelled(cancel_token)
        rgb = ensure_rgb_uint8(image)
        validate_image_size(rgb.shape[1], rgb.shape[0])

        report_progress(progress_callback, 0.1, "Performing K-means clustering")
        check_cancelled(cancel_token)
        clustering = unwrap(self.kmeans.quantize(rgb, params.color_limit, params.kmeans))

        report_progress(progress_callback, 0.4, "Mapping colors to thread catalog")
        check_cancelled(cancel_token)
        cluster_threads = self.map_to_threads(clustering.dominant_colors, catalogs, params.algorithm)

        report_progress(progress_callback, 0.6, "Applying Floyd-Steinberg dithering")
        check_cancelled(cancel_token)
        palette = clustering.dominant_colors
        if params.enable_dithering:
            dithering = unwrap(
                self.ditherer.dither(rgb, palette, DitheringParameters(strength=params.dithering_strength))
            )
        else:
            mapped, index_map = nearest_palette_mapping(rgb, palette)
            dithering = DitherResult(
                dithered_image=mapped,
                index_map=index_map.astype(np.int32),
                error_map=np.zeros(index_map.shape, dtype=np.float32),
                original_color_count=clustering.cluster_count,
                quantized_color_count=len(palette),
                strength=0.0,
            )

        report_progress(progress_callback, 0.8, "Calculating thread usage statistics")
        check_cancelled(cancel_token)
        usage = thread_usage(dithering.index_map, cluster_threads)

        report_progress(progress_callback, 0.9, "Assessing quality metrics")
        check_cancelled(cancel_token)
        metrics = quality_metrics(rgb, dithering, clustering, cluster_threads)

        result = QuantizationResult(
            quantized_image=dithering.dithered_image,
            index_map=dithering.index_map,
            cluster_threads=tuple(cluster_threads),
            clustering=clustering,
            dithering=dithering,
            thread_usage=usage,
            quality_metrics=metrics,
            quality_threshold=params.quality_threshold,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )
        report_progress(progress_callback, 1.0, "Color quantization complete")
        LOGGER.info(
            "Quantized to %s clusters / %s threads, quality %.1f (%s)",
            clustering.cluster_count,
            result.thread_count,
            metrics.overall_score,
            metrics.quality_level.value,
        )
        return result

    @staticmethod
    def map_to_threads(
        colors: Sequence[Tuple[int, int, int]],
        catalogs: Sequence[ThreadCatalog],
        algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
    ) -> List[ThreadColor]:
        matcher = ColorMatcher(catalogs)
        threads: List[ThreadColor] = []
        for color in colors:
            thread = matcher.find_optimal_match(color, algorithm)
            if thread is None:
                thread = matcher.find_nearest(color)
            if thread is None:
                raise EmbroideryError(f"No thread found for color {tuple(color)}")
            threads.append(thread)
        return threads

    @staticmethod
    def estimate_processing_time(width: int, height: int, params: QuantizationParameters) -> float:
        """Rough estimate in seconds."""

        seconds = math.ceil(width * height / 10_000)
        if params.enable_dithering:
            seconds = math.ceil(seconds * 1.5)
        if params.algorithm is ColorDistanceAlgorithm.CIEDE2000:
            seconds = math.ceil(seconds * 1.2)
        return float(seconds)


__all__ = [
    "ColorQuantizer",
    "QualityLevel",
    "QuantizationParameters",
    "QuantizationQualityMetrics",
    "QuantizationResult",
    "ThreadUsageStatistics",
    "quality_metrics",
    "thread_recommendations",
    "thread_usage",
    "validate_image_size",
    "visual_similarity",
]
