"""K-means colour clustering in CIE LAB.

Seeding uses scikit-learn's k-means++ (D² weighted sampling); the Lloyd
iterations are run here so that empty clusters keep their previous centre and
the stopping rule is the largest centre movement in ΔE76.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from sklearn.cluster import kmeans_plusplus
from sklearn.metrics import pairwise_distances_argmin_min

from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8
from threadstitch.utils.color_model import lab_to_rgb, rgb_to_lab
from threadstitch.utils.result import ParameterError, Result, guarded

LOGGER = logging.getLogger(__name__)

MAX_CLUSTERS = 64


@dataclass(frozen=True)
class KMeansParameters:
    max_iterations: int = 100
    convergence_threshold: float = 0.001
    use_kmeans_plus_plus: bool = True
    min_cluster_size: int = 5
    seed: int = 0

    @property
    def is_valid(self) -> bool:
        return self.max_iterations > 0 and self.convergence_threshold > 0 and self.min_cluster_size >= 1


@dataclass(frozen=True)
class ColorCluster:
    center_lab: Tuple[float, float, float]
    center_rgb: Tuple[int, int, int]
    member_count: int
    # mean squared ΔE76 of the members to the centre
    variance: float

    @property
    def is_well_formed(self) -> bool:
        return self.variance < 100.0

    @property
    def quality_score(self) -> float:
        variance_score = min(100.0, max(0.0, 100.0 - self.variance))
        member_score = min(100.0, self.member_count / 10.0 * 100.0)
        return (variance_score + member_score) / 2.0


@dataclass(frozen=True)
class ClusteringResult:
    clusters: Tuple[ColorCluster, ...]
    iterations: int
    converged: bool
    total_variance: float
    labels: np.ndarray
    width: int
    height: int
    processing_time_ms: float = 0.0

    @property
    def cluster_count(self) -> int:
        return len(self.clusters)

    @property
    def total_pixels(self) -> int:
        return sum(c.member_count for c in self.clusters)

    @property
    def dominant_colors(self) -> List[Tuple[int, int, int]]:
        return [c.center_rgb for c in self.clusters]

    @property
    def average_quality(self) -> float:
        if not self.clusters:
            return 0.0
        return float(np.mean([c.quality_score for c in self.clusters]))

    @property
    def is_valid(self) -> bool:
        return self.converged and bool(self.clusters) and np.isfinite(self.total_variance)


def _assign(lab: np.ndarray, centers: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    labels, dist = pairwise_distances_argmin_min(lab, centers)
    return labels, dist


def _initial_centers(lab: np.ndarray, k: int, params: KMeansParameters) -> np.ndarray:
    if params.use_kmeans_plus_plus:
        centers, _ = kmeans_plusplus(lab, n_clusters=k, random_state=params.seed)
        return centers
    rng = np.random.default_rng(params.seed)
    idx = rng.choice(lab.shape[0], size=k, replace=False)
    return lab[idx].copy()


class KMeansColorQuantizer:
    @guarded("K-means clustering")
    def quantize(
        self,
        image,
        cluster_count: int,
        params: KMeansParameters = KMeansParameters(),
    ) -> "Result[ClusteringResult]":
        if not params.is_valid:
            raise ParameterError("Invalid K-means parameters")
        rgb = ensure_rgb_uint8(image)
        height, width = rgb.shape[:2]
        pixels = width * height
        if not 1 <= cluster_count <= MAX_CLUSTERS:
            raise ParameterError(f"Cluster count must be between 1 and {MAX_CLUSTERS}")
        if cluster_count > pixels:
            raise ParameterError("Cluster count cannot exceed the number of pixels")

        started = time.perf_counter()
        lab = rgb_to_lab(rgb).reshape(-1, 3)
        centers = _initial_centers(lab, cluster_count, params)

        converged = False
        iterations = 0
        labels, dist = _assign(lab, centers)
        while iterations < params.max_iterations:
            iterations += 1
            counts = np.bincount(labels, minlength=cluster_count)
            new_centers = centers.copy()
            filled = counts > 0
            for channel in range(3):
                sums = np.bincount(labels, weights=lab[:, channel], minlength=cluster_count)
                new_centers[filled, channel] = sums[filled] / counts[filled]
            movement = float(np.max(np.linalg.norm(new_centers - centers, axis=1)))
            centers = new_centers
            labels, dist = _assign(lab, centers)
            if movement < params.convergence_threshold:
                converged = True
                break

        counts = np.bincount(labels, minlength=cluster_count)
        sq_sums = np.bincount(labels, weights=dist * dist, minlength=cluster_count)
        center_rgb = lab_to_rgb(centers)
        clusters = []
        for i in range(cluster_count):
            variance = float(sq_sums[i] / counts[i]) if counts[i] else 0.0
            clusters.append(
                ColorCluster(
                    center_lab=tuple(float(v) for v in centers[i]),
                    center_rgb=tuple(int(v) for v in center_rgb[i]),
                    member_count=int(counts[i]),
                    variance=variance,
                )
            )
            if 0 < counts[i] < params.min_cluster_size:
                LOGGER.debug("Cluster %s has only %s members", i, int(counts[i]))

        total_variance = float(sq_sums.sum() / pixels) if pixels else 0.0
        elapsed = (time.perf_counter() - started) * 1000.0
        LOGGER.debug(
            "K-means: k=%s iterations=%s converged=%s variance=%.2f", cluster_count, iterations, converged, total_variance
        )
        return ClusteringResult(
            clusters=tuple(clusters),
            iterations=iterations,
            converged=converged,
            total_variance=total_variance,
            labels=labels.reshape(height, width).astype(np.int32),
            width=width,
            height=height,
            processing_time_ms=elapsed,
        )


def count_unique_colors(image, target_samples: int = 10_000) -> int:
    """Approximate number of distinct colours on a sampling grid."""

    rgb = ensure_rgb_uint8(image)
    height, width = rgb.shape[:2]
    step = max(1, -(-(width * height) // target_samples))
    sampled = rgb[::step, ::step].reshape(-1, 3).astype(np.int64)
    packed = (sampled[:, 0] << 16) | (sampled[:, 1] << 8) | sampled[:, 2]
    return int(np.unique(packed).size)


def estimate_optimal_clusters(image, max_clusters: int = 16) -> int:
    estimated = int(round(np.sqrt(count_unique_colors(image))))
    return int(min(max(estimated, 2), max_clusters))


__all__ = [
    "ClusteringResult",
    "ColorCluster",
    "KMeansColorQuantizer",
    "KMeansParameters",
    "MAX_CLUSTERS",
    "count_unique_colors",
    "estimate_optimal_clusters",
]
