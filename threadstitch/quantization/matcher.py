"""Match image colours to real threads."""

from __future__ import annotations

import enum
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from threadstitch.utils.color_model import (
    MAX_LAB_DISTANCE,
    MAX_WEIGHTED_RGB_DISTANCE,
    RGB_WEIGHTS,
    ciede2000_lab,
    rgb_to_lab,
)
from threadstitch.utils.result import ParameterError

from .catalog import ThreadCatalog, ThreadColor, combined

LOGGER = logging.getLogger(__name__)


class ColorDistanceAlgorithm(enum.Enum):
    CIEDE2000 = "ciede2000"
    LAB_EUCLIDEAN = "lab_euclidean"
    EUCLIDEAN = "euclidean"


def _as_rgb(rgb: Sequence[float]) -> Tuple[int, int, int]:
    r, g, b = (min(255, max(0, int(round(float(c))))) for c in rgb)
    return r, g, b


def _similarity(distance: np.ndarray, algorithm: ColorDistanceAlgorithm) -> np.ndarray:
    if algorithm is ColorDistanceAlgorithm.CIEDE2000:
        scale = 100.0
    elif algorithm is ColorDistanceAlgorithm.LAB_EUCLIDEAN:
        scale = MAX_LAB_DISTANCE
    else:
        scale = MAX_WEIGHTED_RGB_DISTANCE
    return np.clip(np.maximum(0.0, 1.0 - np.asarray(distance) / scale) * 100.0, 0.0, 100.0)


class ColorMatcher:
    """Searches one or more thread catalogs in their given order."""

    def __init__(self, catalogs: Sequence[ThreadCatalog]) -> None:
        if not catalogs:
            raise ParameterError("Thread catalogs cannot be empty")
        self.catalogs = list(catalogs)
        self._colors, self._rgb, self._lab = combined(self.catalogs)

    @property
    def thread_count(self) -> int:
        return len(self._colors)

    # ------------------------------------------------------------------
    # Distances against every thread at once
    # ------------------------------------------------------------------
    def distances(self, rgb: Sequence[float], algorithm: ColorDistanceAlgorithm) -> np.ndarray:
        target = np.asarray(_as_rgb(rgb), dtype=np.float64)
        if algorithm is ColorDistanceAlgorithm.CIEDE2000:
            return np.asarray(ciede2000_lab(rgb_to_lab(target)[None, :], self._lab), dtype=np.float64).reshape(-1)
        if algorithm is ColorDistanceAlgorithm.LAB_EUCLIDEAN:
            diff = self._lab - rgb_to_lab(target)[None, :]
            return np.sqrt(np.sum(diff * diff, axis=1))
        diff = self._rgb - target[None, :]
        return np.sqrt(np.sum(RGB_WEIGHTS * diff * diff, axis=1))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_exact(self, rgb: Sequence[float]) -> Optional[ThreadColor]:
        target = _as_rgb(rgb)
        for color in self._colors:
            if color.rgb == target:
                return color
        return None

    def find_all_exact(self, rgb: Sequence[float]) -> List[ThreadColor]:
        """One exact match per catalog that has the colour."""

        target = _as_rgb(rgb)
        found = []
        for catalog in self.catalogs:
            for color in catalog.colors:
                if color.rgb == target:
                    found.append(color)
                    break
        return found

    def find_nearest(self, rgb: Sequence[float]) -> Optional[ThreadColor]:
        """Weighted RGB nearest thread with a match percentage."""

        if not self._colors:
            return None
        dist = self.distances(rgb, ColorDistanceAlgorithm.EUCLIDEAN)
        best = int(np.argmin(dist))
        percentage = 100.0 * (1.0 - dist[best] / MAX_WEIGHTED_RGB_DISTANCE)
        return self._colors[best].with_percentage(percentage)

    def find_optimal_match(
        self,
        rgb: Sequence[float],
        algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
        allow_nearby: bool = True,
    ) -> Optional[ThreadColor]:
        exact = self.find_exact(rgb)
        if exact is not None:
            return exact
        if not allow_nearby or not self._colors:
            return None
        if algorithm is ColorDistanceAlgorithm.EUCLIDEAN:
            return self.find_nearest(rgb)
        dist = self.distances(rgb, algorithm)
        best = int(np.argmin(dist))
        return self._colors[best].with_percentage(float(_similarity(dist[best], algorithm)))

    def find_k_nearest(self, rgb: Sequence[float], k: int) -> List[ThreadColor]:
        if k <= 0:
            raise ParameterError("k must be positive")
        dist = self.distances(rgb, ColorDistanceAlgorithm.EUCLIDEAN)
        order = np.argsort(dist, kind="stable")[:k]
        return [self._colors[int(i)] for i in order]

    def find_top_matches(
        self,
        rgb: Sequence[float],
        count: int,
        algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
    ) -> List[ThreadColor]:
        if count <= 0:
            raise ParameterError("Count must be positive")
        dist = self.distances(rgb, algorithm)
        order = np.argsort(dist, kind="stable")[:count]
        sims = _similarity(dist[order], algorithm)
        return [self._colors[int(i)].with_percentage(float(s)) for i, s in zip(order, sims)]

    def batch_match(
        self,
        colors: Sequence[Sequence[float]],
        algorithm: ColorDistanceAlgorithm = ColorDistanceAlgorithm.CIEDE2000,
    ) -> Dict[Tuple[int, int, int], ThreadColor]:
        results: Dict[Tuple[int, int, int], ThreadColor] = {}
        for color in colors:
            key = _as_rgb(color)
            if key in results:
                continue
            match = self.find_optimal_match(key, algorithm)
            if match is not None:
                results[key] = match
        return results

    @staticmethod
    def color_difference(thread: ThreadColor, rgb: Sequence[float]) -> float:
        """Weighted RGB similarity of ``thread`` to ``rgb`` in percent."""

        diff = np.asarray(thread.rgb, dtype=np.float64) - np.asarray(_as_rgb(rgb), dtype=np.float64)
        distance = float(np.sqrt(np.sum(RGB_WEIGHTS * diff * diff)))
        return (1.0 - distance / MAX_WEIGHTED_RGB_DISTANCE) * 100.0


__all__ = ["ColorDistanceAlgorithm", "ColorMatcher"]
