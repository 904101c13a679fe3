"""Floyd–Steinberg error diffusion against a fixed palette."""

from __future__ import annotations

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8
from threadstitch.utils.color_model import MAX_RGB_DISTANCE, RGB_WEIGHTS
from threadstitch.utils.fields import sample
from threadstitch.utils.result import ParameterError, Result, guarded

LOGGER = logging.getLogger(__name__)

MAX_COUNTED_COLORS = 10_000
# Accumulated error per channel is kept inside this range when clamping.
ERROR_CLAMP = (-128.0, 127.0)


class DitheringEffectiveness(enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class DitheringParameters:
    strength: float = 0.8
    serpentine: bool = True
    error_clamp: bool = True

    @property
    def is_valid(self) -> bool:
        return 0.0 <= self.strength <= 1.0


@dataclass(frozen=True)
class DitherResult:
    dithered_image: np.ndarray
    index_map: np.ndarray
    # per pixel ‖error‖ / 441.67, so 0..1
    error_map: np.ndarray
    original_color_count: int
    quantized_color_count: int
    strength: float
    processing_time_ms: float = 0.0

    @property
    def width(self) -> int:
        return int(self.dithered_image.shape[1])

    @property
    def height(self) -> int:
        return int(self.dithered_image.shape[0])

    @property
    def average_error(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.mean(np.abs(self.error_map)))

    @property
    def max_error(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.max(np.abs(self.error_map)))

    @property
    def error_variance(self) -> float:
        if self.error_map.size == 0:
            return 0.0
        return float(np.mean((np.abs(self.error_map) - self.average_error) ** 2))

    @property
    def quality_score(self) -> float:
        if self.error_map.size == 0:
            return 100.0
        error_score = max(0.0, 100.0 - self.average_error * 100.0)
        uniformity_score = max(0.0, 100.0 - self.error_variance * 10.0)
        return (error_score + uniformity_score) / 2.0

    @property
    def is_effective(self) -> bool:
        return self.quality_score > 50.0 and self.average_error < 0.5

    @property
    def effectiveness(self) -> DitheringEffectiveness:
        score = self.quality_score
        if score >= 80:
            return DitheringEffectiveness.EXCELLENT
        if score >= 60:
            return DitheringEffectiveness.GOOD
        if score >= 40:
            return DitheringEffectiveness.FAIR
        return DitheringEffectiveness.POOR

    @property
    def color_reduction_ratio(self) -> float:
        if self.original_color_count == 0:
            return 0.0
        return min(1.0, max(0.0, 1.0 - self.quantized_color_count / self.original_color_count))

    def error_at(self, x: int, y: int) -> float:
        return sample(self.error_map, x, y)


def estimate_color_count(image) -> int:
    """Distinct colours on a sampling grid, capped at 10 000."""

    rgb = ensure_rgb_uint8(image)
    height, width = rgb.shape[:2]
    step = max(1, math.ceil(width * height / 5000))
    sampled = rgb[::step, ::step].reshape(-1, 3).astype(np.int64)
    packed = (sampled[:, 0] << 16) | (sampled[:, 1] << 8) | sampled[:, 2]
    return int(min(np.unique(packed).size, MAX_COUNTED_COLORS))


def is_valid_palette(palette: Sequence[Sequence[int]]) -> bool:
    """Non-empty and free of duplicates."""

    if len(palette) == 0:
        return False
    unique = {tuple(int(c) for c in color) for color in palette}
    return len(unique) == len(palette)


def create_gradient_test_pattern(width: int, height: int) -> np.ndarray:
    """Horizontal black → white ramp."""

    ramp = np.clip(np.rint(np.arange(width) * 255.0 / max(1, width - 1)), 0, 255).astype(np.uint8)
    grey = np.tile(ramp, (height, 1))
    return np.repeat(grey[..., None], 3, axis=2)


def analyze_banding(result: DitherResult) -> float:
    """Mean change of the horizontal intensity slope in the middle rows.

    Lower is smoother.
    """

    intensity = result.dithered_image.astype(np.float64).mean(axis=2)
    height, width = intensity.shape
    rows = intensity[height // 4 : 3 * height // 4 : 4]
    if rows.size == 0 or width < 3:
        return 0.0
    g1 = np.abs(rows[:, 1:-1] - rows[:, :-2])
    g2 = np.abs(rows[:, 2:] - rows[:, 1:-1])
    return float(np.mean(np.abs(g1 - g2)))


class FloydSteinbergDitherer:
    @guarded("Floyd-Steinberg dithering")
    def dither(
        self,
        image,
        palette: Sequence[Sequence[int]],
        params: DitheringParameters = DitheringParameters(),
    ) -> "Result[DitherResult]":
        if not params.is_valid:
            raise ParameterError("Invalid dithering parameters")
        if len(palette) == 0:
            raise ParameterError("Color palette cannot be empty")

        started = time.perf_counter()
        rgb = ensure_rgb_uint8(image)
        pal = np.asarray(palette, dtype=np.int64).reshape(-1, 3)
        out, index_map, error_map = self._diffuse(rgb, pal, params)
        return DitherResult(
            dithered_image=out,
            index_map=index_map,
            error_map=error_map,
            original_color_count=estimate_color_count(rgb),
            quantized_color_count=len(pal),
            strength=params.strength,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )

    @staticmethod
    def _diffuse(rgb: np.ndarray, palette: np.ndarray, params: DitheringParameters):
        height, width = rgb.shape[:2]
        pal_f = palette.astype(np.float64)
        pal_list: List[Tuple[int, int, int]] = [tuple(int(v) for v in c) for c in palette]
        nearest_cache: Dict[Tuple[int, int, int], int] = {}

        def nearest(key: Tuple[int, int, int]) -> int:
            idx = nearest_cache.get(key)
            if idx is None:
                diff = pal_f - np.asarray(key, dtype=np.float64)
                idx = int(np.argmin(np.sum(RGB_WEIGHTS * diff * diff, axis=1)))
                nearest_cache[key] = idx
            return idx

        strength = params.strength
        lo, hi = ERROR_CLAMP
        clamp = params.error_clamp
        index_map = np.zeros((height, width), dtype=np.int32)
        error_map = np.zeros((height, width), dtype=np.float32)

        # two rows of per-channel error, padded by one on each side
        errors = [[[0.0] * (width + 2) for _ in range(3)] for _ in range(2)]

        for y in range(height):
            cur = errors[y % 2]
            nxt = errors[1 - y % 2]
            for channel in nxt:
                channel[:] = [0.0] * (width + 2)

            reverse = params.serpentine and y % 2 == 1
            step = -1 if reverse else 1
            xs = range(width - 1, -1, -1) if reverse else range(width)
            row = rgb[y].tolist()
            idx_row = [0] * width
            err_row = [0.0] * width
            targets = ((step, 0, 7.0 / 16.0), (-step, 1, 3.0 / 16.0), (0, 1, 5.0 / 16.0), (step, 1, 1.0 / 16.0))

            for x in xs:
                r0, g0, b0 = row[x]
                i = x + 1
                r = min(255.0, max(0.0, r0 + cur[0][i]))
                g = min(255.0, max(0.0, g0 + cur[1][i]))
                b = min(255.0, max(0.0, b0 + cur[2][i]))

                k = nearest((int(r), int(g), int(b)))
                pr, pg, pb = pal_list[k]
                idx_row[x] = k
                er, eg, eb = r - pr, g - pg, b - pb
                err_row[x] = math.sqrt(er * er + eg * eg + eb * eb) / MAX_RGB_DISTANCE

                if strength <= 0:
                    continue
                for dx, dy, weight in targets:
                    nx = x + dx
                    if nx < 0 or nx >= width or y + dy >= height:
                        continue
                    buf = cur if dy == 0 else nxt
                    w = weight * strength
                    j = nx + 1
                    if clamp:
                        buf[0][j] = min(hi, max(lo, buf[0][j] + er * w))
                        buf[1][j] = min(hi, max(lo, buf[1][j] + eg * w))
                        buf[2][j] = min(hi, max(lo, buf[2][j] + eb * w))
                    else:
                        buf[0][j] += er * w
                        buf[1][j] += eg * w
                        buf[2][j] += eb * w

            index_map[y] = idx_row
            error_map[y] = err_row

        dithered = palette[index_map].astype(np.uint8)
        return dithered, index_map, error_map


def nearest_palette_mapping(image, palette: Sequence[Sequence[int]]) -> Tuple[np.ndarray, np.ndarray]:
    """Plain nearest-colour mapping (weighted RGB) without error diffusion.

    Returns ``(mapped_image, index_map)``.
    """

    rgb = ensure_rgb_uint8(image).astype(np.float64)
    pal = np.asarray(palette, dtype=np.float64).reshape(-1, 3)
    if pal.shape[0] == 0:
        raise ParameterError("Color palette cannot be empty")
    flat = rgb.reshape(-1, 3)
    best = np.zeros(flat.shape[0], dtype=np.int32)
    best_dist = np.full(flat.shape[0], np.inf)
    for k, color in enumerate(pal):
        diff = flat - color
        dist = np.sum(RGB_WEIGHTS * diff * diff, axis=1)
        better = dist < best_dist
        best[better] = k
        best_dist[better] = dist[better]
    index_map = best.reshape(rgb.shape[:2])
    return pal.astype(np.uint8)[index_map], index_map


__all__ = [
    "DitherResult",
    "DitheringEffectiveness",
    "DitheringParameters",
    "FloydSteinbergDitherer",
    "analyze_banding",
    "create_gradient_test_pattern",
    "estimate_color_count",
    "is_valid_palette",
    "nearest_palette_mapping",
]
