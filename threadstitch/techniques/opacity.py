"""Adaptive opacity: how densely each pixel should be covered with thread.

Dark areas get more thread, far-away areas (bottom of the frame, low
structure, low saturation) fade the way atmospheric perspective fades
paint, and a small seeded variation keeps large flat fields from looking
mechanical.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import numpy as np

from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8
from threadstitch.utils.artistic_math import atmospheric_factor
from threadstitch.utils.color_model import rec709_luminance
from threadstitch.utils.fields import sample
from threadstitch.utils.result import DimensionMismatchError, ParameterError, Result, guarded

from .thread_flow import ThreadFlowField

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpacityParameters:
    base_density: float = 0.7
    contrast_enhancement: float = 1.3
    atmospheric_strength: float = 0.6
    seed: int = 123

    @property
    def is_valid(self) -> bool:
        return (
            0.0 <= self.base_density <= 1.0
            and self.contrast_enhancement > 0.0
            and 0.0 <= self.atmospheric_strength <= 1.0
        )


@dataclass(frozen=True)
class OpacityMap:
    width: int
    height: int
    opacity_values: np.ndarray
    luminance: np.ndarray
    depth_map: np.ndarray
    contrast_ratio: float
    dynamic_range: float
    artistic_score: float
    processing_time_ms: float = 0.0

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def opacity_at(self, x: int, y: int) -> float:
        return sample(self.opacity_values, x, y)

    def luminance_at(self, x: int, y: int) -> float:
        return sample(self.luminance, x, y)

    def depth_at(self, x: int, y: int) -> float:
        return sample(self.depth_map, x, y)

    @property
    def average_opacity(self) -> float:
        if self.opacity_values.size == 0:
            return 0.0
        return float(self.opacity_values.mean())

    def __str__(self) -> str:
        return f"OpacityMap({self.width} x {self.height}, artistic: {self.artistic_score:.1f})"


def saturation(rgb: np.ndarray) -> np.ndarray:
    """HSV saturation in 0..1 (0 for black)."""

    rgb01 = rgb.astype(np.float64) / 255.0
    high = rgb01.max(axis=-1)
    low = rgb01.min(axis=-1)
    return np.divide(high - low, high, out=np.zeros_like(high), where=high > 0)


def depth_map(rgb: np.ndarray, flow: ThreadFlowField) -> np.ndarray:
    height, width = rgb.shape[:2]
    perspective = np.repeat((np.arange(height, dtype=np.float64) / height)[:, None], width, axis=1)
    texture = 1.0 - flow.flow_coherence
    saturation_depth = 1.0 - saturation(rgb)
    return np.clip(perspective * 0.4 + texture * 0.3 + saturation_depth * 0.3, 0.0, 1.0)


def contrast_s_curve(opacity: np.ndarray, luminance: np.ndarray, factor: float) -> np.ndarray:
    """Stretch around 0.5 and bias by how far each pixel is from mean luminance."""

    if factor <= 1.0:
        return opacity
    stretched = (opacity - 0.5) * factor + 0.5
    luminance_factor = 1.0 + (luminance - float(luminance.mean())) * 0.3
    return np.clip(stretched * luminance_factor, 0.0, 1.0)


def opacity_quality(opacity: np.ndarray, intensity: np.ndarray):
    flat = opacity.reshape(-1)
    dynamic_range = float(flat.max() - flat.min()) if flat.size else 0.0
    contrast_ratio = float(np.mean(np.abs(np.diff(flat)))) if flat.size > 1 else 0.0
    artistic = float(np.mean(1.0 - np.abs(flat - intensity.reshape(-1))) * 100.0) if flat.size else 0.0
    return contrast_ratio, dynamic_range, artistic


class AdaptiveOpacityController:
    @guarded("Opacity map generation")
    def generate(
        self,
        image,
        flow: ThreadFlowField,
        params: OpacityParameters = OpacityParameters(),
    ) -> "Result[OpacityMap]":
        if not params.is_valid:
            raise ParameterError("Invalid opacity parameters")
        rgb = ensure_rgb_uint8(image)
        height, width = rgb.shape[:2]
        if (flow.width, flow.height) != (width, height):
            raise DimensionMismatchError("Image and thread flow dimensions must match")

        started = time.perf_counter()
        luminance = rec709_luminance(rgb)
        depth = depth_map(rgb, flow)
        intensity = flow.artistic_intensity
        complexity = flow.texture_complexity

        opacity = (1.0 - luminance) * params.base_density * (0.8 + intensity * 0.4) * (0.9 + complexity * 0.2)
        opacity = np.clip(opacity, 0.0, 1.0)
        opacity = contrast_s_curve(opacity, luminance, params.contrast_enhancement)
        opacity = np.clip(opacity * (1.0 - params.atmospheric_strength * (1.0 - atmospheric_factor(depth))), 0.0, 1.0)

        rng = np.random.default_rng(params.seed)
        strength = intensity * (1.0 - flow.flow_coherence) * 0.15
        noise = (rng.random((height, width)) - 0.5) * 2.0 * strength
        index = np.arange(height * width, dtype=np.float64).reshape(height, width)
        golden = np.sin(index * 2.618) * 0.02 * intensity
        opacity = np.clip(opacity + noise + golden, 0.0, 1.0)

        contrast_ratio, dynamic_range, artistic = opacity_quality(opacity, intensity)
        result = OpacityMap(
            width=width,
            height=height,
            opacity_values=opacity,
            luminance=luminance,
            depth_map=depth,
            contrast_ratio=contrast_ratio,
            dynamic_range=dynamic_range,
            artistic_score=artistic,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )
        LOGGER.debug("%s, average opacity %.3f", result, result.average_opacity)
        return result


__all__ = [
    "AdaptiveOpacityController",
    "OpacityMap",
    "OpacityParameters",
    "contrast_s_curve",
    "depth_map",
    "opacity_quality",
    "saturation",
]
