"""Small numeric helpers behind the artistic stitch techniques."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

from .color_model import RGB

WARM_TEMPERATURE = 3000.0
NEUTRAL_TEMPERATURE = 6500.0
COOL_TEMPERATURE = 10000.0
GOLDEN_RATIO = 1.618033988749

# Largest jitter applied to a stitch direction (15 degrees).
MAX_ANGLE_VARIATION = math.pi / 12.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def apply_color_temperature(rgb: Sequence[int], temperature: float) -> RGB:
    """Bias a colour toward warm (red/yellow) or cool (blue) light."""

    r, g, b = (int(c) for c in rgb)
    norm = _clamp((temperature - WARM_TEMPERATURE) / (COOL_TEMPERATURE - WARM_TEMPERATURE), 0.0, 1.0)
    if norm < 0.5:
        warm = 1.0 - norm * 2.0
        r = int(_clamp(round(r + (255 - r) * warm * 0.1), 0, 255))
        g = int(_clamp(round(g + (255 - g) * warm * 0.05), 0, 255))
        return r, g, b
    cool = (norm - 0.5) * 2.0
    b = int(_clamp(round(b + (255 - b) * cool * 0.1), 0, 255))
    g = int(_clamp(round(g + (255 - g) * cool * 0.02), 0, 255))
    return r, g, b


def sfumato_smoothing(gradient_magnitude: float, max_gradient: float, strength: float) -> float:
    if max_gradient == 0:
        return 1.0
    normalized = _clamp(gradient_magnitude / max_gradient, 0.0, 1.0)
    return _clamp(strength * (1.0 - math.sqrt(normalized)), 0.0, 1.0)


def thread_opacity(base_opacity: float, local_contrast: float, artistic_intensity: float) -> float:
    return _clamp(base_opacity + local_contrast * 0.3 + artistic_intensity * 0.2, 0.1, 1.0)


def add_artistic_variation(angle, strength, rng: np.random.Generator):
    """Jitter ``angle`` by up to ``±pi/12 * strength``.

    Works on scalars and arrays; one uniform draw is taken per element.
    """

    shape = np.broadcast(np.asarray(angle), np.asarray(strength)).shape
    draws = rng.random(shape) if shape else rng.random()
    variation = (draws - 0.5) * 2.0 * MAX_ANGLE_VARIATION * np.asarray(strength)
    result = np.asarray(angle) + variation
    return float(result) if np.ndim(result) == 0 else result


def atmospheric_factor(depth, max_depth: float = 1.0):
    """Exponential fade from 1.0 (near) to about 0.135 (far)."""

    if max_depth == 0:
        return 1.0
    normalized = np.clip(np.asarray(depth, dtype=np.float64) / max_depth, 0.0, 1.0)
    factor = np.exp(-normalized * 2.0)
    return float(factor) if np.ndim(factor) == 0 else factor


def blend_colors(rgb1: Sequence[int], rgb2: Sequence[int], factor: float) -> RGB:
    t = _clamp(factor, 0.0, 1.0)
    mixed = [int(_clamp(round(a * (1.0 - t) + b * t), 0, 255)) for a, b in zip(rgb1, rgb2)]
    return mixed[0], mixed[1], mixed[2]


def artistic_stitch_length(
    base_length: float,
    min_length: float,
    max_length: float,
    complexity: float,
    artistic_control: float,
) -> float:
    """Shorter stitches where the image is busy, longer where it is calm."""

    length = base_length + (artistic_control - 0.5) * (max_length - min_length) * 0.3
    length *= 0.5 + (1.0 - complexity) * 0.5
    return _clamp(length, min_length, max_length)


def silk_shading_intensity(gradient_magnitude, coherence, color_variation):
    total = np.asarray(gradient_magnitude) * 0.4 + np.asarray(coherence) * 0.3 + np.asarray(color_variation) * 0.3
    total = np.clip(total, 0.0, 1.0)
    return float(total) if np.ndim(total) == 0 else total


def golden_ratio_spacing(base_spacing: float) -> float:
    return base_spacing * (0.8 + 0.2 / GOLDEN_RATIO)


def apply_thread_tension(
    start: Tuple[float, float],
    end: Tuple[float, float],
    tension: float,
    rng: np.random.Generator,
) -> Tuple[float, float]:
    """Displace ``end`` sideways by at most 5 % of the stitch length."""

    if tension <= 0.0:
        return end
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    length = math.hypot(dx, dy)
    if length == 0:
        return end
    perp_x = -dy / length
    perp_y = dx / length
    displacement = length * 0.05 * tension * (0.5 - rng.random())
    return end[0] + perp_x * displacement, end[1] + perp_y * displacement


__all__ = [
    "COOL_TEMPERATURE",
    "GOLDEN_RATIO",
    "NEUTRAL_TEMPERATURE",
    "WARM_TEMPERATURE",
    "add_artistic_variation",
    "apply_color_temperature",
    "apply_thread_tension",
    "artistic_stitch_length",
    "atmospheric_factor",
    "blend_colors",
    "golden_ratio_spacing",
    "sfumato_smoothing",
    "silk_shading_intensity",
    "thread_opacity",
]
