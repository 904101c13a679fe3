"""Silk shading ("long and short") stitch generator.

Stitches are laid along the thread flow on a jittered grid inside one colour
region.  Primary strokes follow the flow, secondary strokes cross it at a
right angle to blend neighbouring tones, and every stitch colour is nudged
by colour temperature and atmospheric perspective.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8
from threadstitch.quantization.catalog import ThreadColor
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.slicer_core import chain_stitches
from threadstitch.slicer.stitches import Stitch, StitchSequence
from threadstitch.utils.artistic_math import (
    NEUTRAL_TEMPERATURE,
    add_artistic_variation,
    apply_color_temperature,
    apply_thread_tension,
    artistic_stitch_length,
    atmospheric_factor,
)
from threadstitch.utils.color_model import lerp_rgb
from threadstitch.utils.fields import wrap_angle
from threadstitch.utils.result import ParameterError, Result, guarded

from .base import stitch_coverage, validate_generator_inputs
from .opacity import OpacityMap
from .thread_flow import ThreadFlowField

LOGGER = logging.getLogger(__name__)

ATMOSPHERE_RGB = (230, 242, 255)
MIN_OPACITY = 0.1
GRID_STEP = 2


@dataclass(frozen=True)
class StitchPoint:
    x: int
    y: int
    direction: float
    length: float
    opacity: float
    artistic_intensity: float


@dataclass(frozen=True)
class SilkShadingResult:
    sequences: Tuple[StitchSequence, ...]
    thread_color: ThreadColor
    total_stitches: int
    coverage_percentage: float
    direction_accuracy: float
    artistic_quality: float
    processing_time_ms: float = 0.0

    def __str__(self) -> str:
        return (
            f"SilkShading({len(self.sequences)} sequences, {self.total_stitches} stitches, "
            f"quality: {self.artistic_quality:.1f})"
        )


def base_spacing(density: float) -> float:
    return min(16.0, max(2.0, 8.0 / density))


def adaptive_spacing(spacing: float, complexity: float, intensity: float, opacity: float) -> float:
    return spacing * (1.0 - complexity * 0.3) * (1.0 - intensity * 0.2) * (1.0 - opacity * 0.1)


def should_place_stitch(x: int, y: int, spacing: float, complexity: float) -> bool:
    noise = math.sin(x * 0.1) * math.cos(y * 0.1)
    threshold = 0.5 + complexity * 0.3 + noise * 0.1
    period = max(1, int(math.floor(spacing + 0.5)))
    return (x + y) % period < threshold * spacing


def stitch_grid(flow: ThreadFlowField, opacity: OpacityMap, mask: np.ndarray, params: EmbroideryParameters) -> List[StitchPoint]:
    """Candidate stitch origins every other pixel inside ``mask``."""

    spacing = base_spacing(params.density)
    mid_length = (params.min_stitch_length + params.max_stitch_length) / 2.0
    points: List[StitchPoint] = []
    ys, xs = np.nonzero(mask[::GRID_STEP, ::GRID_STEP])
    for gy, gx in zip(ys, xs):
        x, y = int(gx) * GRID_STEP, int(gy) * GRID_STEP
        op = float(opacity.opacity_values[y, x])
        if op < MIN_OPACITY:
            continue
        complexity = float(flow.texture_complexity[y, x])
        intensity = float(flow.artistic_intensity[y, x])
        local = adaptive_spacing(spacing, complexity, intensity, op)
        if not should_place_stitch(x, y, local, complexity):
            continue
        points.append(
            StitchPoint(
                x=x,
                y=y,
                direction=float(flow.primary_directions[y, x]),
                length=artistic_stitch_length(
                    mid_length, params.min_stitch_length, params.max_stitch_length, complexity, intensity
                ),
                opacity=op,
                artistic_intensity=intensity,
            )
        )
    return points


def temperature_color(rgb, depth: float, shift: float = 0.0):
    return apply_color_temperature(rgb, NEUTRAL_TEMPERATURE + shift + (depth - 0.5) * 1000.0)


def primary_strokes(
    points: List[StitchPoint], opacity: OpacityMap, thread: ThreadColor, params: EmbroideryParameters, seed: int
) -> List[Stitch]:
    rng = np.random.default_rng(seed)
    strokes: List[Stitch] = []
    for point in points:
        angle = add_artistic_variation(point.direction, point.artistic_intensity * 0.2, rng)
        start = (float(point.x), float(point.y))
        end = (start[0] + math.cos(angle) * point.length, start[1] + math.sin(angle) * point.length)
        end = apply_thread_tension(start, end, point.artistic_intensity * 0.3, rng)
        color = temperature_color(thread.rgb, opacity.depth_at(point.x, point.y))
        stitch = Stitch(start, end, color)
        if stitch.is_valid(params.min_stitch_length, params.max_stitch_length):
            strokes.append(stitch)
    return strokes


def secondary_strokes(
    points: List[StitchPoint],
    flow: ThreadFlowField,
    opacity: OpacityMap,
    thread: ThreadColor,
    params: EmbroideryParameters,
    seed: int,
) -> List[Stitch]:
    rng = np.random.default_rng(seed)
    chosen = [p for p in points if rng.random() < 0.6 * p.opacity]
    strokes: List[Stitch] = []
    for point in chosen:
        direction = flow.secondary_direction_at(point.x, point.y)
        length = point.length * 0.7
        start = (point.x + (rng.random() - 0.5) * 2.0, point.y + (rng.random() - 0.5) * 2.0)
        end = (start[0] + math.cos(direction) * length, start[1] + math.sin(direction) * length)
        color = temperature_color(thread.rgb, opacity.depth_at(point.x, point.y), shift=200.0)
        stitch = Stitch(start, end, color)
        if stitch.is_valid(params.min_stitch_length, params.max_stitch_length):
            strokes.append(stitch)
    return strokes


def atmospheric_enhancement(stitches: List[Stitch], opacity: OpacityMap) -> List[Stitch]:
    """Fade each stitch colour toward sky blue by its depth."""

    enhanced = []
    for stitch in stitches:
        mid_x = int(math.floor((stitch.start[0] + stitch.end[0]) / 2.0 + 0.5))
        mid_y = int(math.floor((stitch.start[1] + stitch.end[1]) / 2.0 + 0.5))
        factor = atmospheric_factor(opacity.depth_at(mid_x, mid_y))
        enhanced.append(Stitch(stitch.start, stitch.end, lerp_rgb(stitch.color, ATMOSPHERE_RGB, 1.0 - factor)))
    return enhanced


def direction_accuracy(stitches: List[Stitch], flow: ThreadFlowField) -> float:
    """Mean agreement (0..100) of stitch angles with the local flow.

    Stitches are undirected and secondary strokes run across the flow, so a
    stitch counts as aligned when it is parallel to either the primary or
    the secondary direction.
    """

    if not stitches:
        return 0.0
    scores = []
    for stitch in stitches:
        mid_x = int(math.floor((stitch.start[0] + stitch.end[0]) / 2.0 + 0.5))
        mid_y = int(math.floor((stitch.start[1] + stitch.end[1]) / 2.0 + 0.5))
        flow_angle = flow.primary_direction_at(mid_x, mid_y)
        # modulo pi/2 covers both primary and perpendicular secondary strokes
        diff = abs(float(wrap_angle(4.0 * (stitch.angle - flow_angle)))) / 4.0
        scores.append(1.0 - diff / (math.pi / 4.0))
    return float(np.clip(np.mean(scores) * 100.0, 0.0, 100.0))


class SilkShadingGenerator:
    """Long-and-short silk shading for one thread colour."""

    name = "silk_shading"

    def __init__(self, primary_seed: int = 42, secondary_seed: int = 123) -> None:
        self.primary_seed = primary_seed
        self.secondary_seed = secondary_seed

    @guarded("Silk shading generation")
    def generate(
        self,
        image,
        flow: ThreadFlowField,
        opacity: OpacityMap,
        thread_color: ThreadColor,
        mask: np.ndarray,
        parameters: EmbroideryParameters,
    ) -> "Result[SilkShadingResult]":
        rgb = ensure_rgb_uint8(image)
        validate_generator_inputs(rgb, flow, opacity, mask)
        validation = parameters.validate()
        if not validation.is_valid:
            raise ParameterError(validation.summary())

        started = time.perf_counter()
        mask = np.asarray(mask, dtype=bool)
        points = stitch_grid(flow, opacity, mask, parameters)
        strokes = primary_strokes(points, opacity, thread_color, parameters, self.primary_seed)
        strokes += secondary_strokes(points, flow, opacity, thread_color, parameters, self.secondary_seed)
        strokes = atmospheric_enhancement(strokes, opacity)

        sequences = chain_stitches(strokes, thread_color.rgb, thread_color.code, parameters)
        stitches = [s for seq in sequences for s in seq.stitches]
        coverage = stitch_coverage(stitches, mask)
        accuracy = direction_accuracy(stitches, flow)

        result = SilkShadingResult(
            sequences=tuple(sequences),
            thread_color=thread_color,
            total_stitches=len(stitches),
            coverage_percentage=coverage,
            direction_accuracy=accuracy,
            artistic_quality=(coverage + accuracy) / 2.0,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )
        LOGGER.debug("%s for %s from %s grid points", result, thread_color.code, len(points))
        return result


__all__ = [
    "SilkShadingGenerator",
    "SilkShadingResult",
    "StitchPoint",
    "adaptive_spacing",
    "base_spacing",
    "direction_accuracy",
    "should_place_stitch",
    "stitch_grid",
]
