"""Sfumato: soft tonal transitions built from translucent thread layers.

Between a dark base thread and a light highlight thread the generator lays
``layer_count`` layers of interpolated colour.  Darker layers are denser and
more opaque, lighter layers are sparse, and each layer uses its own anchor
pattern so the layers interleave instead of stacking on the same holes.
Every layer is sewn as one continuous run.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from threadstitch.image_analysis.preprocessor import ensure_rgb_uint8, grayscale
from threadstitch.quantization.catalog import ThreadColor
from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.slicer_core import join_into_path
from threadstitch.slicer.stitches import Stitch, StitchSequence
from threadstitch.utils.color_model import lerp_rgb
from threadstitch.utils.result import ParameterError, Result, guarded

from .base import validate_generator_inputs
from .opacity import OpacityMap
from .thread_flow import ThreadFlowField, local_gradient_magnitude

LOGGER = logging.getLogger(__name__)

MIN_LAYERS = 2
MAX_LAYERS = 10
MIN_LAYER_OPACITY = 0.1
MAX_LAYER_OPACITY = 0.8
MIN_EFFECTIVE_OPACITY = 0.01
# Per-layer shift of every stitch, in pixels along both axes.
LAYER_OFFSET = 0.3


@dataclass(frozen=True)
class SfumatoParameters:
    layer_count: int = 5
    seed_multiplier: int = 17

    @property
    def is_valid(self) -> bool:
        return MIN_LAYERS <= self.layer_count <= MAX_LAYERS


@dataclass(frozen=True)
class SfumatoLayer:
    index: int
    thread: ThreadColor
    opacity: float
    spacing: float
    stitches: Tuple[Stitch, ...] = ()

    @property
    def is_base(self) -> bool:
        return self.index == 0


@dataclass(frozen=True)
class SfumatoResult:
    layers: Tuple[SfumatoLayer, ...]
    sequences: Tuple[StitchSequence, ...]
    base_color: ThreadColor
    highlight_color: ThreadColor
    layer_count: int
    total_stitches: int
    gradient_smoothness: float
    layer_blending: float
    artistic_quality: float
    processing_time_ms: float = 0.0

    def __str__(self) -> str:
        return (
            f"Sfumato({self.layer_count} layers, {self.total_stitches} stitches, "
            f"quality: {self.artistic_quality:.1f})"
        )


# ----------------------------------------------------------------------
# Layer model
# ----------------------------------------------------------------------
def layer_opacity(progress: float) -> float:
    value = MIN_LAYER_OPACITY + (1.0 - progress) * (MAX_LAYER_OPACITY - MIN_LAYER_OPACITY)
    return min(MAX_LAYER_OPACITY, max(MIN_LAYER_OPACITY, value))


def layer_spacing(density: float, index: int) -> float:
    return min(8.0, max(2.0, 6.0 / density * (1.0 + index * 0.1)))


def layer_stitch_length(params: EmbroideryParameters, index: int, gradient: float) -> float:
    base = (params.min_stitch_length + params.max_stitch_length) / 2.0
    factor = 1.1 if index == 0 else 0.8 - index * 0.1
    length = base * factor * (0.7 + gradient * 0.3)
    return min(params.max_stitch_length, max(params.min_stitch_length, length))


def build_layers(base: ThreadColor, highlight: ThreadColor, count: int, density: float) -> List[SfumatoLayer]:
    layers = []
    for i in range(count):
        progress = i / (count - 1)
        r, g, b = lerp_rgb(base.rgb, highlight.rgb, progress)
        thread = ThreadColor(
            name=f"{base.name}_sfumato_L{i}",
            code=f"{base.code}_SF{i}",
            red=r,
            green=g,
            blue=b,
            catalog=base.catalog,
        )
        layers.append(SfumatoLayer(i, thread, layer_opacity(progress), layer_spacing(density, i)))
    return layers


def layer_anchors(width: int, height: int, cell: int, index: int) -> List[Tuple[int, int]]:
    """One candidate anchor per ``cell`` x ``cell`` block, placed by layer.

    ``index % 4`` picks the pattern: 0 cell corners, 1 cell centres,
    2 a diagonal walk through the cell, 3 centres on a checkerboard of
    cells.  Patterns 0 to 2 use every cell and 3 every other one, so each
    layer has anchors in any region spanning two cells.
    """

    half = cell // 2
    anchors = []
    for cy in range(0, (height + cell - 1) // cell):
        for cx in range(0, (width + cell - 1) // cell):
            rule = index % 4
            if rule == 0:
                dx = dy = 0
            elif rule == 1:
                dx = dy = half
            elif rule == 2:
                dx = dy = (cx + cy + index) % cell
            else:
                if (cx + cy + index) % 2:
                    continue
                dx, dy = half, 0
            x, y = cx * cell + dx, cy * cell + dy
            if x < width and y < height:
                anchors.append((x, y))
    return anchors


def layer_stitches(
    layer: SfumatoLayer,
    flow: ThreadFlowField,
    opacity: OpacityMap,
    mask: np.ndarray,
    gradient: np.ndarray,
    params: EmbroideryParameters,
    seed: int,
) -> List[Stitch]:
    height, width = mask.shape
    cell = max(2, int(math.floor(layer.spacing + 0.5)))
    rng = np.random.default_rng(seed)
    variation = 0.1 if layer.index > 0 else 0.05
    shift = layer.index * LAYER_OFFSET

    stitches: List[Stitch] = []
    for x, y in layer_anchors(width, height, cell, layer.index):
        if not mask[y, x]:
            continue
        if opacity.opacity_values[y, x] * layer.opacity <= MIN_EFFECTIVE_OPACITY:
            continue
        direction = float(flow.primary_directions[y, x]) + (rng.random() - 0.5) * variation
        length = layer_stitch_length(params, layer.index, float(gradient[y, x]))
        sx = x + (rng.random() - 0.5) * layer.spacing * 0.3 + shift
        sy = y + (rng.random() - 0.5) * layer.spacing * 0.3 + shift
        stitch = Stitch(
            (sx, sy),
            (sx + math.cos(direction) * length, sy + math.sin(direction) * length),
            layer.thread.rgb,
        )
        if stitch.is_valid(params.min_stitch_length, params.max_stitch_length):
            stitches.append(stitch)
    return stitches


# ----------------------------------------------------------------------
# Scores
# ----------------------------------------------------------------------
def local_smoothness(gray: np.ndarray) -> np.ndarray:
    """1 - mean absolute grey difference to the 8 neighbours / 255."""

    height, width = gray.shape
    padded = np.pad(gray, 1, mode="edge")
    total = np.zeros_like(gray)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            total += np.abs(gray - padded[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width])
    return np.clip(1.0 - total / 8.0 / 255.0, 0.0, 1.0)


def sfumato_scores(gray: np.ndarray, mask: np.ndarray, layers: List[SfumatoLayer]) -> Tuple[float, float, float]:
    """Return ``(gradient_smoothness, layer_blending, artistic_quality)`` in 0..100.

    Smoothness is measured on the masked image, blending is the share of
    layers that actually received stitches.
    """

    smoothness = float(local_smoothness(gray)[mask].mean() * 100.0) if mask.any() else 0.0
    filled = sum(1 for layer in layers if layer.stitches)
    blending = filled / len(layers) * 100.0 if layers else 0.0
    return smoothness, blending, (smoothness + blending) / 2.0


class SfumatoGenerator:
    """Layered dark → light blending from ``thread_color`` to ``highlight``."""

    name = "sfumato"

    def __init__(self, highlight: ThreadColor, params: SfumatoParameters = SfumatoParameters()) -> None:
        self.highlight = highlight
        self.params = params

    @guarded("Sfumato generation")
    def generate(
        self,
        image,
        flow: ThreadFlowField,
        opacity: OpacityMap,
        thread_color: ThreadColor,
        mask: np.ndarray,
        parameters: EmbroideryParameters,
    ) -> "Result[SfumatoResult]":
        rgb = ensure_rgb_uint8(image)
        validate_generator_inputs(rgb, flow, opacity, mask)
        if not self.params.is_valid:
            raise ParameterError(f"Layer count must be between {MIN_LAYERS} and {MAX_LAYERS} for valid sfumato")
        validation = parameters.validate()
        if not validation.is_valid:
            raise ParameterError(validation.summary())

        started = time.perf_counter()
        mask = np.asarray(mask, dtype=bool)
        gray = grayscale(rgb)
        gradient = local_gradient_magnitude(gray)

        layers: List[SfumatoLayer] = []
        sequences: List[StitchSequence] = []
        for layer in build_layers(thread_color, self.highlight, self.params.layer_count, parameters.density):
            raw = layer_stitches(
                layer, flow, opacity, mask, gradient, parameters, layer.index * self.params.seed_multiplier
            )
            path = join_into_path(raw, parameters.min_stitch_length, parameters.max_stitch_length)
            if not path:
                LOGGER.warning("Sfumato layer %s for %s received no stitches", layer.index, thread_color.code)
            layer = SfumatoLayer(layer.index, layer.thread, layer.opacity, layer.spacing, tuple(path))
            layers.append(layer)
            sequences.append(StitchSequence(layer.stitches, layer.thread.rgb, layer.thread.code, layer.opacity))

        smoothness, blending, artistic = sfumato_scores(gray, mask, layers)
        result = SfumatoResult(
            layers=tuple(layers),
            sequences=tuple(sequences),
            base_color=thread_color,
            highlight_color=self.highlight,
            layer_count=len(layers),
            total_stitches=sum(seq.stitch_count for seq in sequences),
            gradient_smoothness=smoothness,
            layer_blending=blending,
            artistic_quality=artistic,
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )
        LOGGER.debug("%s between %s and %s", result, thread_color.code, self.highlight.code)
        return result


__all__ = [
    "SfumatoGenerator",
    "SfumatoLayer",
    "SfumatoParameters",
    "SfumatoResult",
    "build_layers",
    "layer_anchors",
    "layer_opacity",
    "layer_spacing",
    "layer_stitch_length",
]
