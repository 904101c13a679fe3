"""Common surface of the artistic stitch generators.

The pipeline treats every technique as an interchangeable engine: it only
needs a ``name`` and a ``generate`` method returning a Result whose payload
exposes the generated sequences.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

import cv2
import numpy as np

from threadstitch.slicer.parameters import EmbroideryParameters
from threadstitch.slicer.stitches import Stitch, StitchSequence
from threadstitch.utils.result import DimensionMismatchError, Result


class GeneratorOutput(Protocol):
    @property
    def sequences(self) -> Sequence[StitchSequence]: ...

    @property
    def total_stitches(self) -> int: ...


class StitchGenerator(Protocol):
    name: str

    def generate(
        self,
        image: np.ndarray,
        flow: Any,
        opacity: Any,
        thread_color: Any,
        mask: np.ndarray,
        parameters: EmbroideryParameters,
    ) -> "Result[GeneratorOutput]": ...


def validate_generator_inputs(image: np.ndarray, flow: Any, opacity: Any, mask: np.ndarray) -> None:
    """Raise :class:`DimensionMismatchError` unless all inputs share one size."""

    height, width = image.shape[:2]
    if (flow.width, flow.height) != (width, height):
        raise DimensionMismatchError("Image and thread flow dimensions must match")
    if (opacity.width, opacity.height) != (width, height):
        raise DimensionMismatchError("Image and opacity map dimensions must match")
    if np.shape(mask) != (height, width):
        raise DimensionMismatchError("Region mask must match the image dimensions")


def stitch_coverage(stitches: Iterable[Stitch], mask: np.ndarray) -> float:
    """Percentage of ``mask`` pixels touched by the rasterised stitches."""

    mask = np.asarray(mask, dtype=bool)
    total = int(mask.sum())
    if total == 0:
        return 0.0
    canvas = np.zeros(mask.shape, dtype=np.uint8)
    for stitch in stitches:
        p1 = (int(round(stitch.start[0])), int(round(stitch.start[1])))
        p2 = (int(round(stitch.end[0])), int(round(stitch.end[1])))
        cv2.line(canvas, p1, p2, 1, 1)
    touched = int(np.count_nonzero(canvas.astype(bool) & mask))
    return touched / total * 100.0


__all__ = ["GeneratorOutput", "StitchGenerator", "stitch_coverage", "validate_generator_inputs"]
