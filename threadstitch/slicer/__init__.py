"""Stitch models, run parameters and sequence assembly."""

from .parameters import EmbroideryParameters, ValidationResult
from .slicer_core import SequenceAssembler, chain_stitches, join_into_path, order_nearest_neighbor
from .stitches import EmbroideryPattern, Stitch, StitchSequence, ThreadInfo

__all__ = [
    "EmbroideryParameters",
    "EmbroideryPattern",
    "SequenceAssembler",
    "Stitch",
    "StitchSequence",
    "ThreadInfo",
    "ValidationResult",
    "chain_stitches",
    "join_into_path",
    "order_nearest_neighbor",
]
