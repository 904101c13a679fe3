"""Run configuration for the embroidery pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List

# Limits above which a value is legal but unusual for a home machine.
RECOMMENDED_MIN_STITCH_LENGTH = 0.5
RECOMMENDED_MAX_STITCH_LENGTH = 15.0
RECOMMENDED_COLOR_LIMIT = 64


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def summary(self) -> str:
        if self.is_valid and not self.warnings:
            return "Parameters are valid"
        parts = []
        if self.errors:
            parts.append("Errors: " + "; ".join(self.errors))
        if self.warnings:
            parts.append("Warnings: " + "; ".join(self.warnings))
        return " | ".join(parts)


@dataclass(frozen=True)
class EmbroideryParameters:
    """User facing knobs of one pattern generation run.

    Lengths are in millimetres (one working-image pixel per millimetre).
    Ranges are checked by :meth:`validate`, the constructor accepts anything.
    """

    min_stitch_length: float = 1.0
    max_stitch_length: float = 12.0
    color_limit: int = 16
    density: float = 0.7
    smoothing: float = 0.5
    enable_silk_shading: bool = True
    enable_sfumato: bool = True
    overlap_threshold: float = 0.1

    def validate(self) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if self.min_stitch_length <= 0:
            errors.append("Minimum stitch length must be positive")
        if self.max_stitch_length <= self.min_stitch_length:
            errors.append("Maximum stitch length must be greater than minimum stitch length")
        if self.color_limit < 1:
            errors.append("Color limit must be at least 1")
        if not 0.1 <= self.density <= 1.0:
            errors.append("Density must be between 0.1 and 1.0")
        if not 0.0 <= self.smoothing <= 1.0:
            errors.append("Smoothing must be between 0.0 and 1.0")
        if not 0.0 <= self.overlap_threshold <= 1.0:
            errors.append("Overlap threshold must be between 0.0 and 1.0")

        if 0 < self.min_stitch_length < RECOMMENDED_MIN_STITCH_LENGTH:
            warnings.append("Very short stitches (< 0.5mm) may cause thread breaks")
        if self.max_stitch_length > RECOMMENDED_MAX_STITCH_LENGTH:
            warnings.append("Long stitches (> 15mm) may snag or loosen")
        if self.color_limit > RECOMMENDED_COLOR_LIMIT:
            warnings.append("More than 64 colors means many thread changes")

        return ValidationResult(not errors, errors, warnings)

    @property
    def is_valid(self) -> bool:
        return self.validate().is_valid

    @property
    def average_stitch_length(self) -> float:
        return (self.min_stitch_length + self.max_stitch_length) / 2.0

    def with_changes(self, **kwargs: Any) -> "EmbroideryParameters":
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = ["EmbroideryParameters", "ValidationResult"]
