"""Per-pixel fields shared between the analysis stages.

Fields are stored as ``(height, width)`` float arrays.  Point lookups outside
the image return ``0.0`` so callers that probe neighbourhoods never need to
branch on the border themselves.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import cv2
import numpy as np


def sample(values: np.ndarray, x: int, y: int) -> float:
    """Return ``values[y, x]`` or ``0.0`` when ``(x, y)`` is out of range."""

    height, width = values.shape[:2]
    if x < 0 or y < 0 or x >= width or y >= height:
        return 0.0
    return float(values[y, x])


def gaussian_kernel(sigma: float) -> Tuple[int, np.ndarray]:
    """Normalised 1-D Gaussian with an odd size of ``round(6 * sigma) | 1``."""

    size = int(round(sigma * 6.0)) | 1
    kernel = cv2.getGaussianKernel(size, sigma, ktype=cv2.CV_64F).reshape(-1)
    return size, kernel


def filter_interior(
    values: np.ndarray,
    kernel: np.ndarray,
    *,
    border: str = "zero",
) -> np.ndarray:
    """Correlate ``values`` with a 2-D ``kernel`` on interior pixels only.

    Pixels closer to the image border than the kernel radius are not
    evaluated: they are ``0`` for ``border="zero"`` and keep the input value
    for ``border="keep"``.
    """

    src = np.asarray(values, dtype=np.float64)
    kernel = np.asarray(kernel, dtype=np.float64)
    ry, rx = kernel.shape[0] // 2, kernel.shape[1] // 2
    height, width = src.shape
    if border == "keep":
        out = src.copy()
    elif border == "zero":
        out = np.zeros_like(src)
    else:
        raise ValueError(f"Unknown border policy: {border}")

    if height <= 2 * ry or width <= 2 * rx:
        return out

    filtered = cv2.filter2D(src, cv2.CV_64F, kernel, borderType=cv2.BORDER_REFLECT101)
    out[ry : height - ry, rx : width - rx] = filtered[ry : height - ry, rx : width - rx]
    return out


def gaussian_interior(values: np.ndarray, sigma: float, *, border: str = "zero") -> np.ndarray:
    _, k1d = gaussian_kernel(sigma)
    return filter_interior(values, np.outer(k1d, k1d), border=border)


def wrap_angle(angle: np.ndarray) -> np.ndarray:
    """Wrap angles to ``[-pi, pi)``."""

    return (np.asarray(angle) + np.pi) % (2.0 * np.pi) - np.pi


@dataclass(frozen=True)
class GradientField:
    """Sobel gradient magnitudes and directions for one image."""

    width: int
    height: int
    magnitudes: np.ndarray
    directions: np.ndarray
    max_magnitude: float
    normalized: bool = True

    def magnitude_at(self, x: int, y: int) -> float:
        return sample(self.magnitudes, x, y)

    def direction_at(self, x: int, y: int) -> float:
        return sample(self.directions, x, y)

    @property
    def average_magnitude(self) -> float:
        if self.magnitudes.size == 0:
            return 0.0
        return float(self.magnitudes.mean())

    @property
    def is_valid(self) -> bool:
        shape = (self.height, self.width)
        return self.magnitudes.shape == shape and self.directions.shape == shape


@dataclass(frozen=True)
class OrientationField:
    """Dominant local orientation and its coherence (structure tensor output)."""

    width: int
    height: int
    orientations: np.ndarray
    coherences: np.ndarray
    eigenvalue1: Optional[np.ndarray] = field(default=None, repr=False)
    eigenvalue2: Optional[np.ndarray] = field(default=None, repr=False)

    def orientation_at(self, x: int, y: int) -> float:
        return sample(self.orientations, x, y)

    def coherence_at(self, x: int, y: int) -> float:
        return sample(self.coherences, x, y)

    def direction_vector_at(self, x: int, y: int) -> Tuple[float, float]:
        angle = self.orientation_at(x, y)
        return math.cos(angle), math.sin(angle)

    @property
    def average_coherence(self) -> float:
        if self.coherences.size == 0:
            return 0.0
        return float(self.coherences.mean())

    @property
    def is_valid(self) -> bool:
        shape = (self.height, self.width)
        if self.orientations.shape != shape or self.coherences.shape != shape:
            return False
        return bool(np.all((self.coherences >= 0.0) & (self.coherences <= 1.0)))

    def statistics(self) -> Dict[str, float]:
        coh = self.coherences
        if coh.size == 0:
            return {
                "average_coherence": 0.0,
                "min_coherence": 0.0,
                "max_coherence": 0.0,
                "dominant_orientation": 0.0,
                "strong_structure_ratio": 0.0,
            }
        # Orientation is axial, so average the doubled angle.
        weights = coh.sum()
        if weights > 0:
            c = float(np.sum(coh * np.cos(2.0 * self.orientations)))
            s = float(np.sum(coh * np.sin(2.0 * self.orientations)))
            dominant = 0.5 * math.atan2(s, c)
        else:
            dominant = 0.0
        return {
            "average_coherence": float(coh.mean()),
            "min_coherence": float(coh.min()),
            "max_coherence": float(coh.max()),
            "dominant_orientation": dominant,
            "strong_structure_ratio": float(np.mean(coh > 0.5)),
        }


__all__ = [
    "GradientField",
    "OrientationField",
    "filter_interior",
    "gaussian_interior",
    "gaussian_kernel",
    "sample",
    "wrap_angle",
]
