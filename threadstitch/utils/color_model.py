# utils/color_model.py
"""Perceptual colour helpers shared by every stage.

Conversions go through scikit-image (D65, 2° observer).  All public helpers
accept 8-bit sRGB triples or ``(..., 3)`` arrays in the 0..255 range.
"""

from __future__ import annotations

from typing import Sequence, Tuple, Union

import numpy as np
from skimage.color import deltaE_ciede2000, lab2rgb, rgb2lab

RGB = Tuple[int, int, int]
ColorLike = Union[Sequence[float], np.ndarray]

# Colours closer than this are treated as the same thread.
IDENTICAL_THRESHOLD = 1.0
SIMILAR_THRESHOLD = 3.0

RGB_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)
REC709_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)
MAX_RGB_DISTANCE = 441.6729559300637
MAX_WEIGHTED_RGB_DISTANCE = float(np.sqrt(np.sum(RGB_WEIGHTS * 255.0 ** 2)))
# Largest ΔE76 between two sRGB colours (black to blue is close to it).
MAX_LAB_DISTANCE = 373.0


def _as_rgb01(rgb: ColorLike) -> np.ndarray:
    arr = np.asarray(rgb, dtype=np.float64)
    if arr.shape[-1] != 3:
        raise ValueError("Expected colour data with 3 channels in the last axis")
    return np.clip(arr / 255.0, 0.0, 1.0)


def rgb_to_lab(rgb: ColorLike) -> np.ndarray:
    """sRGB (0..255) → CIE LAB.  Scalars give shape ``(3,)``."""

    rgb01 = _as_rgb01(rgb)
    if rgb01.ndim == 1:
        return rgb2lab(rgb01.reshape(1, 1, 3)).reshape(3)
    return rgb2lab(rgb01)


def lab_to_rgb(lab: ColorLike) -> np.ndarray:
    """CIE LAB → sRGB, rounded and clamped to integer 0..255."""

    arr = np.asarray(lab, dtype=np.float64)
    if arr.ndim == 1:
        rgb01 = lab2rgb(arr.reshape(1, 1, 3)).reshape(3)
    else:
        rgb01 = lab2rgb(arr)
    return np.clip(np.rint(rgb01 * 255.0), 0, 255).astype(np.int32)


def lab_distance(lab1: ColorLike, lab2: ColorLike) -> Union[float, np.ndarray]:
    diff = np.asarray(lab1, dtype=np.float64) - np.asarray(lab2, dtype=np.float64)
    dist = np.sqrt(np.sum(diff * diff, axis=-1))
    return float(dist) if np.ndim(dist) == 0 else dist


def ciede2000_lab(lab1: ColorLike, lab2: ColorLike) -> Union[float, np.ndarray]:
    """CIEDE2000 on LAB input; broadcasts like numpy."""

    lab1 = np.asarray(lab1, dtype=np.float64)
    lab2 = np.asarray(lab2, dtype=np.float64)
    lab1, lab2 = np.broadcast_arrays(lab1, lab2)
    dist = deltaE_ciede2000(lab1, lab2, channel_axis=-1)
    return float(dist) if np.ndim(dist) == 0 else np.asarray(dist)


def ciede2000(rgb1: ColorLike, rgb2: ColorLike) -> Union[float, np.ndarray]:
    """Perceptual ΔE00 between two sRGB colours (symmetric, zero on identity)."""

    return ciede2000_lab(rgb_to_lab(rgb1), rgb_to_lab(rgb2))


def are_identical(rgb1: ColorLike, rgb2: ColorLike) -> bool:
    return float(ciede2000(rgb1, rgb2)) < IDENTICAL_THRESHOLD


def are_similar(rgb1: ColorLike, rgb2: ColorLike, threshold: float = SIMILAR_THRESHOLD) -> bool:
    return float(ciede2000(rgb1, rgb2)) < threshold


def similarity_percentage(rgb1: ColorLike, rgb2: ColorLike) -> Union[float, np.ndarray]:
    """Map ΔE00 to a 0..100 similarity, 100 being identical."""

    dist = ciede2000(rgb1, rgb2)
    sim = np.maximum(0.0, 1.0 - np.asarray(dist) / 100.0) * 100.0
    return float(sim) if np.ndim(sim) == 0 else sim


def weighted_rgb_distance(rgb1: ColorLike, rgb2: ColorLike) -> Union[float, np.ndarray]:
    diff = np.asarray(rgb1, dtype=np.float64) - np.asarray(rgb2, dtype=np.float64)
    dist = np.sqrt(np.sum(RGB_WEIGHTS * diff * diff, axis=-1))
    return float(dist) if np.ndim(dist) == 0 else dist


def luminance(rgb: ColorLike) -> Union[float, np.ndarray]:
    """Rec. 601 grey value in 0..255."""

    grey = np.asarray(rgb, dtype=np.float64) @ RGB_WEIGHTS
    return float(grey) if np.ndim(grey) == 0 else grey


def rec709_luminance(rgb: ColorLike) -> Union[float, np.ndarray]:
    """Rec. 709 relative luminance in 0..1."""

    lum = (np.asarray(rgb, dtype=np.float64) @ REC709_WEIGHTS) / 255.0
    return float(lum) if np.ndim(lum) == 0 else lum


def lerp_rgb(rgb1: ColorLike, rgb2: ColorLike, t: float) -> RGB:
    a = np.asarray(rgb1, dtype=np.float64)
    b = np.asarray(rgb2, dtype=np.float64)
    mixed = np.clip(np.rint(a + (b - a) * float(t)), 0, 255).astype(int)
    return int(mixed[0]), int(mixed[1]), int(mixed[2])


__all__ = [
    "IDENTICAL_THRESHOLD",
    "MAX_LAB_DISTANCE",
    "MAX_RGB_DISTANCE",
    "MAX_WEIGHTED_RGB_DISTANCE",
    "RGB",
    "RGB_WEIGHTS",
    "SIMILAR_THRESHOLD",
    "are_identical",
    "are_similar",
    "ciede2000",
    "ciede2000_lab",
    "lab_distance",
    "lab_to_rgb",
    "lerp_rgb",
    "luminance",
    "rec709_luminance",
    "rgb_to_lab",
    "similarity_percentage",
    "weighted_rgb_distance",
]
