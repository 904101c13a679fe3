"""Resize, edge preserving smoothing and contrast normalisation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import cv2
import numpy as np

from threadstitch.utils.result import ParameterError, Result, guarded

LOGGER = logging.getLogger(__name__)

MIN_DIMENSION = 32
MAX_DIMENSION = 4096


def ensure_rgb_uint8(image: Any) -> np.ndarray:
    """Return ``image`` as a contiguous ``(H, W, 3)`` uint8 RGB array.

    Greyscale input is replicated, an alpha channel is dropped and float
    images in ``0..1`` are scaled to ``0..255``.
    """

    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = np.repeat(arr[..., None], 3, axis=2)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"Expected an RGB image of shape (H, W, 3), got {arr.shape}")
    arr = arr[..., :3]
    if np.issubdtype(arr.dtype, np.floating):
        if arr.size and float(np.nanmax(arr)) <= 1.0:
            arr = arr * 255.0
        arr = np.rint(np.nan_to_num(arr))
    return np.ascontiguousarray(np.clip(arr, 0, 255).astype(np.uint8))


def grayscale(image: np.ndarray) -> np.ndarray:
    """Rec. 601 luminance in ``0..255`` as float64."""

    rgb = np.asarray(image, dtype=np.float64)
    return rgb[..., 0] * 0.299 + rgb[..., 1] * 0.587 + rgb[..., 2] * 0.114


@dataclass(frozen=True)
class PreprocessingParameters:
    max_dimension: int = 1024
    spatial_sigma: float = 5.0
    # Fraction of the 0..255 intensity range.
    range_sigma: float = 0.1
    contrast_factor: float = 1.2
    preserve_aspect_ratio: bool = True

    @property
    def is_valid(self) -> bool:
        return (
            MIN_DIMENSION < self.max_dimension <= MAX_DIMENSION
            and self.spatial_sigma > 0
            and self.range_sigma > 0
            and self.contrast_factor > 0
        )


class ImagePreprocessor:
    """Prepares a photograph for the analysis stages."""

    @guarded("Image preprocessing")
    def process(self, image: Any, params: PreprocessingParameters = PreprocessingParameters()) -> "Result[np.ndarray]":
        if not params.is_valid:
            raise ParameterError("Invalid preprocessing parameters")

        rgb = ensure_rgb_uint8(image)
        resized = self.resize(rgb, params.max_dimension, params.preserve_aspect_ratio)
        smoothed = self.bilateral_filter(resized, params.spatial_sigma, params.range_sigma)
        enhanced = self.enhance_contrast(smoothed, params.contrast_factor)
        LOGGER.debug("Preprocessed %sx%s -> %sx%s", rgb.shape[1], rgb.shape[0], enhanced.shape[1], enhanced.shape[0])
        return enhanced

    @staticmethod
    def resize(image: np.ndarray, max_dimension: int, preserve_aspect_ratio: bool = True) -> np.ndarray:
        height, width = image.shape[:2]
        if width <= max_dimension and height <= max_dimension:
            return image

        if preserve_aspect_ratio:
            scale = max_dimension / float(max(width, height))
            new_w = max(1, int(round(width * scale)))
            new_h = max(1, int(round(height * scale)))
        else:
            new_w = min(width, max_dimension)
            new_h = min(height, max_dimension)
        return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)

    @staticmethod
    def bilateral_filter(image: np.ndarray, spatial_sigma: float, range_sigma: float) -> np.ndarray:
        """Edge preserving blur; ``range_sigma`` is relative to 255."""

        diameter = 2 * int(round(spatial_sigma * 3.0)) + 1
        return cv2.bilateralFilter(
            image,
            d=diameter,
            sigmaColor=range_sigma * 255.0,
            sigmaSpace=spatial_sigma,
        )

    @staticmethod
    def enhance_contrast(image: np.ndarray, factor: float) -> np.ndarray:
        """Linear stretch around mid grey."""

        if factor == 1.0:
            return image
        stretched = (image.astype(np.float64) - 128.0) * factor + 128.0
        return np.clip(np.rint(stretched), 0, 255).astype(np.uint8)

    @staticmethod
    def estimate_processing_time(width: int, height: int) -> float:
        """Rough processing time in seconds."""

        return width * height * 1e-7

    @staticmethod
    def optimal_parameters(width: int, height: int) -> PreprocessingParameters:
        pixel_count = width * height
        return PreprocessingParameters(
            max_dimension=1024 if pixel_count > 2_000_000 else 1536,
            spatial_sigma=3.0 if pixel_count < 100_000 else 5.0,
            range_sigma=0.1,
            contrast_factor=1.2,
            preserve_aspect_ratio=True,
        )


__all__ = [
    "ImagePreprocessor",
    "MAX_DIMENSION",
    "MIN_DIMENSION",
    "PreprocessingParameters",
    "ensure_rgb_uint8",
    "grayscale",
]
