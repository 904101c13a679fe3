"""Sobel gradients smoothed into a coherent gradient field."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from threadstitch.utils.fields import GradientField, filter_interior, gaussian_interior
from threadstitch.utils.result import ParameterError, Result, guarded

from .preprocessor import ensure_rgb_uint8, grayscale


def sobel_kernels(size: int):
    """2-D Sobel kernels ``(kx, ky)`` for ``size`` 3 or 5."""

    if size not in (3, 5):
        raise ParameterError(f"Sobel kernel size must be 3 or 5, got {size}")
    dx, sy = cv2.getDerivKernels(1, 0, size, ktype=cv2.CV_64F)
    kx = np.outer(sy, dx)
    return kx, kx.T.copy()


def sobel(gray: np.ndarray, size: int = 3):
    """Raw ``(gx, gy)`` on interior pixels; the border stays 0."""

    kx, ky = sobel_kernels(size)
    return filter_interior(gray, kx), filter_interior(gray, ky)


@dataclass(frozen=True)
class GradientParameters:
    sobel_kernel_size: int = 3
    smoothing_sigma: float = 2.0
    normalize: bool = True

    @property
    def is_valid(self) -> bool:
        return self.sobel_kernel_size in (3, 5) and self.smoothing_sigma > 0


def raw_gradients(image: np.ndarray, kernel_size: int = 3) -> GradientField:
    gray = grayscale(image)
    gx, gy = sobel(gray, kernel_size)
    magnitudes = np.hypot(gx, gy)
    directions = np.arctan2(gy, gx)
    height, width = gray.shape
    max_mag = float(magnitudes.max()) if magnitudes.size else 0.0
    return GradientField(width, height, magnitudes, directions, max_mag, normalized=False)


class GradientComputer:
    """Sobel → Gaussian smoothing → optional normalisation."""

    @guarded("Gradient computation")
    def compute(self, image, params: GradientParameters = GradientParameters()) -> "Result[GradientField]":
        if not params.is_valid:
            raise ParameterError("Invalid gradient parameters")
        rgb = ensure_rgb_uint8(image)
        raw = raw_gradients(rgb, params.sobel_kernel_size)
        smoothed = self.smooth(raw, params.smoothing_sigma)
        if params.normalize:
            return self.normalize(smoothed)
        return smoothed

    @staticmethod
    def smooth(field: GradientField, sigma: float) -> GradientField:
        """Smooth magnitudes directly and directions through cos/sin."""

        magnitudes = gaussian_interior(field.magnitudes, sigma)
        cos_d = gaussian_interior(np.cos(field.directions), sigma)
        sin_d = gaussian_interior(np.sin(field.directions), sigma)
        return GradientField(
            field.width,
            field.height,
            magnitudes,
            np.arctan2(sin_d, cos_d),
            field.max_magnitude,
            normalized=False,
        )

    @staticmethod
    def normalize(field: GradientField) -> GradientField:
        if field.max_magnitude == 0.0:
            return GradientField(
                field.width, field.height, field.magnitudes, field.directions, 0.0, normalized=True
            )
        return GradientField(
            field.width,
            field.height,
            field.magnitudes / field.max_magnitude,
            field.directions,
            field.max_magnitude,
            normalized=True,
        )

    @staticmethod
    def visualize_magnitudes(field: GradientField) -> np.ndarray:
        mags = field.magnitudes
        if not field.normalized and field.max_magnitude > 0:
            mags = mags / field.max_magnitude
        grey = np.clip(np.rint(mags * 255.0), 0, 255).astype(np.uint8)
        return np.repeat(grey[..., None], 3, axis=2)

    @staticmethod
    def visualize_directions(field: GradientField) -> np.ndarray:
        """Hue encodes direction, value encodes magnitude (RGB uint8)."""

        mags = field.magnitudes
        if not field.normalized and field.max_magnitude > 0:
            mags = mags / field.max_magnitude
        hue = ((field.directions + np.pi) / (2.0 * np.pi) * 180.0) % 180.0
        hsv = np.stack(
            [
                hue.astype(np.uint8),
                np.full(hue.shape, 255, dtype=np.uint8),
                np.clip(np.rint(mags * 255.0), 0, 255).astype(np.uint8),
            ],
            axis=-1,
        )
        return cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)


__all__ = ["GradientComputer", "GradientParameters", "raw_gradients", "sobel", "sobel_kernels"]
