"""Local orientation and coherence from the structure tensor."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from threadstitch.utils.fields import OrientationField, gaussian_interior
from threadstitch.utils.result import ParameterError, Result, guarded, unwrap

from .gradients import GradientComputer, GradientParameters

LOGGER = logging.getLogger(__name__)

_EPS = 1e-10


@dataclass(frozen=True)
class StructureTensorParameters:
    gaussian_sigma: float = 2.0
    integration_sigma: float = 4.0
    min_coherence: float = 0.01
    gradient_threshold: float = 0.1

    @property
    def is_valid(self) -> bool:
        return (
            self.gaussian_sigma > 0
            and self.integration_sigma > 0
            and 0.0 <= self.min_coherence <= 1.0
            and self.gradient_threshold >= 0.0
        )


def eigen_analysis(jxx: np.ndarray, jxy: np.ndarray, jyy: np.ndarray, min_coherence: float = 0.0):
    """Closed form eigen decomposition of the symmetric tensor ``[a b; b c]``.

    Returns ``(orientation, coherence, lambda1, lambda2)``; the orientation
    is the angle of the eigenvector belonging to the larger eigenvalue.
    """

    a, b, c = jxx, jxy, jyy
    trace = a + c
    det = a * c - b * b
    root = np.sqrt(np.maximum(trace * trace - 4.0 * det, 0.0))
    lambda1 = (trace + root) / 2.0
    lambda2 = (trace - root) / 2.0

    total = lambda1 + lambda2
    with np.errstate(divide="ignore", invalid="ignore"):
        coherence = np.where(total > 0, (lambda1 - lambda2) / np.where(total > 0, total, 1.0), 0.0)
    coherence = np.clip(coherence, 0.0, 1.0)
    coherence[coherence < min_coherence] = 0.0

    a_minus = a - lambda1
    orientation = np.where(
        np.abs(b) > _EPS,
        np.arctan2(-a_minus, b),
        np.where(np.abs(a_minus) > _EPS, np.pi / 2.0, 0.0),
    )
    return orientation, coherence, lambda1, lambda2


class StructureTensorAnalyzer:
    @guarded("Structure tensor analysis")
    def analyze(
        self,
        image,
        params: StructureTensorParameters = StructureTensorParameters(),
    ) -> "Result[OrientationField]":
        if not params.is_valid:
            raise ParameterError("Invalid structure tensor parameters")

        gradients = unwrap(
            GradientComputer().compute(
                image,
                GradientParameters(sobel_kernel_size=3, smoothing_sigma=params.gaussian_sigma, normalize=True),
            )
        )

        mags = gradients.magnitudes
        active = mags > params.gradient_threshold
        ix = np.where(active, mags * np.cos(gradients.directions), 0.0)
        iy = np.where(active, mags * np.sin(gradients.directions), 0.0)

        jxx = gaussian_interior(ix * ix, params.integration_sigma)
        jxy = gaussian_interior(ix * iy, params.integration_sigma)
        jyy = gaussian_interior(iy * iy, params.integration_sigma)

        orientation, coherence, l1, l2 = eigen_analysis(jxx, jxy, jyy, params.min_coherence)
        field = OrientationField(gradients.width, gradients.height, orientation, coherence, l1, l2)
        LOGGER.debug("Structure tensor: average coherence %.3f", field.average_coherence)
        return field

    @staticmethod
    def visualize_orientations(field: OrientationField, min_coherence: float = 0.1) -> np.ndarray:
        """Hue = orientation, value = coherence; weak pixels are black."""

        hue = ((field.orientations + np.pi) / (2.0 * np.pi) * 180.0) % 180.0
        value = np.where(field.coherences > min_coherence, field.coherences, 0.0)
        hsv = np.stack(
            [
                hue.astype(np.uint8),
                np.full(hue.shape, 255, dtype=np.uint8),
                np.clip(np.rint(value * 255.0), 0, 255).astype(np.uint8),
            ],
            axis=-1,
        )
        return cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)

    @staticmethod
    def visualize_coherence(field: OrientationField) -> np.ndarray:
        grey = np.clip(np.rint(field.coherences * 255.0), 0, 255).astype(np.uint8)
        return np.repeat(grey[..., None], 3, axis=2)


__all__ = ["StructureTensorAnalyzer", "StructureTensorParameters", "eigen_analysis"]
