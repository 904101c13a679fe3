"""Canny style edge detection.

Blur → Sobel → non-maximum suppression → double threshold with hysteresis.
Like the other filters in this package, kernels are only evaluated where they
fit inside the image.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import ndimage as ndi

from threadstitch.utils.fields import gaussian_interior
from threadstitch.utils.result import ParameterError, Result, guarded

from .gradients import sobel
from .preprocessor import ensure_rgb_uint8, grayscale

EDGE_VALUE = 255

# 8-connectivity for hysteresis tracking.
_EIGHT_CONNECTED = np.ones((3, 3), dtype=bool)


@dataclass(frozen=True)
class EdgeDetectionParameters:
    low_threshold: int = 50
    high_threshold: int = 150
    gaussian_sigma: float = 1.0
    sobel_kernel_size: int = 3

    @property
    def is_valid(self) -> bool:
        return (
            0 <= self.low_threshold < self.high_threshold <= 255
            and self.gaussian_sigma > 0
            and self.sobel_kernel_size in (3, 5)
        )


def non_maximum_suppression(magnitudes: np.ndarray, directions: np.ndarray) -> np.ndarray:
    """Thin gradient ridges to one pixel.

    The direction is quantised to 0/45/90/135 degrees and the pixel survives
    when it is not smaller than both neighbours on that axis.  Survivors keep
    ``min(255, round(magnitude))``; the outermost ring is always 0.
    """

    height, width = magnitudes.shape
    out = np.zeros((height, width), dtype=np.float64)
    if height < 3 or width < 3:
        return out

    mag = magnitudes
    center = mag[1:-1, 1:-1]
    angle = np.degrees(directions[1:-1, 1:-1])
    sector = (np.floor((angle + 22.5) / 45.0).astype(np.int64) * 45) % 180

    # neighbour pairs per sector as (dy, dx)
    pairs = {
        0: ((0, -1), (0, 1)),
        45: ((1, -1), (-1, 1)),
        90: ((-1, 0), (1, 0)),
        135: ((-1, -1), (1, 1)),
    }
    n1 = np.zeros_like(center)
    n2 = np.zeros_like(center)
    for key, ((dy1, dx1), (dy2, dx2)) in pairs.items():
        sel = sector == key
        n1[sel] = mag[1 + dy1 : height - 1 + dy1, 1 + dx1 : width - 1 + dx1][sel]
        n2[sel] = mag[1 + dy2 : height - 1 + dy2, 1 + dx2 : width - 1 + dx2][sel]

    keep = (center >= n1) & (center >= n2)
    out[1:-1, 1:-1] = np.where(keep, np.minimum(255.0, np.rint(center)), 0.0)
    return out


def hysteresis(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
    """Keep weak pixels that are 8-connected to a strong one."""

    candidates = suppressed >= low
    strong = suppressed >= high
    labels, count = ndi.label(candidates, structure=_EIGHT_CONNECTED)
    if count == 0:
        return np.zeros(suppressed.shape, dtype=bool)
    keep = np.zeros(count + 1, dtype=bool)
    keep[np.unique(labels[strong])] = True
    keep[0] = False
    return keep[labels]


def edge_density(edge_map: np.ndarray) -> float:
    """Fraction of pixels marked as edge."""

    edge_map = np.asarray(edge_map)
    if edge_map.size == 0:
        return 0.0
    return float(np.count_nonzero(edge_map) / edge_map.size)


class EdgeDetector:
    @guarded("Edge detection")
    def detect(self, image, params: EdgeDetectionParameters = EdgeDetectionParameters()) -> "Result[np.ndarray]":
        """Return a uint8 map with 255 on edges and 0 elsewhere."""

        if not params.is_valid:
            raise ParameterError("Invalid edge detection parameters")

        gray = np.rint(grayscale(ensure_rgb_uint8(image)))
        blurred = np.clip(np.rint(gaussian_interior(gray, params.gaussian_sigma, border="keep")), 0, 255)
        gx, gy = sobel(blurred, params.sobel_kernel_size)
        suppressed = non_maximum_suppression(np.hypot(gx, gy), np.arctan2(gy, gx))
        edges = hysteresis(suppressed, params.low_threshold, params.high_threshold)
        return np.where(edges, EDGE_VALUE, 0).astype(np.uint8)


__all__ = [
    "EDGE_VALUE",
    "EdgeDetectionParameters",
    "EdgeDetector",
    "edge_density",
    "hysteresis",
    "non_maximum_suppression",
]
