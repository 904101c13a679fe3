# utils/metrics.py
import numpy as np
from skimage.color import rgb2lab


def deltaE_mean_p95(rgb_ref01: np.ndarray, rgb_pred01: np.ndarray):
    """Quick ΔE (L2 in LAB). Returns (mean, 95th percentile)."""
    lab1 = rgb2lab(rgb_ref01)
    lab2 = rgb2lab(rgb_pred01)
    de = np.linalg.norm(lab1 - lab2, axis=-1)
    return float(de.mean()), float(np.percentile(de, 95))


def sample_step(pixel_count: int, target_samples: int) -> int:
    """Stride that visits about ``target_samples`` of ``pixel_count`` pixels."""
    return max(1, -(-pixel_count // target_samples))
