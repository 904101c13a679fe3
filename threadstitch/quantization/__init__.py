"""Perceptual colour reduction onto real thread catalogs."""

from .catalog import ThreadCatalog, ThreadColor
from .dither import DitheringParameters, DitherResult, FloydSteinbergDitherer
from .kmeans import ClusteringResult, ColorCluster, KMeansColorQuantizer, KMeansParameters
from .matcher import ColorDistanceAlgorithm, ColorMatcher
from .quantizer import ColorQuantizer, QuantizationParameters, QuantizationResult

__all__ = [
    "ClusteringResult",
    "ColorCluster",
    "ColorDistanceAlgorithm",
    "ColorMatcher",
    "ColorQuantizer",
    "DitherResult",
    "DitheringParameters",
    "FloydSteinbergDitherer",
    "KMeansColorQuantizer",
    "KMeansParameters",
    "QuantizationParameters",
    "QuantizationResult",
    "ThreadCatalog",
    "ThreadColor",
]
