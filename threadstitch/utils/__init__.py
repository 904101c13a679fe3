"""Shared value types, colour science and result handling."""

from .result import (
    CancelToken,
    DimensionMismatchError,
    EmbroideryError,
    ErrorKind,
    Failure,
    ParameterError,
    ProcessingCancelled,
    Progress,
    ResourceLimitError,
    Result,
    Success,
    guarded,
    is_success,
    map_result,
    then,
    unwrap,
)
from .fields import GradientField, OrientationField

__all__ = [
    "CancelToken",
    "DimensionMismatchError",
    "EmbroideryError",
    "ErrorKind",
    "Failure",
    "GradientField",
    "OrientationField",
    "ParameterError",
    "ProcessingCancelled",
    "Progress",
    "ResourceLimitError",
    "Result",
    "Success",
    "guarded",
    "is_success",
    "map_result",
    "then",
    "unwrap",
]
