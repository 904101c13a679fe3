"""Tagged stage results, the error taxonomy and cooperative cancellation.

Every public stage of the pipeline returns either :class:`Success` or
:class:`Failure`.  Progress is reported through callbacks as
:class:`Progress` values and is never returned by a stage.  Internally the
stages raise exceptions from the :class:`EmbroideryError` hierarchy which the
:func:`guarded` decorator converts into a :class:`Failure` at the stage
boundary.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ErrorKind(enum.Enum):
    VALIDATION = "validation"
    DIMENSION_MISMATCH = "dimension_mismatch"
    RESOURCE_LIMIT = "resource_limit"
    CANCELLED = "cancelled"
    PROCESSING = "processing"


# ----------------------------------------------------------------------
# Exceptions raised inside a stage
# ----------------------------------------------------------------------
class EmbroideryError(Exception):
    """Base class for every error raised by the stitch pipeline."""

    kind = ErrorKind.PROCESSING


class ParameterError(EmbroideryError, ValueError):
    kind = ErrorKind.VALIDATION


class DimensionMismatchError(EmbroideryError, ValueError):
    kind = ErrorKind.DIMENSION_MISMATCH


class ResourceLimitError(EmbroideryError):
    kind = ErrorKind.RESOURCE_LIMIT


class ProcessingCancelled(EmbroideryError):
    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Processing was cancelled") -> None:
        super().__init__(message)


# ----------------------------------------------------------------------
# Result variants
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class Success(Generic[T]):
    data: T
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    error: str
    kind: ErrorKind = ErrorKind.PROCESSING

    @property
    def is_success(self) -> bool:
        return False


@dataclass(frozen=True)
class Progress:
    fraction: float
    message: Optional[str] = None

    @property
    def percentage(self) -> float:
        return self.fraction * 100.0


Result = Union[Success[T], Failure, Progress]
ProgressCallback = Callable[[float, str], None]


def is_success(result: Any) -> bool:
    return isinstance(result, Success)


def failure_from(exc: BaseException, stage: Optional[str] = None) -> Failure:
    """Build a :class:`Failure` from an exception, keeping its error kind."""

    kind = getattr(exc, "kind", ErrorKind.PROCESSING)
    if isinstance(exc, ProcessingCancelled):
        return Failure(str(exc), ErrorKind.CANCELLED)
    if stage:
        return Failure(f"{stage} failed: {exc}", kind)
    return Failure(str(exc), kind)


def map_result(result: "Result[T]", mapper: Callable[[T], R]) -> "Result[R]":
    if not isinstance(result, Success):
        return result
    try:
        return Success(mapper(result.data), result.message)
    except (EmbroideryError, ValueError) as exc:
        return Failure(f"Mapping failed: {exc}", getattr(exc, "kind", ErrorKind.PROCESSING))


def then(result: "Result[T]", step: Callable[[T], "Result[R]"]) -> "Result[R]":
    if not isinstance(result, Success):
        return result
    return step(result.data)


def unwrap(result: "Result[T]") -> T:
    """Return the payload of ``result`` or raise :class:`EmbroideryError`."""

    if isinstance(result, Success):
        return result.data
    error = EmbroideryError(result.error)
    error.kind = result.kind
    raise error


def guarded(stage: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Turn a function that returns plain data into one that returns a Result.

    ``EmbroideryError`` and ``ValueError`` (raised by numpy/OpenCV for
    malformed arrays) become a :class:`Failure`; anything else propagates.
    A function that already returns a ``Success``/``Failure`` is passed
    through untouched.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                value = func(*args, **kwargs)
            except (EmbroideryError, ValueError) as exc:
                LOGGER.debug("%s failed: %s", stage, exc)
                return failure_from(exc, stage)
            if isinstance(value, (Success, Failure)):
                return value
            return Success(value)

        return wrapper

    return decorator


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------
class CancelToken:
    """Flag polled by the pipeline between stages."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


def check_cancelled(token: Optional[CancelToken]) -> None:
    if token is not None and token.is_cancelled:
        raise ProcessingCancelled()


def report_progress(callback: Optional[ProgressCallback], fraction: float, stage: str) -> None:
    if callback is not None:
        callback(fraction, stage)


__all__ = [
    "CancelToken",
    "DimensionMismatchError",
    "EmbroideryError",
    "ErrorKind",
    "Failure",
    "ParameterError",
    "ProcessingCancelled",
    "Progress",
    "ProgressCallback",
    "ResourceLimitError",
    "Result",
    "Success",
    "check_cancelled",
    "failure_from",
    "guarded",
    "is_success",
    "map_result",
    "report_progress",
    "then",
    "unwrap",
]
