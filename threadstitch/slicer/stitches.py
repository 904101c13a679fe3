"""Stitch, sequence and pattern models shared by generators and the slicer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple

from threadstitch.utils.types import PatternRecord, SequenceRecord, ThreadRecord

Point = Tuple[float, float]
RGB = Tuple[int, int, int]

# Length checks allow for floating point noise from travel-stitch splitting.
LENGTH_TOLERANCE = 1e-6
# Two needle positions closer than this are the same hole.
CONTINUITY_TOLERANCE = 1e-9


def distance(a: Point, b: Point) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


@dataclass(frozen=True)
class Stitch:
    """One straight piece of thread between two needle penetrations."""

    start: Point
    end: Point
    color: RGB

    @property
    def length(self) -> float:
        return distance(self.start, self.end)

    @property
    def angle(self) -> float:
        return math.atan2(self.end[1] - self.start[1], self.end[0] - self.start[0])

    def is_valid(self, min_length: float, max_length: float) -> bool:
        length = self.length
        return min_length - LENGTH_TOLERANCE <= length <= max_length + LENGTH_TOLERANCE

    def with_start(self, start: Point) -> "Stitch":
        return replace(self, start=start)


@dataclass(frozen=True)
class StitchSequence:
    """A run of stitches sewn without cutting the thread."""

    stitches: Tuple[Stitch, ...]
    color: RGB
    thread_id: str
    opacity: float = 1.0

    def __post_init__(self) -> None:
        # Accept lists for convenience but store an immutable tuple.
        if not isinstance(self.stitches, tuple):
            object.__setattr__(self, "stitches", tuple(self.stitches))

    @property
    def stitch_count(self) -> int:
        return len(self.stitches)

    @property
    def is_empty(self) -> bool:
        return not self.stitches

    @property
    def is_continuous(self) -> bool:
        for prev, nxt in zip(self.stitches, self.stitches[1:]):
            if distance(prev.end, nxt.start) > CONTINUITY_TOLERANCE:
                return False
        return True

    @property
    def total_length(self) -> float:
        return float(sum(s.length for s in self.stitches))

    @property
    def start_point(self) -> Optional[Point]:
        return self.stitches[0].start if self.stitches else None

    @property
    def end_point(self) -> Optional[Point]:
        return self.stitches[-1].end if self.stitches else None

    def with_stitches(self, stitches: Iterable[Stitch]) -> "StitchSequence":
        return replace(self, stitches=tuple(stitches))

    def to_record(self) -> SequenceRecord:
        return {
            "thread_id": self.thread_id,
            "color": list(self.color),
            "opacity": float(self.opacity),
            "stitches": [
                {"x1": float(s.start[0]), "y1": float(s.start[1]), "x2": float(s.end[0]), "y2": float(s.end[1])}
                for s in self.stitches
            ],
        }


@dataclass(frozen=True)
class ThreadInfo:
    """Thread table entry of a finished pattern."""

    code: str
    name: str
    rgb: RGB
    catalog: str = ""

    def to_record(self) -> ThreadRecord:
        return {"code": self.code, "name": self.name, "catalog": self.catalog, "rgb": list(self.rgb)}


@dataclass(frozen=True)
class EmbroideryPattern:
    """Final artefact: ordered sequences, canvas size and the thread table."""

    sequences: Tuple[StitchSequence, ...]
    width: int
    height: int
    threads: Dict[str, ThreadInfo] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.sequences, tuple):
            object.__setattr__(self, "sequences", tuple(self.sequences))

    @property
    def total_stitches(self) -> int:
        return sum(seq.stitch_count for seq in self.sequences)

    @property
    def sequence_count(self) -> int:
        return len(self.sequences)

    @property
    def thread_changes(self) -> int:
        return max(0, len(self.threads) - 1)

    @property
    def total_thread_length(self) -> float:
        return float(sum(seq.total_length for seq in self.sequences))

    def thread_order(self) -> List[str]:
        """Thread ids in the order they are first needed."""

        order: List[str] = []
        for seq in self.sequences:
            if seq.thread_id not in order:
                order.append(seq.thread_id)
        return order

    def to_dict(self) -> PatternRecord:
        return {
            "width": int(self.width),
            "height": int(self.height),
            "threads": {code: info.to_record() for code, info in self.threads.items()},
            "thread_order": self.thread_order(),
            "sequences": [seq.to_record() for seq in self.sequences],
            "summary": {
                "total_stitches": self.total_stitches,
                "sequence_count": self.sequence_count,
                "thread_changes": self.thread_changes,
                "total_thread_length": round(self.total_thread_length, 3),
            },
        }


__all__ = [
    "CONTINUITY_TOLERANCE",
    "EmbroideryPattern",
    "LENGTH_TOLERANCE",
    "Point",
    "Stitch",
    "StitchSequence",
    "ThreadInfo",
    "distance",
]
