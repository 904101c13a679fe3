from typing import Dict, List, TypedDict


class StitchRecord(TypedDict):
    x1: float
    y1: float
    x2: float
    y2: float


class SequenceRecord(TypedDict):
    thread_id: str
    color: List[int]
    opacity: float
    stitches: List[StitchRecord]


class ThreadRecord(TypedDict):
    code: str
    name: str
    catalog: str
    rgb: List[int]


class PatternRecord(TypedDict):
    width: int
    height: int
    threads: Dict[str, ThreadRecord]
    thread_order: List[str]
    sequences: List[SequenceRecord]
    summary: Dict[str, float]
