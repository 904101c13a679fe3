"""Turn loose stitches into continuous, ordered thread runs.

Generators emit stitches wherever the artwork needs them.  A machine however
can only move the needle from the last penetration, so this module

* joins stitches into a single thread path (:func:`join_into_path`) by adding
  travel stitches that obey the stitch length bounds,
* chains nearby, similarly oriented stitches into sequences
  (:func:`chain_stitches`),
* orders sequences of one thread greedily to shorten jumps
  (:func:`order_nearest_neighbor`) and
* assembles the final :class:`EmbroideryPattern` (:class:`SequenceAssembler`).
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from .parameters import EmbroideryParameters
from .stitches import (
    CONTINUITY_TOLERANCE,
    EmbroideryPattern,
    Point,
    Stitch,
    StitchSequence,
    ThreadInfo,
    distance,
)

LOGGER = logging.getLogger(__name__)

# Minimum direction compatibility for two stitches to share a sequence.
DIRECTION_COMPATIBILITY = 0.7


def direction_compatibility(a: Stitch, b: Stitch) -> float:
    """1.0 for parallel stitches, 0.0 for opposite ones."""

    diff = abs(a.angle - b.angle) % (2.0 * math.pi)
    if diff > math.pi:
        diff = 2.0 * math.pi - diff
    return 1.0 - diff / math.pi


def _travel_points(start: Point, end: Point, gap: float, min_length: float, max_length: float) -> Optional[List[Point]]:
    """Split ``start → end`` into equal pieces within the length bounds.

    Returns the intermediate and final points (the last one is ``end``
    itself) or ``None`` when no piece count satisfies both bounds.
    """

    n_low = max(1, math.ceil(gap / max_length - 1e-9))
    n_high = math.floor(gap / min_length + 1e-9)
    if n_low > n_high:
        return None
    points: List[Point] = []
    for i in range(1, n_low):
        t = i / n_low
        points.append((start[0] + (end[0] - start[0]) * t, start[1] + (end[1] - start[1]) * t))
    points.append(end)
    return points


def join_into_path(stitches: Iterable[Stitch], min_length: float, max_length: float) -> List[Stitch]:
    """Make ``stitches`` one continuous thread path.

    Gaps of at least ``min_length`` are bridged with evenly split travel
    stitches.  A shorter gap cannot be bridged, so the next stitch is
    re-anchored on the current needle position when its new length stays
    within the bounds and skipped otherwise.  Invalid input stitches are
    skipped as well.  Every returned stitch starts exactly where the previous
    one ended.
    """

    path: List[Stitch] = []
    cursor: Optional[Point] = None

    for stitch in stitches:
        if cursor is None:
            if stitch.is_valid(min_length, max_length):
                path.append(stitch)
                cursor = stitch.end
            continue

        gap = distance(cursor, stitch.start)
        if gap <= CONTINUITY_TOLERANCE:
            candidate = stitch.with_start(cursor)
            if candidate.is_valid(min_length, max_length):
                path.append(candidate)
                cursor = candidate.end
            continue

        if gap >= min_length:
            travel = _travel_points(cursor, stitch.start, gap, min_length, max_length)
            if travel is not None and stitch.is_valid(min_length, max_length):
                for point in travel:
                    path.append(Stitch(cursor, point, stitch.color))
                    cursor = point
                path.append(stitch.with_start(cursor))
                cursor = stitch.end
                continue

        anchored = Stitch(cursor, stitch.end, stitch.color)
        if anchored.is_valid(min_length, max_length):
            path.append(anchored)
            cursor = anchored.end

    return path


def chain_stitches(
    stitches: Sequence[Stitch],
    color,
    thread_id: str,
    params: EmbroideryParameters,
    opacity: float = 1.0,
) -> List[StitchSequence]:
    """Greedily chain stitches whose start is near the previous end.

    A continuation must start closer than ``max_stitch_length`` to the
    current end and run in a compatible direction.  Each chain is then made
    continuous with :func:`join_into_path`.
    """

    if not stitches:
        return []

    starts = np.array([s.start for s in stitches], dtype=np.float64)
    tree = cKDTree(starts)
    used = np.zeros(len(stitches), dtype=bool)
    radius = params.max_stitch_length

    sequences: List[StitchSequence] = []
    for first in range(len(stitches)):
        if used[first]:
            continue
        used[first] = True
        chain = [stitches[first]]
        while True:
            current = chain[-1]
            best = -1
            best_dist = math.inf
            for idx in sorted(tree.query_ball_point(current.end, radius)):
                if used[idx]:
                    continue
                candidate = stitches[idx]
                gap = distance(current.end, candidate.start)
                if gap >= radius or gap >= best_dist:
                    continue
                if direction_compatibility(current, candidate) <= DIRECTION_COMPATIBILITY:
                    continue
                best, best_dist = idx, gap
            if best < 0:
                break
            used[best] = True
            chain.append(stitches[best])

        path = join_into_path(chain, params.min_stitch_length, params.max_stitch_length)
        if path:
            sequences.append(StitchSequence(tuple(path), color, thread_id, opacity))

    return sequences


def order_nearest_neighbor(sequences: Sequence[StitchSequence]) -> List[StitchSequence]:
    """Greedy nearest-neighbour tour starting at the first sequence.

    Empty sequences cannot be placed and are appended unchanged at the end.
    """

    placeable = [seq for seq in sequences if not seq.is_empty]
    empty = [seq for seq in sequences if seq.is_empty]
    if len(placeable) <= 1:
        return placeable + empty

    starts = np.array([seq.start_point for seq in placeable], dtype=np.float64)
    remaining = np.ones(len(placeable), dtype=bool)
    order = [0]
    remaining[0] = False
    for _ in range(len(placeable) - 1):
        end = placeable[order[-1]].end_point
        dist = np.hypot(starts[:, 0] - end[0], starts[:, 1] - end[1])
        dist[~remaining] = np.inf
        # argmin returns the first minimum, so ties go to encounter order
        nxt = int(np.argmin(dist))
        order.append(nxt)
        remaining[nxt] = False

    return [placeable[i] for i in order] + empty


def travel_distance(sequences: Sequence[StitchSequence]) -> float:
    """Sum of jumps between consecutive non-empty sequences."""

    total = 0.0
    prev_end: Optional[Point] = None
    for seq in sequences:
        if seq.is_empty:
            continue
        if prev_end is not None:
            total += distance(prev_end, seq.start_point)
        prev_end = seq.end_point
    return total


class SequenceAssembler:
    """Group sequences per thread, order them and build the pattern."""

    def assemble(
        self,
        sequences: Iterable[StitchSequence],
        thread_order: Sequence[str],
        width: int,
        height: int,
        threads: Optional[Dict[str, ThreadInfo]] = None,
    ) -> EmbroideryPattern:
        threads = threads or {}
        groups: "OrderedDict[str, List[StitchSequence]]" = OrderedDict()
        dropped = 0
        for seq in sequences:
            if seq.is_empty:
                dropped += 1
                continue
            groups.setdefault(seq.thread_id, []).append(seq)
        if dropped:
            LOGGER.warning("Dropped %s empty stitch sequences", dropped)

        ordered_ids = [tid for tid in thread_order if tid in groups]
        ordered_ids += [tid for tid in groups if tid not in ordered_ids]

        ordered: List[StitchSequence] = []
        used_threads: Dict[str, ThreadInfo] = {}
        for tid in ordered_ids:
            group = order_nearest_neighbor(groups[tid])
            ordered.extend(group)
            info = threads.get(tid)
            if info is None:
                info = ThreadInfo(code=tid, name=tid, rgb=tuple(group[0].color))
            used_threads[tid] = info

        pattern = EmbroideryPattern(tuple(ordered), int(width), int(height), used_threads)
        LOGGER.debug(
            "Assembled %s sequences (%s stitches, %s threads, travel %.1f)",
            pattern.sequence_count,
            pattern.total_stitches,
            len(used_threads),
            travel_distance(ordered),
        )
        return pattern

    @staticmethod
    def validate(pattern: EmbroideryPattern, params: EmbroideryParameters) -> List[str]:
        """Return a description of every broken length or continuity rule."""

        problems: List[str] = []
        for index, seq in enumerate(pattern.sequences):
            if not seq.is_continuous:
                problems.append(f"Sequence {index} ({seq.thread_id}) is not continuous")
            for stitch in seq.stitches:
                if not stitch.is_valid(params.min_stitch_length, params.max_stitch_length):
                    problems.append(
                        f"Sequence {index} has a stitch of length {stitch.length:.3f} outside "
                        f"[{params.min_stitch_length}, {params.max_stitch_length}]"
                    )
                    break
        return problems


__all__ = [
    "DIRECTION_COMPATIBILITY",
    "SequenceAssembler",
    "chain_stitches",
    "direction_compatibility",
    "join_into_path",
    "order_nearest_neighbor",
    "travel_distance",
]
