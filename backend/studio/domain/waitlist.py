from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..models import FrameSize, WaitlistEntry
from .capacity import CapacitySnapshot


@dataclass(frozen=True)
class PriorityShift:
    """Shift every entry with `start <= priority <= end` by `delta`."""

    start: int
    end: int | None
    delta: int


def removal_shift(removed_priority: int) -> PriorityShift:
    return PriorityShift(start=removed_priority + 1, end=None, delta=-1)


def insertion_shift(priority: int) -> PriorityShift:
    return PriorityShift(start=priority, end=None, delta=1)


def reorder_shift(old: int, new: int) -> PriorityShift | None:
    if old == new:
        return None
    if new < old:
        return PriorityShift(start=new, end=old - 1, delta=1)
    return PriorityShift(start=old + 1, end=new, delta=-1)


def clamp_priority(requested: int | None, size: int) -> int:
    """Position for a new entry in a list that currently holds `size` entries."""
    if requested is None:
        return size + 1
    if requested < 1:
        raise ValueError("priority must be >= 1")
    return min(requested, size + 1)


def pick_candidate(
    entries: Sequence[WaitlistEntry],
    snapshot: CapacitySnapshot,
    vacated_frame: FrameSize | None = None,
) -> WaitlistEntry | None:
    """Next entry to fill a seat.

    A frame-typed seat goes to the first entry asking for the same frame size,
    falling back to the first entry whose frame bucket still has room.
    """
    ordered = [e for e in sorted(entries, key=lambda e: e.priority) if snapshot.has_room(e.frame_size)]
    if snapshot.tracks_frames and vacated_frame is not None:
        same_frame = next((e for e in ordered if e.frame_size == vacated_frame), None)
        if same_frame is not None:
            return same_frame
    return ordered[0] if ordered else None
