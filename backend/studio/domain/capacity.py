from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol

from ..models import ACTIVE_RESERVATION_STATUSES, FrameSize, ReservationStatus, StudioClass
from .errors import CapacityExceededError

logger = logging.getLogger(__name__)


class SeatHolder(Protocol):
    status: ReservationStatus
    frame_size: FrameSize | None


@dataclass(frozen=True)
class FrameAvailability:
    capacity: int
    reserved: int

    @property
    def available(self) -> int:
        return max(self.capacity - self.reserved, 0)


@dataclass(frozen=True)
class CapacitySnapshot:
    capacity: int
    active: int
    frames: Mapping[FrameSize, FrameAvailability] = field(default_factory=dict)

    @property
    def available(self) -> int:
        return max(self.capacity - self.active, 0)

    @property
    def is_full(self) -> bool:
        return self.available == 0

    @property
    def tracks_frames(self) -> bool:
        return bool(self.frames)

    @property
    def frame_capacity_consistent(self) -> bool:
        """Frame buckets must be able to hold the whole class."""
        if not self.frames:
            return True
        return sum(f.capacity for f in self.frames.values()) >= self.capacity

    def has_room(self, frame_size: FrameSize | None = None) -> bool:
        if self.available <= 0:
            return False
        if frame_size is None or not self.frames:
            return True
        bucket = self.frames.get(frame_size)
        return bucket is not None and bucket.available > 0


def frame_capacities(studio_class: StudioClass) -> dict[FrameSize, int]:
    values = {
        FrameSize.SMALL: studio_class.small_frame_capacity,
        FrameSize.MEDIUM: studio_class.medium_frame_capacity,
        FrameSize.LARGE: studio_class.large_frame_capacity,
    }
    return {size: value for size, value in values.items() if value is not None}


def calculate_capacity(
    capacity: int,
    reservations: Iterable[SeatHolder],
    frames: Mapping[FrameSize, int] | None = None,
) -> CapacitySnapshot:
    active = [r for r in reservations if r.status in ACTIVE_RESERVATION_STATUSES]
    buckets: dict[FrameSize, FrameAvailability] = {}
    for size, size_capacity in (frames or {}).items():
        reserved = sum(1 for r in active if r.frame_size == size)
        buckets[size] = FrameAvailability(capacity=size_capacity, reserved=reserved)
    snapshot = CapacitySnapshot(capacity=capacity, active=len(active), frames=buckets)
    if not snapshot.frame_capacity_consistent:
        logger.warning(
            "frame capacities %s do not cover class capacity %d",
            {k.value: v.capacity for k, v in buckets.items()},
            capacity,
        )
    return snapshot


def snapshot_for(studio_class: StudioClass, reservations: Iterable[SeatHolder]) -> CapacitySnapshot:
    return calculate_capacity(studio_class.capacity, reservations, frame_capacities(studio_class))


def ensure_room(snapshot: CapacitySnapshot, frame_size: FrameSize | None = None) -> None:
    if snapshot.available <= 0:
        raise CapacityExceededError(
            "class is at capacity",
            capacity=snapshot.capacity,
            active=snapshot.active,
        )
    if not snapshot.has_room(frame_size):
        bucket = snapshot.frames.get(frame_size) if frame_size is not None else None
        size = frame_size.value if frame_size is not None else None
        raise CapacityExceededError(
            f"no {size} frames available",
            frame_size=size,
            frame_capacity=bucket.capacity if bucket else 0,
            frame_reserved=bucket.reserved if bucket else 0,
        )
