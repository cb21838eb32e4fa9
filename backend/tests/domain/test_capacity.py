from dataclasses import dataclass
from typing import Optional

import pytest
from studio.domain.capacity import calculate_capacity, ensure_room
from studio.domain.errors import CapacityExceededError
from studio.models import FrameSize, ReservationStatus


@dataclass
class Seat:
    status: ReservationStatus
    frame_size: Optional[FrameSize] = None


def test_counts_only_active_reservations() -> None:
    seats = [
        Seat(ReservationStatus.CONFIRMED),
        Seat(ReservationStatus.CHECKED_IN),
        Seat(ReservationStatus.CANCELLED),
        Seat(ReservationStatus.NO_SHOW),
        Seat(ReservationStatus.COMPLETED),
    ]
    snap = calculate_capacity(4, seats)
    assert snap.active == 2
    assert snap.available == 2
    assert snap.is_full is False
    assert snap.tracks_frames is False


def test_available_never_negative() -> None:
    seats = [Seat(ReservationStatus.CONFIRMED) for _ in range(3)]
    snap = calculate_capacity(2, seats)
    assert snap.available == 0
    assert snap.is_full is True


def test_frame_buckets_track_reserved_per_size() -> None:
    seats = [
        Seat(ReservationStatus.CONFIRMED, FrameSize.SMALL),
        Seat(ReservationStatus.CONFIRMED, FrameSize.SMALL),
        Seat(ReservationStatus.CANCELLED, FrameSize.LARGE),
    ]
    snap = calculate_capacity(5, seats, {FrameSize.SMALL: 2, FrameSize.LARGE: 3})
    assert snap.frames[FrameSize.SMALL].available == 0
    assert snap.frames[FrameSize.LARGE].available == 3
    assert snap.has_room(FrameSize.SMALL) is False
    assert snap.has_room(FrameSize.LARGE) is True
    # sizes without a bucket are not offered when the class tracks frames
    assert snap.has_room(FrameSize.MEDIUM) is False
    assert snap.has_room() is True


def test_frame_capacity_consistency_flag() -> None:
    assert calculate_capacity(6, [], {FrameSize.SMALL: 2, FrameSize.MEDIUM: 2}).frame_capacity_consistent is False
    assert calculate_capacity(4, [], {FrameSize.SMALL: 2, FrameSize.MEDIUM: 2}).frame_capacity_consistent is True
    assert calculate_capacity(4, []).frame_capacity_consistent is True


def test_ensure_room_rejects_full_class_with_counts() -> None:
    snap = calculate_capacity(1, [Seat(ReservationStatus.CONFIRMED)])
    with pytest.raises(CapacityExceededError) as exc_info:
        ensure_room(snap)
    assert exc_info.value.context == {"capacity": 1, "active": 1}


def test_ensure_room_rejects_exhausted_frame_bucket() -> None:
    snap = calculate_capacity(4, [Seat(ReservationStatus.CONFIRMED, FrameSize.LARGE)], {FrameSize.LARGE: 1})
    with pytest.raises(CapacityExceededError) as exc_info:
        ensure_room(snap, FrameSize.LARGE)
    assert exc_info.value.context["frame_size"] == "large"
    assert exc_info.value.context["frame_reserved"] == 1
    ensure_room(snap)
