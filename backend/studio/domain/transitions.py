from __future__ import annotations

from datetime import datetime

from ..models import ClassStatus, ReservationStatus, StudioClass
from .errors import CancellationWindowError, InvalidStateTransitionError

_ALLOWED: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.CONFIRMED: frozenset(
        {ReservationStatus.CHECKED_IN, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW}
    ),
    ReservationStatus.CHECKED_IN: frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}

# classes whose FULL/SCHEDULED flag follows the seat count
SEAT_TRACKED_CLASS_STATUSES = frozenset({ClassStatus.SCHEDULED, ClassStatus.FULL})


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in _ALLOWED[current]


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransitionError(
            f"reservation cannot go from {current.value} to {target.value}",
            status_from=current.value,
            status_to=target.value,
        )


def hours_until(starts_at: datetime, now: datetime) -> float:
    return (starts_at - now).total_seconds() / 3600


def ensure_not_started(starts_at: datetime, now: datetime) -> None:
    if starts_at <= now:
        raise InvalidStateTransitionError(
            "class has already started",
            code="class_started",
            starts_at=starts_at.isoformat(),
        )


def ensure_outside_window(starts_at: datetime, now: datetime, *, window_hours: int) -> None:
    remaining = hours_until(starts_at, now)
    if remaining < window_hours:
        raise CancellationWindowError(
            f"changes must be made at least {window_hours} hours before the class starts",
            hours_until_class=round(remaining, 2),
            hours_required=window_hours,
            starts_at=starts_at.isoformat(),
        )


def ensure_bookable(studio_class: StudioClass, now: datetime) -> None:
    if studio_class.status not in SEAT_TRACKED_CLASS_STATUSES:
        raise InvalidStateTransitionError(
            f"class is {studio_class.status.value}",
            code="class_not_bookable",
            class_status=studio_class.status.value,
        )
    ensure_not_started(studio_class.starts_at, now)


def resolve_seat_status(studio_class: StudioClass, active_count: int) -> ClassStatus:
    if studio_class.status not in SEAT_TRACKED_CLASS_STATUSES:
        return studio_class.status
    return ClassStatus.FULL if active_count >= studio_class.capacity else ClassStatus.SCHEDULED
