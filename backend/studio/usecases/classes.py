from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from ..domain.actors import Actor, ensure_admin, ensure_staff
from ..domain.capacity import CapacitySnapshot, snapshot_for
from ..domain.errors import AlreadyExistsError, CapacityExceededError, InvalidStateTransitionError, NotFoundError
from ..domain.policy import DEFAULT_POLICY, BookingPolicy
from ..domain.repositories import Repositories
from ..domain.transitions import SEAT_TRACKED_CLASS_STATUSES
from ..models import ACTIVE_RESERVATION_STATUSES, ClassStatus, FrameSize, Reservation, ReservationStatus, StudioClass
from ..notifications import NotificationKind, Outbox
from .seats import class_for_update, current_snapshot, refresh_class_status, release_seat
from .waitlist import Promotion, promote_until_full


@dataclass(frozen=True)
class ClassCancellation:
    studio_class: StudioClass
    reservations: list[Reservation]
    credits_restored: int
    waitlist_cleared: int


async def create_class(
    repos: Repositories,
    actor: Actor,
    *,
    class_type_id: int,
    location_id: int,
    starts_at: datetime,
    now: datetime,
    ends_at: datetime | None = None,
    capacity: int | None = None,
    instructor_id: int | None = None,
    price: Decimal | None = None,
    frame_capacities: dict[FrameSize, int] | None = None,
    notes: str | None = None,
) -> StudioClass:
    ensure_admin(actor, action="schedule classes")
    class_type = await repos.classes.get_class_type(class_type_id)
    if class_type is None:
        raise NotFoundError("class type not found", entity="class_type", class_type_id=class_type_id)

    if ends_at is None:
        ends_at = starts_at + timedelta(minutes=class_type.duration_minutes)
    if starts_at >= ends_at:
        raise ValueError("starts_at must be before ends_at")
    if starts_at <= now:
        raise ValueError("classes can only be scheduled in the future")
    if capacity is None:
        capacity = class_type.max_capacity
    if not 1 <= capacity <= class_type.max_capacity:
        raise ValueError(f"capacity must be between 1 and {class_type.max_capacity}")
    if frame_capacities and any(value < 0 for value in frame_capacities.values()):
        raise ValueError("frame capacities must be >= 0")

    if await repos.classes.exists_at(class_type_id=class_type_id, location_id=location_id, starts_at=starts_at):
        raise AlreadyExistsError(
            "a class of this type already starts at that time in this location",
            class_type_id=class_type_id,
            location_id=location_id,
        )
    return await repos.classes.create(
        class_type_id=class_type_id,
        location_id=location_id,
        instructor_id=instructor_id,
        starts_at=starts_at,
        ends_at=ends_at,
        capacity=capacity,
        price=price,
        status=ClassStatus.SCHEDULED,
        frame_capacities=frame_capacities,
        notes=notes,
    )


async def get_availability(repos: Repositories, *, class_id: int) -> tuple[StudioClass, CapacitySnapshot]:
    """Unlocked read; the numbers may be stale by the time a booking runs."""
    studio_class = await repos.classes.get(class_id)
    if studio_class is None:
        raise NotFoundError("class not found", entity="class", class_id=class_id)
    active = await repos.reservations.list_active(class_id)
    return studio_class, snapshot_for(studio_class, active)


async def complete_class(
    repos: Repositories,
    actor: Actor,
    *,
    class_id: int,
    now: datetime,
) -> tuple[StudioClass, list[Reservation]]:
    ensure_staff(actor, action="complete classes")
    studio_class = await class_for_update(repos, class_id)
    started = studio_class.status in SEAT_TRACKED_CLASS_STATUSES and studio_class.starts_at <= now
    if studio_class.status != ClassStatus.IN_PROGRESS and not started:
        raise InvalidStateTransitionError(
            "class is not in progress",
            code="not_in_progress",
            class_status=studio_class.status.value,
        )
    attended = [
        r for r in await repos.reservations.list_for_class(class_id) if r.status == ReservationStatus.CHECKED_IN
    ]
    if not attended:
        raise InvalidStateTransitionError("no students are checked in", code="no_checked_in_students")

    for reservation in attended:
        reservation.status = ReservationStatus.COMPLETED
        reservation.version += 1
        reservation.updated_at = now
        await repos.reservations.save(reservation)
    studio_class.status = ClassStatus.COMPLETED
    studio_class.updated_at = now
    await repos.classes.save(studio_class)
    return studio_class, attended


async def cancel_class(
    repos: Repositories,
    actor: Actor,
    *,
    class_id: int,
    now: datetime,
    outbox: Outbox,
    reason: str | None = None,
) -> ClassCancellation:
    ensure_admin(actor, action="cancel classes")
    studio_class = await class_for_update(repos, class_id)
    if studio_class.status in (ClassStatus.COMPLETED, ClassStatus.CANCELLED):
        raise InvalidStateTransitionError(
            f"class is already {studio_class.status.value}",
            class_status=studio_class.status.value,
        )

    reason = reason or "class cancelled by the studio"
    cancelled: list[Reservation] = []
    credits_restored = 0
    for row in await repos.reservations.list_for_class(class_id):
        if row.status not in ACTIVE_RESERVATION_STATUSES:
            continue
        reservation = await repos.reservations.get_for_update(row.id)
        if reservation is None or reservation.status not in ACTIVE_RESERVATION_STATUSES:
            continue
        if await release_seat(repos, reservation, now=now, reason=reason):
            credits_restored += 1
        cancelled.append(reservation)
        outbox.add(
            NotificationKind.CLASS_CANCELLED,
            user_id=reservation.user_id,
            class_id=class_id,
            reservation_id=reservation.id,
            starts_at=studio_class.starts_at.isoformat(),
            reason=reason,
        )

    entries = await repos.waitlist.list_for_class(class_id)
    for entry in entries:
        await repos.waitlist.delete(entry)
        outbox.add(
            NotificationKind.CLASS_CANCELLED,
            user_id=entry.user_id,
            class_id=class_id,
            starts_at=studio_class.starts_at.isoformat(),
            reason=reason,
        )

    studio_class.status = ClassStatus.CANCELLED
    studio_class.updated_at = now
    await repos.classes.save(studio_class)
    return ClassCancellation(
        studio_class=studio_class,
        reservations=cancelled,
        credits_restored=credits_restored,
        waitlist_cleared=len(entries),
    )


async def update_capacity(
    repos: Repositories,
    actor: Actor,
    *,
    class_id: int,
    capacity: int,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> tuple[StudioClass, list[Promotion]]:
    ensure_admin(actor, action="change class capacity")
    if capacity < 1:
        raise ValueError("capacity must be >= 1")
    studio_class = await class_for_update(repos, class_id)
    if studio_class.status not in SEAT_TRACKED_CLASS_STATUSES:
        raise InvalidStateTransitionError(
            f"class is {studio_class.status.value}",
            code="class_not_bookable",
            class_status=studio_class.status.value,
        )
    class_type = await repos.classes.get_class_type(studio_class.class_type_id)
    if class_type is not None and capacity > class_type.max_capacity:
        raise ValueError(f"capacity must not exceed {class_type.max_capacity}")
    snapshot = await current_snapshot(repos, studio_class)
    if capacity < snapshot.active:
        raise CapacityExceededError(
            "capacity cannot drop below the number of active reservations",
            capacity=capacity,
            active=snapshot.active,
        )

    grew = capacity > studio_class.capacity
    studio_class.capacity = capacity
    studio_class.updated_at = now
    await repos.classes.save(studio_class)

    promotions: list[Promotion] = []
    if grew and studio_class.starts_at > now:
        promotions = await promote_until_full(repos, studio_class, now=now, outbox=outbox, policy=policy)
    await refresh_class_status(repos, studio_class, now)
    return studio_class, promotions
