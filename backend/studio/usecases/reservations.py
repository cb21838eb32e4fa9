from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..domain.actors import Actor, ensure_owner_or_staff, ensure_staff
from ..domain.capacity import ensure_room, frame_capacities
from ..domain.errors import (
    AlreadyExistsError,
    InvalidStateTransitionError,
    NotFoundError,
    VersionConflictError,
)
from ..domain.policy import DEFAULT_POLICY, BookingPolicy, ReminderWindow, due_payment_reminder
from ..domain.repositories import Repositories
from ..domain.transitions import (
    SEAT_TRACKED_CLASS_STATUSES,
    ensure_bookable,
    ensure_not_started,
    ensure_outside_window,
    ensure_transition,
    hours_until,
)
from ..models import ClassStatus, FrameSize, Package, Payment, Reservation, ReservationStatus, StudioClass
from ..notifications import NotificationKind, Outbox
from .seats import (
    class_for_update,
    current_snapshot,
    ensure_package_matches,
    open_seat,
    package_for_booking,
    refresh_class_status,
    release_seat,
    reservation_for_update,
)
from .waitlist import Promotion, discard_entry_for, promote_next

PAYMENT_DEADLINE_REASON = "payment deadline expired"
RESCHEDULED_REASON = "rescheduled"


@dataclass(frozen=True)
class BookingResult:
    reservation: Reservation
    studio_class: StudioClass
    package: Package | None
    payment: Payment | None


@dataclass(frozen=True)
class CancellationResult:
    reservation: Reservation
    studio_class: StudioClass
    status_from: ReservationStatus
    credit_restored: bool
    hours_before_class: float
    promotion: Promotion | None


@dataclass(frozen=True)
class PaymentReminder:
    reservation: Reservation
    window: ReminderWindow


@dataclass(frozen=True)
class RescheduleResult:
    old_reservation: Reservation
    new_reservation: Reservation
    source_class: StudioClass
    target_class: StudioClass
    promotion: Promotion | None


def _require_frame_size(studio_class: StudioClass, frame_size: FrameSize | None) -> None:
    if frame_size is None and frame_capacities(studio_class):
        raise ValueError("frame_size is required for this class")


def _check_version(reservation: Reservation, version: int | None) -> None:
    if version is not None and reservation.version != version:
        raise VersionConflictError(
            "reservation was modified by someone else",
            expected_version=version,
            current_version=reservation.version,
        )


async def book_reservation(
    repos: Repositories,
    actor: Actor,
    *,
    class_id: int,
    user_id: int,
    now: datetime,
    outbox: Outbox,
    package_id: int | None = None,
    frame_size: FrameSize | None = None,
    notes: str | None = None,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> BookingResult:
    ensure_owner_or_staff(actor, user_id, entity="reservation")
    studio_class = await class_for_update(repos, class_id)
    ensure_bookable(studio_class, now)
    _require_frame_size(studio_class, frame_size)

    if await repos.reservations.find(user_id=user_id, class_id=class_id) is not None:
        raise AlreadyExistsError("user already has a reservation for this class", class_id=class_id)

    ensure_room(await current_snapshot(repos, studio_class), frame_size)

    package = None
    if package_id is not None:
        package = await package_for_booking(
            repos, package_id=package_id, user_id=user_id, studio_class=studio_class, now=now
        )

    reservation, payment = await open_seat(
        repos,
        studio_class=studio_class,
        user_id=user_id,
        package=package,
        frame_size=frame_size,
        now=now,
        policy=policy,
        notes=notes,
    )
    await discard_entry_for(repos, user_id=user_id, class_id=class_id)
    await refresh_class_status(repos, studio_class, now)

    outbox.add(
        NotificationKind.BOOKING_CONFIRMED,
        user_id=user_id,
        class_id=class_id,
        reservation_id=reservation.id,
        starts_at=studio_class.starts_at.isoformat(),
        package_id=package.id if package else None,
        payment_deadline=reservation.payment_deadline.isoformat() if reservation.payment_deadline else None,
    )
    return BookingResult(reservation=reservation, studio_class=studio_class, package=package, payment=payment)


async def _refill(
    repos: Repositories,
    studio_class: StudioClass,
    *,
    vacated_frame: FrameSize | None,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy,
) -> Promotion | None:
    promotion = None
    if studio_class.status in SEAT_TRACKED_CLASS_STATUSES and studio_class.starts_at > now:
        promotion = await promote_next(
            repos, studio_class, now=now, outbox=outbox, policy=policy, vacated_frame=vacated_frame
        )
    await refresh_class_status(repos, studio_class, now)
    return promotion


async def _cancel_locked(
    repos: Repositories,
    actor: Actor,
    reservation: Reservation,
    studio_class: StudioClass,
    *,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy,
    reason: str | None,
    notification: NotificationKind,
) -> CancellationResult:
    status_from = reservation.status
    ensure_transition(status_from, ReservationStatus.CANCELLED)
    if not actor.is_system:
        ensure_not_started(studio_class.starts_at, now)
    if not (actor.is_system or actor.is_admin):
        ensure_outside_window(studio_class.starts_at, now, window_hours=policy.cancellation_window_hours)

    credit_restored = await release_seat(repos, reservation, now=now, reason=reason)
    promotion = await _refill(
        repos, studio_class, vacated_frame=reservation.frame_size, now=now, outbox=outbox, policy=policy
    )
    outbox.add(
        notification,
        user_id=reservation.user_id,
        class_id=studio_class.id,
        reservation_id=reservation.id,
        reason=reason,
        credit_restored=credit_restored,
    )
    return CancellationResult(
        reservation=reservation,
        studio_class=studio_class,
        status_from=status_from,
        credit_restored=credit_restored,
        hours_before_class=round(hours_until(studio_class.starts_at, now), 2),
        promotion=promotion,
    )


async def cancel_reservation(
    repos: Repositories,
    actor: Actor,
    *,
    reservation_id: int,
    now: datetime,
    outbox: Outbox,
    reason: str | None = None,
    version: int | None = None,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> CancellationResult:
    reservation, studio_class = await reservation_for_update(repos, reservation_id)
    ensure_owner_or_staff(actor, reservation.user_id, entity="reservation")
    _check_version(reservation, version)
    return await _cancel_locked(
        repos,
        actor,
        reservation,
        studio_class,
        now=now,
        outbox=outbox,
        policy=policy,
        reason=reason,
        notification=NotificationKind.RESERVATION_CANCELLED,
    )


async def cancel_unpaid_reservation(
    repos: Repositories,
    *,
    reservation_id: int,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> CancellationResult | None:
    """Sweep step; returns None when the row no longer qualifies."""
    reservation, studio_class = await reservation_for_update(repos, reservation_id)
    if (
        reservation.status != ReservationStatus.CONFIRMED
        or reservation.package_id is not None
        or reservation.payment_deadline is None
        or reservation.payment_deadline >= now
    ):
        return None
    return await _cancel_locked(
        repos,
        Actor.system(),
        reservation,
        studio_class,
        now=now,
        outbox=outbox,
        policy=policy,
        reason=PAYMENT_DEADLINE_REASON,
        notification=NotificationKind.PAYMENT_DEADLINE_EXPIRED,
    )


async def send_payment_reminder(
    repos: Repositories,
    *,
    reservation_id: int,
    now: datetime,
    outbox: Outbox,
) -> PaymentReminder | None:
    """Sweep step; None when the reservation is paid, gone, or already reminded for this window."""
    reservation, studio_class = await reservation_for_update(repos, reservation_id)
    if (
        reservation.status != ReservationStatus.CONFIRMED
        or reservation.package_id is not None
        or reservation.payment_deadline is None
    ):
        return None
    window = due_payment_reminder(
        reservation.payment_deadline, now, last_sent_hours=reservation.payment_reminder_hours
    )
    if window is None:
        return None

    reservation.payment_reminder_hours = window.hours
    reservation.updated_at = now
    await repos.reservations.save(reservation)
    outbox.add(
        NotificationKind.PAYMENT_REMINDER,
        user_id=reservation.user_id,
        class_id=studio_class.id,
        reservation_id=reservation.id,
        starts_at=studio_class.starts_at.isoformat(),
        payment_deadline=reservation.payment_deadline.isoformat(),
        hours_left=window.hours,
        urgency=window.urgency,
    )
    return PaymentReminder(reservation=reservation, window=window)


async def reschedule_reservation(
    repos: Repositories,
    actor: Actor,
    *,
    reservation_id: int,
    target_class_id: int,
    now: datetime,
    outbox: Outbox,
    version: int | None = None,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> RescheduleResult:
    peek = await repos.reservations.get(reservation_id)
    if peek is None:
        raise NotFoundError("reservation not found", entity="reservation", reservation_id=reservation_id)
    if peek.class_id == target_class_id:
        raise ValueError("target class must differ from the current class")

    # lock both classes in id order so two opposite moves cannot deadlock
    locked: dict[int, StudioClass] = {}
    for class_id in sorted((peek.class_id, target_class_id)):
        locked[class_id] = await class_for_update(repos, class_id)
    source, target = locked[peek.class_id], locked[target_class_id]

    reservation = await repos.reservations.get_for_update(reservation_id)
    if reservation is None:
        raise NotFoundError("reservation not found", entity="reservation", reservation_id=reservation_id)
    ensure_owner_or_staff(actor, reservation.user_id, entity="reservation")
    _check_version(reservation, version)
    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidStateTransitionError(
            "only confirmed reservations can be rescheduled",
            status_from=reservation.status.value,
        )

    ensure_not_started(source.starts_at, now)
    if not (actor.is_system or actor.is_admin):
        ensure_outside_window(source.starts_at, now, window_hours=policy.cancellation_window_hours)
    ensure_bookable(target, now)
    ensure_outside_window(target.starts_at, now, window_hours=policy.reschedule_window_hours)
    _require_frame_size(target, reservation.frame_size)

    if await repos.reservations.find(user_id=reservation.user_id, class_id=target.id) is not None:
        raise AlreadyExistsError("user already has a reservation for the target class", class_id=target.id)
    ensure_room(await current_snapshot(repos, target), reservation.frame_size)

    if reservation.package_id is not None:
        package = await repos.packages.get_for_update(reservation.package_id)
        if package is None:
            raise NotFoundError("package not found", entity="package", package_id=reservation.package_id)
        ensure_package_matches(package, target)

    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.cancellation_reason = RESCHEDULED_REASON
    reservation.version += 1
    reservation.updated_at = now
    await repos.reservations.save(reservation)

    moved = await repos.reservations.create(
        user_id=reservation.user_id,
        class_id=target.id,
        package_id=reservation.package_id,
        frame_size=reservation.frame_size,
        payment_deadline=reservation.payment_deadline,
        status=ReservationStatus.CONFIRMED,
        notes=reservation.notes,
    )
    moved.payment_reminder_hours = reservation.payment_reminder_hours
    await repos.payments.reassign_pending(reservation.id, moved.id, now)
    await discard_entry_for(repos, user_id=reservation.user_id, class_id=target.id)

    await refresh_class_status(repos, target, now)
    promotion = await _refill(
        repos, source, vacated_frame=reservation.frame_size, now=now, outbox=outbox, policy=policy
    )
    outbox.add(
        NotificationKind.BOOKING_CONFIRMED,
        user_id=moved.user_id,
        class_id=target.id,
        reservation_id=moved.id,
        starts_at=target.starts_at.isoformat(),
        rescheduled_from=reservation.id,
    )
    return RescheduleResult(
        old_reservation=reservation,
        new_reservation=moved,
        source_class=source,
        target_class=target,
        promotion=promotion,
    )


async def check_in(
    repos: Repositories,
    actor: Actor,
    *,
    reservation_id: int,
    now: datetime,
) -> tuple[Reservation, StudioClass]:
    ensure_staff(actor, action="check students in")
    reservation, studio_class = await reservation_for_update(repos, reservation_id)
    if studio_class.status in (ClassStatus.CANCELLED, ClassStatus.COMPLETED):
        raise InvalidStateTransitionError(
            f"class is {studio_class.status.value}",
            code="class_not_active",
            class_status=studio_class.status.value,
        )
    ensure_transition(reservation.status, ReservationStatus.CHECKED_IN)

    reservation.status = ReservationStatus.CHECKED_IN
    reservation.checked_in_at = now
    reservation.version += 1
    reservation.updated_at = now
    await repos.reservations.save(reservation)

    # early check-ins keep the class open for bookings until it starts
    if studio_class.status in SEAT_TRACKED_CLASS_STATUSES and studio_class.starts_at <= now:
        studio_class.status = ClassStatus.IN_PROGRESS
        studio_class.updated_at = now
        await repos.classes.save(studio_class)
    return reservation, studio_class


async def mark_no_show(
    repos: Repositories,
    actor: Actor,
    *,
    reservation_id: int,
    now: datetime,
) -> tuple[Reservation, StudioClass]:
    """Manual staff action once the class has begun; the credit stays spent."""
    ensure_staff(actor, action="mark no-shows")
    reservation, studio_class = await reservation_for_update(repos, reservation_id)
    if studio_class.starts_at > now:
        raise InvalidStateTransitionError(
            "class has not started yet",
            code="class_not_started",
            starts_at=studio_class.starts_at.isoformat(),
        )
    ensure_transition(reservation.status, ReservationStatus.NO_SHOW)

    reservation.status = ReservationStatus.NO_SHOW
    reservation.version += 1
    reservation.updated_at = now
    await repos.reservations.save(reservation)
    await refresh_class_status(repos, studio_class, now)
    return reservation, studio_class


async def list_user_reservations(
    repos: Repositories,
    actor: Actor,
    *,
    user_id: int,
) -> list[tuple[Reservation, StudioClass]]:
    ensure_owner_or_staff(actor, user_id, entity="reservations")
    return await repos.reservations.list_by_user(user_id)


async def get_user_reservation(
    repos: Repositories,
    actor: Actor,
    *,
    reservation_id: int,
) -> tuple[Reservation, StudioClass]:
    reservation = await repos.reservations.get(reservation_id)
    if reservation is None:
        raise NotFoundError("reservation not found", entity="reservation", reservation_id=reservation_id)
    ensure_owner_or_staff(actor, reservation.user_id, entity="reservation")
    studio_class = await repos.classes.get(reservation.class_id)
    if studio_class is None:
        raise NotFoundError("class not found", entity="class", class_id=reservation.class_id)
    return reservation, studio_class
