from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from ..domain import ledger
from ..domain.capacity import CapacitySnapshot, snapshot_for
from ..domain.errors import NotFoundError, PackageClassTypeMismatchError, UnauthorizedError
from ..domain.policy import BookingPolicy
from ..domain.repositories import Repositories
from ..domain.transitions import resolve_seat_status
from ..models import ClassStatus, FrameSize, Package, Payment, Reservation, ReservationStatus, StudioClass

logger = logging.getLogger(__name__)


async def class_for_update(repos: Repositories, class_id: int) -> StudioClass:
    studio_class = await repos.classes.get_for_update(class_id)
    if studio_class is None:
        raise NotFoundError("class not found", entity="class", class_id=class_id)
    return studio_class


async def reservation_for_update(repos: Repositories, reservation_id: int) -> tuple[Reservation, StudioClass]:
    """Lock the class before the reservation, the same order booking uses."""
    peek = await repos.reservations.get(reservation_id)
    if peek is None:
        raise NotFoundError("reservation not found", entity="reservation", reservation_id=reservation_id)
    studio_class = await class_for_update(repos, peek.class_id)
    reservation = await repos.reservations.get_for_update(reservation_id)
    if reservation is None:
        raise NotFoundError("reservation not found", entity="reservation", reservation_id=reservation_id)
    return reservation, studio_class


async def current_snapshot(repos: Repositories, studio_class: StudioClass) -> CapacitySnapshot:
    active = await repos.reservations.list_active(studio_class.id)
    return snapshot_for(studio_class, active)


async def refresh_class_status(repos: Repositories, studio_class: StudioClass, now: datetime) -> ClassStatus:
    """Re-derive FULL/SCHEDULED from the seat count; other statuses are left alone."""
    snapshot = await current_snapshot(repos, studio_class)
    status = resolve_seat_status(studio_class, snapshot.active)
    if status != studio_class.status:
        studio_class.status = status
        studio_class.updated_at = now
        await repos.classes.save(studio_class)
    return status


def ensure_package_matches(package: Package, studio_class: StudioClass) -> None:
    if package.class_type_id is not None and package.class_type_id != studio_class.class_type_id:
        raise PackageClassTypeMismatchError(
            "package is not valid for this class type",
            package_id=package.id,
            package_class_type_id=package.class_type_id,
            class_type_id=studio_class.class_type_id,
        )


async def package_for_booking(
    repos: Repositories,
    *,
    package_id: int,
    user_id: int,
    studio_class: StudioClass,
    now: datetime,
) -> Package:
    package = await repos.packages.get_for_update(package_id)
    if package is None:
        raise NotFoundError("package not found", entity="package", package_id=package_id)
    if package.user_id != user_id:
        raise UnauthorizedError("package belongs to another user", entity="package")
    ensure_package_matches(package, studio_class)
    ledger.ensure_usable(package, now)
    return package


async def class_price(repos: Repositories, studio_class: StudioClass) -> Decimal:
    if studio_class.price is not None:
        return studio_class.price
    class_type = await repos.classes.get_class_type(studio_class.class_type_id)
    return class_type.default_price if class_type is not None else Decimal("0")


async def open_seat(
    repos: Repositories,
    *,
    studio_class: StudioClass,
    user_id: int,
    package: Package | None,
    frame_size: FrameSize | None,
    now: datetime,
    policy: BookingPolicy,
    notes: str | None = None,
) -> tuple[Reservation, Payment | None]:
    """Create a CONFIRMED reservation funded by `package`, or pay-later.

    The caller holds the class row lock and has already checked capacity.
    """
    payment: Payment | None = None
    if package is not None:
        ledger.debit(package)
        package.updated_at = now
        await repos.packages.save(package)
        reservation = await repos.reservations.create(
            user_id=user_id,
            class_id=studio_class.id,
            package_id=package.id,
            frame_size=frame_size,
            payment_deadline=None,
            status=ReservationStatus.CONFIRMED,
            notes=notes,
        )
    else:
        reservation = await repos.reservations.create(
            user_id=user_id,
            class_id=studio_class.id,
            package_id=None,
            frame_size=frame_size,
            payment_deadline=now + policy.payment_deadline,
            status=ReservationStatus.CONFIRMED,
            notes=notes,
        )
        payment = await repos.payments.create(
            user_id=user_id,
            amount=await class_price(repos, studio_class),
            reservation_id=reservation.id,
        )
    return reservation, payment


async def release_seat(
    repos: Repositories,
    reservation: Reservation,
    *,
    now: datetime,
    reason: str | None,
) -> bool:
    """Cancel the row, give the credit back and drop open payments."""
    reservation.status = ReservationStatus.CANCELLED
    reservation.cancelled_at = now
    reservation.cancellation_reason = reason
    reservation.version += 1
    reservation.updated_at = now
    await repos.reservations.save(reservation)

    credit_restored = False
    if reservation.package_id is not None:
        package = await repos.packages.get_for_update(reservation.package_id)
        if package is None:
            logger.warning("reservation %s references missing package %s", reservation.id, reservation.package_id)
        else:
            ledger.restore(package)
            package.updated_at = now
            await repos.packages.save(package)
            credit_restored = True
    await repos.payments.cancel_pending_for_reservation(reservation.id, now)
    return credit_restored
