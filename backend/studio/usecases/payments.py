from __future__ import annotations

from datetime import datetime

from ..domain.actors import Actor, ensure_admin
from ..domain.errors import InvalidStateTransitionError, NotFoundError
from ..domain.repositories import Repositories
from ..models import ACTIVE_RESERVATION_STATUSES, PackageStatus, Payment, PaymentStatus
from .seats import reservation_for_update


async def complete_payment(repos: Repositories, actor: Actor, *, payment_id: int, now: datetime) -> Payment:
    ensure_admin(actor, action="record payments")
    peek = await repos.payments.get(payment_id)
    if peek is None:
        raise NotFoundError("payment not found", entity="payment", payment_id=payment_id)

    reservation = None
    if peek.reservation_id is not None:
        reservation, _ = await reservation_for_update(repos, peek.reservation_id)
    payment = await repos.payments.get_for_update(payment_id)
    if payment is None:
        raise NotFoundError("payment not found", entity="payment", payment_id=payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise InvalidStateTransitionError(
            f"payment is {payment.status.value}",
            status_from=payment.status.value,
            status_to=PaymentStatus.COMPLETED.value,
        )

    payment.status = PaymentStatus.COMPLETED
    payment.paid_at = now
    payment.updated_at = now
    await repos.payments.save(payment)

    if reservation is not None and reservation.status in ACTIVE_RESERVATION_STATUSES:
        reservation.payment_deadline = None
        reservation.version += 1
        reservation.updated_at = now
        await repos.reservations.save(reservation)

    if payment.package_id is not None:
        package = await repos.packages.get_for_update(payment.package_id)
        if package is not None and package.status == PackageStatus.PENDING_PAYMENT:
            package.status = PackageStatus.ACTIVE
            package.updated_at = now
            await repos.packages.save(package)
    return payment
