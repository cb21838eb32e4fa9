"""Background sweeps.

Every sweep lists candidate ids first and then handles each row in its own
transaction, re-checking the condition under the row lock. A failing row is
logged and skipped so one bad record cannot stall the sweep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .domain.actors import Actor
from .domain.policy import REMINDER_HORIZON, BookingPolicy
from .domain.repositories import Repositories
from .infrastructure.repositories import build_repositories
from .infrastructure.transaction import run_atomic
from .models import Package, StudioClass
from .notifications import Notifier, Outbox
from .usecases import packages as package_usecase
from .usecases import patterns as pattern_usecase
from .usecases import reservations as reservation_usecase
from .utils.audit_log import emit_audit_log
from .utils.time import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SweepReport:
    job: str
    candidates: int = 0
    processed: int = 0
    failed: int = 0
    notifications_sent: int = 0


async def _candidate_ids(
    session_factory: async_sessionmaker[AsyncSession],
    lister: Callable[[Repositories], Awaitable[list[int]]],
) -> list[int]:
    async with session_factory() as session:
        return await lister(build_repositories(session))


async def _sweep(
    report: SweepReport,
    ids: list[int],
    session_factory: async_sessionmaker[AsyncSession],
    step: Callable[[int, Repositories, Outbox], Awaitable[Optional[T]]],
    *,
    notifier: Notifier,
    attempts: int,
    on_done: Callable[[T], None] | None = None,
) -> SweepReport:
    report.candidates += len(ids)
    for row_id in ids:
        try:
            async with session_factory() as session:
                result, outbox = await run_atomic(
                    session,
                    lambda repos, outbox, row_id=row_id: step(row_id, repos, outbox),
                    attempts=attempts,
                )
            if result is None:
                continue
            sent, _ = await outbox.flush(notifier)
            report.notifications_sent += sent
            report.processed += 1
            if on_done is not None:
                on_done(result)
        except Exception:
            report.failed += 1
            logger.exception("%s: row %s failed", report.job, row_id)
    logger.info(
        "%s: %d candidates, %d processed, %d failed",
        report.job,
        report.candidates,
        report.processed,
        report.failed,
    )
    return report


async def cancel_unpaid_reservations(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock,
    notifier: Notifier,
    policy: BookingPolicy,
    attempts: int = 3,
) -> SweepReport:
    now = clock.now()
    ids = await _candidate_ids(session_factory, lambda repos: repos.reservations.list_unpaid_overdue_ids(now))

    async def step(
        reservation_id: int, repos: Repositories, outbox: Outbox
    ) -> Optional[reservation_usecase.CancellationResult]:
        return await reservation_usecase.cancel_unpaid_reservation(
            repos, reservation_id=reservation_id, now=now, outbox=outbox, policy=policy
        )

    def audit(result: reservation_usecase.CancellationResult) -> None:
        reservation = result.reservation
        emit_audit_log(
            action="reservation.autocancelled",
            initiator="system",
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            status_from=result.status_from,
            status_to=reservation.status,
            version=reservation.version,
            message=reservation.cancellation_reason,
        )

    return await _sweep(
        SweepReport(job="payment_deadlines"),
        ids,
        session_factory,
        step,
        notifier=notifier,
        attempts=attempts,
        on_done=audit,
    )


async def send_payment_reminders(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock,
    notifier: Notifier,
    attempts: int = 3,
) -> SweepReport:
    """Remind unpaid reservations 48h, 24h and 6h before their payment deadline, once per window."""
    now = clock.now()
    ids = await _candidate_ids(
        session_factory, lambda repos: repos.reservations.list_awaiting_payment_ids(now, now + REMINDER_HORIZON)
    )

    async def step(
        reservation_id: int, repos: Repositories, outbox: Outbox
    ) -> Optional[reservation_usecase.PaymentReminder]:
        return await reservation_usecase.send_payment_reminder(
            repos, reservation_id=reservation_id, now=now, outbox=outbox
        )

    def audit(result: reservation_usecase.PaymentReminder) -> None:
        reservation = result.reservation
        emit_audit_log(
            action="reservation.payment_reminded",
            initiator="system",
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            extra={"hours_left": result.window.hours, "urgency": result.window.urgency},
        )

    return await _sweep(
        SweepReport(job="payment_reminders"),
        ids,
        session_factory,
        step,
        notifier=notifier,
        attempts=attempts,
        on_done=audit,
    )


async def sweep_packages(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock,
    notifier: Notifier,
    policy: BookingPolicy,
    attempts: int = 3,
) -> SweepReport:
    """Backfill missing expiries, expire what is due, then send one-time warnings."""
    now = clock.now()
    report = SweepReport(job="package_expirations")

    missing = await _candidate_ids(session_factory, lambda repos: repos.packages.list_missing_expiration_ids())

    async def backfill(package_id: int, repos: Repositories, outbox: Outbox) -> Optional[Package]:
        return await package_usecase.assign_missing_expiration(repos, package_id=package_id, now=now, policy=policy)

    await _sweep(report, missing, session_factory, backfill, notifier=notifier, attempts=attempts)

    expired = await _candidate_ids(session_factory, lambda repos: repos.packages.list_expired_ids(now))

    async def expire(package_id: int, repos: Repositories, outbox: Outbox) -> Optional[Package]:
        return await package_usecase.expire_package(repos, package_id=package_id, now=now, outbox=outbox)

    def audit(package: Package) -> None:
        emit_audit_log(
            action="package.expired",
            initiator="system",
            user_id=package.user_id,
            package_id=package.id,
            status_from="active",
            status_to=package.status,
            extra={"remaining_credits": package.remaining_credits},
        )

    await _sweep(report, expired, session_factory, expire, notifier=notifier, attempts=attempts, on_done=audit)

    expiring = await _candidate_ids(
        session_factory, lambda repos: repos.packages.list_expiring_ids(now, now + policy.expiration_warning)
    )

    async def warn(package_id: int, repos: Repositories, outbox: Outbox) -> Optional[bool]:
        warned = await package_usecase.warn_expiring_package(
            repos, package_id=package_id, now=now, outbox=outbox, policy=policy
        )
        return True if warned else None

    return await _sweep(report, expiring, session_factory, warn, notifier=notifier, attempts=attempts)


async def generate_upcoming_classes(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock,
    notifier: Notifier,
    weeks_ahead: int,
    attempts: int = 3,
    start_from: datetime | None = None,
) -> SweepReport:
    start = start_from or clock.now()
    ids = await _candidate_ids(session_factory, lambda repos: repos.patterns.list_active_ids())
    report = SweepReport(job="class_generation")

    async def step(pattern_id: int, repos: Repositories, outbox: Outbox) -> list[StudioClass]:
        return await pattern_usecase.generate_classes(
            repos, Actor.system(), pattern_id=pattern_id, weeks_ahead=weeks_ahead, start_from=start
        )

    return await _sweep(report, ids, session_factory, step, notifier=notifier, attempts=attempts)
