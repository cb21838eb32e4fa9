import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import jobs
from .config import Settings, booking_policy
from .notifications import Notifier
from .utils.time import SystemClock

logger = logging.getLogger(__name__)


def build_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings,
    notifier: Notifier,
) -> AsyncIOScheduler:
    """Register the sweeps; the caller starts and stops the scheduler."""
    scheduler = AsyncIOScheduler()
    clock = SystemClock()
    policy = booking_policy(settings)
    attempts = settings.transaction_attempts

    scheduler.add_job(
        jobs.cancel_unpaid_reservations,
        trigger=IntervalTrigger(minutes=15),
        args=[session_factory],
        kwargs={"clock": clock, "notifier": notifier, "policy": policy, "attempts": attempts},
        id="payment_deadlines",
        name="Cancel reservations past their payment deadline",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        jobs.send_payment_reminders,
        trigger=IntervalTrigger(hours=1),
        args=[session_factory],
        kwargs={"clock": clock, "notifier": notifier, "attempts": attempts},
        id="payment_reminders",
        name="Remind unpaid reservations before their payment deadline",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        jobs.sweep_packages,
        trigger=IntervalTrigger(hours=1),
        args=[session_factory],
        kwargs={"clock": clock, "notifier": notifier, "policy": policy, "attempts": attempts},
        id="package_expirations",
        name="Expire packages and send expiry warnings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        jobs.generate_upcoming_classes,
        trigger=IntervalTrigger(days=1),
        args=[session_factory],
        kwargs={
            "clock": clock,
            "notifier": notifier,
            "weeks_ahead": settings.generate_weeks_ahead,
            "attempts": attempts,
        },
        id="class_generation",
        name="Generate classes from recurring patterns",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
