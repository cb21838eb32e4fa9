from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import jobs
from ..config import get_settings
from ..deps import get_clock, get_notifier, get_policy, get_session_factory, verify_cron_secret
from ..domain.policy import BookingPolicy
from ..notifications import Notifier
from ..schemas import SweepResult
from ..utils.time import Clock

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


def _result(report: jobs.SweepReport) -> SweepResult:
    return SweepResult(
        job=report.job,
        candidates=report.candidates,
        processed=report.processed,
        failed=report.failed,
        notifications_sent=report.notifications_sent,
    )


@router.post("/payment-deadlines", response_model=SweepResult)
async def cancel_unpaid_reservations(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> SweepResult:
    report = await jobs.cancel_unpaid_reservations(
        session_factory,
        clock=clock,
        notifier=notifier,
        policy=policy,
        attempts=get_settings().transaction_attempts,
    )
    return _result(report)


@router.post("/payment-reminders", response_model=SweepResult)
async def send_payment_reminders(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> SweepResult:
    report = await jobs.send_payment_reminders(
        session_factory,
        clock=clock,
        notifier=notifier,
        attempts=get_settings().transaction_attempts,
    )
    return _result(report)


@router.post("/package-expirations", response_model=SweepResult)
async def sweep_packages(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> SweepResult:
    report = await jobs.sweep_packages(
        session_factory,
        clock=clock,
        notifier=notifier,
        policy=policy,
        attempts=get_settings().transaction_attempts,
    )
    return _result(report)


@router.post("/generate-classes", response_model=SweepResult)
async def generate_upcoming_classes(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> SweepResult:
    settings = get_settings()
    report = await jobs.generate_upcoming_classes(
        session_factory,
        clock=clock,
        notifier=notifier,
        weeks_ahead=settings.generate_weeks_ahead,
        attempts=settings.transaction_attempts,
    )
    return _result(report)
