from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_session, require_admin
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.repositories import Repositories
from ..infrastructure.repositories import build_repositories
from ..infrastructure.transaction import run_atomic
from ..models import Holiday
from ..notifications import Outbox
from ..schemas import HolidayCreate, HolidayRead
from ..usecases import holidays as holiday_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock, utc_naive_to_studio
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="/holidays", tags=["holidays"], dependencies=[Depends(require_admin)])


@router.get("", response_model=List[HolidayRead])
async def list_holidays(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> list[HolidayRead]:
    first = start or utc_naive_to_studio(clock.now()).date()
    last = end or first + timedelta(days=365)
    try:
        holidays = await holiday_usecase.list_holidays(build_repositories(session), actor, start=first, end=last)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc
    return [HolidayRead.from_db(holiday=holiday) for holiday in holidays]


@router.post("", response_model=HolidayRead, status_code=status.HTTP_201_CREATED)
async def create_holiday(
    payload: HolidayCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> HolidayRead:
    async def work(repos: Repositories, outbox: Outbox) -> Holiday:
        return await holiday_usecase.create_holiday(repos, actor, day=payload.day, name=payload.name)

    try:
        holiday, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="holiday.created",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={"holiday_id": holiday.id, "date": holiday.holiday_date.isoformat()},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return HolidayRead.from_db(holiday=holiday)


@router.delete("/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_holiday(
    holiday_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> None:
    async def work(repos: Repositories, outbox: Outbox) -> Holiday:
        return await holiday_usecase.delete_holiday(repos, actor, holiday_id=holiday_id)

    try:
        holiday, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="holiday.deleted",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={"holiday_id": holiday_id, "date": holiday.holiday_date.isoformat()},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
