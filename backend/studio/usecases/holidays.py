from __future__ import annotations

from datetime import date

from ..domain.actors import Actor, ensure_admin
from ..domain.errors import AlreadyExistsError, NotFoundError
from ..domain.repositories import Repositories
from ..models import Holiday


async def list_holidays(repos: Repositories, actor: Actor, *, start: date, end: date) -> list[Holiday]:
    ensure_admin(actor, action="list holidays")
    if end < start:
        raise ValueError("end must not be before start")
    return await repos.holidays.list_between(start, end)


async def create_holiday(repos: Repositories, actor: Actor, *, day: date, name: str) -> Holiday:
    """Block a studio-local date for class generation. Classes already scheduled on it are left alone."""
    ensure_admin(actor, action="manage holidays")
    name = name.strip()
    if not name:
        raise ValueError("name is required")
    if await repos.holidays.find_by_date(day) is not None:
        raise AlreadyExistsError("a holiday already exists on that date", date=day.isoformat())
    return await repos.holidays.create(day=day, name=name)


async def delete_holiday(repos: Repositories, actor: Actor, *, holiday_id: int) -> Holiday:
    ensure_admin(actor, action="manage holidays")
    holiday = await repos.holidays.get(holiday_id)
    if holiday is None:
        raise NotFoundError("holiday not found", entity="holiday", holiday_id=holiday_id)
    await repos.holidays.delete(holiday)
    return holiday
