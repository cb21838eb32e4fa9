from datetime import date, datetime

import pytest
from conftest import FakeStore
from studio.domain.actors import Actor
from studio.domain.errors import AlreadyExistsError, NotFoundError, UnauthorizedError
from studio.domain.repositories import Repositories
from studio.models import UserRole
from studio.usecases import holidays as uc
from studio.usecases.patterns import generate_classes

ADMIN = Actor(user_id=99, role=UserRole.ADMIN)


@pytest.mark.asyncio
async def test_create_and_list_holidays(store: FakeStore, repos: Repositories) -> None:
    may_day = await uc.create_holiday(repos, ADMIN, day=date(2025, 5, 1), name=" Día del Trabajador ")
    await uc.create_holiday(repos, ADMIN, day=date(2025, 3, 24), name="Memoria")
    await uc.create_holiday(repos, ADMIN, day=date(2025, 12, 25), name="Navidad")

    listed = await uc.list_holidays(repos, ADMIN, start=date(2025, 3, 1), end=date(2025, 6, 30))

    assert [h.holiday_date for h in listed] == [date(2025, 3, 24), date(2025, 5, 1)]
    assert may_day.name == "Día del Trabajador"


@pytest.mark.asyncio
async def test_duplicate_or_blank_holiday_is_rejected(store: FakeStore, repos: Repositories) -> None:
    store.add_holiday(date(2025, 3, 24))

    with pytest.raises(AlreadyExistsError):
        await uc.create_holiday(repos, ADMIN, day=date(2025, 3, 24), name="Memoria")
    with pytest.raises(ValueError):
        await uc.create_holiday(repos, ADMIN, day=date(2025, 4, 2), name="   ")
    with pytest.raises(ValueError):
        await uc.list_holidays(repos, ADMIN, start=date(2025, 4, 1), end=date(2025, 3, 1))
    assert len(store.holidays) == 1


@pytest.mark.asyncio
async def test_delete_holiday(store: FakeStore, repos: Repositories) -> None:
    holiday = store.add_holiday(date(2025, 3, 24))

    removed = await uc.delete_holiday(repos, ADMIN, holiday_id=holiday.id)

    assert removed is holiday
    assert store.holidays == {}
    with pytest.raises(NotFoundError):
        await uc.delete_holiday(repos, ADMIN, holiday_id=holiday.id)


@pytest.mark.asyncio
async def test_holiday_management_is_admin_only(store: FakeStore, repos: Repositories) -> None:
    instructor = Actor(user_id=5, role=UserRole.INSTRUCTOR)
    with pytest.raises(UnauthorizedError):
        await uc.create_holiday(repos, instructor, day=date(2025, 3, 24), name="Memoria")
    with pytest.raises(UnauthorizedError):
        await uc.list_holidays(repos, instructor, start=date(2025, 1, 1), end=date(2025, 12, 31))


@pytest.mark.asyncio
async def test_new_holiday_blocks_generation_on_that_day(store: FakeStore, repos: Repositories) -> None:
    class_type = store.add_class_type()
    pattern = store.add_pattern(class_type=class_type, day_of_week=0, valid_from=date(2025, 1, 1))
    await uc.create_holiday(repos, ADMIN, day=date(2025, 3, 17), name="Feriado puente")

    created = await generate_classes(
        repos, ADMIN, pattern_id=pattern.id, weeks_ahead=2, start_from=datetime(2025, 3, 10, 12, 0)
    )

    assert [c.starts_at.date() for c in created] == [date(2025, 3, 10)]
