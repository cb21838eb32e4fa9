from datetime import datetime, timedelta, timezone
from typing import Any, cast

import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from studio.domain.actors import Actor
from studio.domain.capacity import calculate_capacity
from studio.domain.errors import AlreadyExistsError
from studio.models import ClassStatus, FrameSize, StudioClass, UserRole
from studio.routers import classes as router
from studio.schemas import ClassCreate
from studio.utils.time import FixedClock

NOW = datetime(2025, 3, 10, 12, 0)
ADMIN = Actor(user_id=1, role=UserRole.ADMIN)


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _class(**overrides: Any) -> StudioClass:
    starts = datetime(2025, 3, 20, 21, 0)
    values: dict[str, Any] = dict(
        id=5,
        class_type_id=1,
        location_id=1,
        starts_at=starts,
        ends_at=starts + timedelta(hours=3),
        capacity=4,
        status=ClassStatus.SCHEDULED,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return StudioClass(**values)


@pytest.mark.asyncio
async def test_create_class_converts_to_utc_and_emits(monkeypatch: pytest.MonkeyPatch) -> None:
    created = _class()
    seen: dict[str, Any] = {}
    calls: list[dict[str, Any]] = []

    async def fake_create(*args: object, **kwargs: Any) -> StudioClass:
        seen.update(kwargs)
        return created

    monkeypatch.setattr(router.class_usecase, "create_class", fake_create)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    local_start = datetime(2025, 3, 20, 18, 0, tzinfo=timezone(timedelta(hours=-3)))
    payload = ClassCreate(class_type_id=1, location_id=1, starts_at=local_start, small_frame_capacity=2)
    result = await router.create_class(
        payload=payload,
        session=cast(AsyncSession, DummySession()),
        actor=ADMIN,
        clock=FixedClock(NOW),
    )

    assert seen["starts_at"] == datetime(2025, 3, 20, 21, 0)
    assert seen["ends_at"] is None
    assert seen["frame_capacities"] == {FrameSize.SMALL: 2}
    assert result.class_id == created.id
    assert calls[0]["action"] == "class.created"
    assert calls[0]["class_id"] == created.id


@pytest.mark.asyncio
async def test_create_class_rejects_naive_datetime() -> None:
    payload = ClassCreate(class_type_id=1, location_id=1, starts_at=datetime(2025, 3, 20, 18, 0))
    with pytest.raises(HTTPException) as excinfo:
        await router.create_class(
            payload=payload,
            session=cast(AsyncSession, DummySession()),
            actor=ADMIN,
            clock=FixedClock(NOW),
        )
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_create_class_conflict_maps_to_409(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create(*args: object, **kwargs: object) -> StudioClass:
        raise AlreadyExistsError("duplicate", class_type_id=1, location_id=1)

    monkeypatch.setattr(router.class_usecase, "create_class", fake_create)
    payload = ClassCreate(
        class_type_id=1, location_id=1, starts_at=datetime(2025, 3, 20, 18, 0, tzinfo=timezone.utc)
    )
    with pytest.raises(HTTPException) as excinfo:
        await router.create_class(
            payload=payload,
            session=cast(AsyncSession, DummySession()),
            actor=ADMIN,
            clock=FixedClock(NOW),
        )
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["code"] == "already_exists"


@pytest.mark.asyncio
async def test_availability_reports_frame_buckets(monkeypatch: pytest.MonkeyPatch) -> None:
    studio_class = _class(small_frame_capacity=1, large_frame_capacity=3)
    snapshot = calculate_capacity(4, [], {FrameSize.SMALL: 1, FrameSize.LARGE: 3})

    async def fake_availability(*args: object, **kwargs: object) -> tuple[StudioClass, Any]:
        return studio_class, snapshot

    monkeypatch.setattr(router.class_usecase, "get_availability", fake_availability)

    result = await router.get_availability(class_id=studio_class.id, session=cast(AsyncSession, DummySession()))
    body = result.model_dump(mode="json")

    assert body["available"] == 4
    assert body["frame_capacity_consistent"] is True
    assert set(body["frames"]) == {"small", "large"}
    assert body["frames"]["large"] == {"capacity": 3, "reserved": 0, "available": 3}


@pytest.mark.asyncio
async def test_create_class_response_uses_studio_time(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create(*args: object, **kwargs: object) -> StudioClass:
        return _class()

    monkeypatch.setattr(router.class_usecase, "create_class", fake_create)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: None)

    payload = ClassCreate(
        class_type_id=1, location_id=1, starts_at=datetime(2025, 3, 20, 21, 0, tzinfo=timezone.utc)
    )
    result = await router.create_class(
        payload=payload,
        session=cast(AsyncSession, DummySession()),
        actor=ADMIN,
        clock=FixedClock(NOW),
    )
    assert result.model_dump(mode="json")["starts_at"] == "2025-03-20T18:00:00-03:00"
