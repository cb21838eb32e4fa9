from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from ..domain.actors import Actor, ensure_admin
from ..domain.errors import InvalidStateTransitionError, NotFoundError
from ..domain.recurrence import plan_occurrences
from ..domain.repositories import Repositories
from ..domain.transitions import SEAT_TRACKED_CLASS_STATUSES
from ..models import ClassStatus, ClassType, RecurringClassPattern, StudioClass
from ..utils.time import utc_naive_to_studio

logger = logging.getLogger(__name__)

DEFAULT_PATTERN_CAPACITY = 6
UPCOMING_HORIZON = timedelta(weeks=4)
EDITABLE_FIELDS = frozenset(
    {
        "name",
        "class_type_id",
        "location_id",
        "instructor_id",
        "day_of_week",
        "start_time",
        "duration_minutes",
        "capacity",
        "price",
        "valid_from",
        "valid_until",
        "is_active",
    }
)
NULLABLE_FIELDS = frozenset({"instructor_id", "price", "valid_until"})


@dataclass(frozen=True)
class UpcomingClass:
    studio_class: StudioClass
    reserved: int

    @property
    def available(self) -> int:
        return max(self.studio_class.capacity - self.reserved, 0)


@dataclass(frozen=True)
class PatternDetail:
    pattern: RecurringClassPattern
    upcoming: list[UpcomingClass]

    @property
    def total_reservations(self) -> int:
        return sum(item.reserved for item in self.upcoming)

    @property
    def booking_rate(self) -> float:
        """Share of upcoming seats taken, as a percentage."""
        seats = sum(item.studio_class.capacity for item in self.upcoming)
        return self.total_reservations / seats * 100 if seats else 0.0


@dataclass(frozen=True)
class PatternDeletion:
    pattern: RecurringClassPattern
    deleted_class_ids: list[int]
    detached_class_ids: list[int]


async def _pattern_or_404(repos: Repositories, pattern_id: int) -> RecurringClassPattern:
    pattern = await repos.patterns.get(pattern_id)
    if pattern is None:
        raise NotFoundError("pattern not found", entity="pattern", pattern_id=pattern_id)
    return pattern


async def _class_type_or_404(repos: Repositories, class_type_id: int) -> ClassType:
    class_type = await repos.classes.get_class_type(class_type_id)
    if class_type is None:
        raise NotFoundError("class type not found", entity="class_type", class_type_id=class_type_id)
    return class_type


def _validate(pattern: RecurringClassPattern, class_type: ClassType) -> None:
    if not 0 <= pattern.day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    if pattern.duration_minutes < 1:
        raise ValueError("duration_minutes must be >= 1")
    if not 1 <= pattern.capacity <= class_type.max_capacity:
        raise ValueError(f"capacity must be between 1 and {class_type.max_capacity}")
    if pattern.price is not None and pattern.price < 0:
        raise ValueError("price must be >= 0")
    if pattern.valid_until is not None and pattern.valid_until < pattern.valid_from:
        raise ValueError("valid_until must not be before valid_from")


async def list_patterns(repos: Repositories, actor: Actor) -> list[RecurringClassPattern]:
    ensure_admin(actor, action="list patterns")
    return await repos.patterns.list_all()


async def get_pattern(repos: Repositories, actor: Actor, *, pattern_id: int, now: datetime) -> PatternDetail:
    """The pattern plus its classes over the next four weeks with their booked seats."""
    ensure_admin(actor, action="view patterns")
    pattern = await _pattern_or_404(repos, pattern_id)
    upcoming = []
    for studio_class in await repos.classes.list_for_pattern(pattern_id):
        if not now <= studio_class.starts_at <= now + UPCOMING_HORIZON:
            continue
        reserved = len(await repos.reservations.list_active(studio_class.id))
        upcoming.append(UpcomingClass(studio_class=studio_class, reserved=reserved))
    return PatternDetail(pattern=pattern, upcoming=upcoming)


async def create_pattern(
    repos: Repositories,
    actor: Actor,
    *,
    name: str,
    class_type_id: int,
    location_id: int,
    day_of_week: int,
    start_time: time,
    valid_from: date,
    instructor_id: int | None = None,
    duration_minutes: int | None = None,
    capacity: int | None = None,
    price: Decimal | None = None,
    valid_until: date | None = None,
    is_active: bool = True,
) -> RecurringClassPattern:
    ensure_admin(actor, action="create patterns")
    class_type = await _class_type_or_404(repos, class_type_id)
    draft = RecurringClassPattern(
        name=name,
        class_type_id=class_type_id,
        location_id=location_id,
        instructor_id=instructor_id,
        day_of_week=day_of_week,
        start_time=start_time,
        duration_minutes=duration_minutes if duration_minutes is not None else class_type.duration_minutes,
        capacity=capacity if capacity is not None else min(DEFAULT_PATTERN_CAPACITY, class_type.max_capacity),
        price=price if price is not None else class_type.default_price,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=is_active,
    )
    _validate(draft, class_type)
    pattern = await repos.patterns.create(
        name=draft.name,
        class_type_id=draft.class_type_id,
        location_id=draft.location_id,
        instructor_id=draft.instructor_id,
        day_of_week=draft.day_of_week,
        start_time=draft.start_time,
        duration_minutes=draft.duration_minutes,
        capacity=draft.capacity,
        price=draft.price,
        valid_from=draft.valid_from,
        valid_until=draft.valid_until,
        is_active=draft.is_active,
    )
    logger.info("pattern %s created for class type %s", pattern.id, class_type_id)
    return pattern


async def update_pattern(
    repos: Repositories,
    actor: Actor,
    *,
    pattern_id: int,
    changes: dict[str, Any],
    now: datetime,
) -> RecurringClassPattern:
    """Partial update. Classes already generated keep their own schedule and capacity."""
    ensure_admin(actor, action="edit patterns")
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"cannot update {', '.join(sorted(unknown))}")
    cleared = {name for name, value in changes.items() if value is None} - NULLABLE_FIELDS
    if cleared:
        raise ValueError(f"{', '.join(sorted(cleared))} cannot be null")
    pattern = await _pattern_or_404(repos, pattern_id)
    class_type = await _class_type_or_404(repos, changes.get("class_type_id", pattern.class_type_id))

    for field_name, value in changes.items():
        setattr(pattern, field_name, value)
    _validate(pattern, class_type)
    pattern.updated_at = now
    return await repos.patterns.save(pattern)


async def delete_pattern(repos: Repositories, actor: Actor, *, pattern_id: int, now: datetime) -> PatternDeletion:
    """Remove a pattern together with its unbooked future classes.

    Refused while any future class of the pattern still has active
    reservations. Past classes, and future ones holding only cancelled
    reservations, stay as history with the pattern link cleared.
    """
    ensure_admin(actor, action="delete patterns")
    pattern = await _pattern_or_404(repos, pattern_id)
    classes = await repos.classes.list_for_pattern(pattern_id)
    future = [c for c in classes if c.starts_at >= now]

    booked = [c.id for c in future if await repos.reservations.list_active(c.id)]
    if booked:
        raise InvalidStateTransitionError(
            "pattern has future classes with active reservations",
            code="pattern_has_bookings",
            pattern_id=pattern_id,
            class_ids=booked,
        )

    deleted: list[int] = []
    detached: list[int] = []
    for studio_class in classes:
        if studio_class.starts_at >= now and not await repos.reservations.list_for_class(studio_class.id):
            deleted.append(studio_class.id)
            await repos.classes.delete(studio_class)
            continue
        if studio_class.starts_at >= now and studio_class.status in SEAT_TRACKED_CLASS_STATUSES:
            studio_class.status = ClassStatus.CANCELLED
        studio_class.pattern_id = None
        studio_class.updated_at = now
        await repos.classes.save(studio_class)
        detached.append(studio_class.id)

    await repos.patterns.delete(pattern)
    logger.info("pattern %s deleted: %d classes removed, %d detached", pattern_id, len(deleted), len(detached))
    return PatternDeletion(pattern=pattern, deleted_class_ids=deleted, detached_class_ids=detached)


async def generate_classes(
    repos: Repositories,
    actor: Actor,
    *,
    pattern_id: int,
    weeks_ahead: int,
    start_from: datetime,
    skip_holidays: bool = True,
) -> list[StudioClass]:
    """Materialize a weekly pattern into classes. Re-running creates nothing new."""
    ensure_admin(actor, action="generate classes")
    pattern = await _pattern_or_404(repos, pattern_id)
    if not pattern.is_active:
        raise InvalidStateTransitionError("pattern is inactive", code="pattern_inactive", pattern_id=pattern_id)

    holidays: set[date] = set()
    if skip_holidays:
        first_day = utc_naive_to_studio(start_from).date()
        holidays = await repos.holidays.dates_between(first_day, first_day + timedelta(weeks=weeks_ahead, days=7))

    created: list[StudioClass] = []
    for occurrence in plan_occurrences(pattern, weeks_ahead=weeks_ahead, start_from=start_from, holidays=holidays):
        if await repos.classes.exists_at(
            class_type_id=pattern.class_type_id,
            location_id=pattern.location_id,
            starts_at=occurrence.starts_at,
        ):
            continue
        created.append(
            await repos.classes.create(
                class_type_id=pattern.class_type_id,
                location_id=pattern.location_id,
                instructor_id=pattern.instructor_id,
                starts_at=occurrence.starts_at,
                ends_at=occurrence.ends_at,
                capacity=pattern.capacity,
                price=pattern.price,
                status=ClassStatus.SCHEDULED,
                pattern_id=pattern.id,
            )
        )
    logger.info("pattern %s: %d classes created", pattern_id, len(created))
    return created
