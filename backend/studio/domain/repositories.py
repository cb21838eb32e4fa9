from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Protocol

from ..models import (
    ClassStatus,
    ClassType,
    FrameSize,
    Holiday,
    Package,
    PackageKind,
    PackageStatus,
    Payment,
    RecurringClassPattern,
    Reservation,
    ReservationStatus,
    StudioClass,
    WaitlistEntry,
)
from .waitlist import PriorityShift


class ClassRepository(Protocol):
    async def get(self, class_id: int) -> StudioClass | None: ...

    async def get_for_update(self, class_id: int) -> StudioClass | None: ...

    async def get_class_type(self, class_type_id: int) -> ClassType | None: ...

    async def exists_at(self, *, class_type_id: int, location_id: int, starts_at: datetime) -> bool: ...

    async def create(
        self,
        *,
        class_type_id: int,
        location_id: int,
        instructor_id: int | None,
        starts_at: datetime,
        ends_at: datetime,
        capacity: int,
        price: Decimal | None,
        status: ClassStatus,
        frame_capacities: dict[FrameSize, int] | None = None,
        pattern_id: int | None = None,
        notes: str | None = None,
    ) -> StudioClass: ...

    async def list_for_pattern(self, pattern_id: int) -> list[StudioClass]: ...

    async def save(self, studio_class: StudioClass) -> StudioClass: ...

    async def delete(self, studio_class: StudioClass) -> None: ...


class ReservationRepository(Protocol):
    async def get(self, reservation_id: int) -> Reservation | None: ...

    async def get_for_update(self, reservation_id: int) -> Reservation | None: ...

    async def find(self, *, user_id: int, class_id: int) -> Reservation | None: ...

    async def list_active(self, class_id: int) -> list[Reservation]: ...

    async def list_for_class(self, class_id: int) -> list[Reservation]: ...

    async def list_by_user(self, user_id: int) -> list[tuple[Reservation, StudioClass]]: ...

    async def list_unpaid_overdue_ids(self, now: datetime) -> list[int]: ...

    async def list_awaiting_payment_ids(self, now: datetime, until: datetime) -> list[int]: ...

    async def create(
        self,
        *,
        user_id: int,
        class_id: int,
        package_id: int | None,
        frame_size: FrameSize | None,
        payment_deadline: datetime | None,
        status: ReservationStatus,
        notes: str | None = None,
    ) -> Reservation: ...

    async def save(self, reservation: Reservation) -> Reservation: ...


class PackageRepository(Protocol):
    async def get_for_update(self, package_id: int) -> Package | None: ...

    async def create(
        self,
        *,
        user_id: int,
        name: str,
        kind: PackageKind,
        class_type_id: int | None,
        total_credits: int,
        price: Decimal,
        status: PackageStatus,
        purchased_at: datetime,
        expires_at: datetime | None,
    ) -> Package: ...

    async def save(self, package: Package) -> Package: ...

    async def list_by_user(self, user_id: int) -> list[Package]: ...

    async def list_expired_ids(self, now: datetime) -> list[int]: ...

    async def list_expiring_ids(self, now: datetime, until: datetime) -> list[int]: ...

    async def list_missing_expiration_ids(self) -> list[int]: ...


class WaitlistRepository(Protocol):
    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None: ...

    async def find(self, *, user_id: int, class_id: int) -> WaitlistEntry | None: ...

    async def list_for_class(self, class_id: int) -> list[WaitlistEntry]: ...

    async def count(self, class_id: int) -> int: ...

    async def create(
        self,
        *,
        user_id: int,
        class_id: int,
        frame_size: FrameSize | None,
        package_id: int | None,
        priority: int,
    ) -> WaitlistEntry: ...

    async def delete(self, entry: WaitlistEntry) -> None: ...

    async def shift(self, class_id: int, shift: PriorityShift, *, exclude_id: int | None = None) -> None: ...

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry: ...


class PaymentRepository(Protocol):
    async def get(self, payment_id: int) -> Payment | None: ...

    async def get_for_update(self, payment_id: int) -> Payment | None: ...

    async def create(
        self,
        *,
        user_id: int,
        amount: Decimal,
        reservation_id: int | None = None,
        package_id: int | None = None,
    ) -> Payment: ...

    async def cancel_pending_for_reservation(self, reservation_id: int, now: datetime) -> int: ...

    async def reassign_pending(self, from_reservation_id: int, to_reservation_id: int, now: datetime) -> int: ...

    async def save(self, payment: Payment) -> Payment: ...


class PatternRepository(Protocol):
    async def get(self, pattern_id: int) -> RecurringClassPattern | None: ...

    async def list_all(self) -> list[RecurringClassPattern]: ...

    async def list_active_ids(self) -> list[int]: ...

    async def create(
        self,
        *,
        name: str,
        class_type_id: int,
        location_id: int,
        instructor_id: int | None,
        day_of_week: int,
        start_time: time,
        duration_minutes: int,
        capacity: int,
        price: Decimal | None,
        valid_from: date,
        valid_until: date | None,
        is_active: bool,
    ) -> RecurringClassPattern: ...

    async def save(self, pattern: RecurringClassPattern) -> RecurringClassPattern: ...

    async def delete(self, pattern: RecurringClassPattern) -> None: ...


class HolidayRepository(Protocol):
    async def get(self, holiday_id: int) -> Holiday | None: ...

    async def find_by_date(self, day: date) -> Holiday | None: ...

    async def list_between(self, start: date, end: date) -> list[Holiday]: ...

    async def dates_between(self, start: date, end: date) -> set[date]: ...

    async def create(self, *, day: date, name: str) -> Holiday: ...

    async def delete(self, holiday: Holiday) -> None: ...


@dataclass
class Repositories:
    classes: ClassRepository
    reservations: ReservationRepository
    packages: PackageRepository
    waitlist: WaitlistRepository
    payments: PaymentRepository
    patterns: PatternRepository
    holidays: HolidayRepository
