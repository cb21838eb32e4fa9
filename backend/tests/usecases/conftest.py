from __future__ import annotations

import itertools
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from studio.domain.repositories import Repositories
from studio.domain.waitlist import PriorityShift
from studio.models import (
    ACTIVE_RESERVATION_STATUSES,
    ClassStatus,
    ClassType,
    FrameSize,
    Holiday,
    Package,
    PackageKind,
    PackageStatus,
    Payment,
    PaymentStatus,
    RecurringClassPattern,
    Reservation,
    ReservationStatus,
    StudioClass,
    WaitlistEntry,
)

NOW = datetime(2025, 3, 10, 12, 0)


class FakeStore:
    """In-memory tables plus a record of which rows were locked."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now
        self.class_types: dict[int, ClassType] = {}
        self.classes: dict[int, StudioClass] = {}
        self.reservations: dict[int, Reservation] = {}
        self.packages: dict[int, Package] = {}
        self.waitlist: dict[int, WaitlistEntry] = {}
        self.payments: dict[int, Payment] = {}
        self.patterns: dict[int, RecurringClassPattern] = {}
        self.holidays: dict[int, Holiday] = {}
        self.locks: list[tuple[str, int]] = []
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def repos(self) -> Repositories:
        return Repositories(
            classes=FakeClassRepo(self),
            reservations=FakeReservationRepo(self),
            packages=FakePackageRepo(self),
            waitlist=FakeWaitlistRepo(self),
            payments=FakePaymentRepo(self),
            patterns=FakePatternRepo(self),
            holidays=FakeHolidayRepo(self),
        )

    # seeding helpers

    def add_class_type(self, *, max_capacity: int = 10, price: str = "15000", duration: int = 180) -> ClassType:
        class_type = ClassType(
            id=self.next_id(),
            name="Tufting intro",
            description=None,
            duration_minutes=duration,
            max_capacity=max_capacity,
            default_price=Decimal(price),
        )
        self.class_types[class_type.id] = class_type
        return class_type

    def add_class(
        self,
        *,
        capacity: int = 4,
        starts_in: timedelta = timedelta(days=3),
        status: ClassStatus = ClassStatus.SCHEDULED,
        class_type: ClassType | None = None,
        frames: dict[FrameSize, int] | None = None,
        price: str | None = None,
        pattern: RecurringClassPattern | None = None,
    ) -> StudioClass:
        class_type = class_type or self.add_class_type()
        frames = frames or {}
        starts_at = self.now + starts_in
        studio_class = StudioClass(
            id=self.next_id(),
            class_type_id=class_type.id,
            location_id=1,
            instructor_id=None,
            pattern_id=pattern.id if pattern else None,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=3),
            capacity=capacity,
            small_frame_capacity=frames.get(FrameSize.SMALL),
            medium_frame_capacity=frames.get(FrameSize.MEDIUM),
            large_frame_capacity=frames.get(FrameSize.LARGE),
            price=Decimal(price) if price is not None else None,
            status=status,
            notes=None,
            created_at=self.now,
            updated_at=self.now,
        )
        self.classes[studio_class.id] = studio_class
        return studio_class

    def add_package(
        self,
        *,
        user_id: int,
        total: int = 4,
        used: int = 0,
        status: PackageStatus = PackageStatus.ACTIVE,
        expires_at: datetime | None = None,
        class_type_id: int | None = None,
        warned_at: datetime | None = None,
    ) -> Package:
        package = Package(
            id=self.next_id(),
            user_id=user_id,
            name="4 classes",
            kind=PackageKind.RECURRENT,
            class_type_id=class_type_id,
            total_credits=total,
            used_credits=used,
            status=status,
            price=Decimal("48000"),
            purchased_at=self.now - timedelta(days=10),
            expires_at=expires_at,
            expiration_warning_sent_at=warned_at,
            created_at=self.now,
            updated_at=self.now,
        )
        self.packages[package.id] = package
        return package

    def add_reservation(
        self,
        *,
        user_id: int,
        studio_class: StudioClass,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        package: Package | None = None,
        frame_size: FrameSize | None = None,
        payment_deadline: datetime | None = None,
        reminded_hours: int | None = None,
    ) -> Reservation:
        reservation = Reservation(
            id=self.next_id(),
            user_id=user_id,
            class_id=studio_class.id,
            package_id=package.id if package else None,
            status=status,
            frame_size=frame_size,
            payment_deadline=payment_deadline,
            payment_reminder_hours=reminded_hours,
            checked_in_at=None,
            cancelled_at=None,
            cancellation_reason=None,
            notes=None,
            version=1,
            created_at=self.now,
            updated_at=self.now,
        )
        self.reservations[reservation.id] = reservation
        return reservation

    def add_waitlist(
        self,
        *,
        user_id: int,
        studio_class: StudioClass,
        priority: int,
        frame_size: FrameSize | None = None,
        package: Package | None = None,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            id=self.next_id(),
            user_id=user_id,
            class_id=studio_class.id,
            package_id=package.id if package else None,
            frame_size=frame_size,
            priority=priority,
            created_at=self.now,
        )
        self.waitlist[entry.id] = entry
        return entry

    def add_pattern(
        self,
        *,
        class_type: ClassType,
        day_of_week: int,
        start_time: time = time(18, 0),
        valid_from: date | None = None,
        valid_until: date | None = None,
        is_active: bool = True,
    ) -> RecurringClassPattern:
        pattern = RecurringClassPattern(
            id=self.next_id(),
            name="Weekly tufting",
            class_type_id=class_type.id,
            location_id=1,
            instructor_id=None,
            day_of_week=day_of_week,
            start_time=start_time,
            duration_minutes=180,
            capacity=6,
            price=Decimal("15000"),
            valid_from=valid_from or self.now.date(),
            valid_until=valid_until,
            is_active=is_active,
            created_at=self.now,
            updated_at=self.now,
        )
        self.patterns[pattern.id] = pattern
        return pattern

    def add_holiday(self, day: date, name: str = "Feriado") -> Holiday:
        holiday = Holiday(id=self.next_id(), holiday_date=day, name=name)
        self.holidays[holiday.id] = holiday
        return holiday

    # views used by assertions

    def active_count(self, class_id: int) -> int:
        return sum(
            1 for r in self.reservations.values() if r.class_id == class_id and r.status in ACTIVE_RESERVATION_STATUSES
        )

    def priorities(self, class_id: int) -> list[int]:
        return sorted(e.priority for e in self.waitlist.values() if e.class_id == class_id)

    def waitlist_users(self, class_id: int) -> list[int]:
        entries = sorted((e for e in self.waitlist.values() if e.class_id == class_id), key=lambda e: e.priority)
        return [e.user_id for e in entries]


class FakeClassRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, class_id: int) -> StudioClass | None:
        return self.store.classes.get(class_id)

    async def get_for_update(self, class_id: int) -> StudioClass | None:
        self.store.locks.append(("class", class_id))
        return self.store.classes.get(class_id)

    async def get_class_type(self, class_type_id: int) -> ClassType | None:
        return self.store.class_types.get(class_type_id)

    async def exists_at(self, *, class_type_id: int, location_id: int, starts_at: datetime) -> bool:
        return any(
            c.class_type_id == class_type_id and c.location_id == location_id and c.starts_at == starts_at
            for c in self.store.classes.values()
        )

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
    ) -> StudioClass:
        frames = frame_capacities or {}
        studio_class = StudioClass(
            id=self.store.next_id(),
            class_type_id=class_type_id,
            location_id=location_id,
            instructor_id=instructor_id,
            pattern_id=pattern_id,
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=capacity,
            small_frame_capacity=frames.get(FrameSize.SMALL),
            medium_frame_capacity=frames.get(FrameSize.MEDIUM),
            large_frame_capacity=frames.get(FrameSize.LARGE),
            price=price,
            status=status,
            notes=notes,
            created_at=self.store.now,
            updated_at=self.store.now,
        )
        self.store.classes[studio_class.id] = studio_class
        return studio_class

    async def list_for_pattern(self, pattern_id: int) -> list[StudioClass]:
        return sorted(
            (c for c in self.store.classes.values() if c.pattern_id == pattern_id),
            key=lambda c: c.starts_at,
        )

    async def save(self, studio_class: StudioClass) -> StudioClass:
        return studio_class

    async def delete(self, studio_class: StudioClass) -> None:
        self.store.classes.pop(studio_class.id, None)


class FakeReservationRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, reservation_id: int) -> Reservation | None:
        return self.store.reservations.get(reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        self.store.locks.append(("reservation", reservation_id))
        return self.store.reservations.get(reservation_id)

    async def find(self, *, user_id: int, class_id: int) -> Reservation | None:
        return next(
            (r for r in self.store.reservations.values() if r.user_id == user_id and r.class_id == class_id),
            None,
        )

    async def list_active(self, class_id: int) -> list[Reservation]:
        return [
            r
            for r in self.store.reservations.values()
            if r.class_id == class_id and r.status in ACTIVE_RESERVATION_STATUSES
        ]

    async def list_for_class(self, class_id: int) -> list[Reservation]:
        return [r for r in self.store.reservations.values() if r.class_id == class_id]

    async def list_by_user(self, user_id: int) -> list[tuple[Reservation, StudioClass]]:
        return [
            (r, self.store.classes[r.class_id]) for r in self.store.reservations.values() if r.user_id == user_id
        ]

    async def list_unpaid_overdue_ids(self, now: datetime) -> list[int]:
        return [
            r.id
            for r in self.store.reservations.values()
            if r.status == ReservationStatus.CONFIRMED
            and r.package_id is None
            and r.payment_deadline is not None
            and r.payment_deadline < now
        ]

    async def list_awaiting_payment_ids(self, now: datetime, until: datetime) -> list[int]:
        return [
            r.id
            for r in self.store.reservations.values()
            if r.status == ReservationStatus.CONFIRMED
            and r.package_id is None
            and r.payment_deadline is not None
            and now < r.payment_deadline <= until
        ]

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
    ) -> Reservation:
        if await self.find(user_id=user_id, class_id=class_id) is not None:
            raise AssertionError("unique (user_id, class_id) violated")
        reservation = Reservation(
            id=self.store.next_id(),
            user_id=user_id,
            class_id=class_id,
            package_id=package_id,
            frame_size=frame_size,
            payment_deadline=payment_deadline,
            status=status,
            payment_reminder_hours=None,
            checked_in_at=None,
            cancelled_at=None,
            cancellation_reason=None,
            notes=notes,
            version=1,
            created_at=self.store.now,
            updated_at=self.store.now,
        )
        self.store.reservations[reservation.id] = reservation
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        return reservation


class FakePackageRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get_for_update(self, package_id: int) -> Package | None:
        self.store.locks.append(("package", package_id))
        return self.store.packages.get(package_id)

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
    ) -> Package:
        package = Package(
            id=self.store.next_id(),
            user_id=user_id,
            name=name,
            kind=kind,
            class_type_id=class_type_id,
            total_credits=total_credits,
            used_credits=0,
            status=status,
            price=price,
            purchased_at=purchased_at,
            expires_at=expires_at,
            expiration_warning_sent_at=None,
            created_at=self.store.now,
            updated_at=self.store.now,
        )
        self.store.packages[package.id] = package
        return package

    async def save(self, package: Package) -> Package:
        assert 0 <= package.used_credits <= package.total_credits
        return package

    async def list_by_user(self, user_id: int) -> list[Package]:
        return [p for p in self.store.packages.values() if p.user_id == user_id]

    async def list_expired_ids(self, now: datetime) -> list[int]:
        return [
            p.id
            for p in self.store.packages.values()
            if p.status == PackageStatus.ACTIVE and p.expires_at is not None and p.expires_at <= now
        ]

    async def list_expiring_ids(self, now: datetime, until: datetime) -> list[int]:
        return [
            p.id
            for p in self.store.packages.values()
            if p.status == PackageStatus.ACTIVE
            and p.expiration_warning_sent_at is None
            and p.used_credits < p.total_credits
            and p.expires_at is not None
            and now < p.expires_at <= until
        ]

    async def list_missing_expiration_ids(self) -> list[int]:
        return [p.id for p in self.store.packages.values() if p.status == PackageStatus.ACTIVE and p.expires_at is None]


class FakeWaitlistRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None:
        self.store.locks.append(("waitlist", entry_id))
        return self.store.waitlist.get(entry_id)

    async def find(self, *, user_id: int, class_id: int) -> WaitlistEntry | None:
        return next(
            (e for e in self.store.waitlist.values() if e.user_id == user_id and e.class_id == class_id),
            None,
        )

    async def list_for_class(self, class_id: int) -> list[WaitlistEntry]:
        return sorted(
            (e for e in self.store.waitlist.values() if e.class_id == class_id),
            key=lambda e: e.priority,
        )

    async def count(self, class_id: int) -> int:
        return sum(1 for e in self.store.waitlist.values() if e.class_id == class_id)

    async def create(
        self,
        *,
        user_id: int,
        class_id: int,
        frame_size: FrameSize | None,
        package_id: int | None,
        priority: int,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            id=self.store.next_id(),
            user_id=user_id,
            class_id=class_id,
            frame_size=frame_size,
            package_id=package_id,
            priority=priority,
            created_at=self.store.now,
        )
        self.store.waitlist[entry.id] = entry
        return entry

    async def delete(self, entry: WaitlistEntry) -> None:
        self.store.waitlist.pop(entry.id, None)

    async def shift(self, class_id: int, shift: PriorityShift, *, exclude_id: int | None = None) -> None:
        for entry in self.store.waitlist.values():
            if entry.class_id != class_id or entry.id == exclude_id:
                continue
            if entry.priority < shift.start or (shift.end is not None and entry.priority > shift.end):
                continue
            entry.priority += shift.delta

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry:
        return entry


class FakePaymentRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, payment_id: int) -> Payment | None:
        return self.store.payments.get(payment_id)

    async def get_for_update(self, payment_id: int) -> Payment | None:
        self.store.locks.append(("payment", payment_id))
        return self.store.payments.get(payment_id)

    async def create(
        self,
        *,
        user_id: int,
        amount: Decimal,
        reservation_id: int | None = None,
        package_id: int | None = None,
    ) -> Payment:
        payment = Payment(
            id=self.store.next_id(),
            user_id=user_id,
            reservation_id=reservation_id,
            package_id=package_id,
            amount=amount,
            currency="ARS",
            status=PaymentStatus.PENDING,
            paid_at=None,
            created_at=self.store.now,
            updated_at=self.store.now,
        )
        self.store.payments[payment.id] = payment
        return payment

    async def cancel_pending_for_reservation(self, reservation_id: int, now: datetime) -> int:
        count = 0
        for payment in self.store.payments.values():
            if payment.reservation_id == reservation_id and payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.CANCELLED
                payment.updated_at = now
                count += 1
        return count

    async def reassign_pending(self, from_reservation_id: int, to_reservation_id: int, now: datetime) -> int:
        count = 0
        for payment in self.store.payments.values():
            if payment.reservation_id == from_reservation_id and payment.status == PaymentStatus.PENDING:
                payment.reservation_id = to_reservation_id
                payment.updated_at = now
                count += 1
        return count

    async def save(self, payment: Payment) -> Payment:
        return payment


class FakePatternRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, pattern_id: int) -> RecurringClassPattern | None:
        return self.store.patterns.get(pattern_id)

    async def list_all(self) -> list[RecurringClassPattern]:
        return sorted(self.store.patterns.values(), key=lambda p: (p.day_of_week, p.start_time, p.id))

    async def list_active_ids(self) -> list[int]:
        return [p.id for p in self.store.patterns.values() if p.is_active]

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
    ) -> RecurringClassPattern:
        pattern = RecurringClassPattern(
            id=self.store.next_id(),
            name=name,
            class_type_id=class_type_id,
            location_id=location_id,
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            duration_minutes=duration_minutes,
            capacity=capacity,
            price=price,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=is_active,
            created_at=self.store.now,
            updated_at=self.store.now,
        )
        self.store.patterns[pattern.id] = pattern
        return pattern

    async def save(self, pattern: RecurringClassPattern) -> RecurringClassPattern:
        return pattern

    async def delete(self, pattern: RecurringClassPattern) -> None:
        assert all(c.pattern_id != pattern.id for c in self.store.classes.values()), "classes still reference pattern"
        self.store.patterns.pop(pattern.id, None)


class FakeHolidayRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get(self, holiday_id: int) -> Holiday | None:
        return self.store.holidays.get(holiday_id)

    async def find_by_date(self, day: date) -> Holiday | None:
        return next((h for h in self.store.holidays.values() if h.holiday_date == day), None)

    async def list_between(self, start: date, end: date) -> list[Holiday]:
        return sorted(
            (h for h in self.store.holidays.values() if start <= h.holiday_date <= end),
            key=lambda h: h.holiday_date,
        )

    async def dates_between(self, start: date, end: date) -> set[date]:
        return {h.holiday_date for h in self.store.holidays.values() if start <= h.holiday_date <= end}

    async def create(self, *, day: date, name: str) -> Holiday:
        holiday = Holiday(id=self.store.next_id(), holiday_date=day, name=name)
        self.store.holidays[holiday.id] = holiday
        return holiday

    async def delete(self, holiday: Holiday) -> None:
        self.store.holidays.pop(holiday.id, None)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def repos(store: FakeStore) -> Repositories:
    return store.repos()
