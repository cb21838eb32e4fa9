from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Tuple, cast

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    ClassRepository,
    HolidayRepository,
    PackageRepository,
    PatternRepository,
    PaymentRepository,
    Repositories,
    ReservationRepository,
    WaitlistRepository,
)
from ..domain.waitlist import PriorityShift
from ..models import (
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
from ..utils.time import utc_now


class SqlAlchemyClassRepository(ClassRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, class_id: int) -> StudioClass | None:
        return await self.session.get(StudioClass, class_id)

    async def get_for_update(self, class_id: int) -> StudioClass | None:
        result = await self.session.scalar(select(StudioClass).where(StudioClass.id == class_id).with_for_update())
        return result if isinstance(result, StudioClass) else None

    async def get_class_type(self, class_type_id: int) -> ClassType | None:
        return await self.session.get(ClassType, class_type_id)

    async def exists_at(self, *, class_type_id: int, location_id: int, starts_at: datetime) -> bool:
        stmt = select(StudioClass.id).where(
            StudioClass.class_type_id == class_type_id,
            StudioClass.location_id == location_id,
            StudioClass.starts_at == starts_at,
        )
        return await self.session.scalar(stmt) is not None

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
        now = utc_now()
        frames = frame_capacities or {}
        studio_class = StudioClass(
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
            created_at=now,
            updated_at=now,
        )
        self.session.add(studio_class)
        await self.session.flush()
        return studio_class

    async def list_for_pattern(self, pattern_id: int) -> list[StudioClass]:
        stmt = select(StudioClass).where(StudioClass.pattern_id == pattern_id).order_by(StudioClass.starts_at)
        return list((await self.session.scalars(stmt)).all())

    async def save(self, studio_class: StudioClass) -> StudioClass:
        self.session.add(studio_class)
        await self.session.flush()
        return studio_class

    async def delete(self, studio_class: StudioClass) -> None:
        await self.session.delete(studio_class)
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reservation_id: int) -> Reservation | None:
        return await self.session.get(Reservation, reservation_id)

    async def get_for_update(self, reservation_id: int) -> Reservation | None:
        stmt = select(Reservation).where(Reservation.id == reservation_id).with_for_update()
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Reservation) else None

    async def find(self, *, user_id: int, class_id: int) -> Reservation | None:
        stmt = select(Reservation).where(Reservation.user_id == user_id, Reservation.class_id == class_id)
        return await self.session.scalar(stmt)

    async def list_active(self, class_id: int) -> list[Reservation]:
        stmt = select(Reservation).where(
            Reservation.class_id == class_id,
            Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_for_class(self, class_id: int) -> list[Reservation]:
        stmt = select(Reservation).where(Reservation.class_id == class_id).order_by(Reservation.id)
        return list((await self.session.scalars(stmt)).all())

    async def list_by_user(self, user_id: int) -> List[Tuple[Reservation, StudioClass]]:
        stmt: Select[Tuple[Reservation, StudioClass]] = (
            select(Reservation, StudioClass)
            .join(StudioClass, Reservation.class_id == StudioClass.id)
            .where(Reservation.user_id == user_id)
            .order_by(StudioClass.starts_at)
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Reservation, StudioClass]], list(rows.all()))

    async def list_unpaid_overdue_ids(self, now: datetime) -> list[int]:
        stmt = select(Reservation.id).where(
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.package_id.is_(None),
            Reservation.payment_deadline.is_not(None),
            Reservation.payment_deadline < now,
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_awaiting_payment_ids(self, now: datetime, until: datetime) -> list[int]:
        stmt = select(Reservation.id).where(
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.package_id.is_(None),
            Reservation.payment_deadline > now,
            Reservation.payment_deadline <= until,
        )
        return list((await self.session.scalars(stmt)).all())

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
        now = utc_now()
        reservation = Reservation(
            user_id=user_id,
            class_id=class_id,
            package_id=package_id,
            frame_size=frame_size,
            payment_deadline=payment_deadline,
            status=status,
            notes=notes,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation


class SqlAlchemyPackageRepository(PackageRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, package_id: int) -> Package | None:
        result = await self.session.scalar(select(Package).where(Package.id == package_id).with_for_update())
        return result if isinstance(result, Package) else None

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
        now = utc_now()
        package = Package(
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
            created_at=now,
            updated_at=now,
        )
        self.session.add(package)
        await self.session.flush()
        return package

    async def save(self, package: Package) -> Package:
        self.session.add(package)
        await self.session.flush()
        return package

    async def list_by_user(self, user_id: int) -> list[Package]:
        stmt = select(Package).where(Package.user_id == user_id).order_by(Package.purchased_at.desc())
        return list((await self.session.scalars(stmt)).all())

    async def list_expired_ids(self, now: datetime) -> list[int]:
        stmt = select(Package.id).where(
            Package.status == PackageStatus.ACTIVE,
            Package.expires_at.is_not(None),
            Package.expires_at <= now,
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_expiring_ids(self, now: datetime, until: datetime) -> list[int]:
        stmt = select(Package.id).where(
            Package.status == PackageStatus.ACTIVE,
            Package.expiration_warning_sent_at.is_(None),
            Package.used_credits < Package.total_credits,
            Package.expires_at > now,
            Package.expires_at <= until,
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_missing_expiration_ids(self) -> list[int]:
        stmt = select(Package.id).where(Package.status == PackageStatus.ACTIVE, Package.expires_at.is_(None))
        return list((await self.session.scalars(stmt)).all())


class SqlAlchemyWaitlistRepository(WaitlistRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, entry_id: int) -> WaitlistEntry | None:
        stmt = select(WaitlistEntry).where(WaitlistEntry.id == entry_id).with_for_update()
        result = await self.session.scalar(stmt)
        return result if isinstance(result, WaitlistEntry) else None

    async def find(self, *, user_id: int, class_id: int) -> WaitlistEntry | None:
        stmt = select(WaitlistEntry).where(WaitlistEntry.user_id == user_id, WaitlistEntry.class_id == class_id)
        return await self.session.scalar(stmt)

    async def list_for_class(self, class_id: int) -> list[WaitlistEntry]:
        stmt = select(WaitlistEntry).where(WaitlistEntry.class_id == class_id).order_by(WaitlistEntry.priority)
        return list((await self.session.scalars(stmt)).all())

    async def count(self, class_id: int) -> int:
        stmt = select(func.count()).select_from(WaitlistEntry).where(WaitlistEntry.class_id == class_id)
        return int(await self.session.scalar(stmt) or 0)

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
            user_id=user_id,
            class_id=class_id,
            frame_size=frame_size,
            package_id=package_id,
            priority=priority,
            created_at=utc_now(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def delete(self, entry: WaitlistEntry) -> None:
        await self.session.delete(entry)
        await self.session.flush()

    async def shift(self, class_id: int, shift: PriorityShift, *, exclude_id: int | None = None) -> None:
        stmt = (
            update(WaitlistEntry)
            .where(WaitlistEntry.class_id == class_id, WaitlistEntry.priority >= shift.start)
            .values(priority=WaitlistEntry.priority + shift.delta)
            .execution_options(synchronize_session="fetch")
        )
        if shift.end is not None:
            stmt = stmt.where(WaitlistEntry.priority <= shift.end)
        if exclude_id is not None:
            stmt = stmt.where(WaitlistEntry.id != exclude_id)
        await self.session.execute(stmt)

    async def save(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry


class SqlAlchemyPaymentRepository(PaymentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, payment_id: int) -> Payment | None:
        return await self.session.get(Payment, payment_id)

    async def get_for_update(self, payment_id: int) -> Payment | None:
        result = await self.session.scalar(select(Payment).where(Payment.id == payment_id).with_for_update())
        return result if isinstance(result, Payment) else None

    async def create(
        self,
        *,
        user_id: int,
        amount: Decimal,
        reservation_id: int | None = None,
        package_id: int | None = None,
    ) -> Payment:
        now = utc_now()
        payment = Payment(
            user_id=user_id,
            reservation_id=reservation_id,
            package_id=package_id,
            amount=amount,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def cancel_pending_for_reservation(self, reservation_id: int, now: datetime) -> int:
        stmt = (
            update(Payment)
            .where(Payment.reservation_id == reservation_id, Payment.status == PaymentStatus.PENDING)
            .values(status=PaymentStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def reassign_pending(self, from_reservation_id: int, to_reservation_id: int, now: datetime) -> int:
        stmt = (
            update(Payment)
            .where(Payment.reservation_id == from_reservation_id, Payment.status == PaymentStatus.PENDING)
            .values(reservation_id=to_reservation_id, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def save(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()
        return payment


class SqlAlchemyPatternRepository(PatternRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, pattern_id: int) -> RecurringClassPattern | None:
        return await self.session.get(RecurringClassPattern, pattern_id)

    async def list_all(self) -> list[RecurringClassPattern]:
        stmt = select(RecurringClassPattern).order_by(
            RecurringClassPattern.day_of_week, RecurringClassPattern.start_time, RecurringClassPattern.id
        )
        return list((await self.session.scalars(stmt)).all())

    async def list_active_ids(self) -> list[int]:
        stmt = select(RecurringClassPattern.id).where(RecurringClassPattern.is_active.is_(True))
        return list((await self.session.scalars(stmt)).all())

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
        now = utc_now()
        pattern = RecurringClassPattern(
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
            created_at=now,
            updated_at=now,
        )
        self.session.add(pattern)
        await self.session.flush()
        return pattern

    async def save(self, pattern: RecurringClassPattern) -> RecurringClassPattern:
        self.session.add(pattern)
        await self.session.flush()
        return pattern

    async def delete(self, pattern: RecurringClassPattern) -> None:
        await self.session.delete(pattern)
        await self.session.flush()


class SqlAlchemyHolidayRepository(HolidayRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, holiday_id: int) -> Holiday | None:
        return await self.session.get(Holiday, holiday_id)

    async def find_by_date(self, day: date) -> Holiday | None:
        return await self.session.scalar(select(Holiday).where(Holiday.holiday_date == day))

    async def list_between(self, start: date, end: date) -> list[Holiday]:
        stmt = (
            select(Holiday)
            .where(Holiday.holiday_date >= start, Holiday.holiday_date <= end)
            .order_by(Holiday.holiday_date)
        )
        return list((await self.session.scalars(stmt)).all())

    async def dates_between(self, start: date, end: date) -> set[date]:
        stmt = select(Holiday.holiday_date).where(Holiday.holiday_date >= start, Holiday.holiday_date <= end)
        return set((await self.session.scalars(stmt)).all())

    async def create(self, *, day: date, name: str) -> Holiday:
        holiday = Holiday(holiday_date=day, name=name)
        self.session.add(holiday)
        await self.session.flush()
        return holiday

    async def delete(self, holiday: Holiday) -> None:
        await self.session.delete(holiday)
        await self.session.flush()


def build_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        classes=SqlAlchemyClassRepository(session),
        reservations=SqlAlchemyReservationRepository(session),
        packages=SqlAlchemyPackageRepository(session),
        waitlist=SqlAlchemyWaitlistRepository(session),
        payments=SqlAlchemyPaymentRepository(session),
        patterns=SqlAlchemyPatternRepository(session),
        holidays=SqlAlchemyHolidayRepository(session),
    )
