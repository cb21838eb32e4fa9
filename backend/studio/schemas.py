from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.capacity import CapacitySnapshot
from .models import (
    ClassStatus,
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
from .usecases.patterns import PatternDetail
from .usecases.waitlist import Promotion
from .utils.time import STUDIO_TZ, utc_naive_to_studio


def _studio_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(STUDIO_TZ).isoformat()


def _local(dt: Optional[datetime]) -> Optional[datetime]:
    return utc_naive_to_studio(dt) if dt is not None else None


class ClassCreate(BaseModel):
    class_type_id: int
    location_id: int
    starts_at: datetime
    ends_at: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    instructor_id: Optional[int] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    small_frame_capacity: Optional[int] = Field(default=None, ge=0)
    medium_frame_capacity: Optional[int] = Field(default=None, ge=0)
    large_frame_capacity: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None

    def frame_capacities(self) -> dict[FrameSize, int]:
        values = {
            FrameSize.SMALL: self.small_frame_capacity,
            FrameSize.MEDIUM: self.medium_frame_capacity,
            FrameSize.LARGE: self.large_frame_capacity,
        }
        return {size: value for size, value in values.items() if value is not None}


class ClassRead(BaseModel):
    class_id: int
    class_type_id: int
    location_id: int
    instructor_id: Optional[int]
    pattern_id: Optional[int]
    starts_at: datetime
    ends_at: datetime
    capacity: int
    small_frame_capacity: Optional[int]
    medium_frame_capacity: Optional[int]
    large_frame_capacity: Optional[int]
    price: Optional[Decimal]
    status: ClassStatus

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(STUDIO_TZ).isoformat()

    @classmethod
    def from_db(cls, *, studio_class: StudioClass) -> "ClassRead":
        return cls(
            class_id=studio_class.id,
            class_type_id=studio_class.class_type_id,
            location_id=studio_class.location_id,
            instructor_id=studio_class.instructor_id,
            pattern_id=studio_class.pattern_id,
            starts_at=utc_naive_to_studio(studio_class.starts_at),
            ends_at=utc_naive_to_studio(studio_class.ends_at),
            capacity=studio_class.capacity,
            small_frame_capacity=studio_class.small_frame_capacity,
            medium_frame_capacity=studio_class.medium_frame_capacity,
            large_frame_capacity=studio_class.large_frame_capacity,
            price=studio_class.price,
            status=studio_class.status,
        )


class FrameAvailabilityRead(BaseModel):
    capacity: int
    reserved: int
    available: int


class AvailabilityRead(BaseModel):
    class_id: int
    status: ClassStatus
    capacity: int
    active: int
    available: int
    frames: dict[FrameSize, FrameAvailabilityRead] = Field(default_factory=dict)
    frame_capacity_consistent: bool

    @classmethod
    def from_snapshot(cls, *, studio_class: StudioClass, snapshot: CapacitySnapshot) -> "AvailabilityRead":
        return cls(
            class_id=studio_class.id,
            status=studio_class.status,
            capacity=snapshot.capacity,
            active=snapshot.active,
            available=snapshot.available,
            frames={
                size: FrameAvailabilityRead(capacity=f.capacity, reserved=f.reserved, available=f.available)
                for size, f in snapshot.frames.items()
            },
            frame_capacity_consistent=snapshot.frame_capacity_consistent,
        )


class CapacityUpdate(BaseModel):
    capacity: int = Field(ge=1)


class ClassCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class ReservationCreate(BaseModel):
    class_id: int
    user_id: Optional[int] = None
    package_id: Optional[int] = None
    frame_size: Optional[FrameSize] = None
    notes: Optional[str] = None


class ReservationCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)
    reason: Optional[str] = Field(default=None, max_length=255)


class ReservationReschedule(BaseModel):
    class_id: int
    version: Optional[int] = Field(default=None, ge=1)


class ReservationRead(BaseModel):
    reservation_id: int
    class_id: int
    user_id: int
    package_id: Optional[int]
    status: ReservationStatus
    frame_size: Optional[FrameSize]
    payment_deadline: Optional[datetime]
    checked_in_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    version: int
    starts_at: datetime
    ends_at: datetime

    @field_serializer("payment_deadline", "checked_in_at", "cancelled_at", "starts_at", "ends_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _studio_iso(dt)

    @classmethod
    def from_db(cls, *, reservation: Reservation, studio_class: StudioClass) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            class_id=reservation.class_id,
            user_id=reservation.user_id,
            package_id=reservation.package_id,
            status=reservation.status,
            frame_size=reservation.frame_size,
            payment_deadline=_local(reservation.payment_deadline),
            checked_in_at=_local(reservation.checked_in_at),
            cancelled_at=_local(reservation.cancelled_at),
            cancellation_reason=reservation.cancellation_reason,
            version=reservation.version,
            starts_at=utc_naive_to_studio(studio_class.starts_at),
            ends_at=utc_naive_to_studio(studio_class.ends_at),
        )


class PromotionRead(BaseModel):
    entry_id: int
    user_id: int
    reservation_id: int
    funded_by_package: bool

    @classmethod
    def from_promotion(cls, promotion: Optional[Promotion]) -> Optional["PromotionRead"]:
        if promotion is None:
            return None
        return cls(
            entry_id=promotion.entry_id,
            user_id=promotion.user_id,
            reservation_id=promotion.reservation.id,
            funded_by_package=promotion.funded_by_package,
        )


class CancellationRead(BaseModel):
    reservation: ReservationRead
    credit_restored: bool
    hours_before_class: float
    promoted: Optional[PromotionRead] = None


class RescheduleRead(BaseModel):
    reservation: ReservationRead
    previous_reservation_id: int
    previous_class_id: int
    promoted: Optional[PromotionRead] = None


class ClassCancellationRead(BaseModel):
    studio_class: ClassRead
    cancelled_reservation_ids: list[int]
    credits_restored: int
    waitlist_cleared: int


class ClassCompletionRead(BaseModel):
    studio_class: ClassRead
    completed_reservation_ids: list[int]


class CapacityUpdateRead(BaseModel):
    studio_class: ClassRead
    promoted: list[PromotionRead]


class WaitlistJoin(BaseModel):
    class_id: int
    user_id: Optional[int] = None
    frame_size: Optional[FrameSize] = None
    package_id: Optional[int] = None
    priority: Optional[int] = Field(default=None, ge=1)


class WaitlistReorder(BaseModel):
    priority: int = Field(ge=1)


class WaitlistPromote(BaseModel):
    package_id: Optional[int] = None


class WaitlistEntryRead(BaseModel):
    entry_id: int
    class_id: int
    user_id: int
    frame_size: Optional[FrameSize]
    package_id: Optional[int]
    priority: int

    @classmethod
    def from_db(cls, *, entry: WaitlistEntry) -> "WaitlistEntryRead":
        return cls(
            entry_id=entry.id,
            class_id=entry.class_id,
            user_id=entry.user_id,
            frame_size=entry.frame_size,
            package_id=entry.package_id,
            priority=entry.priority,
        )


class PackageCreate(BaseModel):
    user_id: int
    name: str = Field(min_length=1, max_length=120)
    kind: PackageKind = PackageKind.RECURRENT
    total_credits: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    class_type_id: Optional[int] = None
    paid: bool = True
    expires_at: Optional[datetime] = None


class PackageRead(BaseModel):
    package_id: int
    user_id: int
    name: str
    kind: PackageKind
    class_type_id: Optional[int]
    total_credits: int
    used_credits: int
    remaining_credits: int
    status: PackageStatus
    purchased_at: datetime
    expires_at: Optional[datetime]

    @field_serializer("purchased_at", "expires_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _studio_iso(dt)

    @classmethod
    def from_db(cls, *, package: Package) -> "PackageRead":
        return cls(
            package_id=package.id,
            user_id=package.user_id,
            name=package.name,
            kind=package.kind,
            class_type_id=package.class_type_id,
            total_credits=package.total_credits,
            used_credits=package.used_credits,
            remaining_credits=package.remaining_credits,
            status=package.status,
            purchased_at=utc_naive_to_studio(package.purchased_at),
            expires_at=_local(package.expires_at),
        )


class PaymentRead(BaseModel):
    payment_id: int
    user_id: int
    reservation_id: Optional[int]
    package_id: Optional[int]
    amount: Decimal
    currency: str
    status: PaymentStatus
    paid_at: Optional[datetime]

    @field_serializer("paid_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _studio_iso(dt)

    @classmethod
    def from_db(cls, *, payment: Payment) -> "PaymentRead":
        return cls(
            payment_id=payment.id,
            user_id=payment.user_id,
            reservation_id=payment.reservation_id,
            package_id=payment.package_id,
            amount=payment.amount,
            currency=payment.currency or "ARS",
            status=payment.status,
            paid_at=_local(payment.paid_at),
        )


class PackagePurchaseRead(BaseModel):
    package: PackageRead
    payment: PaymentRead


class GenerateClasses(BaseModel):
    weeks_ahead: int = Field(default=4, ge=1, le=52)
    skip_holidays: bool = True
    start_from: Optional[datetime] = None


class PatternCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    class_type_id: int
    location_id: int
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    valid_from: date
    instructor_id: Optional[int] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    capacity: Optional[int] = Field(default=None, ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)
    valid_until: Optional[date] = None
    is_active: bool = True
    generate_weeks: int = Field(default=0, ge=0, le=52)
    skip_holidays: bool = True


class PatternUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    class_type_id: Optional[int] = None
    location_id: Optional[int] = None
    instructor_id: Optional[int] = None
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[time] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    capacity: Optional[int] = Field(default=None, ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    is_active: Optional[bool] = None


class PatternRead(BaseModel):
    pattern_id: int
    name: str
    class_type_id: int
    location_id: int
    instructor_id: Optional[int]
    day_of_week: int
    start_time: time
    end_time: time
    duration_minutes: int
    capacity: int
    price: Optional[Decimal]
    valid_from: date
    valid_until: Optional[date]
    is_active: bool

    @classmethod
    def from_db(cls, *, pattern: RecurringClassPattern) -> "PatternRead":
        end = datetime.combine(date.min, pattern.start_time) + timedelta(minutes=pattern.duration_minutes)
        return cls(
            pattern_id=pattern.id,
            name=pattern.name,
            class_type_id=pattern.class_type_id,
            location_id=pattern.location_id,
            instructor_id=pattern.instructor_id,
            day_of_week=pattern.day_of_week,
            start_time=pattern.start_time,
            end_time=end.time(),
            duration_minutes=pattern.duration_minutes,
            capacity=pattern.capacity,
            price=pattern.price,
            valid_from=pattern.valid_from,
            valid_until=pattern.valid_until,
            is_active=pattern.is_active,
        )


class PatternCreateRead(BaseModel):
    pattern: PatternRead
    generated: list[ClassRead]


class UpcomingClassRead(BaseModel):
    studio_class: ClassRead
    reserved: int
    available: int


class PatternDetailRead(BaseModel):
    pattern: PatternRead
    upcoming: list[UpcomingClassRead]
    total_upcoming: int
    total_reservations: int
    booking_rate: float

    @classmethod
    def from_detail(cls, detail: PatternDetail) -> "PatternDetailRead":
        return cls(
            pattern=PatternRead.from_db(pattern=detail.pattern),
            upcoming=[
                UpcomingClassRead(
                    studio_class=ClassRead.from_db(studio_class=item.studio_class),
                    reserved=item.reserved,
                    available=item.available,
                )
                for item in detail.upcoming
            ],
            total_upcoming=len(detail.upcoming),
            total_reservations=detail.total_reservations,
            booking_rate=round(detail.booking_rate, 1),
        )


class PatternDeletionRead(BaseModel):
    pattern_id: int
    deleted_class_ids: list[int]
    detached_class_ids: list[int]


class HolidayCreate(BaseModel):
    day: date
    name: str = Field(min_length=1, max_length=120)


class HolidayRead(BaseModel):
    holiday_id: int
    day: date
    name: str

    @classmethod
    def from_db(cls, *, holiday: Holiday) -> "HolidayRead":
        return cls(holiday_id=holiday.id, day=holiday.holiday_date, name=holiday.name)


class SweepResult(BaseModel):
    job: str
    candidates: int
    processed: int
    failed: int
    notifications_sent: int = 0
