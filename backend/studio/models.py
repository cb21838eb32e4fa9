from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Integer, Numeric, String, Text, Time


class Base(DeclarativeBase):
    pass


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda members: [e.value for e in members],
        native_enum=False,
    )


class UserRole(StrEnum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


class ClassStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FULL = "full"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationStatus(StrEnum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


ACTIVE_RESERVATION_STATUSES = frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN})


class FrameSize(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class PackageStatus(StrEnum):
    ACTIVE = "active"
    PENDING_PAYMENT = "pending_payment"
    USED_UP = "used_up"
    EXPIRED = "expired"


class PackageKind(StrEnum):
    INTENSIVE = "intensive"
    RECURRENT = "recurrent"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(_str_enum(UserRole), nullable=False, default=UserRole.STUDENT)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class ClassType(Base):
    __tablename__ = "class_types"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    default_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)


class StudioClass(Base):
    __tablename__ = "classes"
    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="chk_classes_time"),
        CheckConstraint("capacity >= 1", name="chk_classes_capacity"),
        UniqueConstraint("class_type_id", "location_id", "starts_at", name="uq_classes_type_location_start"),
        Index("idx_classes_starts_at", "starts_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    class_type_id: Mapped[int] = mapped_column(ForeignKey("class_types.id"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id"), nullable=False)
    instructor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    pattern_id: Mapped[Optional[int]] = mapped_column(ForeignKey("recurring_class_patterns.id"), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    small_frame_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    medium_frame_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    large_frame_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[ClassStatus] = mapped_column(_str_enum(ClassStatus), nullable=False, default=ClassStatus.SCHEDULED)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    class_type: Mapped["ClassType"] = relationship()
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="studio_class")
    waitlist: Mapped[list["WaitlistEntry"]] = relationship(back_populates="studio_class")


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (
        CheckConstraint("total_credits >= 1", name="chk_packages_total"),
        CheckConstraint("used_credits >= 0 AND used_credits <= total_credits", name="chk_packages_used"),
        Index("idx_packages_user", "user_id"),
        Index("idx_packages_status_expiry", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    kind: Mapped[PackageKind] = mapped_column(_str_enum(PackageKind), nullable=False, default=PackageKind.RECURRENT)
    class_type_id: Mapped[Optional[int]] = mapped_column(ForeignKey("class_types.id"), nullable=True)
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    used_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PackageStatus] = mapped_column(
        _str_enum(PackageStatus), nullable=False, default=PackageStatus.ACTIVE
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    expiration_warning_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    @property
    def remaining_credits(self) -> int:
        return self.total_credits - self.used_credits


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("user_id", "class_id", name="uq_res_user_class"),
        Index("idx_res_class", "class_id"),
        Index("idx_res_user", "user_id"),
        Index("idx_res_payment_deadline", "status", "payment_deadline"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id"), nullable=False)
    package_id: Mapped[Optional[int]] = mapped_column(ForeignKey("packages.id"), nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _str_enum(ReservationStatus), nullable=False, default=ReservationStatus.CONFIRMED
    )
    frame_size: Mapped[Optional[FrameSize]] = mapped_column(_str_enum(FrameSize), nullable=True)
    payment_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    # window (hours before the deadline) of the last payment reminder sent
    payment_reminder_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    studio_class: Mapped["StudioClass"] = relationship(back_populates="reservations")


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        CheckConstraint("priority >= 1", name="chk_waitlist_priority"),
        UniqueConstraint("user_id", "class_id", name="uq_waitlist_user_class"),
        Index("idx_waitlist_class_priority", "class_id", "priority"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    package_id: Mapped[Optional[int]] = mapped_column(ForeignKey("packages.id"), nullable=True)
    frame_size: Mapped[Optional[FrameSize]] = mapped_column(_str_enum(FrameSize), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    studio_class: Mapped["StudioClass"] = relationship(back_populates="waitlist")


class RecurringClassPattern(Base):
    __tablename__ = "recurring_class_patterns"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="chk_patterns_day"),
        CheckConstraint("duration_minutes >= 1", name="chk_patterns_duration"),
        CheckConstraint("capacity >= 1", name="chk_patterns_capacity"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    class_type_id: Mapped[int] = mapped_column(ForeignKey("class_types.id"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id"), nullable=False)
    instructor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    # 0 = Monday .. 6 = Sunday, same as date.weekday()
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    # studio local wall-clock time
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Holiday(Base):
    __tablename__ = "holidays"
    __table_args__ = (UniqueConstraint("date", name="uq_holidays_date"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    holiday_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_payments_amount"),
        Index("idx_payments_reservation", "reservation_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    reservation_id: Mapped[Optional[int]] = mapped_column(ForeignKey("reservations.id"), nullable=True)
    package_id: Mapped[Optional[int]] = mapped_column(ForeignKey("packages.id"), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ARS")
    status: Mapped[PaymentStatus] = mapped_column(
        _str_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
