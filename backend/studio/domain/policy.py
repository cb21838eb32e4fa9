from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class BookingPolicy:
    cancellation_window_hours: int = 24
    reschedule_window_hours: int = 24
    payment_deadline_hours: int = 24
    expiration_warning_days: int = 7
    package_validity_days: int = 90

    @property
    def payment_deadline(self) -> timedelta:
        return timedelta(hours=self.payment_deadline_hours)

    @property
    def expiration_warning(self) -> timedelta:
        return timedelta(days=self.expiration_warning_days)

    @property
    def package_validity(self) -> timedelta:
        return timedelta(days=self.package_validity_days)


DEFAULT_POLICY = BookingPolicy()


@dataclass(frozen=True)
class ReminderWindow:
    hours: int
    urgency: str

    @property
    def lead(self) -> timedelta:
        return timedelta(hours=self.hours)


PAYMENT_REMINDER_WINDOWS = (
    ReminderWindow(hours=48, urgency="normal"),
    ReminderWindow(hours=24, urgency="warning"),
    ReminderWindow(hours=6, urgency="critical"),
)
REMINDER_SLACK = timedelta(hours=1)
REMINDER_HORIZON = PAYMENT_REMINDER_WINDOWS[0].lead + REMINDER_SLACK


def due_payment_reminder(deadline: datetime, now: datetime, *, last_sent_hours: int | None) -> ReminderWindow | None:
    """The window `deadline` currently falls in, unless it (or a later one) was already sent."""
    left = deadline - now
    for window in PAYMENT_REMINDER_WINDOWS:
        if abs(left - window.lead) > REMINDER_SLACK:
            continue
        if last_sent_hours is not None and last_sent_hours <= window.hours:
            return None
        return window
    return None
