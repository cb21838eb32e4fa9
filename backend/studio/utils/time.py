from datetime import datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

STUDIO_TZ = ZoneInfo("America/Argentina/Buenos_Aires")


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utc_naive_to_studio(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(STUDIO_TZ)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Naive-UTC wall clock, matching how timestamps are stored."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now
