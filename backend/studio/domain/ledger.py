"""Package credit bookkeeping.

These helpers mutate the ORM object in place and must run inside the same
transaction as the reservation change that motivates them.
"""
from __future__ import annotations

from datetime import datetime

from ..models import Package, PackageStatus
from .errors import InsufficientCreditsError


def is_usable(package: Package, now: datetime) -> bool:
    if package.status != PackageStatus.ACTIVE:
        return False
    if package.expires_at is not None and package.expires_at <= now:
        return False
    return package.used_credits < package.total_credits


def debit(package: Package, amount: int = 1) -> None:
    if amount < 1:
        raise ValueError("amount must be >= 1")
    if package.used_credits + amount > package.total_credits:
        raise InsufficientCreditsError(
            "package has no credits left",
            package_id=package.id,
            total_credits=package.total_credits,
            used_credits=package.used_credits,
        )
    package.used_credits += amount
    if package.used_credits == package.total_credits:
        package.status = PackageStatus.USED_UP


def restore(package: Package, amount: int = 1) -> None:
    if amount < 1:
        raise ValueError("amount must be >= 1")
    package.used_credits = max(package.used_credits - amount, 0)
    # expiration wins over a late credit restore
    if package.status == PackageStatus.USED_UP and package.used_credits < package.total_credits:
        package.status = PackageStatus.ACTIVE


def ensure_usable(package: Package, now: datetime) -> None:
    if not is_usable(package, now):
        raise InsufficientCreditsError(
            "package cannot be used for booking",
            package_id=package.id,
            status=package.status.value,
            remaining_credits=package.total_credits - package.used_credits,
            expires_at=package.expires_at.isoformat() if package.expires_at else None,
        )
