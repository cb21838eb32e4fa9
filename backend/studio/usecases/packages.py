from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..domain.actors import Actor, ensure_admin, ensure_owner_or_staff
from ..domain.policy import DEFAULT_POLICY, BookingPolicy
from ..domain.repositories import Repositories
from ..models import Package, PackageKind, PackageStatus, Payment, PaymentStatus
from ..notifications import NotificationKind, Outbox


async def create_package(
    repos: Repositories,
    actor: Actor,
    *,
    user_id: int,
    name: str,
    kind: PackageKind,
    total_credits: int,
    price: Decimal,
    now: datetime,
    class_type_id: int | None = None,
    paid: bool = True,
    expires_at: datetime | None = None,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> tuple[Package, Payment]:
    ensure_admin(actor, action="sell packages")
    if total_credits < 1:
        raise ValueError("total_credits must be >= 1")
    if price < 0:
        raise ValueError("price must be >= 0")
    if expires_at is None:
        expires_at = now + policy.package_validity
    elif expires_at <= now:
        raise ValueError("expires_at must be in the future")

    package = await repos.packages.create(
        user_id=user_id,
        name=name,
        kind=kind,
        class_type_id=class_type_id,
        total_credits=total_credits,
        price=price,
        status=PackageStatus.ACTIVE if paid else PackageStatus.PENDING_PAYMENT,
        purchased_at=now,
        expires_at=expires_at,
    )
    payment = await repos.payments.create(user_id=user_id, amount=price, package_id=package.id)
    if paid:
        payment.status = PaymentStatus.COMPLETED
        payment.paid_at = now
        payment = await repos.payments.save(payment)
    return package, payment


async def list_user_packages(repos: Repositories, actor: Actor, *, user_id: int) -> list[Package]:
    ensure_owner_or_staff(actor, user_id, entity="packages")
    return await repos.packages.list_by_user(user_id)


async def expire_package(
    repos: Repositories,
    *,
    package_id: int,
    now: datetime,
    outbox: Outbox,
) -> Package | None:
    package = await repos.packages.get_for_update(package_id)
    if package is None or package.status != PackageStatus.ACTIVE:
        return None
    if package.expires_at is None or package.expires_at > now:
        return None

    package.status = PackageStatus.EXPIRED
    package.updated_at = now
    await repos.packages.save(package)
    if package.remaining_credits > 0:
        outbox.add(
            NotificationKind.PACKAGE_EXPIRED,
            user_id=package.user_id,
            package_id=package.id,
            package_name=package.name,
            remaining_credits=package.remaining_credits,
        )
    return package


async def warn_expiring_package(
    repos: Repositories,
    *,
    package_id: int,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> bool:
    """Send the one-time expiry warning; False when nothing was due."""
    package = await repos.packages.get_for_update(package_id)
    if package is None or package.status != PackageStatus.ACTIVE:
        return False
    if package.expiration_warning_sent_at is not None or package.remaining_credits <= 0:
        return False
    if package.expires_at is None or not now < package.expires_at <= now + policy.expiration_warning:
        return False

    package.expiration_warning_sent_at = now
    package.updated_at = now
    await repos.packages.save(package)
    outbox.add(
        NotificationKind.PACKAGE_EXPIRING,
        user_id=package.user_id,
        package_id=package.id,
        package_name=package.name,
        remaining_credits=package.remaining_credits,
        expires_at=package.expires_at.isoformat(),
        days_left=(package.expires_at - now).days,
    )
    return True


async def assign_missing_expiration(
    repos: Repositories,
    *,
    package_id: int,
    now: datetime,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> Package | None:
    package = await repos.packages.get_for_update(package_id)
    if package is None or package.status != PackageStatus.ACTIVE or package.expires_at is not None:
        return None
    package.expires_at = package.purchased_at + policy.package_validity
    package.updated_at = now
    return await repos.packages.save(package)
