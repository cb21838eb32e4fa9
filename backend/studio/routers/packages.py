from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_current_actor, get_policy, get_session, require_admin
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.policy import BookingPolicy
from ..domain.repositories import Repositories
from ..infrastructure.repositories import build_repositories
from ..infrastructure.transaction import run_atomic
from ..models import Package, Payment
from ..notifications import Outbox
from ..schemas import PackageCreate, PackagePurchaseRead, PackageRead, PaymentRead
from ..usecases import packages as package_usecase
from ..usecases import payments as payment_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock, to_utc_naive
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="", tags=["packages"], dependencies=[Depends(get_current_actor)])


@router.post("/packages", response_model=PackagePurchaseRead, status_code=status.HTTP_201_CREATED)
async def create_package(
    payload: PackageCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
) -> PackagePurchaseRead:
    if payload.expires_at is not None and payload.expires_at.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expires_at must have timezone")
    expires_at = to_utc_naive(payload.expires_at) if payload.expires_at is not None else None
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[Package, Payment]:
        return await package_usecase.create_package(
            repos,
            actor,
            user_id=payload.user_id,
            name=payload.name,
            kind=payload.kind,
            total_credits=payload.total_credits,
            price=payload.price,
            class_type_id=payload.class_type_id,
            paid=payload.paid,
            expires_at=expires_at,
            now=now,
            policy=policy,
        )

    try:
        (package, payment), _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="package.created",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=package.user_id,
            package_id=package.id,
            status_to=package.status,
            extra={"kind": package.kind.value, "total_credits": package.total_credits},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PackagePurchaseRead(package=PackageRead.from_db(package=package), payment=PaymentRead.from_db(payment=payment))


@router.get("/me/packages", response_model=List[PackageRead])
async def list_my_packages(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[PackageRead]:
    if actor.user_id is None:
        return []
    try:
        packages = await package_usecase.list_user_packages(build_repositories(session), actor, user_id=actor.user_id)
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return [PackageRead.from_db(package=package) for package in packages]


@router.post("/payments/{payment_id}/complete", response_model=PaymentRead)
async def complete_payment(
    payment_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> PaymentRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> Payment:
        return await payment_usecase.complete_payment(repos, actor, payment_id=payment_id, now=now)

    try:
        payment, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="payment.completed",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=payment.user_id,
            reservation_id=payment.reservation_id,
            package_id=payment.package_id,
            status_from="pending",
            status_to=payment.status,
            extra={"payment_id": payment.id, "amount": str(payment.amount)},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PaymentRead.from_db(payment=payment)
