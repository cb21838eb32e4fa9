from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_current_actor, get_notifier, get_policy, get_session, require_admin, require_staff
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.policy import BookingPolicy
from ..domain.repositories import Repositories
from ..infrastructure.repositories import build_repositories
from ..infrastructure.transaction import run_atomic
from ..models import Reservation, StudioClass
from ..notifications import Notifier, Outbox
from ..schemas import (
    AvailabilityRead,
    CapacityUpdate,
    CapacityUpdateRead,
    ClassCancel,
    ClassCancellationRead,
    ClassCompletionRead,
    ClassCreate,
    ClassRead,
    PromotionRead,
    WaitlistEntryRead,
)
from ..usecases import classes as class_usecase
from ..usecases import waitlist as waitlist_usecase
from ..usecases.waitlist import Promotion
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock, to_utc_naive
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="/classes", tags=["classes"], dependencies=[Depends(get_current_actor)])


@router.post("", response_model=ClassRead, status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: ClassCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> ClassRead:
    if payload.starts_at.tzinfo is None or (payload.ends_at is not None and payload.ends_at.tzinfo is None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="starts_at/ends_at must have timezone")
    starts_at = to_utc_naive(payload.starts_at)
    ends_at = to_utc_naive(payload.ends_at) if payload.ends_at is not None else None
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> StudioClass:
        return await class_usecase.create_class(
            repos,
            actor,
            class_type_id=payload.class_type_id,
            location_id=payload.location_id,
            starts_at=starts_at,
            ends_at=ends_at,
            capacity=payload.capacity,
            instructor_id=payload.instructor_id,
            price=payload.price,
            frame_capacities=payload.frame_capacities() or None,
            notes=payload.notes,
            now=now,
        )

    try:
        studio_class, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="class.created",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            class_id=studio_class.id,
            status_to=studio_class.status,
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ClassRead.from_db(studio_class=studio_class)


@router.get("/{class_id}/availability", response_model=AvailabilityRead)
async def get_availability(
    class_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityRead:
    try:
        studio_class, snapshot = await class_usecase.get_availability(build_repositories(session), class_id=class_id)
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return AvailabilityRead.from_snapshot(studio_class=studio_class, snapshot=snapshot)


@router.get("/{class_id}/waitlist", response_model=List[WaitlistEntryRead])
async def list_waitlist(
    class_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_staff),
) -> list[WaitlistEntryRead]:
    try:
        entries = await waitlist_usecase.list_waitlist(build_repositories(session), actor, class_id=class_id)
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return [WaitlistEntryRead.from_db(entry=entry) for entry in entries]


@router.post("/{class_id}/complete", response_model=ClassCompletionRead)
async def complete_class(
    class_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_staff),
    clock: Clock = Depends(get_clock),
) -> ClassCompletionRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[StudioClass, list[Reservation]]:
        return await class_usecase.complete_class(repos, actor, class_id=class_id, now=now)

    try:
        (studio_class, completed), _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="class.completed",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            class_id=studio_class.id,
            status_to=studio_class.status,
            extra={"completed_reservations": len(completed)},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ClassCompletionRead(
        studio_class=ClassRead.from_db(studio_class=studio_class),
        completed_reservation_ids=[r.id for r in completed],
    )


@router.post("/{class_id}/cancel", response_model=ClassCancellationRead)
async def cancel_class(
    payload: ClassCancel,
    class_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> ClassCancellationRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> class_usecase.ClassCancellation:
        return await class_usecase.cancel_class(
            repos, actor, class_id=class_id, reason=payload.reason, now=now, outbox=outbox
        )

    try:
        result, outbox = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    try:
        emit_audit_log(
            action="class.cancelled",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            class_id=result.studio_class.id,
            status_to=result.studio_class.status,
            message=payload.reason,
            extra={
                "cancelled_reservations": len(result.reservations),
                "credits_restored": result.credits_restored,
                "waitlist_cleared": result.waitlist_cleared,
            },
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ClassCancellationRead(
        studio_class=ClassRead.from_db(studio_class=result.studio_class),
        cancelled_reservation_ids=[r.id for r in result.reservations],
        credits_restored=result.credits_restored,
        waitlist_cleared=result.waitlist_cleared,
    )


@router.patch("/{class_id}/capacity", response_model=CapacityUpdateRead)
async def update_capacity(
    payload: CapacityUpdate,
    class_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> CapacityUpdateRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[StudioClass, list[Promotion]]:
        return await class_usecase.update_capacity(
            repos, actor, class_id=class_id, capacity=payload.capacity, now=now, outbox=outbox, policy=policy
        )

    try:
        (studio_class, promotions), outbox = await run_atomic(
            session, work, attempts=get_settings().transaction_attempts
        )
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    try:
        emit_audit_log(
            action="class.capacity_changed",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            class_id=studio_class.id,
            status_to=studio_class.status,
            extra={"capacity": studio_class.capacity, "promoted": len(promotions)},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    promoted = [p for p in (PromotionRead.from_promotion(item) for item in promotions) if p is not None]
    return CapacityUpdateRead(studio_class=ClassRead.from_db(studio_class=studio_class), promoted=promoted)
