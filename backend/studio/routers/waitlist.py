from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_current_actor, get_notifier, get_policy, get_session, require_admin
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.policy import BookingPolicy
from ..domain.repositories import Repositories
from ..infrastructure.transaction import run_atomic
from ..models import WaitlistEntry
from ..notifications import Notifier, Outbox
from ..schemas import PromotionRead, WaitlistEntryRead, WaitlistJoin, WaitlistPromote, WaitlistReorder
from ..usecases import waitlist as waitlist_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="/waitlist", tags=["waitlist"], dependencies=[Depends(get_current_actor)])


@router.post("", response_model=WaitlistEntryRead, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    payload: WaitlistJoin,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
) -> WaitlistEntryRead:
    user_id = payload.user_id if payload.user_id is not None else actor.user_id
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> WaitlistEntry:
        return await waitlist_usecase.join_waitlist(
            repos,
            actor,
            class_id=payload.class_id,
            user_id=user_id,
            frame_size=payload.frame_size,
            package_id=payload.package_id,
            priority=payload.priority,
            now=now,
        )

    try:
        entry, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="waitlist.joined",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=entry.user_id,
            class_id=entry.class_id,
            extra={"entry_id": entry.id, "priority": entry.priority},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return WaitlistEntryRead.from_db(entry=entry)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_waitlist_entry(
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> None:
    async def work(repos: Repositories, outbox: Outbox) -> WaitlistEntry:
        return await waitlist_usecase.remove_waitlist_entry(repos, actor, entry_id=entry_id)

    try:
        entry, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="waitlist.removed",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=entry.user_id,
            class_id=entry.class_id,
            extra={"entry_id": entry_id, "priority": entry.priority},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc


@router.patch("/{entry_id}", response_model=WaitlistEntryRead)
async def reorder_waitlist_entry(
    payload: WaitlistReorder,
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> WaitlistEntryRead:
    async def work(repos: Repositories, outbox: Outbox) -> WaitlistEntry:
        return await waitlist_usecase.reorder_waitlist_entry(
            repos, actor, entry_id=entry_id, new_priority=payload.priority
        )

    try:
        entry, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="waitlist.reordered",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=entry.user_id,
            class_id=entry.class_id,
            extra={"entry_id": entry.id, "priority": entry.priority},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return WaitlistEntryRead.from_db(entry=entry)


@router.post("/{entry_id}/promote", response_model=PromotionRead)
async def promote_waitlist_entry(
    payload: WaitlistPromote,
    entry_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> PromotionRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> waitlist_usecase.Promotion:
        return await waitlist_usecase.promote_waitlist_entry(
            repos,
            actor,
            entry_id=entry_id,
            package_id=payload.package_id,
            now=now,
            outbox=outbox,
            policy=policy,
        )

    try:
        promotion, outbox = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    reservation = promotion.reservation
    try:
        emit_audit_log(
            action="waitlist.promoted",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=promotion.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            package_id=reservation.package_id,
            status_to=reservation.status,
            version=reservation.version,
            extra={"entry_id": promotion.entry_id},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PromotionRead(
        entry_id=promotion.entry_id,
        user_id=promotion.user_id,
        reservation_id=reservation.id,
        funded_by_package=promotion.funded_by_package,
    )
