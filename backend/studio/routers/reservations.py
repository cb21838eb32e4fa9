import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_current_actor, get_notifier, get_policy, get_session, require_staff
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.policy import BookingPolicy
from ..domain.repositories import Repositories
from ..infrastructure.repositories import build_repositories
from ..infrastructure.transaction import run_atomic
from ..models import Reservation, StudioClass
from ..notifications import Notifier, Outbox
from ..schemas import (
    CancellationRead,
    PromotionRead,
    ReservationCancel,
    ReservationCreate,
    ReservationRead,
    ReservationReschedule,
    RescheduleRead,
)
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="", tags=["reservations"], dependencies=[Depends(get_current_actor)])

_IF_MATCH = re.compile(r'^(?:W/)?"(\d+)"$')


def _extract_version(if_match: Optional[str], payload: Optional[ReservationCancel | ReservationReschedule]) -> int:
    """If-Match wins over the body; one of them must carry a positive version."""
    if if_match is not None:
        match = _IF_MATCH.match(if_match.strip())
        if match is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        version = int(match.group(1))
    elif payload is not None and payload.version is not None:
        version = payload.version
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version is required")
    if version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
    return version


async def _reservations_for(session: AsyncSession, actor: Actor, *, user_id: int) -> list[ReservationRead]:
    try:
        rows = await reservation_usecase.list_user_reservations(build_repositories(session), actor, user_id=user_id)
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return [ReservationRead.from_db(reservation=res, studio_class=cls) for res, cls in rows]


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def book_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> ReservationRead:
    user_id = payload.user_id if payload.user_id is not None else actor.user_id
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> reservation_usecase.BookingResult:
        return await reservation_usecase.book_reservation(
            repos,
            actor,
            class_id=payload.class_id,
            user_id=user_id,
            package_id=payload.package_id,
            frame_size=payload.frame_size,
            notes=payload.notes,
            now=now,
            outbox=outbox,
            policy=policy,
        )

    try:
        result, outbox = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    reservation = result.reservation
    try:
        emit_audit_log(
            action="reservation.booked",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            package_id=reservation.package_id,
            status_to=reservation.status,
            version=reservation.version,
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ReservationRead.from_db(reservation=reservation, studio_class=result.studio_class)


@router.get("/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ReservationRead]:
    if actor.user_id is None:
        return []
    return await _reservations_for(session, actor, user_id=actor.user_id)


@router.get("/users/{user_id}/reservations", response_model=List[ReservationRead])
async def list_user_reservations(
    user_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ReservationRead]:
    return await _reservations_for(session, actor, user_id=user_id)


@router.get("/reservations/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> ReservationRead:
    try:
        reservation, studio_class = await reservation_usecase.get_user_reservation(
            build_repositories(session), actor, reservation_id=reservation_id
        )
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return ReservationRead.from_db(reservation=reservation, studio_class=studio_class)


@router.post("/reservations/{reservation_id}/cancel", response_model=CancellationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = None,
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> CancellationRead:
    version = _extract_version(if_match, payload)
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> reservation_usecase.CancellationResult:
        return await reservation_usecase.cancel_reservation(
            repos,
            actor,
            reservation_id=reservation_id,
            reason=payload.reason if payload else None,
            version=version,
            now=now,
            outbox=outbox,
            policy=policy,
        )

    try:
        result, outbox = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    reservation = result.reservation
    try:
        emit_audit_log(
            action="reservation.cancelled",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            package_id=reservation.package_id,
            status_from=result.status_from,
            status_to=reservation.status,
            version=reservation.version,
            extra={"credit_restored": result.credit_restored, "hours_before_class": result.hours_before_class},
        )
        if result.promotion is not None:
            emit_audit_log(
                action="waitlist.promoted",
                initiator="system",
                user_id=result.promotion.user_id,
                class_id=reservation.class_id,
                reservation_id=result.promotion.reservation.id,
                status_to=result.promotion.reservation.status,
            )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return CancellationRead(
        reservation=ReservationRead.from_db(reservation=reservation, studio_class=result.studio_class),
        credit_restored=result.credit_restored,
        hours_before_class=result.hours_before_class,
        promoted=PromotionRead.from_promotion(result.promotion),
    )


@router.post("/reservations/{reservation_id}/reschedule", response_model=RescheduleRead)
async def reschedule_reservation(
    payload: ReservationReschedule,
    reservation_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    clock: Clock = Depends(get_clock),
    policy: BookingPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
) -> RescheduleRead:
    version = _extract_version(if_match, payload)
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> reservation_usecase.RescheduleResult:
        return await reservation_usecase.reschedule_reservation(
            repos,
            actor,
            reservation_id=reservation_id,
            target_class_id=payload.class_id,
            version=version,
            now=now,
            outbox=outbox,
            policy=policy,
        )

    try:
        result, outbox = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    await outbox.flush(notifier)
    moved = result.new_reservation
    try:
        emit_audit_log(
            action="reservation.rescheduled",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=moved.user_id,
            class_id=moved.class_id,
            reservation_id=moved.id,
            package_id=moved.package_id,
            status_to=moved.status,
            version=moved.version,
            extra={
                "previous_reservation_id": result.old_reservation.id,
                "previous_class_id": result.source_class.id,
            },
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return RescheduleRead(
        reservation=ReservationRead.from_db(reservation=moved, studio_class=result.target_class),
        previous_reservation_id=result.old_reservation.id,
        previous_class_id=result.source_class.id,
        promoted=PromotionRead.from_promotion(result.promotion),
    )


@router.post("/reservations/{reservation_id}/check-in", response_model=ReservationRead)
async def check_in(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_staff),
    clock: Clock = Depends(get_clock),
) -> ReservationRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[Reservation, StudioClass]:
        return await reservation_usecase.check_in(repos, actor, reservation_id=reservation_id, now=now)

    try:
        (reservation, studio_class), _ = await run_atomic(
            session, work, attempts=get_settings().transaction_attempts
        )
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="reservation.checked_in",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            status_from="confirmed",
            status_to=reservation.status,
            version=reservation.version,
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ReservationRead.from_db(reservation=reservation, studio_class=studio_class)


@router.post("/reservations/{reservation_id}/no-show", response_model=ReservationRead)
async def mark_no_show(
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_staff),
    clock: Clock = Depends(get_clock),
) -> ReservationRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[Reservation, StudioClass]:
        return await reservation_usecase.mark_no_show(repos, actor, reservation_id=reservation_id, now=now)

    try:
        (reservation, studio_class), _ = await run_atomic(
            session, work, attempts=get_settings().transaction_attempts
        )
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="reservation.no_show",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            user_id=reservation.user_id,
            class_id=reservation.class_id,
            reservation_id=reservation.id,
            status_from="confirmed",
            status_to=reservation.status,
            version=reservation.version,
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return ReservationRead.from_db(reservation=reservation, studio_class=studio_class)
