from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_clock, get_session, require_admin
from ..domain.actors import Actor
from ..domain.errors import DomainError
from ..domain.repositories import Repositories
from ..infrastructure.repositories import build_repositories
from ..infrastructure.transaction import run_atomic
from ..models import RecurringClassPattern, StudioClass
from ..notifications import Outbox
from ..schemas import (
    ClassRead,
    GenerateClasses,
    PatternCreate,
    PatternCreateRead,
    PatternDeletionRead,
    PatternDetailRead,
    PatternRead,
    PatternUpdate,
)
from ..usecases import patterns as pattern_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import Clock, to_utc_naive
from .errors import audit_failed, to_http_error

router = APIRouter(prefix="/patterns", tags=["patterns"], dependencies=[Depends(require_admin)])


@router.get("", response_model=List[PatternRead])
async def list_patterns(
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
) -> list[PatternRead]:
    try:
        patterns = await pattern_usecase.list_patterns(build_repositories(session), actor)
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return [PatternRead.from_db(pattern=pattern) for pattern in patterns]


@router.post("", response_model=PatternCreateRead, status_code=status.HTTP_201_CREATED)
async def create_pattern(
    payload: PatternCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> PatternCreateRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> tuple[RecurringClassPattern, list[StudioClass]]:
        pattern = await pattern_usecase.create_pattern(
            repos,
            actor,
            name=payload.name,
            class_type_id=payload.class_type_id,
            location_id=payload.location_id,
            day_of_week=payload.day_of_week,
            start_time=payload.start_time,
            valid_from=payload.valid_from,
            instructor_id=payload.instructor_id,
            duration_minutes=payload.duration_minutes,
            capacity=payload.capacity,
            price=payload.price,
            valid_until=payload.valid_until,
            is_active=payload.is_active,
        )
        generated: list[StudioClass] = []
        if payload.generate_weeks and pattern.is_active:
            generated = await pattern_usecase.generate_classes(
                repos,
                actor,
                pattern_id=pattern.id,
                weeks_ahead=payload.generate_weeks,
                start_from=now,
                skip_holidays=payload.skip_holidays,
            )
        return pattern, generated

    try:
        (pattern, generated), _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="pattern.created",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={"pattern_id": pattern.id, "generated": len(generated)},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PatternCreateRead(
        pattern=PatternRead.from_db(pattern=pattern),
        generated=[ClassRead.from_db(studio_class=studio_class) for studio_class in generated],
    )


@router.get("/{pattern_id}", response_model=PatternDetailRead)
async def get_pattern(
    pattern_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> PatternDetailRead:
    try:
        detail = await pattern_usecase.get_pattern(
            build_repositories(session), actor, pattern_id=pattern_id, now=clock.now()
        )
    except DomainError as exc:
        raise to_http_error(exc) from exc
    return PatternDetailRead.from_detail(detail)


@router.patch("/{pattern_id}", response_model=PatternRead)
async def update_pattern(
    payload: PatternUpdate,
    pattern_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> PatternRead:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no fields to update")
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> RecurringClassPattern:
        return await pattern_usecase.update_pattern(repos, actor, pattern_id=pattern_id, changes=changes, now=now)

    try:
        pattern, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="pattern.updated",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={"pattern_id": pattern_id, "fields": sorted(changes)},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PatternRead.from_db(pattern=pattern)


@router.delete("/{pattern_id}", response_model=PatternDeletionRead)
async def delete_pattern(
    pattern_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> PatternDeletionRead:
    now = clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> pattern_usecase.PatternDeletion:
        return await pattern_usecase.delete_pattern(repos, actor, pattern_id=pattern_id, now=now)

    try:
        deletion, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="pattern.deleted",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={
                "pattern_id": pattern_id,
                "deleted_classes": len(deletion.deleted_class_ids),
                "detached_classes": len(deletion.detached_class_ids),
            },
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return PatternDeletionRead(
        pattern_id=pattern_id,
        deleted_class_ids=deletion.deleted_class_ids,
        detached_class_ids=deletion.detached_class_ids,
    )


@router.post("/{pattern_id}/generate", response_model=List[ClassRead], status_code=status.HTTP_201_CREATED)
async def generate_classes(
    payload: GenerateClasses,
    pattern_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_admin),
    clock: Clock = Depends(get_clock),
) -> list[ClassRead]:
    if payload.start_from is not None and payload.start_from.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_from must have timezone")
    start_from = to_utc_naive(payload.start_from) if payload.start_from is not None else clock.now()

    async def work(repos: Repositories, outbox: Outbox) -> list[StudioClass]:
        return await pattern_usecase.generate_classes(
            repos,
            actor,
            pattern_id=pattern_id,
            weeks_ahead=payload.weeks_ahead,
            skip_holidays=payload.skip_holidays,
            start_from=start_from,
        )

    try:
        created, _ = await run_atomic(session, work, attempts=get_settings().transaction_attempts)
    except (DomainError, ValueError) as exc:
        raise to_http_error(exc) from exc

    try:
        emit_audit_log(
            action="classes.generated",
            initiator=actor.initiator,
            actor_id=actor.user_id,
            extra={"pattern_id": pattern_id, "created": len(created), "weeks_ahead": payload.weeks_ahead},
        )
    except RuntimeError as exc:
        raise audit_failed() from exc
    return [ClassRead.from_db(studio_class=studio_class) for studio_class in created]
