from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..domain import ledger
from ..domain.actors import Actor, ensure_admin, ensure_owner_or_staff, ensure_staff
from ..domain.capacity import ensure_room
from ..domain.errors import AlreadyExistsError, DomainError, NotFoundError
from ..domain.policy import DEFAULT_POLICY, BookingPolicy
from ..domain.repositories import Repositories
from ..domain.transitions import ensure_bookable
from ..domain.waitlist import clamp_priority, insertion_shift, pick_candidate, removal_shift, reorder_shift
from ..models import FrameSize, Package, Reservation, StudioClass, WaitlistEntry
from ..notifications import NotificationKind, Outbox
from .seats import (
    class_for_update,
    current_snapshot,
    ensure_package_matches,
    open_seat,
    package_for_booking,
    refresh_class_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Promotion:
    entry_id: int
    user_id: int
    priority: int
    reservation: Reservation
    funded_by_package: bool


async def _entry_for_update(repos: Repositories, entry_id: int) -> WaitlistEntry:
    entry = await repos.waitlist.get_for_update(entry_id)
    if entry is None:
        raise NotFoundError("waitlist entry not found", entity="waitlist_entry", entry_id=entry_id)
    return entry


async def _drop(repos: Repositories, entry: WaitlistEntry) -> None:
    await repos.waitlist.delete(entry)
    await repos.waitlist.shift(entry.class_id, removal_shift(entry.priority))


async def _package_from_entry(
    repos: Repositories, entry: WaitlistEntry, studio_class: StudioClass, now: datetime
) -> Package | None:
    """The entry's package when it can still pay for this class, else None."""
    if entry.package_id is None:
        return None
    package = await repos.packages.get_for_update(entry.package_id)
    if package is None or package.user_id != entry.user_id:
        return None
    try:
        ensure_package_matches(package, studio_class)
        ledger.ensure_usable(package, now)
    except DomainError as exc:
        logger.info("waitlist entry %s falls back to pay-later: %s", entry.id, exc.message)
        return None
    return package


async def _promote(
    repos: Repositories,
    studio_class: StudioClass,
    entry: WaitlistEntry,
    package: Package | None,
    *,
    now: datetime,
    policy: BookingPolicy,
    outbox: Outbox,
) -> Promotion:
    reservation, _ = await open_seat(
        repos,
        studio_class=studio_class,
        user_id=entry.user_id,
        package=package,
        frame_size=entry.frame_size,
        now=now,
        policy=policy,
        notes="Promoted from waitlist",
    )
    await _drop(repos, entry)
    outbox.add(
        NotificationKind.WAITLIST_PROMOTED,
        user_id=entry.user_id,
        class_id=studio_class.id,
        reservation_id=reservation.id,
        starts_at=studio_class.starts_at.isoformat(),
        payment_deadline=reservation.payment_deadline.isoformat() if reservation.payment_deadline else None,
    )
    return Promotion(
        entry_id=entry.id,
        user_id=entry.user_id,
        priority=entry.priority,
        reservation=reservation,
        funded_by_package=package is not None,
    )


async def promote_next(
    repos: Repositories,
    studio_class: StudioClass,
    *,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy = DEFAULT_POLICY,
    vacated_frame: FrameSize | None = None,
) -> Promotion | None:
    """Fill one free seat from the waitlist. The caller holds the class row lock."""
    while True:
        entries = await repos.waitlist.list_for_class(studio_class.id)
        if not entries:
            return None
        snapshot = await current_snapshot(repos, studio_class)
        if snapshot.available <= 0:
            return None
        entry = pick_candidate(entries, snapshot, vacated_frame)
        if entry is None:
            return None
        if await repos.reservations.find(user_id=entry.user_id, class_id=studio_class.id) is not None:
            logger.warning("dropping waitlist entry %s: user already holds a reservation", entry.id)
            await _drop(repos, entry)
            continue
        package = await _package_from_entry(repos, entry, studio_class, now)
        return await _promote(repos, studio_class, entry, package, now=now, policy=policy, outbox=outbox)


async def promote_until_full(
    repos: Repositories,
    studio_class: StudioClass,
    *,
    now: datetime,
    outbox: Outbox,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> list[Promotion]:
    promotions: list[Promotion] = []
    while (promotion := await promote_next(repos, studio_class, now=now, outbox=outbox, policy=policy)) is not None:
        promotions.append(promotion)
    return promotions


async def join_waitlist(
    repos: Repositories,
    actor: Actor,
    *,
    class_id: int,
    user_id: int,
    now: datetime,
    frame_size: FrameSize | None = None,
    package_id: int | None = None,
    priority: int | None = None,
) -> WaitlistEntry:
    ensure_owner_or_staff(actor, user_id, entity="waitlist entry")
    if priority is not None:
        ensure_admin(actor, action="choose a waitlist priority")
    studio_class = await class_for_update(repos, class_id)
    ensure_bookable(studio_class, now)
    if await repos.reservations.find(user_id=user_id, class_id=class_id) is not None:
        raise AlreadyExistsError("user already has a reservation for this class", class_id=class_id)
    if await repos.waitlist.find(user_id=user_id, class_id=class_id) is not None:
        raise AlreadyExistsError("user is already on the waitlist for this class", class_id=class_id)
    if package_id is not None:
        await package_for_booking(repos, package_id=package_id, user_id=user_id, studio_class=studio_class, now=now)

    size = await repos.waitlist.count(class_id)
    position = clamp_priority(priority, size)
    if position <= size:
        await repos.waitlist.shift(class_id, insertion_shift(position))
    return await repos.waitlist.create(
        user_id=user_id,
        class_id=class_id,
        frame_size=frame_size,
        package_id=package_id,
        priority=position,
    )


async def remove_waitlist_entry(repos: Repositories, actor: Actor, *, entry_id: int) -> WaitlistEntry:
    entry = await _entry_for_update(repos, entry_id)
    ensure_owner_or_staff(actor, entry.user_id, entity="waitlist entry")
    await class_for_update(repos, entry.class_id)
    await _drop(repos, entry)
    return entry


async def reorder_waitlist_entry(
    repos: Repositories,
    actor: Actor,
    *,
    entry_id: int,
    new_priority: int,
) -> WaitlistEntry:
    ensure_admin(actor, action="reorder the waitlist")
    entry = await _entry_for_update(repos, entry_id)
    await class_for_update(repos, entry.class_id)
    size = await repos.waitlist.count(entry.class_id)
    if not 1 <= new_priority <= size:
        raise ValueError(f"priority must be between 1 and {size}")
    shift = reorder_shift(entry.priority, new_priority)
    if shift is None:
        return entry
    await repos.waitlist.shift(entry.class_id, shift, exclude_id=entry.id)
    entry.priority = new_priority
    return await repos.waitlist.save(entry)


async def promote_waitlist_entry(
    repos: Repositories,
    actor: Actor,
    *,
    entry_id: int,
    now: datetime,
    outbox: Outbox,
    package_id: int | None = None,
    policy: BookingPolicy = DEFAULT_POLICY,
) -> Promotion:
    """Admin override: move one specific entry into the class."""
    ensure_admin(actor, action="promote from the waitlist")
    entry = await _entry_for_update(repos, entry_id)
    studio_class = await class_for_update(repos, entry.class_id)
    ensure_bookable(studio_class, now)
    ensure_room(await current_snapshot(repos, studio_class), entry.frame_size)
    if await repos.reservations.find(user_id=entry.user_id, class_id=studio_class.id) is not None:
        raise AlreadyExistsError("user already has a reservation for this class", class_id=studio_class.id)
    if package_id is not None:
        package = await package_for_booking(
            repos, package_id=package_id, user_id=entry.user_id, studio_class=studio_class, now=now
        )
    else:
        package = await _package_from_entry(repos, entry, studio_class, now)
    promotion = await _promote(repos, studio_class, entry, package, now=now, policy=policy, outbox=outbox)
    await refresh_class_status(repos, studio_class, now)
    return promotion


async def discard_entry_for(repos: Repositories, *, user_id: int, class_id: int) -> bool:
    """Drop a user's waitlist entry once they hold a seat in the class."""
    entry = await repos.waitlist.find(user_id=user_id, class_id=class_id)
    if entry is None:
        return False
    await _drop(repos, entry)
    return True


async def list_waitlist(repos: Repositories, actor: Actor, *, class_id: int) -> list[WaitlistEntry]:
    ensure_staff(actor, action="view the waitlist")
    if await repos.classes.get(class_id) is None:
        raise NotFoundError("class not found", entity="class", class_id=class_id)
    return await repos.waitlist.list_for_class(class_id)
