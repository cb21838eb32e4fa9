import pytest
from conftest import NOW, FakeStore
from studio.domain.actors import Actor
from studio.domain.errors import AlreadyExistsError, CapacityExceededError, UnauthorizedError
from studio.domain.repositories import Repositories
from studio.models import ClassStatus, PackageStatus, PaymentStatus, UserRole
from studio.notifications import NotificationKind, Outbox
from studio.usecases import waitlist as uc

ADMIN = Actor(user_id=99, role=UserRole.ADMIN)
INSTRUCTOR = Actor(user_id=98, role=UserRole.INSTRUCTOR)


def student(user_id: int) -> Actor:
    return Actor(user_id=user_id, role=UserRole.STUDENT)


async def fill_queue(repos: Repositories, class_id: int, users: list[int]) -> None:
    for user_id in users:
        await uc.join_waitlist(repos, student(user_id), class_id=class_id, user_id=user_id, now=NOW)


@pytest.mark.asyncio
async def test_join_appends_with_dense_priorities(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2, 3])
    assert store.waitlist_users(studio_class.id) == [1, 2, 3]
    assert store.priorities(studio_class.id) == [1, 2, 3]


@pytest.mark.asyncio
async def test_admin_can_insert_at_front(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2])

    entry = await uc.join_waitlist(repos, ADMIN, class_id=studio_class.id, user_id=7, now=NOW, priority=1)

    assert entry.priority == 1
    assert store.waitlist_users(studio_class.id) == [7, 1, 2]
    assert store.priorities(studio_class.id) == [1, 2, 3]


@pytest.mark.asyncio
async def test_requested_priority_past_the_end_is_clamped(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1])
    entry = await uc.join_waitlist(repos, ADMIN, class_id=studio_class.id, user_id=7, now=NOW, priority=9)
    assert entry.priority == 2


@pytest.mark.asyncio
async def test_students_cannot_pick_priority(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    with pytest.raises(UnauthorizedError):
        await uc.join_waitlist(repos, student(1), class_id=studio_class.id, user_id=1, now=NOW, priority=1)


@pytest.mark.asyncio
async def test_join_rejects_duplicates(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    store.add_reservation(user_id=5, studio_class=studio_class)
    await fill_queue(repos, studio_class.id, [1])

    with pytest.raises(AlreadyExistsError):
        await uc.join_waitlist(repos, student(1), class_id=studio_class.id, user_id=1, now=NOW)
    with pytest.raises(AlreadyExistsError):
        await uc.join_waitlist(repos, student(5), class_id=studio_class.id, user_id=5, now=NOW)


@pytest.mark.asyncio
async def test_remove_closes_gap(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2, 3, 4])
    middle = next(e for e in store.waitlist.values() if e.user_id == 2)

    await uc.remove_waitlist_entry(repos, student(2), entry_id=middle.id)

    assert store.waitlist_users(studio_class.id) == [1, 3, 4]
    assert store.priorities(studio_class.id) == [1, 2, 3]


@pytest.mark.asyncio
async def test_remove_someone_elses_entry_is_rejected(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    entry = store.add_waitlist(user_id=1, studio_class=studio_class, priority=1)
    with pytest.raises(UnauthorizedError):
        await uc.remove_waitlist_entry(repos, student(2), entry_id=entry.id)
    await uc.remove_waitlist_entry(repos, INSTRUCTOR, entry_id=entry.id)
    assert store.waitlist == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "moved_user,new_priority,expected",
    [
        (4, 1, [4, 1, 2, 3]),
        (1, 3, [2, 3, 1, 4]),
        (2, 2, [1, 2, 3, 4]),
    ],
)
async def test_reorder_keeps_priorities_dense(
    store: FakeStore, repos: Repositories, moved_user: int, new_priority: int, expected: list[int]
) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2, 3, 4])
    entry = next(e for e in store.waitlist.values() if e.user_id == moved_user)

    await uc.reorder_waitlist_entry(repos, ADMIN, entry_id=entry.id, new_priority=new_priority)

    assert store.waitlist_users(studio_class.id) == expected
    assert store.priorities(studio_class.id) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_reorder_out_of_range(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2])
    entry = next(iter(store.waitlist.values()))
    with pytest.raises(ValueError):
        await uc.reorder_waitlist_entry(repos, ADMIN, entry_id=entry.id, new_priority=3)
    with pytest.raises(UnauthorizedError):
        await uc.reorder_waitlist_entry(repos, INSTRUCTOR, entry_id=entry.id, new_priority=2)


@pytest.mark.asyncio
async def test_admin_promotion_skips_queue_order(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=2)
    store.add_reservation(user_id=5, studio_class=studio_class)
    store.add_waitlist(user_id=1, studio_class=studio_class, priority=1)
    chosen = store.add_waitlist(user_id=2, studio_class=studio_class, priority=2)
    outbox = Outbox()

    promotion = await uc.promote_waitlist_entry(repos, ADMIN, entry_id=chosen.id, now=NOW, outbox=outbox)

    assert promotion.user_id == 2
    assert promotion.funded_by_package is False
    assert promotion.reservation.payment_deadline is not None
    assert studio_class.status == ClassStatus.FULL
    assert store.waitlist_users(studio_class.id) == [1]
    assert [m.kind for m in outbox.messages] == [NotificationKind.WAITLIST_PROMOTED]
    pending = [p for p in store.payments.values() if p.reservation_id == promotion.reservation.id]
    assert [p.status for p in pending] == [PaymentStatus.PENDING]


@pytest.mark.asyncio
async def test_admin_promotion_needs_a_free_seat(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    store.add_reservation(user_id=5, studio_class=studio_class)
    entry = store.add_waitlist(user_id=1, studio_class=studio_class, priority=1)
    with pytest.raises(CapacityExceededError):
        await uc.promote_waitlist_entry(repos, ADMIN, entry_id=entry.id, now=NOW, outbox=Outbox())
    assert store.waitlist_users(studio_class.id) == [1]


@pytest.mark.asyncio
async def test_unusable_entry_package_falls_back_to_pay_later(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1)
    package = store.add_package(user_id=1, used=4, total=4, status=PackageStatus.USED_UP)
    store.add_waitlist(user_id=1, studio_class=studio_class, priority=1, package=package)

    promotion = await uc.promote_next(repos, studio_class, now=NOW, outbox=Outbox())

    assert promotion is not None
    assert promotion.funded_by_package is False
    assert promotion.reservation.package_id is None
    assert package.used_credits == 4


@pytest.mark.asyncio
async def test_promote_next_drops_entries_of_users_already_booked(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=3)
    store.add_reservation(user_id=1, studio_class=studio_class)
    store.add_waitlist(user_id=1, studio_class=studio_class, priority=1)
    store.add_waitlist(user_id=2, studio_class=studio_class, priority=2)

    promotion = await uc.promote_next(repos, studio_class, now=NOW, outbox=Outbox())

    assert promotion is not None and promotion.user_id == 2
    assert store.waitlist == {}


@pytest.mark.asyncio
async def test_promote_until_full_stops_at_capacity(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=2)
    await fill_queue(repos, studio_class.id, [1, 2, 3])

    promotions = await uc.promote_until_full(repos, studio_class, now=NOW, outbox=Outbox())

    assert [p.user_id for p in promotions] == [1, 2]
    assert store.waitlist_users(studio_class.id) == [3]
    assert store.priorities(studio_class.id) == [1]


@pytest.mark.asyncio
async def test_list_waitlist_is_staff_only(store: FakeStore, repos: Repositories) -> None:
    studio_class = store.add_class(capacity=1, status=ClassStatus.FULL)
    await fill_queue(repos, studio_class.id, [1, 2])
    with pytest.raises(UnauthorizedError):
        await uc.list_waitlist(repos, student(1), class_id=studio_class.id)
    entries = await uc.list_waitlist(repos, INSTRUCTOR, class_id=studio_class.id)
    assert [e.user_id for e in entries] == [1, 2]
