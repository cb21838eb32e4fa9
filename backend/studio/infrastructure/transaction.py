from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import Repositories
from ..notifications import Outbox
from .repositories import build_repositories

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[Repositories, Outbox], Awaitable[T]]

# MySQL lock wait timeout / deadlock, SQLSTATE serialization failure / deadlock
_RETRYABLE_MYSQL_CODES = frozenset({1205, 1213})
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_retryable(exc: OperationalError) -> bool:
    orig = exc.orig
    if orig is None:
        return False
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    args = getattr(orig, "args", ())
    return bool(args) and args[0] in _RETRYABLE_MYSQL_CODES


async def run_atomic(
    session: AsyncSession,
    work: Work[T],
    *,
    attempts: int = 3,
    repositories: Callable[[AsyncSession], Repositories] = build_repositories,
) -> tuple[T, Outbox]:
    """Run `work` in one transaction, retrying lock conflicts a bounded number of times.

    Each attempt gets a fresh outbox, so messages queued by a rolled back
    attempt are never sent. The caller flushes the returned outbox.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        outbox = Outbox()
        try:
            async with session.begin():
                result = await work(repositories(session), outbox)
            return result, outbox
        except OperationalError as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            logger.warning("transaction conflict, retrying (attempt %d/%d): %s", attempt, attempts, exc.orig)
    raise AssertionError("unreachable")
