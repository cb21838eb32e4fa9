import hmac
import logging
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import booking_policy, get_settings
from .database import session_factory
from .domain.actors import Actor
from .domain.policy import BookingPolicy
from .models import User, UserRole
from .notifications import LoggingNotifier, Notifier, WebhookNotifier
from .utils.auth import bearer_token, decode_access_token
from .utils.time import Clock, SystemClock

logger = logging.getLogger(__name__)

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return session_factory


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER_CHALLENGE)


async def get_current_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    token = bearer_token(authorization)
    if token is None:
        raise _unauthorized("bearer token required")
    settings = get_settings()
    try:
        claims = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid token") from exc

    try:
        role = await session.scalar(select(User.role).where(User.id == claims.user_id, User.is_active.is_(True)))
    except ProgrammingError as exc:
        logger.exception("user lookup failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user store unavailable") from exc
    finally:
        # close the implicit transaction so routers can open their own
        await session.rollback()
    if role is None:
        raise _unauthorized("unknown user")
    return Actor(user_id=claims.user_id, role=UserRole(role))


async def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff only")
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="administrators only")
    return actor


async def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    secret = get_settings().cron_secret
    if secret is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="cron is not configured")
    token = bearer_token(authorization)
    if token is None or not hmac.compare_digest(token, secret):
        raise _unauthorized("invalid cron secret")


def get_clock() -> Clock:
    return SystemClock()


def get_policy() -> BookingPolicy:
    return booking_policy(get_settings())


def get_notifier() -> Notifier:
    url = get_settings().notification_webhook_url
    if url:
        return WebhookNotifier(url)
    return LoggingNotifier()
