from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    BOOKING_CONFIRMED = "booking_confirmed"
    RESERVATION_CANCELLED = "reservation_cancelled"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_DEADLINE_EXPIRED = "payment_deadline_expired"
    WAITLIST_PROMOTED = "waitlist_promoted"
    CLASS_CANCELLED = "class_cancelled"
    PACKAGE_EXPIRED = "package_expired"
    PACKAGE_EXPIRING = "package_expiring"


class Notifier(Protocol):
    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        logger.info("notification %s: %s", kind.value, payload)


class WebhookNotifier:
    """Posts each notification as JSON to an external delivery service."""

    def __init__(self, url: str, *, timeout: float = 5.0) -> None:
        self.url = url
        self.timeout = timeout

    async def send(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json={"kind": kind.value, "payload": payload})
            response.raise_for_status()


@dataclass(frozen=True)
class Message:
    kind: NotificationKind
    payload: dict[str, Any]


@dataclass
class Outbox:
    """Notifications collected during a transaction, sent after it commits."""

    messages: list[Message] = field(default_factory=list)

    def add(self, kind: NotificationKind, **payload: Any) -> None:
        self.messages.append(Message(kind=kind, payload=payload))

    async def flush(self, notifier: Notifier) -> tuple[int, int]:
        """Best-effort delivery; returns (sent, failed)."""
        sent = failed = 0
        for message in self.messages:
            try:
                await notifier.send(message.kind, message.payload)
                sent += 1
            except Exception:
                failed += 1
                logger.exception("failed to send %s notification", message.kind.value)
        self.messages.clear()
        return sent, failed
