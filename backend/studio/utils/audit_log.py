from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.booked",
    "reservation.cancelled",
    "reservation.rescheduled",
    "reservation.autocancelled",
    "reservation.payment_reminded",
    "reservation.checked_in",
    "reservation.no_show",
    "waitlist.joined",
    "waitlist.removed",
    "waitlist.reordered",
    "waitlist.promoted",
    "class.created",
    "class.completed",
    "class.cancelled",
    "class.capacity_changed",
    "classes.generated",
    "pattern.created",
    "pattern.updated",
    "pattern.deleted",
    "holiday.created",
    "holiday.deleted",
    "package.created",
    "package.expired",
    "payment.completed",
]
AuditInitiator = Literal["user", "staff", "system"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _enum_to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    actor_id: Optional[int] = None,
    user_id: Optional[int] = None,
    class_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    package_id: Optional[int] = None,
    status_from: Any = None,
    status_to: Any = None,
    version: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Write one JSON line to the `audit` logger. Raises RuntimeError if that fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "actor_id": actor_id,
        "user_id": user_id,
        "class_id": class_id,
        "reservation_id": reservation_id,
        "package_id": package_id,
        "status_from": _enum_to_str(status_from),
        "status_to": _enum_to_str(status_to),
        "version": version,
        "message": message,
    }
    if extra:
        payload.update(extra)

    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True, default=str))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
