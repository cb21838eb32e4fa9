from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for business-rule failures.

    `code` is a stable machine-readable identifier; `context` carries the
    numbers a caller needs to explain the rejection (hours left, capacity, ...).
    """

    code = "domain_error"

    def __init__(self, message: str, *, code: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context: dict[str, Any] = context


class NotFoundError(DomainError):
    code = "not_found"


class AlreadyExistsError(DomainError):
    code = "already_exists"


class CapacityExceededError(DomainError):
    code = "capacity_exceeded"


class InsufficientCreditsError(DomainError):
    code = "insufficient_credits"


class PackageClassTypeMismatchError(DomainError):
    code = "package_class_type_mismatch"


class CancellationWindowError(DomainError):
    code = "cancellation_window_violation"


class InvalidStateTransitionError(DomainError):
    code = "invalid_state_transition"


class UnauthorizedError(DomainError):
    code = "unauthorized"


class VersionConflictError(DomainError):
    code = "version_conflict"
