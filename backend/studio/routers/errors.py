from fastapi import HTTPException, status

from ..domain.errors import (
    AlreadyExistsError,
    CancellationWindowError,
    CapacityExceededError,
    DomainError,
    InsufficientCreditsError,
    InvalidStateTransitionError,
    NotFoundError,
    PackageClassTypeMismatchError,
    UnauthorizedError,
    VersionConflictError,
)

_STATUS_BY_ERROR: dict[type[DomainError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyExistsError: status.HTTP_409_CONFLICT,
    CapacityExceededError: status.HTTP_409_CONFLICT,
    InsufficientCreditsError: status.HTTP_402_PAYMENT_REQUIRED,
    PackageClassTypeMismatchError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CancellationWindowError: status.HTTP_403_FORBIDDEN,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    VersionConflictError: status.HTTP_412_PRECONDITION_FAILED,
}


def to_http_error(exc: DomainError | ValueError) -> HTTPException:
    """Translate a core failure into a response the client can act on."""
    if isinstance(exc, DomainError):
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
            status.HTTP_400_BAD_REQUEST,
        )
        return HTTPException(
            status_code=status_code,
            detail={"code": exc.code, "message": exc.message, **exc.context},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def audit_failed() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
