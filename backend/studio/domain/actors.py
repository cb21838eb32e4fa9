from __future__ import annotations

from dataclasses import dataclass

from ..models import UserRole
from .errors import UnauthorizedError


@dataclass(frozen=True)
class Actor:
    """Already-authenticated caller. `role` is None for background jobs."""

    user_id: int | None
    role: UserRole | None

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=None)

    @property
    def is_system(self) -> bool:
        return self.role is None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.INSTRUCTOR)

    @property
    def initiator(self) -> str:
        if self.is_system:
            return "system"
        if self.is_staff:
            return "staff"
        return "user"


def ensure_owner_or_staff(actor: Actor, owner_id: int, *, entity: str) -> None:
    if actor.is_system or actor.is_staff:
        return
    if actor.user_id != owner_id:
        raise UnauthorizedError(f"{entity} belongs to another user", entity=entity)


def ensure_staff(actor: Actor, *, action: str) -> None:
    if not (actor.is_system or actor.is_staff):
        raise UnauthorizedError(f"only staff can {action}", action=action)


def ensure_admin(actor: Actor, *, action: str) -> None:
    if not (actor.is_system or actor.is_admin):
        raise UnauthorizedError(f"only administrators can {action}", action=action)
