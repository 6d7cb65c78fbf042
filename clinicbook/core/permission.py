# clinicbook/core/permission.py
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from clinicbook.core.errors import AuthorizationError
from clinicbook.modules.users.models import UserRole


@dataclass(frozen=True)
class CallerContext:
    """Identity already resolved by the auth layer: who is calling and as what."""

    role: UserRole
    subject_id: UUID

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


def ensure_subject(caller: CallerContext, owner_id: UUID, *, allow_admin: bool = True) -> None:
    """
    Object-level check: the caller must be the resource owner (or an admin).
    """
    if allow_admin and caller.is_admin:
        return
    if caller.subject_id != owner_id:
        raise AuthorizationError("caller does not own this resource", code="not_owner")
