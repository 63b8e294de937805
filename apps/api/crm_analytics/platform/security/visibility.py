from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from crm_analytics.core.auth import AuthUser
from crm_analytics.platform.security.errors import AuthenticationError


class RecordAction(StrEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class VisibilityFilter:
    """Owner predicate applied to every owner-scoped record the caller may see.

    ``owner_id`` of ``None`` means the caller may see every record.
    """

    owner_id: str | None = None

    @property
    def is_unrestricted(self) -> bool:
        return self.owner_id is None


def get_visibility_filter(user: AuthUser, action: RecordAction | str = RecordAction.READ) -> VisibilityFilter:
    if user.is_anonymous or "guest" in user.roles:
        raise AuthenticationError("Not authenticated")

    normalized = {role.lower() for role in user.roles}
    if "admin" in normalized:
        return VisibilityFilter()
    if "manager" in normalized and RecordAction(action) == RecordAction.READ:
        return VisibilityFilter()
    return VisibilityFilter(owner_id=user.sub)
