from __future__ import annotations

from enum import Enum
from typing import Any


class Role(str, Enum):
    ADMIN = "admin"
    AGENT = "agent"
    CUSTOMER = "customer"


ADMIN_ACCESS = "admin_access"
TICKET_MANAGEMENT = "ticket_management"
USER_MANAGEMENT = "user_management"
SETTINGS_ACCESS = "settings_access"
CUSTOMER_ACCESS = "customer_access"

_ROLE_PERMISSIONS: dict[Role, tuple[str, ...]] = {
    Role.ADMIN: (ADMIN_ACCESS, TICKET_MANAGEMENT, USER_MANAGEMENT, SETTINGS_ACCESS),
    Role.AGENT: (TICKET_MANAGEMENT, SETTINGS_ACCESS),
    Role.CUSTOMER: (CUSTOMER_ACCESS, SETTINGS_ACCESS),
}


def normalize_role(value: Any) -> str:
    """Trim and lower-case a stored role string. Idempotent."""
    if value is None:
        return ""
    if isinstance(value, Role):
        return value.value
    return str(value).strip().lower()


def parse_role(value: Any) -> Role | None:
    """Return the :class:`Role` for ``value`` or ``None`` when unrecognised."""
    try:
        return Role(normalize_role(value))
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> tuple[str, ...]:
    """Resolve the ordered capability tags granted to ``role``.

    Unknown roles resolve to no capabilities; callers treat an empty result as
    fully unauthorised.
    """
    resolved = role if isinstance(role, Role) else parse_role(role)
    if resolved is None:
        return ()
    return _ROLE_PERMISSIONS[resolved]
