from __future__ import annotations

import secrets
from typing import Any

from helpdesk.core.config import Settings, get_settings
from helpdesk.core.errors import Conflict, Forbidden, NotFound, ValidationError
from helpdesk.core.logging import log_info, log_warning
from helpdesk.repositories.auth import SessionRepository
from helpdesk.repositories.companies import CompanyRepository
from helpdesk.repositories.users import UserRepository
from helpdesk.security.passwords import MIN_PASSWORD_LENGTH, hash_password
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.permissions import Role, parse_role


_NULLABLE_FIELDS = frozenset({"company_id", "department", "job_title", "phone"})


def _require_role(value: Any) -> Role:
    role = parse_role(value)
    if role is None:
        raise ValidationError(
            "Invalid role",
            details={"allowed": [member.value for member in Role]},
        )
    return role


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """Strip credential material from a user row."""
    return {key: value for key, value in user.items() if key != "password_hash"}


class UserService:
    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRepository,
        companies: CompanyRepository,
        activity: ActivityLogger,
        settings: Settings | None = None,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._companies = companies
        self._activity = activity
        self._settings = settings or get_settings()

    async def list_users(
        self,
        *,
        role: str | None = None,
        is_active: bool | None = None,
        company_id: int | None = None,
    ) -> list[dict[str, Any]]:
        role_filter = _require_role(role) if role else None
        rows = await self._users.list_users(
            role=role_filter, is_active=is_active, company_id=company_id
        )
        return [public_user(row) for row in rows]

    async def get_user(self, user_id: int) -> dict[str, Any]:
        user = await self._users.get_user_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        return public_user(user)

    async def _check_company(self, company_id: int | None) -> None:
        if company_id is None:
            return
        if not await self._companies.get_company_by_id(company_id):
            raise ValidationError("Company not found")

    async def create_user(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        role: Any,
        is_active: bool = True,
        company_id: int | None = None,
        department: str | None = None,
        job_title: str | None = None,
        phone: str | None = None,
        actor: AuthenticatedUser | None = None,
    ) -> dict[str, Any]:
        resolved_role = _require_role(role)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if not (full_name or "").strip():
            raise ValidationError("Full name is required")
        if await self._users.get_user_by_email(email):
            raise Conflict("An account with this email already exists")
        await self._check_company(company_id)
        user = await self._users.create_user(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=resolved_role,
            is_active=is_active,
            company_id=company_id,
            department=department,
            job_title=job_title,
            phone=phone,
        )
        self._activity.record(
            action="user_created",
            user_id=actor.id if actor else None,
            resource_type="user",
            resource_id=user["id"],
            details={"email": user["email"], "role": user["role"]},
        )
        return public_user(user)

    async def _ensure_admin_remains(self, user: dict[str, Any]) -> None:
        if user.get("role") != Role.ADMIN.value or not user.get("is_active"):
            return
        if await self._users.count_admins(active_only=True) <= 1:
            raise Conflict("Cannot remove the last remaining admin user")

    async def update_user(
        self,
        user_id: int,
        changes: dict[str, Any],
        *,
        actor: AuthenticatedUser | None = None,
    ) -> dict[str, Any]:
        user = await self._users.get_user_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        updates = {
            key: value
            for key, value in changes.items()
            if value is not None or key in _NULLABLE_FIELDS
        }
        if "role" in updates:
            updates["role"] = _require_role(updates["role"]).value
            if updates["role"] != Role.ADMIN.value:
                await self._ensure_admin_remains(user)
        if updates.get("is_active") is False and user.get("is_active"):
            await self._ensure_admin_remains(user)
        if "email" in updates:
            existing = await self._users.get_user_by_email(updates["email"])
            if existing and int(existing["id"]) != user_id:
                raise Conflict("An account with this email already exists")
        if "full_name" in updates and not (updates["full_name"] or "").strip():
            raise ValidationError("Full name is required")
        if "company_id" in updates:
            await self._check_company(updates["company_id"])
        updated = await self._users.update_user(user_id, **updates)
        if updates.get("is_active") is False:
            await self._sessions.delete_sessions_for_user(user_id)
        self._activity.record(
            action="user_updated",
            user_id=actor.id if actor else None,
            resource_type="user",
            resource_id=user_id,
            details={"fields": sorted(updates)},
        )
        return public_user(updated)

    async def delete_user(self, user_id: int, *, actor: AuthenticatedUser) -> dict[str, Any]:
        user = await self._users.get_user_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        await self._ensure_admin_remains(user)
        if actor.id == user_id:
            raise Forbidden("You cannot delete your own account")
        try:
            await self._sessions.delete_sessions_for_user(user_id)
        except Exception as exc:
            log_warning("Failed to remove sessions for deleted user", user_id=user_id, error=str(exc))
        await self._users.delete_user(user_id)
        self._activity.record(
            action="user_deleted",
            user_id=actor.id,
            resource_type="user",
            resource_id=user_id,
            details={"email": user["email"], "role": user["role"]},
        )
        return public_user(user)

    async def create_initial_admin(
        self,
        *,
        setup_key: str | None,
        email: str,
        password: str,
        full_name: str,
    ) -> dict[str, Any]:
        configured = self._settings.admin_setup_key
        expected = configured.get_secret_value() if configured else ""
        if not expected or not secrets.compare_digest(expected, setup_key or ""):
            log_warning("Rejected admin bootstrap attempt")
            raise Forbidden("Invalid setup key")
        if await self._users.count_admins(active_only=False) > 0:
            raise Conflict("An admin user already exists")
        user = await self.create_user(
            email=email,
            password=password,
            full_name=full_name,
            role=Role.ADMIN,
        )
        log_info("Initial admin account created", user_id=user["id"])
        return user
