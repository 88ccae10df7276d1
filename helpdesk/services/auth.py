from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from helpdesk.core.config import Settings, get_settings
from helpdesk.core.errors import (
    AccountInactive,
    Conflict,
    InvalidCredentials,
    InvalidOrExpiredSession,
    ValidationError,
)
from helpdesk.core.logging import log_info, log_warning
from helpdesk.repositories.auth import SessionRepository
from helpdesk.repositories.users import UserRepository
from helpdesk.security.passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password
from helpdesk.security.session import SESSION_TTL, SessionData, secrets_token
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.permissions import Role, normalize_role, permissions_for

PASSWORD_RESET_TTL = timedelta(hours=24)


@dataclass
class AuthenticatedUser:
    id: int
    email: str
    full_name: str
    role: str
    permissions: tuple[str, ...] = ()
    company_id: int | None = None
    session: SessionData | None = field(default=None, repr=False)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def public_profile(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
        }


@dataclass
class LoginResult:
    user: AuthenticatedUser
    session_token: str
    expires_at: datetime


def _to_authenticated(user: dict[str, Any], session: SessionData | None = None) -> AuthenticatedUser:
    role = normalize_role(user.get("role"))
    return AuthenticatedUser(
        id=int(user["id"]),
        email=user["email"],
        full_name=user.get("full_name") or "",
        role=role,
        permissions=permissions_for(role),
        company_id=user.get("company_id"),
        session=session,
    )


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRepository,
        activity: ActivityLogger,
        settings: Settings | None = None,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._activity = activity
        self._settings = settings or get_settings()

    async def authenticate(
        self,
        email: str | None,
        password: str | None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        email = (email or "").strip()
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = await self._users.get_user_by_email(email)
        if not user:
            log_warning("AUTH LOGIN FAIL", email=email, ip=ip_address, reason="unknown_user")
            raise InvalidCredentials()
        if not user.get("is_active"):
            log_warning("AUTH LOGIN FAIL", email=email, ip=ip_address, reason="inactive")
            raise AccountInactive()
        if not verify_password(password, user.get("password_hash")):
            log_warning("AUTH LOGIN FAIL", email=email, ip=ip_address, reason="bad_password")
            raise InvalidCredentials()

        now = datetime.now(timezone.utc)
        await self._users.record_login(int(user["id"]), now)
        token = secrets_token()
        row = await self._sessions.create_session(
            user_id=int(user["id"]),
            session_token=token,
            created_at=now,
            expires_at=now + SESSION_TTL,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session = SessionData.from_row(row)
        authenticated = _to_authenticated(user, session)

        log_info("AUTH LOGIN SUCCESS", email=authenticated.email, ip=ip_address)
        self._activity.record(
            action="login",
            user_id=authenticated.id,
            resource_type="session",
            resource_id=session.id,
            details={"email": authenticated.email},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return LoginResult(user=authenticated, session_token=token, expires_at=session.expires_at)

    async def validate_session(self, token: str | None) -> AuthenticatedUser:
        """Resolve a bearer token to its active owner without extending the session."""
        token = (token or "").strip()
        if not token:
            raise InvalidOrExpiredSession()
        row = await self._sessions.get_session_by_token(token)
        if not row:
            raise InvalidOrExpiredSession()
        session = SessionData.from_row(row)
        if session.is_expired():
            raise InvalidOrExpiredSession()
        user = await self._users.get_user_by_id(session.user_id)
        if not user:
            raise InvalidOrExpiredSession()
        if not user.get("is_active"):
            raise AccountInactive()
        return _to_authenticated(user, session)

    async def logout(self, user: AuthenticatedUser) -> None:
        if user.session is None:
            return
        await self._sessions.delete_session(user.session.session_token)
        self._activity.record(
            action="logout",
            user_id=user.id,
            resource_type="session",
            resource_id=user.session.id,
        )

    async def register(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        phone: str | None = None,
        ip_address: str | None = None,
    ) -> dict[str, Any]:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if not (full_name or "").strip():
            raise ValidationError("Full name is required")
        if await self._users.get_user_by_email(email):
            raise Conflict("An account with this email already exists")
        user = await self._users.create_user(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=Role.CUSTOMER,
            phone=phone,
        )
        self._activity.record(
            action="user_registered",
            user_id=user["id"],
            resource_type="user",
            resource_id=user["id"],
            ip_address=ip_address,
        )
        return user

    async def request_password_reset(self, email: str) -> str | None:
        """Create a reset token when the account exists.

        Callers must answer identically whether or not a token was issued.
        """
        user = await self._users.get_user_by_email(email or "")
        if not user or not user.get("is_active"):
            log_info("Password reset requested for unknown or inactive account")
            return None
        token = secrets_token()
        await self._sessions.create_password_reset(
            token=token,
            user_id=int(user["id"]),
            expires_at=datetime.now(timezone.utc) + PASSWORD_RESET_TTL,
        )
        self._activity.record(
            action="password_reset_requested",
            user_id=int(user["id"]),
            resource_type="user",
            resource_id=user["id"],
        )
        return token

    async def reset_password(self, token: str, new_password: str) -> None:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        reset = await self._sessions.get_password_reset((token or "").strip())
        if (
            not reset
            or reset["used"]
            or reset["expires_at"] is None
            or reset["expires_at"] <= datetime.now(timezone.utc)
        ):
            raise ValidationError("Invalid or expired reset token")
        user_id = int(reset["user_id"])
        await self._users.set_password(user_id, hash_password(new_password))
        await self._sessions.mark_password_reset_used(reset["token"])
        await self._sessions.delete_sessions_for_user(user_id)
        self._activity.record(
            action="password_reset",
            user_id=user_id,
            resource_type="user",
            resource_id=user_id,
        )
