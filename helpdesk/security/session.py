from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from fastapi import Request

from helpdesk.core.database import coerce_datetime

SESSION_TTL = timedelta(hours=24)


@dataclass
class SessionData:
    id: int
    user_id: int
    session_token: str
    created_at: datetime
    expires_at: datetime
    ip_address: str | None
    user_agent: str | None

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return self.expires_at <= current

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SessionData":
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            session_token=str(row["session_token"]),
            created_at=coerce_datetime(row.get("created_at")) or datetime.now(timezone.utc),
            expires_at=coerce_datetime(row["expires_at"]),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
        )


def secrets_token() -> str:
    """Return an opaque token with 256 bits of entropy."""
    return secrets.token_hex(32)


def client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def client_user_agent(request: Request | None) -> str | None:
    if request is None:
        return None
    return request.headers.get("user-agent")


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
