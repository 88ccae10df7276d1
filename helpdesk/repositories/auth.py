from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from helpdesk.core.database import Database, coerce_datetime


def _normalise_reset(row: dict[str, Any] | None) -> Optional[dict[str, Any]]:
    if not row:
        return None
    return {
        **row,
        "used": bool(row.get("used")),
        "expires_at": coerce_datetime(row.get("expires_at")),
        "created_at": coerce_datetime(row.get("created_at")),
    }


class SessionRepository:
    """Session store plus the single-use password reset tokens."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_session(
        self,
        *,
        user_id: int,
        session_token: str,
        created_at: datetime,
        expires_at: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> dict[str, Any]:
        row = await self._db.fetch_one(
            """
            INSERT INTO sessions (
                user_id,
                session_token,
                expires_at,
                created_at,
                ip_address,
                user_agent
            ) VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (user_id, session_token, expires_at, created_at, ip_address, user_agent),
        )
        return row

    async def get_session_by_token(self, token: str) -> Optional[dict[str, Any]]:
        return await self._db.fetch_one(
            "SELECT * FROM sessions WHERE session_token = %s", (token,)
        )

    async def delete_session(self, token: str) -> bool:
        deleted = await self._db.execute(
            "DELETE FROM sessions WHERE session_token = %s", (token,)
        )
        return deleted > 0

    async def delete_sessions_for_user(self, user_id: int) -> int:
        return await self._db.execute("DELETE FROM sessions WHERE user_id = %s", (user_id,))

    async def purge_expired_sessions(self, now: datetime | None = None) -> int:
        cutoff = now or datetime.now(timezone.utc)
        return await self._db.execute("DELETE FROM sessions WHERE expires_at <= %s", (cutoff,))

    async def create_password_reset(
        self,
        *,
        token: str,
        user_id: int,
        expires_at: datetime,
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO password_resets (token, user_id, expires_at, used, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (token, user_id, expires_at, False, datetime.now(timezone.utc)),
        )

    async def get_password_reset(self, token: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            "SELECT * FROM password_resets WHERE token = %s", (token,)
        )
        return _normalise_reset(row)

    async def mark_password_reset_used(self, token: str) -> None:
        await self._db.execute(
            "UPDATE password_resets SET used = %s WHERE token = %s", (True, token)
        )
