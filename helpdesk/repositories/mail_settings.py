from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from helpdesk.core.database import Database, coerce_datetime


class MailSettingsRepository:
    """Single-row store for the monitored mailbox configuration."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_settings(self) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            "SELECT * FROM mail_settings ORDER BY id DESC LIMIT 1"
        )
        if not row:
            return None
        return {
            **row,
            "created_at": coerce_datetime(row.get("created_at")),
            "updated_at": coerce_datetime(row.get("updated_at")),
        }

    async def save_settings(
        self,
        *,
        mail_address: str,
        app_password_encrypted: str | None,
        refresh_interval: int,
        default_status: str,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        existing = await self.get_settings()
        if existing:
            encrypted = app_password_encrypted or existing.get("app_password_encrypted")
            await self._db.execute(
                """
                UPDATE mail_settings
                SET mail_address = %s,
                    app_password_encrypted = %s,
                    refresh_interval = %s,
                    default_status = %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (
                    mail_address,
                    encrypted,
                    refresh_interval,
                    default_status,
                    now,
                    existing["id"],
                ),
            )
        else:
            await self._db.execute(
                """
                INSERT INTO mail_settings (
                    mail_address, app_password_encrypted, refresh_interval, default_status, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (mail_address, app_password_encrypted, refresh_interval, default_status, now, now),
            )
        return await self.get_settings()
