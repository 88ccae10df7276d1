from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from helpdesk.core.database import Database, coerce_datetime


def _serialise(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _deserialise(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return value


def _normalise(row: dict[str, Any]) -> dict[str, Any]:
    return {
        **row,
        "details": _deserialise(row.get("details")),
        "created_at": coerce_datetime(row.get("created_at")),
    }


class ActivityLogRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_entry(
        self,
        *,
        user_id: int | None,
        action: str,
        resource_type: str | None = None,
        resource_id: Any = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        created_at: datetime | None = None,
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO activity_log (user_id, action, resource_type, resource_id, details, ip_address, user_agent, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                user_id,
                action,
                resource_type,
                str(resource_id) if resource_id is not None else None,
                _serialise(details or {}),
                ip_address,
                user_agent,
                created_at or datetime.now(timezone.utc),
            ),
        )

    async def list_entries(
        self,
        *,
        user_id: int | None = None,
        resource_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("al.user_id = %s")
            params.append(user_id)
        if resource_type:
            clauses.append("al.resource_type = %s")
            params.append(resource_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = await self._db.fetch_all(
            f"""
            SELECT al.*, u.email AS user_email
            FROM activity_log AS al
            LEFT JOIN users AS u ON u.id = al.user_id
            {where}
            ORDER BY al.created_at DESC, al.id DESC
            LIMIT %s
            """,
            tuple(params),
        )
        return [_normalise(row) for row in rows]
