from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from helpdesk.core.database import Database, coerce_datetime
from helpdesk.services.permissions import Role, normalize_role

_SENTINEL = object()


def normalise_email(email: str) -> str:
    return email.strip().lower()


def _normalise_user(row: dict[str, Any] | None) -> Optional[dict[str, Any]]:
    if not row:
        return None
    return {
        **row,
        "role": normalize_role(row.get("role")),
        "is_active": bool(row.get("is_active")),
        "last_login": coerce_datetime(row.get("last_login")),
        "created_at": coerce_datetime(row.get("created_at")),
        "updated_at": coerce_datetime(row.get("updated_at")),
    }


class UserRepository:
    """Credential store: user rows keyed by id and normalised email."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_user_by_email(self, email: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            "SELECT * FROM users WHERE email = %s",
            (normalise_email(email),),
        )
        return _normalise_user(row)

    async def get_user_by_id(self, user_id: int) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one("SELECT * FROM users WHERE id = %s", (user_id,))
        return _normalise_user(row)

    async def list_users(
        self,
        *,
        role: Role | None = None,
        is_active: bool | None = None,
        company_id: int | None = None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if role is not None:
            clauses.append("role = %s")
            params.append(role.value)
        if is_active is not None:
            clauses.append("is_active = %s")
            params.append(is_active)
        if company_id is not None:
            clauses.append("company_id = %s")
            params.append(company_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._db.fetch_all(
            f"SELECT * FROM users {where} ORDER BY created_at DESC, id DESC",
            tuple(params),
        )
        return [_normalise_user(row) for row in rows]

    async def create_user(
        self,
        *,
        email: str,
        password_hash: str,
        full_name: str,
        role: Role,
        is_active: bool = True,
        company_id: int | None = None,
        department: str | None = None,
        job_title: str | None = None,
        phone: str | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        row = await self._db.fetch_one(
            """
            INSERT INTO users (
                email,
                password_hash,
                full_name,
                role,
                is_active,
                company_id,
                department,
                job_title,
                phone,
                created_at,
                updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                normalise_email(email),
                password_hash,
                full_name.strip(),
                role.value,
                is_active,
                company_id,
                department,
                job_title,
                phone,
                now,
                now,
            ),
        )
        return _normalise_user(row)

    async def update_user(
        self,
        user_id: int,
        *,
        email: Any = _SENTINEL,
        full_name: Any = _SENTINEL,
        role: Any = _SENTINEL,
        is_active: Any = _SENTINEL,
        company_id: Any = _SENTINEL,
        department: Any = _SENTINEL,
        job_title: Any = _SENTINEL,
        phone: Any = _SENTINEL,
    ) -> Optional[dict[str, Any]]:
        updates: list[str] = []
        params: list[Any] = []
        if email is not _SENTINEL:
            updates.append("email = %s")
            params.append(normalise_email(email))
        if full_name is not _SENTINEL:
            updates.append("full_name = %s")
            params.append(full_name.strip())
        if role is not _SENTINEL:
            updates.append("role = %s")
            params.append(Role(role).value)
        if is_active is not _SENTINEL:
            updates.append("is_active = %s")
            params.append(bool(is_active))
        if company_id is not _SENTINEL:
            updates.append("company_id = %s")
            params.append(company_id)
        if department is not _SENTINEL:
            updates.append("department = %s")
            params.append(department)
        if job_title is not _SENTINEL:
            updates.append("job_title = %s")
            params.append(job_title)
        if phone is not _SENTINEL:
            updates.append("phone = %s")
            params.append(phone)
        if not updates:
            return await self.get_user_by_id(user_id)
        updates.append("updated_at = %s")
        params.append(datetime.now(timezone.utc))
        params.append(user_id)
        await self._db.execute(
            f"UPDATE users SET {', '.join(updates)} WHERE id = %s",
            tuple(params),
        )
        return await self.get_user_by_id(user_id)

    async def record_login(self, user_id: int, when: datetime) -> None:
        await self._db.execute(
            "UPDATE users SET last_login = %s, updated_at = %s WHERE id = %s",
            (when, when, user_id),
        )

    async def set_password(self, user_id: int, password_hash: str) -> None:
        await self._db.execute(
            "UPDATE users SET password_hash = %s, updated_at = %s WHERE id = %s",
            (password_hash, datetime.now(timezone.utc), user_id),
        )

    async def delete_user(self, user_id: int) -> bool:
        deleted = await self._db.execute("DELETE FROM users WHERE id = %s", (user_id,))
        return deleted > 0

    async def count_admins(self, *, active_only: bool = True) -> int:
        sql = "SELECT COUNT(*) AS count FROM users WHERE LOWER(TRIM(role)) = %s"
        params: list[Any] = [Role.ADMIN.value]
        if active_only:
            sql += " AND is_active = %s"
            params.append(True)
        row = await self._db.fetch_one(sql, tuple(params))
        return int(row["count"]) if row else 0
