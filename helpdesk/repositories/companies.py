from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from helpdesk.core.database import Database, coerce_datetime

_SENTINEL = object()


def _normalise_company(row: dict[str, Any] | None) -> Optional[dict[str, Any]]:
    if not row:
        return None
    normalised = dict(row)
    normalised["id"] = int(normalised["id"])
    normalised["is_active"] = bool(normalised.get("is_active"))
    normalised["created_at"] = coerce_datetime(normalised.get("created_at"))
    normalised["updated_at"] = coerce_datetime(normalised.get("updated_at"))
    return normalised


class CompanyRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_company_by_id(self, company_id: int) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one("SELECT * FROM companies WHERE id = %s", (company_id,))
        return _normalise_company(row)

    async def get_company_by_name(self, name: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            "SELECT * FROM companies WHERE LOWER(name) = LOWER(%s) LIMIT 1",
            (name.strip(),),
        )
        return _normalise_company(row)

    async def get_company_by_domain(self, domain: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            """
            SELECT * FROM companies
            WHERE LOWER(domain) = LOWER(%s) AND is_active = %s
            ORDER BY id
            LIMIT 1
            """,
            (domain.strip(), True),
        )
        return _normalise_company(row)

    async def list_companies(self, *, include_inactive: bool = False) -> list[dict[str, Any]]:
        if include_inactive:
            rows = await self._db.fetch_all("SELECT * FROM companies ORDER BY name")
        else:
            rows = await self._db.fetch_all(
                "SELECT * FROM companies WHERE is_active = %s ORDER BY name", (True,)
            )
        return [_normalise_company(row) for row in rows]

    async def create_company(
        self,
        *,
        name: str,
        domain: str | None = None,
        phone: str | None = None,
        address: str | None = None,
        industry: str | None = None,
        company_size: str | None = None,
        notes: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        row = await self._db.fetch_one(
            """
            INSERT INTO companies (
                name, domain, phone, address, industry, company_size, notes, is_active, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                name.strip(),
                domain,
                phone,
                address,
                industry,
                company_size,
                notes,
                is_active,
                now,
                now,
            ),
        )
        return _normalise_company(row)

    async def update_company(
        self,
        company_id: int,
        *,
        name: Any = _SENTINEL,
        domain: Any = _SENTINEL,
        phone: Any = _SENTINEL,
        address: Any = _SENTINEL,
        industry: Any = _SENTINEL,
        company_size: Any = _SENTINEL,
        notes: Any = _SENTINEL,
        is_active: Any = _SENTINEL,
    ) -> Optional[dict[str, Any]]:
        updates: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("name", name.strip() if isinstance(name, str) else name),
            ("domain", domain),
            ("phone", phone),
            ("address", address),
            ("industry", industry),
            ("company_size", company_size),
            ("notes", notes),
        ):
            if value is _SENTINEL:
                continue
            updates.append(f"{column} = %s")
            params.append(value)
        if is_active is not _SENTINEL:
            updates.append("is_active = %s")
            params.append(bool(is_active))
        if not updates:
            return await self.get_company_by_id(company_id)
        updates.append("updated_at = %s")
        params.append(datetime.now(timezone.utc))
        params.append(company_id)
        await self._db.execute(
            f"UPDATE companies SET {', '.join(updates)} WHERE id = %s",
            tuple(params),
        )
        return await self.get_company_by_id(company_id)
