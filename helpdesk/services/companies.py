from __future__ import annotations

from typing import Any

from helpdesk.core.errors import Conflict, NotFound, ValidationError
from helpdesk.repositories.companies import CompanyRepository
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthenticatedUser


class CompanyService:
    def __init__(self, companies: CompanyRepository, activity: ActivityLogger) -> None:
        self._companies = companies
        self._activity = activity

    async def list_companies(self, *, include_inactive: bool = False) -> list[dict[str, Any]]:
        return await self._companies.list_companies(include_inactive=include_inactive)

    async def get_company(self, company_id: int) -> dict[str, Any]:
        company = await self._companies.get_company_by_id(company_id)
        if not company:
            raise NotFound("Company not found")
        return company

    async def find_by_email(self, address: str | None) -> dict[str, Any] | None:
        """Match an active company by the domain part of ``address``."""
        if not address or "@" not in address:
            return None
        domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
        if not domain:
            return None
        return await self._companies.get_company_by_domain(domain)

    async def create_company(self, data: dict[str, Any], *, actor: AuthenticatedUser) -> dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Company name is required")
        if await self._companies.get_company_by_name(name):
            raise Conflict("A company with this name already exists")
        company = await self._companies.create_company(**{**data, "name": name})
        self._activity.record(
            action="company_created",
            user_id=actor.id,
            resource_type="company",
            resource_id=company["id"],
            details={"name": company["name"]},
        )
        return company

    async def update_company(
        self,
        company_id: int,
        changes: dict[str, Any],
        *,
        actor: AuthenticatedUser,
    ) -> dict[str, Any]:
        existing = await self.get_company(company_id)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Company name is required")
            clash = await self._companies.get_company_by_name(name)
            if clash and clash["id"] != existing["id"]:
                raise Conflict("A company with this name already exists")
            changes = {**changes, "name": name}
        updated = await self._companies.update_company(company_id, **changes)
        self._activity.record(
            action="company_updated",
            user_id=actor.id,
            resource_type="company",
            resource_id=company_id,
            details={"fields": sorted(changes)},
        )
        return updated
