from __future__ import annotations

from fastapi import APIRouter, Depends, status

from helpdesk.api.dependencies.auth import require_permission
from helpdesk.api.dependencies.services import get_company_service
from helpdesk.schemas.companies import CompanyCreate, CompanyResponse, CompanyUpdate
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.companies import CompanyService
from helpdesk.services.permissions import ADMIN_ACCESS, TICKET_MANAGEMENT

router = APIRouter(prefix="/api/companies", tags=["Companies"])


@router.get("")
async def list_companies(
    include_inactive: bool = False,
    _: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    company_service: CompanyService = Depends(get_company_service),
):
    companies = await company_service.list_companies(include_inactive=include_inactive)
    return {
        "success": True,
        "companies": [CompanyResponse.model_validate(company) for company in companies],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_company(
    payload: CompanyCreate,
    current_user: AuthenticatedUser = Depends(require_permission(ADMIN_ACCESS)),
    company_service: CompanyService = Depends(get_company_service),
):
    company = await company_service.create_company(payload.model_dump(), actor=current_user)
    return {"success": True, "company": CompanyResponse.model_validate(company)}


@router.get("/{company_id}")
async def get_company(
    company_id: int,
    _: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    company_service: CompanyService = Depends(get_company_service),
):
    company = await company_service.get_company(company_id)
    return {"success": True, "company": CompanyResponse.model_validate(company)}


@router.patch("/{company_id}")
async def update_company(
    company_id: int,
    payload: CompanyUpdate,
    current_user: AuthenticatedUser = Depends(require_permission(ADMIN_ACCESS)),
    company_service: CompanyService = Depends(get_company_service),
):
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key not in ("name", "is_active")
    }
    company = await company_service.update_company(company_id, changes, actor=current_user)
    return {"success": True, "company": CompanyResponse.model_validate(company)}
