from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status

from helpdesk.api.dependencies.auth import require_permission
from helpdesk.api.dependencies.services import get_user_service
from helpdesk.schemas.users import UserCreate, UserResponse, UserUpdate
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.permissions import USER_MANAGEMENT
from helpdesk.services.users import UserService

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("")
async def list_users(
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    company_id: Optional[int] = None,
    _: AuthenticatedUser = Depends(require_permission(USER_MANAGEMENT)),
    user_service: UserService = Depends(get_user_service),
):
    rows = await user_service.list_users(role=role, is_active=is_active, company_id=company_id)
    return {"success": True, "users": [UserResponse.model_validate(row) for row in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    current_user: AuthenticatedUser = Depends(require_permission(USER_MANAGEMENT)),
    user_service: UserService = Depends(get_user_service),
):
    created = await user_service.create_user(**payload.model_dump(), actor=current_user)
    return {"success": True, "user": UserResponse.model_validate(created)}


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    _: AuthenticatedUser = Depends(require_permission(USER_MANAGEMENT)),
    user_service: UserService = Depends(get_user_service),
):
    user = await user_service.get_user(user_id)
    return {"success": True, "user": UserResponse.model_validate(user)}


@router.patch("/{user_id}")
async def update_user(
    user_id: int,
    payload: UserUpdate,
    current_user: AuthenticatedUser = Depends(require_permission(USER_MANAGEMENT)),
    user_service: UserService = Depends(get_user_service),
):
    updated = await user_service.update_user(
        user_id, payload.model_dump(exclude_unset=True), actor=current_user
    )
    return {"success": True, "user": UserResponse.model_validate(updated)}


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    current_user: AuthenticatedUser = Depends(require_permission(USER_MANAGEMENT)),
    user_service: UserService = Depends(get_user_service),
):
    deleted = await user_service.delete_user(user_id, actor=current_user)
    return {
        "success": True,
        "message": "User deleted",
        "user": {"id": deleted["id"], "email": deleted["email"]},
    }
