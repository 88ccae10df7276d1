from __future__ import annotations

from fastapi import APIRouter, Depends, Header, status

from helpdesk.api.dependencies.services import get_user_service
from helpdesk.schemas.auth import SetupAdminRequest
from helpdesk.services.users import UserService

router = APIRouter(prefix="/api/setup", tags=["Setup"])


@router.post("/admin", status_code=status.HTTP_201_CREATED)
async def create_initial_admin(
    payload: SetupAdminRequest,
    x_setup_key: str | None = Header(default=None),
    user_service: UserService = Depends(get_user_service),
):
    user = await user_service.create_initial_admin(
        setup_key=x_setup_key,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
    )
    return {"success": True, "user": user}
