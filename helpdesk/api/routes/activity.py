from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from helpdesk.api.dependencies.auth import get_current_user, require_permission
from helpdesk.api.dependencies.services import get_activity_logger, get_ticket_service
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.permissions import ADMIN_ACCESS, TICKET_MANAGEMENT
from helpdesk.services.tickets import TicketService

router = APIRouter(prefix="/api", tags=["Activity"])


@router.get("/activity")
async def list_activity(
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    limit: int = 100,
    current_user: AuthenticatedUser = Depends(get_current_user),
    activity: ActivityLogger = Depends(get_activity_logger),
):
    if not current_user.has_permission(ADMIN_ACCESS):
        user_id = current_user.id
    entries = await activity.list_activity(
        user_id=user_id, resource_type=resource_type, limit=limit
    )
    return {"success": True, "activity": entries}


@router.get("/analytics")
async def analytics(
    _: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    return {"success": True, "analytics": await ticket_service.analytics()}
