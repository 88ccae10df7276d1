from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from helpdesk.api.dependencies.auth import require_permission
from helpdesk.api.dependencies.services import get_mail_service
from helpdesk.schemas.mail import MailSettingsUpdate, MailSyncRequest
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.imap import MailIngestionService
from helpdesk.services.permissions import ADMIN_ACCESS, TICKET_MANAGEMENT

router = APIRouter(prefix="/api", tags=["Mail"])


@router.post("/mail/sync")
async def sync_mailbox(
    payload: MailSyncRequest | None = Body(default=None),
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    mail_service: MailIngestionService = Depends(get_mail_service),
):
    options = payload or MailSyncRequest()
    summary = await mail_service.sync(
        unread_only=options.unread_only,
        limit=options.limit,
        days=options.days,
        actor=current_user,
    )
    return {"success": True, **summary}


@router.post("/mail/check")
async def check_mailbox(
    _: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    mail_service: MailIngestionService = Depends(get_mail_service),
):
    inbox = await mail_service.check_inbox()
    return {"success": True, "inbox": inbox}


@router.get("/settings/mail")
async def get_mail_settings(
    _: AuthenticatedUser = Depends(require_permission(ADMIN_ACCESS)),
    mail_service: MailIngestionService = Depends(get_mail_service),
):
    return {"success": True, "settings": await mail_service.get_mail_settings()}


@router.put("/settings/mail")
async def update_mail_settings(
    payload: MailSettingsUpdate,
    current_user: AuthenticatedUser = Depends(require_permission(ADMIN_ACCESS)),
    mail_service: MailIngestionService = Depends(get_mail_service),
):
    settings = await mail_service.update_mail_settings(
        mail_address=payload.mail_address,
        app_password=payload.app_password,
        refresh_interval=payload.refresh_interval,
        default_status=payload.default_status,
        actor=current_user,
    )
    return {"success": True, "settings": settings}
