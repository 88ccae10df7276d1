from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from helpdesk.api.dependencies.auth import require_permission
from helpdesk.api.dependencies.services import get_ticket_service
from helpdesk.schemas.tickets import (
    CommentCreate,
    ConversationEntry,
    ResponseCreate,
    TicketCreate,
    TicketResponse,
    TicketStatusUpdate,
    TicketUpdate,
)
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.permissions import ADMIN_ACCESS, CUSTOMER_ACCESS, TICKET_MANAGEMENT
from helpdesk.services.tickets import DEFAULT_LIMIT, TicketService

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])


@router.get("")
async def list_tickets(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    priority: Optional[str] = None,
    assigned_to: Optional[int] = None,
    created_by: Optional[int] = None,
    limit: int = DEFAULT_LIMIT,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT, CUSTOMER_ACCESS)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    tickets = await ticket_service.list_tickets(
        current_user,
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        created_by=created_by,
        limit=limit,
    )
    return {
        "success": True,
        "count": len(tickets),
        "tickets": [TicketResponse.model_validate(ticket) for ticket in tickets],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreate,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT, CUSTOMER_ACCESS)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    ticket = await ticket_service.create_manual_ticket(
        subject=payload.subject,
        from_email=payload.from_email,
        content=payload.content,
        priority=payload.priority,
        category=payload.category,
        customer_name=payload.customer_name,
        customer_id=payload.customer_id,
        customer_phone=payload.customer_phone,
        company_id=payload.company_id,
        actor=current_user,
    )
    return {"success": True, "ticket": TicketResponse.model_validate(ticket)}


@router.get("/{ticket_id}")
async def get_ticket(
    ticket_id: int,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT, CUSTOMER_ACCESS)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    ticket = await ticket_service.get_ticket(ticket_id, viewer=current_user)
    return {"success": True, "ticket": TicketResponse.model_validate(ticket)}


@router.patch("/{ticket_id}")
async def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    ticket = await ticket_service.update_ticket(
        ticket_id, payload.model_dump(exclude_unset=True), actor=current_user
    )
    return {"success": True, "ticket": TicketResponse.model_validate(ticket)}


@router.post("/{ticket_id}/status")
async def change_ticket_status(
    ticket_id: int,
    payload: TicketStatusUpdate,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    ticket = await ticket_service.change_status(ticket_id, payload.status, actor=current_user)
    return {"success": True, "ticket": TicketResponse.model_validate(ticket)}


@router.delete("/{ticket_id}")
async def delete_ticket(
    ticket_id: int,
    current_user: AuthenticatedUser = Depends(require_permission(ADMIN_ACCESS)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    await ticket_service.delete_ticket(ticket_id, actor=current_user)
    return {"success": True, "message": "Ticket deleted"}


@router.get("/{ticket_id}/conversation")
async def get_conversation(
    ticket_id: int,
    _: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    result = await ticket_service.get_conversation(ticket_id)
    return {
        "success": True,
        "ticket": TicketResponse.model_validate(result["ticket"]),
        "conversation": [ConversationEntry.model_validate(entry) for entry in result["conversation"]],
    }


@router.post("/{ticket_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: int,
    payload: CommentCreate,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    entry = await ticket_service.add_comment(
        ticket_id, payload.message, actor=current_user, internal=payload.internal
    )
    return {"success": True, "entry": ConversationEntry.model_validate(entry)}


@router.post("/{ticket_id}/responses", status_code=status.HTTP_201_CREATED)
async def record_response(
    ticket_id: int,
    payload: ResponseCreate,
    current_user: AuthenticatedUser = Depends(require_permission(TICKET_MANAGEMENT)),
    ticket_service: TicketService = Depends(get_ticket_service),
):
    entry = await ticket_service.record_response(
        ticket_id, payload.message, actor=current_user, subject=payload.subject
    )
    return {"success": True, "entry": ConversationEntry.model_validate(entry)}
