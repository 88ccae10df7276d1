from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Any

from helpdesk.core.config import Settings, get_settings
from helpdesk.core.errors import Conflict, Forbidden, NotFound, ValidationError
from helpdesk.core.logging import log_info, log_warning
from helpdesk.repositories.tickets import TicketRepository
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthenticatedUser
from helpdesk.services.permissions import CUSTOMER_ACCESS, TICKET_MANAGEMENT

TICKET_STATUSES: tuple[str, ...] = ("new", "open", "pending", "closed")
TICKET_PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "new": frozenset({"open"}),
    "open": frozenset({"pending", "closed"}),
    "pending": frozenset({"open"}),
    "closed": frozenset(),
}

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
_TICKET_NUMBER_ATTEMPTS = 5


def clamp_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def validate_status(value: str) -> str:
    status = (value or "").strip().lower()
    if status not in TICKET_STATUSES:
        raise ValidationError(
            "Invalid status",
            details={"allowed": list(TICKET_STATUSES)},
        )
    return status


def validate_priority(value: str) -> str:
    priority = (value or "").strip().lower()
    if priority not in TICKET_PRIORITIES:
        raise ValidationError(
            "Invalid priority",
            details={"allowed": list(TICKET_PRIORITIES)},
        )
    return priority


def resolution_hours(created_at: datetime | None, closed_at: datetime) -> int:
    """Whole hours between creation and closing, never negative."""
    if created_at is None:
        return 0
    hours = (closed_at - created_at).total_seconds() / 3600
    return max(0, round(hours))


def generate_ticket_number(now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"TK-{year}-{secrets.randbelow(1_000_000):06d}"


class TicketService:
    """Ticket lifecycle shared by manual creation, the API and mail ingestion."""

    def __init__(
        self,
        tickets: TicketRepository,
        activity: ActivityLogger,
        settings: Settings | None = None,
    ) -> None:
        self._tickets = tickets
        self._activity = activity
        self._settings = settings or get_settings()

    async def ensure_unique_ticket_number(self) -> str:
        for _ in range(_TICKET_NUMBER_ATTEMPTS):
            candidate = generate_ticket_number()
            if not await self._tickets.ticket_number_exists(candidate):
                return candidate
        fallback = f"TK-{datetime.now(timezone.utc).year}-{int(time.time() * 1000) % 100_000_000:08d}"
        log_warning("Falling back to timestamp ticket number", ticket_number=fallback)
        return fallback

    async def save_ticket(
        self,
        *,
        message_id: str,
        subject: str,
        body: str,
        from_email: str | None,
        to_email: str | None,
        status: str = "new",
        priority: str = "medium",
        category: str = "general",
        source: str = "email",
        date_received: datetime | None = None,
        customer_name: str | None = None,
        customer_id: str | None = None,
        customer_phone: str | None = None,
        customer_email: str | None = None,
        company_id: int | None = None,
        created_by: int | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Persist a ticket keyed on ``message_id``; returns ``(ticket, created)``."""
        now = datetime.now(timezone.utc)
        existing = await self._tickets.get_ticket_by_message_id(message_id)
        ticket_number = (
            existing["ticket_number"] if existing else await self.ensure_unique_ticket_number()
        )
        ticket, created = await self._tickets.upsert_by_message_id(
            ticket_number=ticket_number,
            subject=(subject or "No Subject")[:500],
            body=body or "",
            status=validate_status(status),
            priority=validate_priority(priority),
            category=category or "general",
            source=source,
            is_manual=source == "manual",
            message_id=message_id,
            from_email=from_email,
            to_email=to_email,
            customer_name=customer_name,
            customer_id=customer_id,
            customer_phone=customer_phone,
            customer_email=(customer_email or "").strip().lower() or None,
            company_id=company_id,
            assigned_to=None,
            created_by=created_by,
            date_received=date_received or now,
            created_at=now,
            updated_at=now,
        )
        log_info(
            "Ticket saved",
            ticket_id=ticket["id"],
            ticket_number=ticket["ticket_number"],
            created=created,
            source=source,
        )
        return ticket, created

    async def list_tickets(
        self,
        viewer: AuthenticatedUser,
        *,
        status: str | None = None,
        priority: str | None = None,
        assigned_to: int | None = None,
        created_by: int | None = None,
        limit: Any = DEFAULT_LIMIT,
    ) -> list[dict[str, Any]]:
        customer_email = None
        if not viewer.has_permission(TICKET_MANAGEMENT):
            if not viewer.has_permission(CUSTOMER_ACCESS):
                raise Forbidden()
            customer_email = viewer.email
        return await self._tickets.list_tickets(
            status=validate_status(status) if status else None,
            priority=validate_priority(priority) if priority else None,
            assigned_to=assigned_to,
            created_by=created_by,
            customer_email=customer_email,
            limit=clamp_limit(limit),
        )

    async def get_ticket(self, ticket_id: int, viewer: AuthenticatedUser | None = None) -> dict[str, Any]:
        ticket = await self._tickets.get_ticket(ticket_id)
        if not ticket:
            raise NotFound("Ticket not found")
        if viewer is not None and not viewer.has_permission(TICKET_MANAGEMENT):
            owner = (ticket.get("customer_email") or "").lower()
            if not viewer.has_permission(CUSTOMER_ACCESS) or owner != viewer.email.lower():
                raise NotFound("Ticket not found")
        return ticket

    async def create_manual_ticket(
        self,
        *,
        subject: str,
        from_email: str,
        content: str,
        priority: str = "medium",
        category: str | None = None,
        customer_name: str | None = None,
        customer_id: str | None = None,
        customer_phone: str | None = None,
        company_id: int | None = None,
        actor: AuthenticatedUser,
    ) -> dict[str, Any]:
        if not (subject or "").strip():
            raise ValidationError("Subject is required")
        if not (content or "").strip():
            raise ValidationError("Content is required")
        if not actor.has_permission(TICKET_MANAGEMENT):
            if not actor.has_permission(CUSTOMER_ACCESS):
                raise Forbidden()
            from_email = actor.email
        message_id = f"manual-{int(time.time() * 1000)}-{secrets.token_hex(5)}"
        ticket, _ = await self.save_ticket(
            message_id=message_id,
            subject=subject.strip(),
            body=content.strip(),
            from_email=from_email,
            to_email=self._settings.support_address,
            status="new",
            priority=priority,
            category=(category or "general").strip().lower(),
            source="manual",
            customer_name=customer_name,
            customer_id=customer_id,
            customer_phone=customer_phone,
            customer_email=from_email,
            company_id=company_id,
            created_by=actor.id,
        )
        self._activity.record(
            action="ticket_created",
            user_id=actor.id,
            resource_type="ticket",
            resource_id=ticket["id"],
            details={"ticket_number": ticket["ticket_number"], "source": "manual"},
        )
        return ticket

    async def change_status(
        self,
        ticket_id: int,
        status: str,
        *,
        actor: AuthenticatedUser | None = None,
    ) -> dict[str, Any]:
        target = validate_status(status)
        ticket = await self.get_ticket(ticket_id)
        current = (ticket.get("status") or "new").lower()
        if target == current:
            return ticket
        if target not in STATUS_TRANSITIONS.get(current, frozenset()):
            raise Conflict(
                f"Cannot change ticket status from {current} to {target}",
                details={"allowed": sorted(STATUS_TRANSITIONS.get(current, frozenset()))},
            )
        fields: dict[str, Any] = {"status": target}
        if target == "closed":
            closed_at = datetime.now(timezone.utc)
            fields["closed_at"] = closed_at
            fields["resolution_time"] = resolution_hours(ticket.get("created_at"), closed_at)
        updated = await self._tickets.update_ticket(ticket_id, **fields)
        self._activity.record(
            action="ticket_status_changed",
            user_id=actor.id if actor else None,
            resource_type="ticket",
            resource_id=ticket_id,
            details={"from": current, "to": target},
        )
        return updated

    async def update_ticket(
        self,
        ticket_id: int,
        changes: dict[str, Any],
        *,
        actor: AuthenticatedUser,
    ) -> dict[str, Any]:
        updates = {
            key: value
            for key, value in changes.items()
            if value is not None or key not in ("status", "priority", "category")
        }
        status = updates.pop("status", None)
        if "priority" in updates:
            updates["priority"] = validate_priority(updates["priority"])
        if "category" in updates and updates["category"]:
            updates["category"] = updates["category"].strip().lower()
        if "customer_email" in updates and updates["customer_email"]:
            updates["customer_email"] = updates["customer_email"].strip().lower()
        ticket = await self.get_ticket(ticket_id)
        if updates:
            ticket = await self._tickets.update_ticket(ticket_id, **updates)
            self._activity.record(
                action="ticket_updated",
                user_id=actor.id,
                resource_type="ticket",
                resource_id=ticket_id,
                details={"fields": sorted(updates)},
            )
        if status:
            ticket = await self.change_status(ticket_id, status, actor=actor)
        return ticket

    async def delete_ticket(self, ticket_id: int, *, actor: AuthenticatedUser) -> None:
        ticket = await self.get_ticket(ticket_id)
        await self._tickets.delete_ticket(ticket_id)
        self._activity.record(
            action="ticket_deleted",
            user_id=actor.id,
            resource_type="ticket",
            resource_id=ticket_id,
            details={"ticket_number": ticket["ticket_number"]},
        )

    async def get_conversation(self, ticket_id: int) -> dict[str, Any]:
        ticket = await self.get_ticket(ticket_id)
        entries = await self._tickets.list_conversation(ticket_id)
        return {"ticket": ticket, "conversation": entries}

    async def add_comment(
        self,
        ticket_id: int,
        message: str,
        *,
        actor: AuthenticatedUser,
        internal: bool = True,
    ) -> dict[str, Any]:
        if not (message or "").strip():
            raise ValidationError("Comment is required")
        ticket = await self.get_ticket(ticket_id)
        entry = await self._tickets.add_conversation_entry(
            ticket_id=ticket_id,
            message_type="internal" if internal else "system",
            message=message.strip(),
            from_email=actor.email,
            subject=ticket.get("subject"),
            created_by=actor.id,
        )
        await self._tickets.update_ticket(ticket_id)
        self._activity.record(
            action="ticket_comment_added",
            user_id=actor.id,
            resource_type="ticket",
            resource_id=ticket_id,
        )
        return entry

    async def record_response(
        self,
        ticket_id: int,
        message: str,
        *,
        actor: AuthenticatedUser,
        subject: str | None = None,
    ) -> dict[str, Any]:
        """Store an agent reply on the ticket. Nothing is sent by mail."""
        if not (message or "").strip():
            raise ValidationError("Response message is required")
        ticket = await self.get_ticket(ticket_id)
        reply_subject = subject or f"Re: {ticket.get('subject') or ''}".strip()
        entry = await self._tickets.add_conversation_entry(
            ticket_id=ticket_id,
            message_type="outbound",
            message=message.strip(),
            from_email=self._settings.support_address,
            to_email=ticket.get("customer_email") or ticket.get("from_email"),
            subject=reply_subject,
            created_by=actor.id,
        )
        await self._tickets.update_ticket(ticket_id)
        self._activity.record(
            action="ticket_response_recorded",
            user_id=actor.id,
            resource_type="ticket",
            resource_id=ticket_id,
        )
        return entry

    async def analytics(self) -> dict[str, Any]:
        by_status = await self._tickets.count_by("status")
        by_priority = await self._tickets.count_by("priority")
        by_category = await self._tickets.count_by("category")
        resolution = await self._tickets.resolution_times()
        total = sum(by_status.values())
        closed = by_status.get("closed", 0)
        return {
            "total_tickets": total,
            "open_tickets": total - closed,
            "closed_tickets": closed,
            "by_status": by_status,
            "by_priority": by_priority,
            "by_category": by_category,
            "resolution_time": {
                "average_hours": round(sum(resolution) / len(resolution), 2) if resolution else None,
                "min_hours": min(resolution) if resolution else None,
                "max_hours": max(resolution) if resolution else None,
            },
            "resolution_rate": round(closed / total * 100, 2) if total else 0.0,
        }
