from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from helpdesk.core.database import Database, coerce_datetime

_SENTINEL = object()

_DATETIME_FIELDS = ("date_received", "created_at", "updated_at", "closed_at")

_INSERT_COLUMNS = (
    "ticket_number",
    "subject",
    "body",
    "status",
    "priority",
    "category",
    "source",
    "is_manual",
    "message_id",
    "from_email",
    "to_email",
    "customer_name",
    "customer_id",
    "customer_phone",
    "customer_email",
    "company_id",
    "assigned_to",
    "created_by",
    "date_received",
    "created_at",
    "updated_at",
)

_UPDATABLE_COLUMNS = (
    "subject",
    "body",
    "status",
    "priority",
    "category",
    "assigned_to",
    "customer_name",
    "customer_id",
    "customer_phone",
    "customer_email",
    "company_id",
    "closed_at",
    "resolution_time",
)


def _normalise_ticket(row: dict[str, Any] | None) -> Optional[dict[str, Any]]:
    if not row:
        return None
    ticket = dict(row)
    for field in _DATETIME_FIELDS:
        ticket[field] = coerce_datetime(ticket.get(field))
    ticket["is_manual"] = bool(ticket.get("is_manual"))
    if ticket.get("resolution_time") is not None:
        ticket["resolution_time"] = int(ticket["resolution_time"])
    return ticket


def _normalise_conversation(row: dict[str, Any]) -> dict[str, Any]:
    return {**row, "created_at": coerce_datetime(row.get("created_at"))}


class TicketRepository:
    """Ticket persistence; ``message_id`` is the natural key for ingestion."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_ticket(self, ticket_id: int) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one("SELECT * FROM tickets WHERE id = %s", (ticket_id,))
        return _normalise_ticket(row)

    async def get_ticket_by_message_id(self, message_id: str) -> Optional[dict[str, Any]]:
        row = await self._db.fetch_one(
            "SELECT * FROM tickets WHERE message_id = %s", (message_id,)
        )
        return _normalise_ticket(row)

    async def ticket_number_exists(self, ticket_number: str) -> bool:
        row = await self._db.fetch_one(
            "SELECT id FROM tickets WHERE ticket_number = %s", (ticket_number,)
        )
        return row is not None

    async def list_tickets(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
        assigned_to: int | None = None,
        created_by: int | None = None,
        customer_email: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if priority:
            clauses.append("priority = %s")
            params.append(priority)
        if assigned_to is not None:
            clauses.append("assigned_to = %s")
            params.append(assigned_to)
        if created_by is not None:
            clauses.append("created_by = %s")
            params.append(created_by)
        if customer_email:
            clauses.append("LOWER(customer_email) = %s")
            params.append(customer_email.strip().lower())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = await self._db.fetch_all(
            f"""
            SELECT * FROM tickets
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            tuple(params),
        )
        return [_normalise_ticket(row) for row in rows]

    async def upsert_by_message_id(self, **fields: Any) -> tuple[dict[str, Any], bool]:
        """Insert a ticket or refresh the one sharing its ``message_id``.

        On conflict the subject, body and status are overwritten, ``updated_at``
        is bumped and customer fields are only filled where missing; the
        original ``created_at`` and ``ticket_number`` are kept. Returns the
        stored row and whether it was newly inserted.
        """
        values = [fields.get(column) for column in _INSERT_COLUMNS]
        existing = await self.get_ticket_by_message_id(fields["message_id"])
        placeholders = ", ".join(["%s"] * len(_INSERT_COLUMNS))
        row = await self._db.fetch_one(
            f"""
            INSERT INTO tickets ({', '.join(_INSERT_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT (message_id) DO UPDATE SET
                subject = excluded.subject,
                body = excluded.body,
                status = excluded.status,
                updated_at = excluded.updated_at,
                customer_name = COALESCE(tickets.customer_name, excluded.customer_name),
                customer_id = COALESCE(tickets.customer_id, excluded.customer_id),
                customer_phone = COALESCE(tickets.customer_phone, excluded.customer_phone),
                customer_email = COALESCE(tickets.customer_email, excluded.customer_email),
                company_id = COALESCE(tickets.company_id, excluded.company_id)
            RETURNING *
            """,
            tuple(values),
        )
        return _normalise_ticket(row), existing is None

    async def update_ticket(self, ticket_id: int, **fields: Any) -> Optional[dict[str, Any]]:
        unknown = set(fields) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported ticket fields: {', '.join(sorted(unknown))}")
        updates: list[str] = []
        params: list[Any] = []
        for column in _UPDATABLE_COLUMNS:
            if column not in fields:
                continue
            updates.append(f"{column} = %s")
            params.append(fields[column])
        updates.append("updated_at = %s")
        params.append(datetime.now(timezone.utc))
        params.append(ticket_id)
        await self._db.execute(
            f"UPDATE tickets SET {', '.join(updates)} WHERE id = %s",
            tuple(params),
        )
        return await self.get_ticket(ticket_id)

    async def delete_ticket(self, ticket_id: int) -> bool:
        deleted = await self._db.execute("DELETE FROM tickets WHERE id = %s", (ticket_id,))
        return deleted > 0

    async def add_conversation_entry(
        self,
        *,
        ticket_id: int,
        message_type: str,
        message: str,
        from_email: str | None = None,
        to_email: str | None = None,
        subject: str | None = None,
        created_by: int | None = None,
    ) -> dict[str, Any]:
        row = await self._db.fetch_one(
            """
            INSERT INTO ticket_conversations (
                ticket_id, message_type, from_email, to_email, subject, message, created_by, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                ticket_id,
                message_type,
                from_email,
                to_email,
                subject,
                message,
                created_by,
                datetime.now(timezone.utc),
            ),
        )
        return _normalise_conversation(row)

    async def list_conversation(self, ticket_id: int) -> list[dict[str, Any]]:
        rows = await self._db.fetch_all(
            """
            SELECT * FROM ticket_conversations
            WHERE ticket_id = %s
            ORDER BY created_at ASC, id ASC
            """,
            (ticket_id,),
        )
        return [_normalise_conversation(row) for row in rows]

    async def count_by(self, column: str) -> dict[str, int]:
        if column not in ("status", "priority", "category"):
            raise ValueError(f"Cannot group tickets by {column}")
        rows = await self._db.fetch_all(
            f"SELECT {column} AS bucket, COUNT(*) AS count FROM tickets GROUP BY {column}"
        )
        return {str(row["bucket"]): int(row["count"]) for row in rows}

    async def resolution_times(self) -> list[int]:
        rows = await self._db.fetch_all(
            "SELECT resolution_time FROM tickets WHERE resolution_time IS NOT NULL"
        )
        return [int(row["resolution_time"]) for row in rows]
