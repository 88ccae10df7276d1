import pytest

from helpdesk.repositories import tickets


class _UpdateTicketDB:
    def __init__(self, row):
        self.execute_sql = None
        self.execute_params = None
        self.fetch_sql = None
        self.fetch_params = None
        self._row = row

    async def execute(self, sql, params):
        self.execute_sql = sql.strip()
        self.execute_params = params
        return 1

    async def fetch_one(self, sql, params):
        self.fetch_sql = sql.strip()
        self.fetch_params = params
        return self._row


class _ListTicketsDB:
    def __init__(self):
        self.fetch_sql = None
        self.fetch_params = None

    async def fetch_all(self, sql, params):
        self.fetch_sql = " ".join(sql.split())
        self.fetch_params = params
        return [
            {
                "id": 3,
                "ticket_number": "TK-2026-000003",
                "is_manual": 0,
                "created_at": "2026-04-01T10:00:00+00:00",
                "updated_at": "2026-04-01T10:00:00+00:00",
                "date_received": None,
                "closed_at": None,
                "resolution_time": None,
            }
        ]


class _UpsertDB:
    def __init__(self, existing):
        self.statements = []
        self._existing = existing

    async def fetch_one(self, sql, params):
        self.statements.append((" ".join(sql.split()), params))
        if sql.lstrip().startswith("SELECT"):
            return self._existing
        return {"id": 8, "ticket_number": params[0], "message_id": params[8], "is_manual": 0}


class _CountDB:
    def __init__(self):
        self.fetch_sql = None

    async def fetch_all(self, sql, params=None):
        self.fetch_sql = sql.strip()
        return [{"bucket": "new", "count": 2}, {"bucket": "closed", "count": 1}]


@pytest.mark.anyio
async def test_update_ticket_only_touches_given_columns(monkeypatch):
    row = {"id": 5, "status": "open", "is_manual": 1, "resolution_time": "4"}
    db = _UpdateTicketDB(row)
    repo = tickets.TicketRepository(db)

    result = await repo.update_ticket(5, status="open", assigned_to=None)

    assert db.execute_sql == "UPDATE tickets SET status = %s, assigned_to = %s, updated_at = %s WHERE id = %s"
    assert db.execute_params[0] == "open"
    assert db.execute_params[1] is None
    assert db.execute_params[-1] == 5
    assert db.fetch_params == (5,)
    assert result["is_manual"] is True
    assert result["resolution_time"] == 4


@pytest.mark.anyio
async def test_update_ticket_rejects_unknown_columns():
    repo = tickets.TicketRepository(_UpdateTicketDB({}))

    with pytest.raises(ValueError):
        await repo.update_ticket(5, ticket_number="TK-hijack")


@pytest.mark.anyio
async def test_update_ticket_without_fields_bumps_updated_at():
    db = _UpdateTicketDB({"id": 5})
    repo = tickets.TicketRepository(db)

    await repo.update_ticket(5)

    assert db.execute_sql == "UPDATE tickets SET updated_at = %s WHERE id = %s"


@pytest.mark.anyio
async def test_list_tickets_builds_parameterised_filters():
    db = _ListTicketsDB()
    repo = tickets.TicketRepository(db)

    rows = await repo.list_tickets(
        status="open", assigned_to=2, customer_email=" Carol@Example.com ", limit=25
    )

    assert "WHERE status = %s AND assigned_to = %s AND LOWER(customer_email) = %s" in db.fetch_sql
    assert db.fetch_sql.endswith("ORDER BY created_at DESC, id DESC LIMIT %s")
    assert db.fetch_params == ("open", 2, "carol@example.com", 25)
    assert rows[0]["is_manual"] is False
    assert rows[0]["created_at"].isoformat() == "2026-04-01T10:00:00+00:00"


@pytest.mark.anyio
async def test_upsert_reports_created_when_message_id_is_new():
    db = _UpsertDB(existing=None)
    repo = tickets.TicketRepository(db)

    ticket, created = await repo.upsert_by_message_id(
        ticket_number="TK-2026-123456",
        subject="Help",
        message_id="<m1@example.com>",
    )

    assert created is True
    assert ticket["ticket_number"] == "TK-2026-123456"
    insert_sql = db.statements[-1][0]
    assert "ON CONFLICT (message_id) DO UPDATE SET" in insert_sql
    assert "customer_email = COALESCE(tickets.customer_email, excluded.customer_email)" in insert_sql
    assert "created_at = excluded" not in insert_sql
    assert "ticket_number = excluded" not in insert_sql
    assert insert_sql.endswith("RETURNING *")


@pytest.mark.anyio
async def test_upsert_reports_update_when_message_id_exists():
    db = _UpsertDB(existing={"id": 8, "ticket_number": "TK-2026-000008", "is_manual": 0})
    repo = tickets.TicketRepository(db)

    _, created = await repo.upsert_by_message_id(
        ticket_number="TK-2026-000008",
        subject="Help",
        message_id="<m1@example.com>",
    )

    assert created is False


@pytest.mark.anyio
async def test_count_by_only_allows_known_columns():
    db = _CountDB()
    repo = tickets.TicketRepository(db)

    assert await repo.count_by("status") == {"new": 2, "closed": 1}
    assert "GROUP BY status" in db.fetch_sql
    with pytest.raises(ValueError):
        await repo.count_by("subject; DROP TABLE tickets")
