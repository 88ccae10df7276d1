from __future__ import annotations

from fastapi import Depends, Request

from helpdesk.core.database import Database
from helpdesk.core.errors import UpstreamUnavailable


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise UpstreamUnavailable("Database is not configured")
    return database


async def require_database(database: Database = Depends(get_database)) -> Database:
    if not database.is_connected():
        await database.connect()
    return database
