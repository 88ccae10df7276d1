from __future__ import annotations

import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import aiosqlite
import asyncpg
from loguru import logger

from .config import Settings, get_settings

_MIGRATION_LOCK_ID = 7_301_845_112
_PLACEHOLDER = re.compile(r"%s")


def coerce_datetime(value: Any) -> datetime | None:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands timestamps back as ISO strings; Postgres returns aware
    datetimes. Naive values are assumed to be UTC.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _sqlite_param(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


class Database:
    """Async datastore facade with a Postgres (asyncpg) and a SQLite backend.

    Queries are written once using ``%s`` placeholders and rewritten for the
    active backend. SQLite is used whenever no ``DATABASE_URL`` is configured
    or an explicit ``sqlite_path`` is supplied.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        sqlite_path: Path | str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._pool: asyncpg.Pool | None = None
        self._sqlite_conn: aiosqlite.Connection | None = None
        self._sqlite_path = Path(sqlite_path) if sqlite_path else self._settings.sqlite_path
        self._use_sqlite = sqlite_path is not None or not self._settings.database_url

    def is_sqlite(self) -> bool:
        """Check if using SQLite instead of Postgres."""
        return self._use_sqlite

    def is_connected(self) -> bool:
        return self._pool is not None or self._sqlite_conn is not None

    def _postgres_dsn(self) -> str:
        dsn = self._settings.database_url or ""
        return re.sub(r"^postgres(ql)?\+\w+://", "postgresql://", dsn)

    def _prepare(self, sql: str, params: Sequence[Any] | None) -> tuple[str, tuple[Any, ...]]:
        values = tuple(params or ())
        if self._use_sqlite:
            return _PLACEHOLDER.sub("?", sql), tuple(_sqlite_param(value) for value in values)
        counter = iter(range(1, len(values) + 1))
        return _PLACEHOLDER.sub(lambda _: f"${next(counter)}", sql), values

    async def connect(self) -> None:
        if self._pool or self._sqlite_conn:
            return

        if self._use_sqlite:
            logger.info("Connecting to SQLite database at {path}", path=str(self._sqlite_path))
            self._sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            self._sqlite_conn = await aiosqlite.connect(str(self._sqlite_path))
            self._sqlite_conn.row_factory = aiosqlite.Row
            await self._sqlite_conn.execute("PRAGMA foreign_keys = ON")
            await self._sqlite_conn.commit()
        else:
            logger.info("Connecting to Postgres database")
            self._pool = await asyncpg.create_pool(
                dsn=self._postgres_dsn(),
                min_size=1,
                max_size=10,
                command_timeout=30,
                server_settings={"timezone": "UTC"},
            )

    async def disconnect(self) -> None:
        if self._sqlite_conn:
            logger.info("Disconnecting from SQLite database")
            await self._sqlite_conn.close()
            self._sqlite_conn = None
        elif self._pool:
            logger.info("Disconnecting from Postgres database")
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        """Acquire a database connection.

        For Postgres, this returns a connection from the pool.
        For SQLite, this returns the single connection.
        """
        if self._use_sqlite:
            if not self._sqlite_conn:
                raise RuntimeError("SQLite database not initialised")
            yield self._sqlite_conn
        else:
            if not self._pool:
                raise RuntimeError("Database pool not initialised")
            async with self._pool.acquire() as conn:
                yield conn

    async def _commit_sqlite(self) -> None:
        if self._sqlite_conn is not None and self._sqlite_conn.in_transaction:
            await self._sqlite_conn.commit()

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a statement and return the number of affected rows."""
        query, values = self._prepare(sql, params)
        async with self.acquire() as conn:
            if self._use_sqlite:
                cursor = await conn.execute(query, values)
                await self._commit_sqlite()
                return max(cursor.rowcount, 0)
            status = await conn.execute(query, *values)
        try:
            return int(str(status).rsplit(" ", 1)[-1])
        except ValueError:
            return 0

    async def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        query, values = self._prepare(sql, params)
        async with self.acquire() as conn:
            if self._use_sqlite:
                cursor = await conn.execute(query, values)
                row = await cursor.fetchone()
                await cursor.close()
                await self._commit_sqlite()
                return dict(row) if row else None
            record = await conn.fetchrow(query, *values)
        return dict(record) if record is not None else None

    async def fetch_all(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        query, values = self._prepare(sql, params)
        async with self.acquire() as conn:
            if self._use_sqlite:
                cursor = await conn.execute(query, values)
                rows = await cursor.fetchall()
                await cursor.close()
                await self._commit_sqlite()
                return [dict(row) for row in rows]
            records = await conn.fetch(query, *values)
        return [dict(record) for record in records]

    async def ping(self) -> bool:
        row = await self.fetch_one("SELECT 1 AS ok")
        return bool(row and row.get("ok") == 1)

    def _get_migrations_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent / "migrations"

    def _split_sql_statements(self, sql: str) -> list[str]:
        """Split raw SQL script content into executable statements.

        Tracks quote and comment state so semicolons inside literals do not
        terminate a statement early.
        """

        statements: list[str] = []
        statement_chars: list[str] = []
        in_single_quote = False
        in_double_quote = False
        i = 0
        length = len(sql)

        while i < length:
            char = sql[i]
            next_char = sql[i + 1] if i + 1 < length else ""

            if not in_single_quote and not in_double_quote:
                if char == "-" and next_char == "-":
                    i += 2
                    while i < length and sql[i] != "\n":
                        i += 1
                    continue
                if char == "/" and next_char == "*":
                    i += 2
                    while i + 1 < length and not (sql[i] == "*" and sql[i + 1] == "/"):
                        i += 1
                    i += 2
                    continue

            if char == "'" and not in_double_quote:
                statement_chars.append(char)
                if in_single_quote:
                    if next_char == "'":
                        statement_chars.append(next_char)
                        i += 2
                        continue
                    in_single_quote = False
                else:
                    in_single_quote = True
                i += 1
                continue

            if char == '"' and not in_single_quote:
                statement_chars.append(char)
                in_double_quote = not in_double_quote
                i += 1
                continue

            if char == ";" and not in_single_quote and not in_double_quote:
                statement = "".join(statement_chars).strip()
                if statement:
                    statements.append(statement)
                statement_chars = []
                i += 1
                continue

            statement_chars.append(char)
            i += 1

        remaining = "".join(statement_chars).strip()
        if remaining:
            statements.append(remaining)
        return statements

    def _adapt_sql_for_sqlite(self, sql: str) -> str:
        """Adapt the Postgres migration dialect to SQLite."""
        sql = re.sub(
            r"\b(BIG)?SERIAL\s+PRIMARY\s+KEY\b",
            "INTEGER PRIMARY KEY AUTOINCREMENT",
            sql,
            flags=re.IGNORECASE,
        )
        sql = re.sub(r"\bTIMESTAMPTZ\b|\bTIMESTAMP\s+WITH\s+TIME\s+ZONE\b", "TEXT", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bJSONB?\b", "TEXT", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bNOW\(\)", "CURRENT_TIMESTAMP", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bDEFAULT\s+TRUE\b", "DEFAULT 1", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bDEFAULT\s+FALSE\b", "DEFAULT 0", sql, flags=re.IGNORECASE)
        return sql

    async def _applied_migrations(self, conn: Any) -> set[str]:
        if self._use_sqlite:
            await conn.execute(
                "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
            )
            await conn.commit()
            cursor = await conn.execute("SELECT name FROM migrations")
            rows = await cursor.fetchall()
            return {dict(row)["name"] for row in rows}
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
        )
        rows = await conn.fetch("SELECT name FROM migrations")
        return {row["name"] for row in rows}

    async def _apply_migration_file(self, conn: Any, path: Path) -> None:
        sql = path.read_text(encoding="utf-8")
        if self._use_sqlite:
            sql = self._adapt_sql_for_sqlite(sql)
        statements = self._split_sql_statements(sql)

        if self._use_sqlite:
            for statement in statements:
                try:
                    await conn.execute(statement)
                except Exception as exc:
                    logger.error(
                        "Migration statement failed: {error}. Statement: {stmt}",
                        error=str(exc),
                        stmt=statement[:100],
                    )
                    raise
            await conn.execute("INSERT INTO migrations (name) VALUES (?)", (path.name,))
            await conn.commit()
        else:
            async with conn.transaction():
                for statement in statements:
                    await conn.execute(statement)
                await conn.execute("INSERT INTO migrations (name) VALUES ($1)", path.name)

    async def run_migrations(self) -> None:
        """Run all pending migrations."""
        await self.connect()
        migrations_dir = self._get_migrations_dir()
        if not migrations_dir.exists():
            logger.warning("No migrations directory found at {path}", path=str(migrations_dir))
            return

        async with self.acquire() as conn:
            lock_acquired = False
            try:
                if not self._use_sqlite:
                    await conn.execute("SELECT pg_advisory_lock($1)", _MIGRATION_LOCK_ID)
                    lock_acquired = True
                applied = await self._applied_migrations(conn)
                for path in sorted(migrations_dir.glob("*.sql")):
                    if path.name in applied:
                        continue
                    await self._apply_migration_file(conn, path)
                    logger.info("Applied migration {name}", name=path.name)
            finally:
                if lock_acquired:
                    await conn.execute("SELECT pg_advisory_unlock($1)", _MIGRATION_LOCK_ID)
