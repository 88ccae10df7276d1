#!/usr/bin/env python3
"""
Delete expired login sessions and stale password reset tokens.

Safe to run from cron; expired rows are already rejected at validation time,
this only keeps the tables small.

Usage: python scripts/cleanup_sessions.py [--dry-run]
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from helpdesk.core.database import Database  # noqa: E402
from helpdesk.core.logging import configure_logging, log_error, log_info  # noqa: E402
from helpdesk.repositories.auth import SessionRepository  # noqa: E402


async def cleanup(*, dry_run: bool = False) -> int:
    database = Database()
    now = datetime.now(timezone.utc)
    try:
        await database.connect()
        if dry_run:
            row = await database.fetch_one(
                "SELECT COUNT(*) AS count FROM sessions WHERE expires_at <= %s", (now,)
            )
            count = int(row["count"]) if row else 0
            log_info("Expired sessions found", count=count, dry_run=True)
            return count
        removed = await SessionRepository(database).purge_expired_sessions(now)
        resets = await database.execute(
            "DELETE FROM password_resets WHERE expires_at <= %s OR used = %s", (now, True)
        )
        log_info("Expired sessions purged", sessions=removed, password_resets=resets)
        return removed
    finally:
        await database.disconnect()


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Purge expired helpdesk sessions and password reset tokens"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many sessions have expired without deleting anything",
    )
    args = parser.parse_args()
    try:
        await cleanup(dry_run=args.dry_run)
    except Exception as exc:  # noqa: BLE001 - surfaced as the exit status
        log_error("Session cleanup failed", error=str(exc))
        return 1
    return 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(main()))
