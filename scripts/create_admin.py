#!/usr/bin/env python3
"""
Create a helpdesk user from the command line.

Intended for provisioning the first administrator on a fresh install, or for
recovering access when every admin account has been locked out.

Usage: python scripts/create_admin.py EMAIL FULL_NAME [--role admin] [--password ...]
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pydantic import ValidationError as SchemaValidationError  # noqa: E402

from helpdesk.core.database import Database  # noqa: E402
from helpdesk.core.errors import HelpdeskError  # noqa: E402
from helpdesk.core.logging import configure_logging, log_error, log_info  # noqa: E402
from helpdesk.repositories.audit_logs import ActivityLogRepository  # noqa: E402
from helpdesk.repositories.auth import SessionRepository  # noqa: E402
from helpdesk.repositories.companies import CompanyRepository  # noqa: E402
from helpdesk.repositories.users import UserRepository  # noqa: E402
from helpdesk.schemas.users import UserCreate  # noqa: E402
from helpdesk.services.audit import ActivityLogger  # noqa: E402
from helpdesk.services.users import UserService  # noqa: E402


async def create_user(payload: UserCreate) -> int:
    database = Database()
    await database.run_migrations()
    activity = ActivityLogger(ActivityLogRepository(database))
    service = UserService(
        UserRepository(database),
        SessionRepository(database),
        CompanyRepository(database),
        activity,
    )
    try:
        user = await service.create_user(**payload.model_dump())
        await activity.drain()
    except HelpdeskError as exc:
        log_error("Failed to create user", error=exc.message)
        return 1
    finally:
        await database.disconnect()
    log_info("User created", user_id=user["id"], email=user["email"], role=user["role"])
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(description="Create a helpdesk user account")
    parser.add_argument("email", help="Email address used to sign in")
    parser.add_argument("full_name", help="Display name for the account")
    parser.add_argument(
        "--role",
        default="admin",
        choices=("admin", "agent", "customer"),
        help="Role to assign (default: admin)",
    )
    parser.add_argument(
        "--password",
        help="Password for the account; prompted for when omitted",
    )
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    try:
        payload = UserCreate(
            email=args.email,
            password=password,
            full_name=args.full_name,
            role=args.role,
        )
    except SchemaValidationError as exc:
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ()))
            print(f"[ERROR] {field}: {error.get('msg')}", file=sys.stderr)
        return 2

    return await create_user(payload)


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(main()))
