from __future__ import annotations

import asyncio
from typing import Any

from fastapi import Request

from helpdesk.core.logging import log_audit_event, log_error, log_warning
from helpdesk.repositories.audit_logs import ActivityLogRepository
from helpdesk.security.session import client_ip, client_user_agent


class ActivityLogger:
    """Best-effort activity trail.

    :meth:`record` schedules the write on the running loop and returns
    immediately; failures are logged and never reach the caller. Pending
    writes are tracked so :meth:`drain` can await them on shutdown.
    """

    def __init__(self, repository: ActivityLogRepository) -> None:
        self._repository = repository
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def record(
        self,
        *,
        action: str,
        user_id: int | None = None,
        resource_type: str | None = None,
        resource_id: Any = None,
        details: dict[str, Any] | None = None,
        request: Request | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> asyncio.Task[None] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_warning("Activity not recorded outside of an event loop", action=action)
            return None
        task = loop.create_task(
            self._write(
                action=action,
                user_id=user_id,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                ip_address=ip_address or client_ip(request),
                user_agent=user_agent or client_user_agent(request),
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(
        self,
        *,
        action: str,
        user_id: int | None,
        resource_type: str | None,
        resource_id: Any,
        details: dict[str, Any] | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> None:
        try:
            await self._repository.create_entry(
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception as exc:
            log_error(
                "Failed to record activity",
                action=action,
                user_id=user_id,
                error=str(exc),
            )
            return
        log_audit_event(
            "ACTIVITY",
            action,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
        )

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def list_activity(
        self,
        *,
        user_id: int | None = None,
        resource_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        limit = max(1, min(int(limit), 500))
        return await self._repository.list_entries(
            user_id=user_id, resource_type=resource_type, limit=limit
        )
