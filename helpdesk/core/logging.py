from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger


def configure_logging() -> None:
    from helpdesk.core.config import get_settings

    logger.remove()
    log_format = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"
    logger.add(sink=lambda msg: print(msg, end=""), format=log_format)

    settings = get_settings()
    log_path = settings.audit_log_path
    if log_path:
        log_path = log_path.expanduser()
        if _ensure_log_path(log_path):
            try:
                logger.add(
                    str(log_path),
                    format=log_format,
                    level="INFO",
                    encoding="utf-8",
                    enqueue=True,
                )
            except OSError as exc:
                logger.warning(
                    f"AUDIT LOG FILE DISABLED - unable to open file path={log_path} error={exc}"
                )


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


def log_error(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).error(f"{message} | {_format_meta(meta)}")
    else:
        logger.error(message)


def log_info(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).info(f"{message} | {_format_meta(meta)}")
    else:
        logger.info(message)


def log_warning(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).warning(f"{message} | {_format_meta(meta)}")
    else:
        logger.warning(message)


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"AUDIT LOG FILE DISABLED - unable to create directory path={path.parent} "
            f"error={exc}"
        )
        return False
    return True


def log_audit_event(
    event_type: str,
    action: str,
    *,
    user_id: int | None = None,
    user_email: str | None = None,
    resource_type: str | None = None,
    resource_id: Any = None,
    ip_address: str | None = None,
    **extra_meta,
) -> None:
    """
    Write an activity entry to the log sinks in a single-line format.

    Format: ``{event_type} {action} user_id={...} resource_type={...} resource_id={...} ip={...} [extra_meta]``

    Args:
        event_type: Category of the event (e.g. "AUTH", "ACTIVITY")
        action: Specific action performed (e.g. "login", "user_deleted")
        user_id: ID of the acting user, if any
        user_email: Email of the acting user
        resource_type: Type of resource acted upon (e.g. "ticket", "user")
        resource_id: Identifier of the resource acted upon
        ip_address: Client IP address
        **extra_meta: Additional metadata appended as ``key=value`` pairs
    """
    meta: dict[str, Any] = {}

    if user_id is not None:
        meta["user_id"] = user_id
    if user_email:
        meta["user_email"] = user_email
    if resource_type:
        meta["resource_type"] = resource_type
    if resource_id is not None:
        meta["resource_id"] = resource_id
    if ip_address:
        meta["ip"] = ip_address

    meta.update(extra_meta)

    message = f"{event_type} {action}"
    if meta:
        message = f"{message} | {_format_meta(meta)}"
        logger.bind(**meta).info(message)
    else:
        logger.info(message)
