from __future__ import annotations

from typing import Any

from fastapi import status


class HelpdeskError(Exception):
    """Base error carrying the HTTP status and the message shown to callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(HelpdeskError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidCredentials(HelpdeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid email or password"


class AccountInactive(HelpdeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Account is inactive"


class InvalidOrExpiredSession(HelpdeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired session"


class Unauthorized(HelpdeskError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Forbidden(HelpdeskError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFound(HelpdeskError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(HelpdeskError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class UpstreamUnavailable(HelpdeskError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Upstream service unavailable"


class ConnectionFailed(UpstreamUnavailable):
    """The mail server could not be reached or refused the login.

    ``credentials_rejected`` marks failures attributable to the configured
    address/app password; those are reported as a 400 so operators can tell a
    bad secret apart from a network problem.
    """

    default_message = "Mail server connection failed"

    def __init__(self, message: str | None = None, *, credentials_rejected: bool = False) -> None:
        super().__init__(
            message,
            status_code=(
                status.HTTP_400_BAD_REQUEST
                if credentials_rejected
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
        )
        self.credentials_rejected = credentials_rejected


def classify_database_error(exc: Exception) -> HelpdeskError | None:
    """Translate a raw datastore error into a taxonomy error, when recognisable."""

    text = f"{type(exc).__name__} {exc}".lower()
    if "no such table" in text or ("relation" in text and "does not exist" in text):
        return UpstreamUnavailable(
            "Database schema is missing; run the migrations",
            details={"hint": "Start the application or run the migrations to create the tables"},
        )
    if any(marker in text for marker in ("unique constraint", "uniqueviolation", "duplicate key")):
        return Conflict("Record already exists")
    if "foreign key constraint" in text or "foreignkeyviolation" in text:
        return ValidationError("Referenced record does not exist")
    return None
