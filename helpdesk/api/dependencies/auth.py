from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Depends, Header, Request

from helpdesk.api.dependencies.services import get_auth_service
from helpdesk.core.errors import Forbidden, Unauthorized
from helpdesk.security.session import extract_bearer_token
from helpdesk.services.auth import AuthenticatedUser, AuthService


async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthenticatedUser:
    token = extract_bearer_token(authorization)
    if not token:
        raise Unauthorized("Missing bearer token")
    user = await auth_service.validate_session(token)
    request.state.user = user
    return user


def require_permission(*permissions: str) -> Callable[..., Awaitable[AuthenticatedUser]]:
    """Dependency granting access when the caller holds any of ``permissions``."""

    async def dependency(
        current_user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if not any(current_user.has_permission(permission) for permission in permissions):
            raise Forbidden()
        return current_user

    return dependency
