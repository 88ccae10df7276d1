from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Header, Request, status

from helpdesk.api.dependencies.auth import get_current_user
from helpdesk.api.dependencies.services import get_app_settings, get_auth_service
from helpdesk.core.config import Settings
from helpdesk.core.errors import Unauthorized
from helpdesk.schemas.auth import (
    LoginRequest,
    LoginResponse,
    PasswordForgotRequest,
    PasswordResetRequest,
    PublicUser,
    RegistrationRequest,
    ValidateSessionRequest,
    ValidateSessionResponse,
)
from helpdesk.security.session import client_ip, client_user_agent, extract_bearer_token
from helpdesk.services.auth import AuthenticatedUser, AuthService
from helpdesk.services.users import public_user

router = APIRouter(prefix="/api/auth", tags=["Auth"])

_RESET_MESSAGE = "If an account exists for that email, a reset link has been issued"


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegistrationRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    user = await auth_service.register(
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        phone=payload.phone,
        ip_address=client_ip(request),
    )
    return {"success": True, "user": public_user(user)}


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = await auth_service.authenticate(
        payload.email,
        payload.password,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return LoginResponse(
        user=PublicUser(**result.user.public_profile()),
        session_token=result.session_token,
        expires_at=result.expires_at,
    )


@router.post("/validate", response_model=ValidateSessionResponse)
async def validate_session(
    payload: ValidateSessionRequest | None = Body(default=None),
    authorization: str | None = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
):
    token = extract_bearer_token(authorization) or (payload.session_token if payload else None)
    if not token:
        raise Unauthorized("Session token is required")
    user = await auth_service.validate_session(token)
    return ValidateSessionResponse(
        user=PublicUser(**user.public_profile()),
        permissions=list(user.permissions),
        expires_at=user.session.expires_at,
    )


@router.post("/logout")
async def logout(
    current_user: AuthenticatedUser = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.logout(current_user)
    return {"success": True, "message": "Logged out"}


@router.post("/password/forgot")
async def forgot_password(
    payload: PasswordForgotRequest,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    token = await auth_service.request_password_reset(payload.email)
    response: dict = {"success": True, "message": _RESET_MESSAGE}
    if token and settings.is_development:
        response["reset_token"] = token
    return response


@router.post("/password/reset")
async def reset_password(
    payload: PasswordResetRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    await auth_service.reset_password(payload.token, payload.password)
    return {"success": True, "message": "Password has been reset"}
