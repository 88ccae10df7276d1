from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    """Login credentials. The email is matched as-is; no format check happens here."""

    email: str = ""
    password: str = ""


class ValidateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sessionToken", "session_token", "token"),
    )


class RegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("full_name", "fullName", "name"),
    )
    phone: Optional[str] = None


class PasswordForgotRequest(BaseModel):
    email: str


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(min_length=1)
    password: str = Field(
        min_length=8,
        validation_alias=AliasChoices("password", "newPassword", "new_password"),
    )


class SetupAdminRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(
        default="Administrator",
        validation_alias=AliasChoices("full_name", "fullName", "name"),
    )


class PublicUser(BaseModel):
    id: int
    email: str
    full_name: str
    role: str


class LoginResponse(BaseModel):
    success: bool = True
    user: PublicUser
    session_token: str
    expires_at: datetime


class ValidateSessionResponse(BaseModel):
    success: bool = True
    valid: bool = True
    user: PublicUser
    permissions: list[str]
    expires_at: datetime
