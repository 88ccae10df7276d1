from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field


class MailSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    unread_only: bool = Field(
        default=True, validation_alias=AliasChoices("unread_only", "unreadOnly")
    )
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    days: int = Field(default=7, ge=1, le=365)


class MailSettingsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mail_address: EmailStr = Field(
        validation_alias=AliasChoices("mail_address", "mailAddress", "gmail_address", "gmailAddress")
    )
    app_password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("app_password", "appPassword", "gmail_app_password"),
    )
    refresh_interval: int = Field(
        default=5, validation_alias=AliasChoices("refresh_interval", "refreshInterval")
    )
    default_status: str = Field(
        default="new", validation_alias=AliasChoices("default_status", "defaultStatus")
    )
