from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("full_name", "fullName"),
    )
    role: str = "customer"
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    company_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )
    department: Optional[str] = None
    job_title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("job_title", "jobTitle")
    )
    phone: Optional[str] = None


class UserUpdate(BaseModel):
    """Explicit patch: only these fields can change, and only when supplied."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("full_name", "fullName")
    )
    role: Optional[str] = None
    is_active: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_active", "isActive")
    )
    company_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )
    department: Optional[str] = None
    job_title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("job_title", "jobTitle")
    )
    phone: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: str
    is_active: bool
    company_id: Optional[int] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    phone: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
