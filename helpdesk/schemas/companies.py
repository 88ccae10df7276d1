from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CompanyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    domain: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("company_size", "companySize", "size")
    )
    notes: Optional[str] = None
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class CompanyUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(default=None, max_length=255)
    domain: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("company_size", "companySize", "size")
    )
    notes: Optional[str] = None
    is_active: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("is_active", "isActive")
    )


class CompanyResponse(BaseModel):
    id: int
    name: str
    domain: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
