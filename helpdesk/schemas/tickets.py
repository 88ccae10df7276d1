from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator


class TicketCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(min_length=1, max_length=500)
    from_email: EmailStr = Field(validation_alias=AliasChoices("from", "from_email", "fromEmail"))
    content: str = Field(min_length=1, validation_alias=AliasChoices("content", "body", "description"))
    priority: str = "medium"
    category: Optional[str] = None
    customer_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_name", "customerName")
    )
    customer_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_id", "customerId")
    )
    customer_phone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_phone", "customerPhone")
    )
    company_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )

    @field_validator("customer_id", mode="before")
    @classmethod
    def _stringify_customer_id(cls, value):
        if value is None:
            return None
        return str(value)


class TicketUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    assigned_to: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("assigned_to", "assignedTo")
    )
    customer_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_name", "customerName")
    )
    customer_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_id", "customerId")
    )
    customer_phone: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_phone", "customerPhone")
    )
    customer_email: Optional[EmailStr] = Field(
        default=None, validation_alias=AliasChoices("customer_email", "customerEmail")
    )
    company_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("company_id", "companyId")
    )


class TicketStatusUpdate(BaseModel):
    status: str = Field(min_length=1)


class CommentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, validation_alias=AliasChoices("message", "comment"))
    internal: bool = Field(default=True, validation_alias=AliasChoices("internal", "isInternal"))


class ResponseCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, validation_alias=AliasChoices("message", "response"))
    subject: Optional[str] = None


class TicketResponse(BaseModel):
    id: int
    ticket_number: str
    subject: str
    body: Optional[str] = None
    status: str
    priority: str
    category: str
    source: str
    is_manual: bool = False
    message_id: str
    from_email: Optional[str] = None
    to_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    company_id: Optional[int] = None
    assigned_to: Optional[int] = None
    created_by: Optional[int] = None
    date_received: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    resolution_time: Optional[int] = None


class ConversationEntry(BaseModel):
    id: int
    ticket_id: int
    message_type: str
    from_email: Optional[str] = None
    to_email: Optional[str] = None
    subject: Optional[str] = None
    message: str
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
