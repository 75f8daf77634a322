"""
Message Domain Models
Dispatched messages and reusable message templates.
"""
from typing import Optional
from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator

from campaign_engine.domain.models.base import CamelModel


class MessageChannel(str, Enum):
    """Delivery channel"""
    SMS = "SMS"
    EMAIL = "EMAIL"


class MessageStatus(str, Enum):
    """Status of a single dispatch attempt"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Message(CamelModel):
    """One dispatch attempt to one recipient"""
    id: str
    campaign_id: Optional[str] = None
    recipient_id: Optional[str] = None
    customer_id: str
    run_id: Optional[str] = None
    step_index: Optional[int] = None
    channel: MessageChannel
    subject: Optional[str] = None
    body: str
    status: MessageStatus = MessageStatus.PENDING
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class MessageTemplate(CamelModel):
    """Reusable template, owned independently of any campaign"""
    id: str
    name: str
    channel: MessageChannel
    campaign_type: Optional[str] = None
    subject: Optional[str] = None
    body: str
    is_default: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class MessageTemplateCreate(CamelModel):
    """Input for creating a message template"""
    name: str = Field(..., min_length=1, max_length=200)
    channel: MessageChannel
    campaign_type: Optional[str] = None
    subject: Optional[str] = None
    body: str = Field(..., min_length=1)
    is_default: bool = False

    @field_validator("name", "body")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class MessageTemplateUpdate(CamelModel):
    """Partial update for a message template"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    channel: Optional[MessageChannel] = None
    campaign_type: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = Field(None, min_length=1)
    is_default: Optional[bool] = None

    @field_validator("name", "body")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("must not be empty")
        return v
