"""
Campaign Recipient Domain Models
"""
from typing import Optional
from datetime import datetime
from enum import Enum

from campaign_engine.domain.models.base import CamelModel


class RecipientStatus(str, Enum):
    """Progress of one customer through one campaign"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CONVERTED = "CONVERTED"
    REMOVED = "REMOVED"
    OPTED_OUT = "OPTED_OUT"


# Terminal statuses are never advanced again; they may be re-enrolled after cooldown
TERMINAL_STATUSES = {
    RecipientStatus.COMPLETED,
    RecipientStatus.CONVERTED,
    RecipientStatus.REMOVED,
    RecipientStatus.OPTED_OUT,
}


class CampaignRecipient(CamelModel):
    """Join of a campaign and a customer"""
    id: str
    campaign_id: str
    customer_id: str
    status: RecipientStatus = RecipientStatus.ACTIVE
    enrolled_at: datetime
    last_step_index: int = -1
    last_message_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    conversion_value: Optional[float] = None
