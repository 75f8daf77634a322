"""
Campaign Run Domain Models
One record per processing pass; immutable once completed.
"""
from typing import Optional, List
from datetime import datetime

from pydantic import Field

from campaign_engine.domain.models.base import CamelModel


class CampaignRun(CamelModel):
    """Persisted audit record of a processing pass"""
    id: str
    campaign_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    recipients_processed: int = 0
    recipients_enrolled: int = 0
    recipients_converted: int = 0
    recipients_completed: int = 0
    recipients_skipped: int = 0
    messages_queued: int = 0
    messages_failed: int = 0
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class RecipientFailure(CamelModel):
    """A recipient that could not be advanced during a run"""
    recipient_id: str
    customer_id: str
    error: str


class RunResult(CamelModel):
    """Outcome of RunProcessor.process_campaign"""
    campaign_id: str
    campaign_name: Optional[str] = None
    run_id: Optional[str] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    recipients_enrolled: int = 0
    cooldown_blocked: int = 0
    recipients_processed: int = 0
    recipients_converted: int = 0
    recipients_completed: int = 0
    recipients_skipped: int = 0
    messages_queued: int = 0
    messages_failed: int = 0
    conversion_revenue: float = 0.0
    stopped_early: bool = False
    next_run_at: Optional[datetime] = None
    error: Optional[str] = None
    failures: List[RecipientFailure] = Field(default_factory=list)
