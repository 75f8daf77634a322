"""
Campaign Domain Models
"""
from pydantic import Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, timedelta, timezone
from enum import Enum

from campaign_engine.domain.models.base import CamelModel
from campaign_engine.domain.models.message import MessageChannel
from campaign_engine.domain.models.segment import SegmentDefinition


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


# Lifecycle graph: DRAFT -> ACTIVE <-> PAUSED -> ARCHIVED (terminal)
ALLOWED_TRANSITIONS = {
    CampaignStatus.DRAFT: {CampaignStatus.ACTIVE, CampaignStatus.ARCHIVED},
    CampaignStatus.ACTIVE: {CampaignStatus.PAUSED, CampaignStatus.ARCHIVED},
    CampaignStatus.PAUSED: {CampaignStatus.ACTIVE, CampaignStatus.ARCHIVED},
    CampaignStatus.ARCHIVED: set(),
}


class CampaignType(str, Enum):
    """Kind of campaign; selects the drip preset when no config is given"""
    ONE_TIME_BLAST = "ONE_TIME_BLAST"
    RECURRING_REMINDER = "RECURRING_REMINDER"
    DRIP = "DRIP"
    EXAM_REMINDER = "EXAM_REMINDER"
    WALKIN_FOLLOWUP = "WALKIN_FOLLOWUP"
    SECOND_PAIR = "SECOND_PAIR"
    PRESCRIPTION_EXPIRY = "PRESCRIPTION_EXPIRY"
    POST_PURCHASE_REFERRAL = "POST_PURCHASE_REFERRAL"
    BIRTHDAY = "BIRTHDAY"
    DORMANT_REACTIVATION = "DORMANT_REACTIVATION"
    INSURANCE_RENEWAL = "INSURANCE_RENEWAL"
    FAMILY_ADDON = "FAMILY_ADDON"
    CUSTOM = "CUSTOM"


class EnrollmentMode(str, Enum):
    """How recipients join a campaign"""
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class RunFrequency(str, Enum):
    """Cadence between processing passes"""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


FREQUENCY_INTERVALS = {
    RunFrequency.DAILY: timedelta(days=1),
    RunFrequency.WEEKLY: timedelta(days=7),
    RunFrequency.MONTHLY: timedelta(days=30),
}


class DripStep(CamelModel):
    """One message in a drip sequence"""
    step_index: int = Field(..., ge=0)
    delay_days: int = Field(..., ge=0, description="Days after enrollment (absolute schedule)")
    channel: MessageChannel
    template_id: Optional[str] = Field(None, description="Reference to a MessageTemplate")
    template_body: Optional[str] = Field(None, description="Inline body used when no template_id")
    template_subject: Optional[str] = None

    @model_validator(mode="after")
    def require_body_source(self) -> "DripStep":
        if not self.template_id and not (self.template_body and self.template_body.strip()):
            raise ValueError(f"step {self.step_index} needs a templateId or templateBody")
        return self


class CampaignConfig(CamelModel):
    """Drip parameters"""
    steps: List[DripStep] = Field(default_factory=list)
    stop_on_conversion: bool = False
    cooldown_days: int = Field(30, ge=0)
    enrollment_mode: EnrollmentMode = EnrollmentMode.MANUAL

    @field_validator("enrollment_mode", mode="before")
    @classmethod
    def accept_auto_alias(cls, v):
        if isinstance(v, str) and v.lower() == "auto":
            return EnrollmentMode.AUTOMATIC
        return v

    @field_validator("steps")
    @classmethod
    def strictly_increasing(cls, steps: List[DripStep]) -> List[DripStep]:
        for previous, current in zip(steps, steps[1:]):
            if current.step_index <= previous.step_index:
                raise ValueError("steps must have strictly increasing stepIndex")
        return steps


class ScheduleConfig(CamelModel):
    """When the campaign should be processed"""
    frequency: RunFrequency = RunFrequency.DAILY
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode="after")
    def check_window(self) -> "ScheduleConfig":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self

    def first_run_at(self, now: datetime) -> datetime:
        """First run time on activation: now, or the start date if later."""
        if self.start_date and self.start_date > now:
            return self.start_date
        return now

    def next_run_after(self, moment: datetime) -> Optional[datetime]:
        """Next run after a completed pass, or None when the schedule is exhausted."""
        interval = FREQUENCY_INTERVALS.get(self.frequency)
        if interval is None:
            return None
        next_run = moment + interval
        if self.end_date and next_run > self.end_date:
            return None
        return next_run


class Campaign(CamelModel):
    """Marketing campaign"""
    id: str
    name: str
    description: Optional[str] = None
    type: CampaignType
    status: CampaignStatus = CampaignStatus.DRAFT
    segment_config: Optional[SegmentDefinition] = None
    config: CampaignConfig = Field(default_factory=CampaignConfig)
    schedule_config: ScheduleConfig = Field(default_factory=ScheduleConfig)
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    total_sent: int = 0
    total_converted: int = 0
    total_revenue: float = 0.0
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class CampaignCreate(CamelModel):
    """Input for creating a campaign"""
    name: str = Field(..., min_length=1, max_length=200)
    type: CampaignType
    description: Optional[str] = None
    segment_config: Optional[SegmentDefinition] = None
    config: Optional[CampaignConfig] = None
    schedule_config: Optional[ScheduleConfig] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name is required")
        return v.strip()


class CampaignUpdate(CamelModel):
    """Partial update; status changes go through the lifecycle operations"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[CampaignType] = None
    description: Optional[str] = None
    segment_config: Optional[SegmentDefinition] = None
    config: Optional[CampaignConfig] = None
    schedule_config: Optional[ScheduleConfig] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("name must not be empty")
        return v.strip() if v else v
