"""Domain models"""

# Messages and templates
from .message import (
    MessageChannel,
    MessageStatus,
    Message,
    MessageTemplate,
    MessageTemplateCreate,
    MessageTemplateUpdate,
)

# Segments
from .segment import (
    SegmentLogic,
    SegmentOperator,
    SegmentCondition,
    SegmentDefinition,
)

# Campaigns
from .campaign import (
    ALLOWED_TRANSITIONS,
    CampaignStatus,
    CampaignType,
    EnrollmentMode,
    RunFrequency,
    DripStep,
    CampaignConfig,
    ScheduleConfig,
    Campaign,
    CampaignCreate,
    CampaignUpdate,
)

# Recipients and runs
from .recipient import (
    RecipientStatus,
    TERMINAL_STATUSES,
    CampaignRecipient,
)
from .run import (
    CampaignRun,
    RecipientFailure,
    RunResult,
)

from .caller import (
    UserRole,
    CallerContext,
)

__all__ = [
    # Messages
    "MessageChannel",
    "MessageStatus",
    "Message",
    "MessageTemplate",
    "MessageTemplateCreate",
    "MessageTemplateUpdate",
    # Segments
    "SegmentLogic",
    "SegmentOperator",
    "SegmentCondition",
    "SegmentDefinition",
    # Campaigns
    "ALLOWED_TRANSITIONS",
    "CampaignStatus",
    "CampaignType",
    "EnrollmentMode",
    "RunFrequency",
    "DripStep",
    "CampaignConfig",
    "ScheduleConfig",
    "Campaign",
    "CampaignCreate",
    "CampaignUpdate",
    # Recipients and runs
    "RecipientStatus",
    "TERMINAL_STATUSES",
    "CampaignRecipient",
    "CampaignRun",
    "RecipientFailure",
    "RunResult",
    # Caller
    "UserRole",
    "CallerContext",
]
