"""
Campaign Engine Errors
Exception hierarchy raised by the domain services.

The service boundary (CampaignService) converts these into
{"error": ..., "code": ...} results; nothing here should reach a caller raw.
"""
from typing import List, Optional


class CampaignEngineError(Exception):
    """Base class for all campaign engine errors."""
    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class CampaignValidationError(CampaignEngineError):
    """Raised when input fails validation (missing field, bad config)."""
    code = "validation"

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        self.issues = issues or []
        super().__init__(message)


class SegmentValidationError(CampaignValidationError):
    """Raised when a segment condition references an unknown field or bad operator."""


class TemplateRenderError(CampaignValidationError):
    """Raised when a message template cannot be parsed or rendered."""


class NotFoundError(CampaignEngineError):
    """Raised when a campaign, recipient, template or customer does not exist."""
    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(CampaignEngineError):
    """Raised when a campaign status change is outside the lifecycle graph."""
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition campaign from {current} to {target}")


class CooldownActiveError(CampaignEngineError):
    """Raised when re-enrolling a terminal recipient before its cooldown elapsed."""
    code = "cooldown"

    def __init__(self, customer_id: str, days_remaining: int):
        self.customer_id = customer_id
        self.days_remaining = days_remaining
        super().__init__(
            f"Customer {customer_id} is in cooldown for {days_remaining} more day(s)"
        )


class AuthorizationError(CampaignEngineError):
    """Raised when the caller's role does not permit the operation."""
    code = "forbidden"

    def __init__(self, message: str = "Admin only"):
        super().__init__(message)


class RunInProgressError(CampaignEngineError):
    """Raised when a run is requested while another run holds the campaign lock."""
    code = "conflict"

    def __init__(self, campaign_id: str):
        self.campaign_id = campaign_id
        super().__init__(f"A run is already in progress for campaign {campaign_id}")
