"""
Campaign Analytics
Read-only rollups of recipient and message status counts.
"""
from typing import Any, Dict

from sqlalchemy.orm import Session

from campaign_engine.domain.errors import NotFoundError
from campaign_engine.domain.models.message import MessageStatus
from campaign_engine.domain.models.recipient import RecipientStatus
from campaign_engine.domain.models.run import CampaignRun
from campaign_engine.domain.services.campaign_lifecycle import to_campaign
from campaign_engine.infrastructure.storage.repositories import (
    CampaignRepository,
    MessageRepository,
    RecipientRepository,
    RunRepository,
)


class AnalyticsAggregator:
    """Aggregates campaign statistics. Never writes."""

    def __init__(self, session: Session, recent_runs_limit: int = 10):
        self.session = session
        self.recent_runs_limit = recent_runs_limit

    def get_campaign_analytics(self, campaign_id: str) -> Dict[str, Any]:
        """
        Build the analytics payload for one campaign.

        Every known status is present (zero when unused) so the counts always
        sum to the campaign's total recipients and messages.
        """
        campaign = CampaignRepository(self.session).get_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)

        recipient_counts = RecipientRepository(self.session).count_by_status(campaign_id)
        message_counts = MessageRepository(self.session).count_by_status(campaign_id)

        recipients_by_status = {s.value: recipient_counts.get(s.value, 0) for s in RecipientStatus}
        messages_by_status = {s.value: message_counts.get(s.value, 0) for s in MessageStatus}
        # Keep anything stored under a status this build does not know about
        for status, count in recipient_counts.items():
            recipients_by_status.setdefault(status, count)
        for status, count in message_counts.items():
            messages_by_status.setdefault(status, count)

        runs = RunRepository(self.session).recent(campaign_id, self.recent_runs_limit)

        return {
            "campaign": to_campaign(campaign).to_public_dict(),
            "recipientsByStatus": recipients_by_status,
            "messagesByStatus": messages_by_status,
            "totalRecipients": sum(recipients_by_status.values()),
            "totalMessages": sum(messages_by_status.values()),
            "recentRuns": [CampaignRun.model_validate(r).to_public_dict() for r in runs],
        }
