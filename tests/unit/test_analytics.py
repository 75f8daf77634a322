"""
Unit Tests for Campaign Analytics
"""
import pytest
from datetime import datetime, timedelta

from campaign_engine.domain.errors import NotFoundError
from campaign_engine.domain.services.analytics import AnalyticsAggregator
from campaign_engine.infrastructure.storage.models import MessageRecord, RecipientRecord, RunRecord

NOW = datetime(2025, 6, 15, 12, 0, 0)


class TestAnalyticsAggregator:
    """Tests for AnalyticsAggregator.get_campaign_analytics()."""

    def test_counts_are_zero_filled(self, session, add_campaign):
        campaign = add_campaign()

        analytics = AnalyticsAggregator(session).get_campaign_analytics(campaign.id)

        assert analytics["recipientsByStatus"] == {
            "ACTIVE": 0, "COMPLETED": 0, "CONVERTED": 0, "REMOVED": 0, "OPTED_OUT": 0,
        }
        assert analytics["messagesByStatus"] == {"PENDING": 0, "SENT": 0, "FAILED": 0}
        assert analytics["totalRecipients"] == 0
        assert analytics["recentRuns"] == []
        assert analytics["campaign"]["id"] == campaign.id

    def test_counts_sum_to_totals(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        statuses = ["ACTIVE", "ACTIVE", "COMPLETED", "CONVERTED"]
        for index, status in enumerate(statuses):
            customer = add_customer(first_name=f"C{index}")
            session.add(RecipientRecord(campaign_id=campaign.id, customer_id=customer.id,
                                        status=status, enrolled_at=NOW))
            session.add(MessageRecord(campaign_id=campaign.id, customer_id=customer.id, channel="SMS",
                                      body="hi", status="SENT" if index else "FAILED", created_at=NOW))
        session.commit()

        analytics = AnalyticsAggregator(session).get_campaign_analytics(campaign.id)

        assert analytics["recipientsByStatus"]["ACTIVE"] == 2
        assert analytics["recipientsByStatus"]["CONVERTED"] == 1
        assert analytics["totalRecipients"] == 4
        assert analytics["messagesByStatus"]["SENT"] == 3
        assert analytics["messagesByStatus"]["FAILED"] == 1
        assert analytics["totalMessages"] == 4

    def test_recent_runs_newest_first_and_limited(self, session, add_campaign):
        campaign = add_campaign()
        for day in range(5):
            session.add(RunRecord(campaign_id=campaign.id, started_at=NOW + timedelta(days=day),
                                  messages_queued=day))
        session.commit()

        analytics = AnalyticsAggregator(session, recent_runs_limit=3).get_campaign_analytics(campaign.id)

        assert [r["messagesQueued"] for r in analytics["recentRuns"]] == [4, 3, 2]

    def test_unknown_campaign(self, session):
        with pytest.raises(NotFoundError):
            AnalyticsAggregator(session).get_campaign_analytics("missing")
