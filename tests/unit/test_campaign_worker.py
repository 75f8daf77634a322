"""
Unit Tests for Campaign Worker
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from campaign_engine.workers.campaign_worker import CampaignWorker


def fake_service(outcome):
    service = MagicMock()
    service.process_due_campaigns = AsyncMock(return_value=outcome)
    service.run_processor.wait_for_dispatches = AsyncMock()
    return service


class TestCampaignWorker:

    def test_poll_interval_from_config(self, config):
        worker = CampaignWorker(service=fake_service({"success": True, "results": []}), config=config)
        assert worker.poll_interval == 60.0

    @pytest.mark.asyncio
    async def test_run_once_counts_non_skipped(self, config):
        service = fake_service({"success": True, "results": [
            {"campaignId": "a", "skipped": False, "messagesQueued": 3, "messagesFailed": 1},
            {"campaignId": "b", "skipped": True, "messagesQueued": 0, "messagesFailed": 0},
        ]})
        worker = CampaignWorker(service=service, config=config)

        ran = await worker.run_once()

        assert ran == 1
        service.run_processor.wait_for_dispatches.assert_awaited_once()
        stats = worker.get_stats()
        assert stats["passes"] == 1
        assert stats["messages_queued"] == 3
        assert stats["messages_failed"] == 1

    @pytest.mark.asyncio
    async def test_run_once_raises_on_error(self, config):
        worker = CampaignWorker(
            service=fake_service({"error": "Failed to process campaigns", "code": "storage"}),
            config=config,
        )

        with pytest.raises(RuntimeError, match="Failed to process campaigns"):
            await worker.run_once()

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self, config, monkeypatch):
        worker = CampaignWorker(
            service=fake_service({"error": "Failed to process campaigns", "code": "storage"}),
            config=config,
        )
        worker.MAX_CONSECUTIVE_ERRORS = 2
        monkeypatch.setattr("campaign_engine.workers.campaign_worker.asyncio.sleep", AsyncMock())

        await worker.run()

        assert worker.running is False
        assert worker._service.process_due_campaigns.await_count == 2

    @pytest.mark.asyncio
    async def test_end_to_end_pass(self, service, admin, add_customer, dispatch_client, config):
        customer = add_customer()
        campaign_id = service.create_campaign(admin, {
            "name": "Blast",
            "type": "ONE_TIME_BLAST",
            "config": {"steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateBody": "Hello {{firstName}}"}]},
        })["id"]
        service.activate_campaign(admin, campaign_id)
        service.enroll_customer(admin, campaign_id, customer.id)
        worker = CampaignWorker(service=service, config=config)

        assert await worker.run_once() == 1
        assert [m["body"] for m in dispatch_client.sent] == ["Hello Jane"]
        # Next daily pass is not due yet
        assert await worker.run_once() == 0
