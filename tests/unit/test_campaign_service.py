"""
Unit Tests for Campaign Service
The operation boundary: result dicts, error codes and admin checks.
"""
import pytest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from campaign_engine.domain.services.campaign_lifecycle import CampaignLifecycleManager
from campaign_engine.infrastructure.storage.database import get_db
from campaign_engine.infrastructure.storage.models import MessageRecord, RecipientRecord, RunRecord
from campaign_engine.utils.clock import utcnow


def blast_payload(**overrides):
    data = {
        "name": "Spring Blast",
        "type": "ONE_TIME_BLAST",
        "config": {"steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateBody": "Hi {{firstName}}!"}]},
    }
    data.update(overrides)
    return data


class TestCampaignOperations:
    """Create, read, update and transition through the service."""

    def test_create_and_get(self, service, admin):
        created = service.create_campaign(admin, blast_payload(description="For everyone"))

        assert created["success"]
        campaign = service.get_campaign(admin, created["id"])["campaign"]
        assert campaign["name"] == "Spring Blast"
        assert campaign["status"] == "DRAFT"
        assert campaign["createdById"] == "admin-1"
        assert campaign["config"]["steps"][0]["templateBody"] == "Hi {{firstName}}!"

    def test_staff_can_create(self, service, staff):
        assert service.create_campaign(staff, blast_payload())["success"]

    def test_missing_name_is_validation_error(self, service, admin):
        result = service.create_campaign(admin, {"type": "CUSTOM"})

        assert result["code"] == "validation"
        assert "name" in result["error"]

    def test_unknown_type_is_validation_error(self, service, admin):
        result = service.create_campaign(admin, blast_payload(type="SMOKE_SIGNAL"))
        assert result["code"] == "validation"

    def test_get_unknown(self, service, admin):
        result = service.get_campaign(admin, "missing")
        assert result == {"error": "Campaign not found: missing", "code": "not_found"}

    def test_list_with_bad_status(self, service, admin):
        result = service.list_campaigns(admin, status="RUNNING")

        assert result["code"] == "validation"
        assert "Invalid status 'RUNNING'" in result["error"]

    def test_list_by_status(self, service, admin):
        first = service.create_campaign(admin, blast_payload(name="One"))["id"]
        service.create_campaign(admin, blast_payload(name="Two"))
        service.activate_campaign(admin, first)

        active = service.list_campaigns(admin, status="ACTIVE")["campaigns"]

        assert [c["id"] for c in active] == [first]

    def test_update_rejects_status_field(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        result = service.update_campaign(admin, campaign_id, {"status": "ACTIVE"})

        assert result["code"] == "validation"
        assert "activate, pause or archive" in result["error"]

    def test_update_name(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        assert service.update_campaign(admin, campaign_id, {"name": "Renamed"}) == {"success": True}
        assert service.get_campaign(admin, campaign_id)["campaign"]["name"] == "Renamed"

    def test_activate_returns_next_run(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        result = service.activate_campaign(admin, campaign_id)

        assert result["success"]
        assert result["nextRunAt"] is not None

    def test_preset_type_can_be_activated(self, service, admin):
        campaign_id = service.create_campaign(admin, {"name": "Annual exams", "type": "EXAM_REMINDER"})["id"]

        result = service.activate_campaign(admin, campaign_id)

        assert result["success"]
        segment = service.get_campaign(admin, campaign_id)["campaign"]["segmentConfig"]
        assert segment["conditions"][0]["field"] == "daysSinceLastExam"

    def test_activate_with_utc_offset_start_date(self, service, admin):
        campaign_id = service.create_campaign(
            admin, blast_payload(scheduleConfig={"startDate": "2099-01-01T09:00:00Z"})
        )["id"]

        result = service.activate_campaign(admin, campaign_id)

        assert result == {"success": True, "nextRunAt": "2099-01-01T09:00:00"}

    def test_invalid_transition_code(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        result = service.pause_campaign(admin, campaign_id)

        assert result["code"] == "invalid_transition"

    def test_delete_active_rejected(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        service.activate_campaign(admin, campaign_id)

        assert service.delete_campaign(admin, campaign_id)["code"] == "validation"
        assert service.archive_campaign(admin, campaign_id) == {"success": True}
        assert service.delete_campaign(admin, campaign_id) == {"success": True}

    def test_storage_error_is_generic(self, service, admin):
        """Database failures are logged and reported without internals."""
        with patch.object(CampaignLifecycleManager, "get", side_effect=SQLAlchemyError("connection reset")):
            result = service.get_campaign(admin, "anything")

        assert result == {"error": "Failed to load campaign", "code": "storage"}


class TestRecipientOperations:

    def test_enroll_and_list(self, service, admin, add_customer):
        customer = add_customer()
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        enrolled = service.enroll_customer(admin, campaign_id, customer.id)
        again = service.enroll_customer(admin, campaign_id, customer.id)
        listed = service.list_recipients(admin, campaign_id)["recipients"]

        assert enrolled["outcome"] == "enrolled"
        assert again["outcome"] == "already_active"
        assert again["recipientId"] == enrolled["recipientId"]
        assert [r["customerId"] for r in listed] == [customer.id]
        assert listed[0]["status"] == "ACTIVE"

    def test_enroll_unknown_customer(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        assert service.enroll_customer(admin, campaign_id, "nobody")["code"] == "not_found"

    def test_cooldown_code(self, service, admin, add_customer):
        customer = add_customer()
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        recipient_id = service.enroll_customer(admin, campaign_id, customer.id)["recipientId"]
        service.remove_recipient(admin, recipient_id)

        result = service.enroll_customer(admin, campaign_id, customer.id)

        assert result["code"] == "cooldown"

    def test_opt_out(self, service, admin, add_customer):
        customer = add_customer()
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        service.enroll_customer(admin, campaign_id, customer.id)

        result = service.process_opt_out(admin, customer.id, "staff", "Asked in store")

        assert result == {"success": True, "recipientsClosed": 1}
        assert service.list_recipients(admin, campaign_id, status="OPTED_OUT")["recipients"]


class TestRuns:

    @pytest.mark.asyncio
    async def test_trigger_requires_admin(self, service, staff, admin, session_factory):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        service.activate_campaign(admin, campaign_id)

        result = await service.trigger_campaign_run(staff, campaign_id)

        assert result == {"error": "Admin only", "code": "forbidden"}
        with get_db(session_factory) as db:
            assert db.query(RunRecord).count() == 0

    @pytest.mark.asyncio
    async def test_trigger_unknown_campaign(self, service, admin):
        result = await service.trigger_campaign_run(admin, "missing")
        assert result["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_trigger_paused_is_skipped(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        service.activate_campaign(admin, campaign_id)
        service.pause_campaign(admin, campaign_id)

        result = await service.trigger_campaign_run(admin, campaign_id)

        assert result["success"]
        assert result["result"]["skipped"] is True

    @pytest.mark.asyncio
    async def test_process_due_campaigns(self, service, admin, add_customer):
        customer = add_customer()
        campaign_id = service.create_campaign(admin, blast_payload())["id"]
        service.activate_campaign(admin, campaign_id)
        service.enroll_customer(admin, campaign_id, customer.id)

        outcome = await service.process_due_campaigns(now=utcnow() + timedelta(minutes=1))
        await service.run_processor.wait_for_dispatches()

        assert outcome["success"]
        [result] = outcome["results"]
        assert result["campaignId"] == campaign_id
        assert result["messagesQueued"] == 1


class TestSegmentsAndTemplates:

    def test_preview_segment(self, service, staff, add_customer):
        add_customer(city="Toronto")
        add_customer(city="Ottawa")

        result = service.preview_segment(staff, {"conditions": [{"field": "city", "operator": "eq", "value": "Toronto"}]})

        assert result["count"] == 1
        assert result["sample"][0]["firstName"] == "Jane"

    def test_preview_never_enrolls(self, service, admin, staff, add_customer, session_factory):
        """Previewing an automatic campaign's segment leaves every table untouched."""
        add_customer(city="Toronto")
        add_customer(city="Toronto", phone="+14165550102")
        campaign_id = service.create_campaign(admin, blast_payload(
            config={
                "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateBody": "Hi {{firstName}}!"}],
                "enrollmentMode": "automatic",
            },
            segmentConfig={"conditions": [{"field": "city", "operator": "eq", "value": "Toronto"}]},
        ))["id"]
        service.activate_campaign(admin, campaign_id)
        before = service.get_campaign(admin, campaign_id)["campaign"]

        result = service.preview_segment(staff, before["segmentConfig"])

        assert result["count"] == 2
        after = service.get_campaign(admin, campaign_id)["campaign"]
        assert after == before
        with get_db(session_factory) as db:
            assert db.query(RecipientRecord).count() == 0
            assert db.query(MessageRecord).count() == 0
            assert db.query(RunRecord).count() == 0

    def test_preview_invalid_segment(self, service, staff):
        result = service.preview_segment(staff, {"conditions": [{"field": "nope", "operator": "eq", "value": 1}]})
        assert result == {"error": "Unknown segment field: nope", "code": "validation"}

    def test_metadata_lists(self, service, staff):
        fields = service.list_segment_fields(staff)["fields"]
        variables = service.list_template_variables(staff)["variables"]

        assert any(f["field"] == "daysSinceLastExam" for f in fields)
        assert {"key": "firstName", "label": "First Name"} in variables

    def test_template_lifecycle(self, service, admin):
        created = service.create_message_template(admin, {"name": "Reminder", "channel": "SMS", "body": "Hi {{firstName}}"})
        template_id = created["id"]

        campaign_id = service.create_campaign(admin, blast_payload(config={
            "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateId": template_id}],
        }))["id"]

        assert service.update_message_template(admin, template_id, {"body": "Hello {{firstName}}"}) == {"success": True}
        assert service.list_message_templates(admin, "SMS")["templates"][0]["body"] == "Hello {{firstName}}"
        assert service.delete_message_template(admin, template_id)["code"] == "validation"

        service.delete_campaign(admin, campaign_id)
        assert service.delete_message_template(admin, template_id) == {"success": True}

    def test_template_null_body_is_validation_error(self, service, admin):
        template_id = service.create_message_template(
            admin, {"name": "Reminder", "channel": "SMS", "body": "Hi {{firstName}}"}
        )["id"]

        result = service.update_message_template(admin, template_id, {"body": None})

        assert result == {"error": "body is required", "code": "validation"}

    def test_template_bad_channel(self, service, admin):
        assert service.list_message_templates(admin, "FAX")["code"] == "validation"

    def test_analytics(self, service, admin):
        campaign_id = service.create_campaign(admin, blast_payload())["id"]

        analytics = service.get_campaign_analytics(admin, campaign_id)

        assert analytics["totalRecipients"] == 0
        assert analytics["campaign"]["id"] == campaign_id
