"""
Unit Tests for Message Template Store
"""
import pytest

from campaign_engine.domain.errors import CampaignValidationError, NotFoundError, TemplateRenderError
from campaign_engine.domain.models import MessageChannel, MessageTemplateCreate, MessageTemplateUpdate
from campaign_engine.domain.services.template_store import TemplateStore


@pytest.fixture
def store(session, renderer):
    return TemplateStore(session, renderer)


def sms_template(**overrides) -> MessageTemplateCreate:
    data = {"name": "Exam reminder", "channel": "SMS", "body": "Hi {{firstName}}, time for an exam!"}
    data.update(overrides)
    return MessageTemplateCreate.model_validate(data)


class TestTemplateStore:
    """Tests for TemplateStore CRUD."""

    def test_create_and_get(self, store):
        record = store.create(sms_template(name="  Exam reminder  "))

        fetched = store.get(record.id)
        assert fetched.name == "Exam reminder"
        assert fetched.channel == "SMS"
        assert fetched.is_default is False

    def test_create_rejects_bad_syntax(self, store):
        with pytest.raises(TemplateRenderError):
            store.create(sms_template(body="Hi {{ firstName"))

    def test_create_rejects_bad_subject(self, store):
        with pytest.raises(TemplateRenderError):
            store.create(sms_template(channel="EMAIL", subject="{% if %}"))

    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError, match="Template not found"):
            store.get("missing")

    def test_list_by_channel(self, store):
        store.create(sms_template(name="B sms"))
        store.create(sms_template(name="A sms"))
        store.create(sms_template(name="Email", channel="EMAIL", subject="Hello"))

        assert [t.name for t in store.list(MessageChannel.SMS)] == ["A sms", "B sms"]
        assert len(store.list()) == 3

    def test_update_partial(self, store):
        record = store.create(sms_template())

        store.update(record.id, MessageTemplateUpdate.model_validate({"body": "New body {{firstName}}"}))

        assert record.body == "New body {{firstName}}"
        assert record.name == "Exam reminder"

    def test_update_validates_body(self, store):
        record = store.create(sms_template())

        with pytest.raises(TemplateRenderError):
            store.update(record.id, MessageTemplateUpdate.model_validate({"body": "{{ broken"}))

    @pytest.mark.parametrize("field", ["name", "channel", "body"])
    def test_update_rejects_null_required_field(self, store, field):
        record = store.create(sms_template())

        with pytest.raises(CampaignValidationError, match=f"{field} is required"):
            store.update(record.id, MessageTemplateUpdate.model_validate({field: None}))

        assert record.body == "Hi {{firstName}}, time for an exam!"

    def test_delete_unused(self, store):
        record = store.create(sms_template())

        store.delete(record.id)

        with pytest.raises(NotFoundError):
            store.get(record.id)

    def test_delete_blocked_while_referenced(self, store, add_campaign):
        record = store.create(sms_template())
        add_campaign(name="Exam Drip", status="DRAFT", config={
            "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateId": record.id}],
        })

        with pytest.raises(CampaignValidationError, match="used by campaign 'Exam Drip'"):
            store.delete(record.id)

    def test_delete_allowed_when_only_archived_campaigns_reference(self, store, add_campaign):
        record = store.create(sms_template())
        add_campaign(status="ARCHIVED", config={
            "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateId": record.id}],
        })

        store.delete(record.id)
