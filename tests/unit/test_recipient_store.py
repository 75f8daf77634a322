"""
Unit Tests for Recipient Store
Enrollment idempotency, cooldown re-enrollment, removal and opt-outs.
"""
import pytest
from datetime import datetime, timedelta

from campaign_engine.domain.errors import CampaignValidationError, CooldownActiveError, NotFoundError
from campaign_engine.domain.models import MessageChannel, RecipientStatus
from campaign_engine.domain.services.recipient_store import (
    EnrollmentOutcome,
    RecipientStore,
    can_contact,
)
from campaign_engine.infrastructure.storage.models import Customer, RecipientRecord

NOW = datetime(2025, 6, 15, 12, 0, 0)


class TestEnroll:
    """Tests for RecipientStore.enroll()."""

    def test_enroll_creates_active_recipient(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        customer = add_customer()

        result = RecipientStore(session).enroll(campaign.id, customer.id, now=NOW)
        session.commit()

        assert result.outcome == EnrollmentOutcome.ENROLLED
        assert result.created
        assert result.recipient.status == RecipientStatus.ACTIVE.value
        assert result.recipient.last_step_index == -1
        assert result.recipient.enrolled_at == NOW

    def test_enroll_is_idempotent(self, session, add_campaign, add_customer):
        """Enrolling an ACTIVE recipient again returns the same row."""
        campaign = add_campaign()
        customer = add_customer()
        store = RecipientStore(session)

        first = store.enroll(campaign.id, customer.id, now=NOW)
        second = store.enroll(campaign.id, customer.id, now=NOW + timedelta(days=1))
        session.commit()

        assert second.outcome == EnrollmentOutcome.ALREADY_ACTIVE
        assert not second.created
        assert second.recipient.id == first.recipient.id
        assert second.recipient.enrolled_at == NOW
        assert session.query(RecipientRecord).count() == 1

    def test_enroll_without_steps_completes_immediately(self, session, add_campaign, add_customer):
        campaign = add_campaign(config={"steps": [], "cooldownDays": 0})
        customer = add_customer()
        store = RecipientStore(session)

        first = store.enroll(campaign.id, customer.id, now=NOW)
        assert first.outcome == EnrollmentOutcome.ENROLLED
        assert first.recipient.status == RecipientStatus.COMPLETED.value
        assert first.recipient.ended_at == NOW

        later = NOW + timedelta(days=1)
        again = store.enroll(campaign.id, customer.id, now=later)
        session.commit()

        assert again.outcome == EnrollmentOutcome.REENROLLED
        assert again.recipient.status == RecipientStatus.COMPLETED.value
        assert again.recipient.ended_at == later

    def test_unknown_campaign(self, session, add_customer):
        customer = add_customer()
        with pytest.raises(NotFoundError, match="Campaign not found"):
            RecipientStore(session).enroll("nope", customer.id, now=NOW)

    def test_unknown_customer(self, session, add_campaign):
        campaign = add_campaign()
        with pytest.raises(NotFoundError, match="Customer not found"):
            RecipientStore(session).enroll(campaign.id, "nope", now=NOW)

    def test_archived_campaign_rejected(self, session, add_campaign, add_customer):
        campaign = add_campaign(status="ARCHIVED")
        customer = add_customer()

        with pytest.raises(CampaignValidationError, match="archived"):
            RecipientStore(session).enroll(campaign.id, customer.id, now=NOW)

    def test_draft_campaign_accepts_enrollment(self, session, add_campaign, add_customer):
        campaign = add_campaign(status="DRAFT")
        customer = add_customer()

        result = RecipientStore(session).enroll(campaign.id, customer.id, now=NOW)

        assert result.outcome == EnrollmentOutcome.ENROLLED


class TestReenrollment:
    """Terminal recipients come back only after the cooldown."""

    def _completed(self, session, campaign, customer, ended_at):
        store = RecipientStore(session)
        record = store.enroll(campaign.id, customer.id, now=ended_at - timedelta(days=10)).recipient
        record.last_step_index = 2
        store.complete(record, ended_at)
        session.commit()
        return record

    def test_cooldown_blocks_reenrollment(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        customer = add_customer()
        self._completed(session, campaign, customer, NOW)

        with pytest.raises(CooldownActiveError) as exc_info:
            RecipientStore(session).enroll(campaign.id, customer.id, now=NOW + timedelta(days=10))

        assert exc_info.value.days_remaining == 20
        assert exc_info.value.code == "cooldown"

    def test_reenroll_after_cooldown_resets_progress(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        customer = add_customer()
        record = self._completed(session, campaign, customer, NOW)
        later = NOW + timedelta(days=30)

        result = RecipientStore(session).enroll(campaign.id, customer.id, now=later)

        assert result.outcome == EnrollmentOutcome.REENROLLED
        assert result.recipient.id == record.id
        assert result.recipient.status == RecipientStatus.ACTIVE.value
        assert result.recipient.enrolled_at == later
        assert result.recipient.last_step_index == -1
        assert result.recipient.ended_at is None

    def test_zero_cooldown_allows_immediate_reenrollment(self, session, add_campaign, add_customer):
        campaign = add_campaign(config={
            "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateBody": "Hi"}],
            "cooldownDays": 0,
        })
        customer = add_customer()
        self._completed(session, campaign, customer, NOW)

        result = RecipientStore(session).enroll(campaign.id, customer.id, now=NOW)

        assert result.outcome == EnrollmentOutcome.REENROLLED


class TestRemoveAndList:

    def test_remove_marks_removed(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        customer = add_customer()
        store = RecipientStore(session)
        recipient = store.enroll(campaign.id, customer.id, now=NOW).recipient

        removed = store.remove(recipient.id, now=NOW + timedelta(days=1))

        assert removed.status == RecipientStatus.REMOVED.value
        assert removed.ended_at == NOW + timedelta(days=1)

    def test_remove_unknown(self, session):
        with pytest.raises(NotFoundError, match="Recipient not found"):
            RecipientStore(session).remove("nope")

    def test_list_filters_by_status(self, session, add_campaign, add_customer):
        campaign = add_campaign()
        store = RecipientStore(session)
        active = store.enroll(campaign.id, add_customer(first_name="A").id, now=NOW).recipient
        gone = store.enroll(campaign.id, add_customer(first_name="B").id, now=NOW).recipient
        store.remove(gone.id, now=NOW)

        listed = store.list_recipients(campaign.id, status=RecipientStatus.ACTIVE)

        assert [r.id for r in listed] == [active.id]
        assert len(store.list_recipients(campaign.id)) == 2

    def test_list_unknown_campaign(self, session):
        with pytest.raises(NotFoundError):
            RecipientStore(session).list_recipients("nope")


class TestOptOut:
    """Tests for RecipientStore.process_opt_out()."""

    def test_opt_out_closes_active_enrollments(self, session, add_campaign, add_customer):
        first = add_campaign(name="First")
        second = add_campaign(name="Second")
        done = add_campaign(name="Done")
        customer = add_customer()
        store = RecipientStore(session)
        store.enroll(first.id, customer.id, now=NOW)
        store.enroll(second.id, customer.id, now=NOW)
        finished = store.enroll(done.id, customer.id, now=NOW).recipient
        store.complete(finished, NOW)
        session.flush()

        closed = store.process_opt_out(customer.id, "sms_reply", reason="STOP", now=NOW)
        session.commit()

        assert closed == 2
        statuses = {r.campaign_id: r.status for r in session.query(RecipientRecord).all()}
        assert statuses[first.id] == RecipientStatus.OPTED_OUT.value
        assert statuses[second.id] == RecipientStatus.OPTED_OUT.value
        assert statuses[done.id] == RecipientStatus.COMPLETED.value

        refreshed = session.get(Customer, customer.id)
        assert refreshed.marketing_opt_out is True
        assert refreshed.opt_out_reason == "STOP"
        assert refreshed.opt_out_by == "sms_reply"
        assert refreshed.opt_out_date == NOW

    def test_opt_out_unknown_customer(self, session):
        with pytest.raises(NotFoundError):
            RecipientStore(session).process_opt_out("nope", "staff")


class TestCanContact:

    def test_sms_requires_opt_in_and_phone(self):
        assert can_contact(Customer(sms_opt_in=True, phone="+1416", marketing_opt_out=False), MessageChannel.SMS)
        assert not can_contact(Customer(sms_opt_in=False, phone="+1416", marketing_opt_out=False), MessageChannel.SMS)
        assert not can_contact(Customer(sms_opt_in=True, phone="", marketing_opt_out=False), MessageChannel.SMS)

    def test_email_requires_opt_in_and_address(self):
        assert can_contact(Customer(email_opt_in=True, email="a@b.c", marketing_opt_out=False), MessageChannel.EMAIL)
        assert not can_contact(Customer(email_opt_in=True, email=None, marketing_opt_out=False), MessageChannel.EMAIL)

    def test_marketing_opt_out_wins(self):
        customer = Customer(sms_opt_in=True, phone="+1416", marketing_opt_out=True)
        assert not can_contact(customer, MessageChannel.SMS)
