"""
Recipient Store
Enrollment, removal and opt-out handling for campaign recipients.

All methods work inside the caller's session. Enrollment is idempotent on
(campaign_id, customer_id): the insert runs in a savepoint and a lost race
falls back to the row the other writer created.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campaign_engine.domain.errors import (
    CampaignValidationError,
    CooldownActiveError,
    NotFoundError,
)
from campaign_engine.domain.models.campaign import CampaignConfig, CampaignStatus
from campaign_engine.domain.models.message import MessageChannel
from campaign_engine.domain.models.recipient import RecipientStatus
from campaign_engine.infrastructure.storage.models import CampaignRecord, Customer, RecipientRecord
from campaign_engine.infrastructure.storage.repositories import (
    CampaignRepository,
    CustomerRepository,
    RecipientRepository,
)
from campaign_engine.utils.clock import utcnow, whole_days_between

logger = logging.getLogger(__name__)


def can_contact(customer: Customer, channel: MessageChannel) -> bool:
    """Whether a customer may receive marketing on a channel."""
    if customer.marketing_opt_out:
        return False
    if channel == MessageChannel.SMS:
        return bool(customer.sms_opt_in) and bool(customer.phone)
    if channel == MessageChannel.EMAIL:
        return bool(customer.email_opt_in) and bool(customer.email)
    return False


def contact_address(customer: Customer, channel: MessageChannel) -> Optional[str]:
    return customer.phone if channel == MessageChannel.SMS else customer.email


class EnrollmentOutcome(str, Enum):
    ENROLLED = "enrolled"
    ALREADY_ACTIVE = "already_active"
    REENROLLED = "reenrolled"


@dataclass
class EnrollmentResult:
    recipient: RecipientRecord
    outcome: EnrollmentOutcome

    @property
    def created(self) -> bool:
        return self.outcome != EnrollmentOutcome.ALREADY_ACTIVE


class RecipientStore:
    """Manages CampaignRecipient rows for one unit of work."""

    def __init__(self, session: Session):
        self.session = session
        self.campaigns = CampaignRepository(session)
        self.recipients = RecipientRepository(session)
        self.customers = CustomerRepository(session)

    def enroll(
        self,
        campaign_id: str,
        customer_id: str,
        now: Optional[datetime] = None,
        campaign: Optional[CampaignRecord] = None,
    ) -> EnrollmentResult:
        """
        Enroll a customer in a campaign.

        Raises:
            NotFoundError: Unknown campaign or customer
            CampaignValidationError: Campaign is archived
            CooldownActiveError: Terminal recipient still inside cooldown_days
        """
        now = now or utcnow()
        campaign = campaign or self.campaigns.get_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        if campaign.status == CampaignStatus.ARCHIVED.value:
            raise CampaignValidationError("Cannot enroll customers in an archived campaign")
        if self.customers.get_by_id(customer_id) is None:
            raise NotFoundError("Customer", customer_id)

        config = CampaignConfig.model_validate(campaign.config or {})

        existing = self.recipients.get_by_customer(campaign_id, customer_id)
        if existing is not None:
            return self._reenroll(existing, config, now)

        try:
            with self.session.begin_nested():
                record = RecipientRecord(
                    campaign_id=campaign_id,
                    customer_id=customer_id,
                    status=RecipientStatus.ACTIVE.value,
                    enrolled_at=now,
                    last_step_index=-1,
                )
                self.session.add(record)
                self.session.flush()
        except IntegrityError:
            # Another writer inserted the same pair first
            existing = self.recipients.get_by_customer(campaign_id, customer_id)
            if existing is None:
                raise
            logger.info(f"Concurrent enrollment of {customer_id} in {campaign_id}, using existing row")
            return self._reenroll(existing, config, now)

        if not config.steps:
            # Nothing to send; the enrollment ends immediately
            self.complete(record, now)
            self.session.flush()
        logger.info(f"Enrolled customer {customer_id} in campaign {campaign_id}")
        return EnrollmentResult(record, EnrollmentOutcome.ENROLLED)

    def _reenroll(self, record: RecipientRecord, config: CampaignConfig, now: datetime) -> EnrollmentResult:
        if record.status == RecipientStatus.ACTIVE.value:
            return EnrollmentResult(record, EnrollmentOutcome.ALREADY_ACTIVE)

        ended_at = record.ended_at or record.last_message_at or record.enrolled_at
        elapsed = whole_days_between(ended_at, now)
        if elapsed < config.cooldown_days:
            raise CooldownActiveError(record.customer_id, config.cooldown_days - elapsed)

        record.status = RecipientStatus.ACTIVE.value
        record.enrolled_at = now
        record.last_step_index = -1
        record.last_message_at = None
        record.ended_at = None
        record.converted_at = None
        record.conversion_value = None
        if not config.steps:
            self.complete(record, now)
        self.session.flush()
        logger.info(f"Re-enrolled customer {record.customer_id} in campaign {record.campaign_id} after cooldown")
        return EnrollmentResult(record, EnrollmentOutcome.REENROLLED)

    def remove(self, recipient_id: str, now: Optional[datetime] = None) -> RecipientRecord:
        """Mark a recipient REMOVED. Message history is kept."""
        record = self.recipients.get_by_id(recipient_id, for_update=True)
        if record is None:
            raise NotFoundError("Recipient", recipient_id)
        if record.status == RecipientStatus.ACTIVE.value or record.ended_at is None:
            record.ended_at = now or utcnow()
        record.status = RecipientStatus.REMOVED.value
        self.session.flush()
        logger.info(f"Removed recipient {recipient_id} from campaign {record.campaign_id}")
        return record

    def list_recipients(
        self,
        campaign_id: str,
        status: Optional[RecipientStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[RecipientRecord]:
        if self.campaigns.get_by_id(campaign_id) is None:
            raise NotFoundError("Campaign", campaign_id)
        return self.recipients.list_recipients(
            campaign_id,
            status=status.value if status else None,
            limit=limit,
            offset=offset,
        )

    def complete(self, record: RecipientRecord, now: datetime) -> None:
        record.status = RecipientStatus.COMPLETED.value
        record.ended_at = now

    def convert(self, record: RecipientRecord, now: datetime, value: Optional[float]) -> None:
        record.status = RecipientStatus.CONVERTED.value
        record.ended_at = now
        record.converted_at = now
        record.conversion_value = value

    def process_opt_out(
        self,
        customer_id: str,
        source: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Opt a customer out of all marketing.

        Returns:
            Number of ACTIVE enrollments moved to OPTED_OUT
        """
        now = now or utcnow()
        customer = self.customers.get_by_id(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)

        customer.marketing_opt_out = True
        customer.opt_out_reason = reason or source
        customer.opt_out_date = now
        customer.opt_out_by = source

        active = self.recipients.list_active_for_customer(customer_id)
        for record in active:
            record.status = RecipientStatus.OPTED_OUT.value
            record.ended_at = now
        self.session.flush()

        logger.info(f"Customer {customer_id} opted out via {source}; closed {len(active)} active enrollments")
        return len(active)
