"""
Repositories for campaign engine tables.

Each repository works inside the caller's session; committing is the caller's
job (see database.get_db) so several writes can share one unit of work.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from campaign_engine.infrastructure.storage.models import (
    CampaignRecord,
    Customer,
    Exam,
    InsurancePolicy,
    MessageRecord,
    MessageTemplateRecord,
    Order,
    Prescription,
    RecipientRecord,
    RunRecord,
)


class CampaignRepository:
    """Repository for campaign operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, campaign: CampaignRecord) -> CampaignRecord:
        self.session.add(campaign)
        self.session.flush()
        return campaign

    def get_by_id(self, campaign_id: str, for_update: bool = False) -> Optional[CampaignRecord]:
        """Get a campaign by ID."""
        stmt = select(CampaignRecord).where(CampaignRecord.id == campaign_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def list_campaigns(self, status: Optional[str] = None,
                       limit: int = 50, offset: int = 0) -> List[CampaignRecord]:
        """List campaigns with optional status filter."""
        stmt = select(CampaignRecord)
        if status:
            stmt = stmt.where(CampaignRecord.status == status)
        stmt = stmt.order_by(desc(CampaignRecord.created_at), CampaignRecord.id).offset(offset).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def list_due(self, now: datetime) -> List[CampaignRecord]:
        """ACTIVE campaigns whose next run is due. Unscheduled ones only run on demand."""
        stmt = (
            select(CampaignRecord)
            .where(CampaignRecord.status == "ACTIVE")
            .where(CampaignRecord.next_run_at.isnot(None), CampaignRecord.next_run_at <= now)
            .order_by(CampaignRecord.next_run_at, CampaignRecord.id)
        )
        return list(self.session.execute(stmt).scalars())

    def list_not_archived(self) -> List[CampaignRecord]:
        stmt = select(CampaignRecord).where(CampaignRecord.status != "ARCHIVED")
        return list(self.session.execute(stmt).scalars())

    def delete(self, campaign: CampaignRecord) -> None:
        self.session.delete(campaign)
        self.session.flush()


class RecipientRepository:
    """Repository for campaign recipient operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, recipient_id: str, for_update: bool = False) -> Optional[RecipientRecord]:
        stmt = select(RecipientRecord).where(RecipientRecord.id == recipient_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_customer(self, campaign_id: str, customer_id: str) -> Optional[RecipientRecord]:
        stmt = select(RecipientRecord).where(
            RecipientRecord.campaign_id == campaign_id,
            RecipientRecord.customer_id == customer_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def map_by_customer(self, campaign_id: str) -> Dict[str, RecipientRecord]:
        """All recipients of a campaign keyed by customer id."""
        stmt = select(RecipientRecord).where(RecipientRecord.campaign_id == campaign_id)
        return {r.customer_id: r for r in self.session.execute(stmt).scalars()}

    def list_recipients(self, campaign_id: str, status: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> List[RecipientRecord]:
        stmt = select(RecipientRecord).where(RecipientRecord.campaign_id == campaign_id)
        if status:
            stmt = stmt.where(RecipientRecord.status == status)
        stmt = stmt.order_by(RecipientRecord.enrolled_at, RecipientRecord.id).offset(offset).limit(limit)
        return list(self.session.execute(stmt).scalars())

    def active_ids(self, campaign_id: str) -> List[str]:
        """IDs of ACTIVE recipients, in enrollment order."""
        stmt = (
            select(RecipientRecord.id)
            .where(RecipientRecord.campaign_id == campaign_id, RecipientRecord.status == "ACTIVE")
            .order_by(RecipientRecord.enrolled_at, RecipientRecord.id)
        )
        return list(self.session.execute(stmt).scalars())

    def list_by_ids(self, recipient_ids: Iterable[str]) -> List[RecipientRecord]:
        ids = list(recipient_ids)
        if not ids:
            return []
        stmt = select(RecipientRecord).where(RecipientRecord.id.in_(ids))
        return list(self.session.execute(stmt).scalars())

    def list_active_for_customer(self, customer_id: str) -> List[RecipientRecord]:
        stmt = select(RecipientRecord).where(
            RecipientRecord.customer_id == customer_id,
            RecipientRecord.status == "ACTIVE",
        )
        return list(self.session.execute(stmt).scalars())

    def count_by_status(self, campaign_id: str) -> Dict[str, int]:
        stmt = (
            select(RecipientRecord.status, func.count(RecipientRecord.id))
            .where(RecipientRecord.campaign_id == campaign_id)
            .group_by(RecipientRecord.status)
        )
        return {status: count for status, count in self.session.execute(stmt)}


class MessageRepository:
    """Repository for message operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, message: MessageRecord) -> MessageRecord:
        self.session.add(message)
        self.session.flush()
        return message

    def get_by_id(self, message_id: str) -> Optional[MessageRecord]:
        return self.session.get(MessageRecord, message_id)

    def count_by_status(self, campaign_id: str) -> Dict[str, int]:
        stmt = (
            select(MessageRecord.status, func.count(MessageRecord.id))
            .where(MessageRecord.campaign_id == campaign_id)
            .group_by(MessageRecord.status)
        )
        return {status: count for status, count in self.session.execute(stmt)}


class RunRepository:
    """Repository for campaign run records."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, run: RunRecord) -> RunRecord:
        self.session.add(run)
        self.session.flush()
        return run

    def get_by_id(self, run_id: str) -> Optional[RunRecord]:
        return self.session.get(RunRecord, run_id)

    def recent(self, campaign_id: str, limit: int = 10) -> List[RunRecord]:
        stmt = (
            select(RunRecord)
            .where(RunRecord.campaign_id == campaign_id)
            .order_by(desc(RunRecord.started_at), desc(RunRecord.id))
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())


class TemplateRepository:
    """Repository for message templates."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, template: MessageTemplateRecord) -> MessageTemplateRecord:
        self.session.add(template)
        self.session.flush()
        return template

    def get_by_id(self, template_id: str) -> Optional[MessageTemplateRecord]:
        return self.session.get(MessageTemplateRecord, template_id)

    def get_many(self, template_ids: Iterable[str]) -> Dict[str, MessageTemplateRecord]:
        ids = [t for t in template_ids if t]
        if not ids:
            return {}
        stmt = select(MessageTemplateRecord).where(MessageTemplateRecord.id.in_(ids))
        return {t.id: t for t in self.session.execute(stmt).scalars()}

    def list_templates(self, channel: Optional[str] = None) -> List[MessageTemplateRecord]:
        stmt = select(MessageTemplateRecord)
        if channel:
            stmt = stmt.where(MessageTemplateRecord.channel == channel)
        return list(self.session.execute(stmt.order_by(MessageTemplateRecord.name)).scalars())

    def delete(self, template: MessageTemplateRecord) -> None:
        self.session.delete(template)
        self.session.flush()


class CustomerRepository:
    """Read access to practice records owned by other subsystems."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, customer_id: str) -> Optional[Customer]:
        return self.session.get(Customer, customer_id)

    def get_many(self, customer_ids: Iterable[str]) -> Dict[str, Customer]:
        ids = list(customer_ids)
        if not ids:
            return {}
        stmt = select(Customer).where(Customer.id.in_(ids))
        return {c.id: c for c in self.session.execute(stmt).scalars()}

    def latest_picked_up_order(self, customer_id: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.customer_id == customer_id, Order.status == "PICKED_UP")
            .order_by(desc(Order.picked_up_at))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_active_prescription(self, customer_id: str) -> Optional[Prescription]:
        stmt = (
            select(Prescription)
            .where(Prescription.customer_id == customer_id, Prescription.is_active.is_(True))
            .order_by(desc(Prescription.date))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_active_insurance(self, customer_id: str) -> Optional[InsurancePolicy]:
        stmt = (
            select(InsurancePolicy)
            .where(InsurancePolicy.customer_id == customer_id, InsurancePolicy.is_active.is_(True))
            .order_by(desc(InsurancePolicy.created_at))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_exam(self, customer_id: str) -> Optional[Exam]:
        stmt = (
            select(Exam)
            .where(Exam.customer_id == customer_id)
            .order_by(desc(Exam.exam_date))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def qualifying_orders(self, customer_ids: Iterable[str], since: datetime,
                          as_of: datetime) -> List[Order]:
        """Non-draft, non-cancelled orders created in [since, as_of], oldest first."""
        ids = list(customer_ids)
        if not ids:
            return []
        stmt = (
            select(Order)
            .where(
                Order.customer_id.in_(ids),
                Order.status.notin_(["DRAFT", "CANCELLED"]),
                Order.created_at >= since,
                Order.created_at <= as_of,
            )
            .order_by(Order.created_at, Order.id)
        )
        return list(self.session.execute(stmt).scalars())
