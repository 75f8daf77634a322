"""
SQLAlchemy Database Models
Campaign engine tables plus the read-only practice records segments query.
"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
import uuid

from campaign_engine.utils.clock import utcnow

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Practice records (owned by other subsystems, read by segments/conversions)
# ---------------------------------------------------------------------------

class Customer(Base):
    """Customer model - maps to customers table"""
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=new_id)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(30))
    email = Column(String(255))
    date_of_birth = Column(Date)
    gender = Column(String(20))
    city = Column(String(100))
    tags = Column(Text)  # comma separated
    family_id = Column(String(36), index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_onboarded = Column(Boolean, nullable=False, default=False)
    marketing_opt_out = Column(Boolean, nullable=False, default=False)
    sms_opt_in = Column(Boolean, nullable=False, default=False)
    email_opt_in = Column(Boolean, nullable=False, default=False)
    opt_out_reason = Column(Text)
    opt_out_date = Column(DateTime)
    opt_out_by = Column(String(100))
    created_at = Column(DateTime, default=utcnow)

    orders = relationship("Order", back_populates="customer")


class Order(Base):
    """Order model - maps to orders table"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="DRAFT")
    total_real = Column(Float, nullable=False, default=0.0)
    frame_brand = Column(String(100))
    frame_model = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    picked_up_at = Column(DateTime)

    customer = relationship("Customer", back_populates="orders")


class Exam(Base):
    """Eye exam model - maps to exams table"""
    __tablename__ = "exams"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    exam_date = Column(DateTime, nullable=False)


class Prescription(Base):
    """Prescription model - maps to prescriptions table"""
    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    type = Column(String(30))
    date = Column(DateTime, nullable=False, default=utcnow)
    expiry_date = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)


class InsurancePolicy(Base):
    """Insurance policy model - maps to insurance_policies table"""
    __tablename__ = "insurance_policies"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    provider_name = Column(String(100))
    renewal_month = Column(Integer)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Campaign engine tables
# ---------------------------------------------------------------------------

class CampaignRecord(Base):
    """Campaign model - maps to campaigns table"""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="DRAFT", index=True)
    segment_config = Column(JSONType)
    config = Column(JSONType, nullable=False, default=dict)
    schedule_config = Column(JSONType, nullable=False, default=dict)
    next_run_at = Column(DateTime, index=True)
    last_run_at = Column(DateTime)
    total_sent = Column(Integer, nullable=False, default=0)
    total_converted = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Float, nullable=False, default=0.0)
    created_by_id = Column(String(36))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    recipients = relationship("RecipientRecord", back_populates="campaign", cascade="all, delete-orphan")
    runs = relationship("RunRecord", back_populates="campaign", cascade="all, delete-orphan")
    messages = relationship("MessageRecord", back_populates="campaign", cascade="all, delete-orphan")


class RecipientRecord(Base):
    """Campaign recipient model - maps to campaign_recipients table"""
    __tablename__ = "campaign_recipients"
    __table_args__ = (
        UniqueConstraint("campaign_id", "customer_id", name="uq_campaign_recipient"),
        Index("ix_campaign_recipients_campaign_status", "campaign_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ACTIVE")
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)
    last_step_index = Column(Integer, nullable=False, default=-1)
    last_message_at = Column(DateTime)
    ended_at = Column(DateTime)
    converted_at = Column(DateTime)
    conversion_value = Column(Float)

    # Relationships
    campaign = relationship("CampaignRecord", back_populates="recipients")
    customer = relationship("Customer")


class RunRecord(Base):
    """Campaign run model - maps to campaign_runs table"""
    __tablename__ = "campaign_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    recipients_processed = Column(Integer, nullable=False, default=0)
    recipients_enrolled = Column(Integer, nullable=False, default=0)
    recipients_converted = Column(Integer, nullable=False, default=0)
    recipients_completed = Column(Integer, nullable=False, default=0)
    recipients_skipped = Column(Integer, nullable=False, default=0)
    messages_queued = Column(Integer, nullable=False, default=0)
    messages_failed = Column(Integer, nullable=False, default=0)
    duration_ms = Column(Integer)
    error = Column(Text)

    campaign = relationship("CampaignRecord", back_populates="runs")


class MessageRecord(Base):
    """Message model - maps to messages table"""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), index=True)
    recipient_id = Column(String(36), index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    run_id = Column(String(36))
    step_index = Column(Integer)
    channel = Column(String(10), nullable=False)
    subject = Column(Text)
    body = Column(Text, nullable=False)
    status = Column(String(10), nullable=False, default="PENDING")
    external_id = Column(String(255))
    error_message = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    sent_at = Column(DateTime)
    failed_at = Column(DateTime)

    campaign = relationship("CampaignRecord", back_populates="messages")


class MessageTemplateRecord(Base):
    """Message template model - maps to message_templates table"""
    __tablename__ = "message_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    channel = Column(String(10), nullable=False)
    campaign_type = Column(String(50))
    subject = Column(Text)
    body = Column(Text, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
