"""
Shared fixtures for campaign engine tests.

Every test gets a fresh in-memory SQLite database and a RunProcessor wired to
a recording dispatch client, an in-process run lock and a logging
notification sink.
"""
from datetime import datetime
from typing import List, Optional

import pytest

from campaign_engine.core.config import ConfigManager
from campaign_engine.domain.models import CallerContext, UserRole
from campaign_engine.domain.services.recipient_store import RecipientStore
from campaign_engine.domain.services.segment_evaluator import SegmentEvaluator
from campaign_engine.domain.services.template_renderer import MessageTemplateRenderer
from campaign_engine.infrastructure.dispatch import DispatchClient, DispatchResult
from campaign_engine.infrastructure.locks import InMemoryRunLock
from campaign_engine.infrastructure.notifications import LoggingNotificationSink
from campaign_engine.infrastructure.storage.database import (
    create_db_engine,
    create_session_factory,
    get_db,
    init_schema,
)
from campaign_engine.infrastructure.storage.models import (
    CampaignRecord,
    Customer,
    Exam,
    InsurancePolicy,
    Order,
    Prescription,
)
from campaign_engine.services.campaign_service import CampaignService
from campaign_engine.services.run_processor import RunProcessor

# Fixed reference time for deterministic date math
NOW = datetime(2025, 6, 15, 12, 0, 0)


class FakeDispatchClient(DispatchClient):
    """Records every send; optionally rejects given addresses."""

    def __init__(self, fail_for: Optional[List[str]] = None):
        self.sent = []
        self.fail_for = set(fail_for or [])

    @property
    def provider_name(self) -> str:
        return "fake"

    async def send(self, channel, to, body, subject=None) -> DispatchResult:
        self.sent.append({"channel": channel, "to": to, "body": body, "subject": subject})
        if to in self.fail_for:
            return DispatchResult(success=False, provider="fake", channel=channel, to=to,
                                  error="Carrier rejected")
        return DispatchResult(success=True, external_id=f"fake_{len(self.sent)}",
                              provider="fake", channel=channel, to=to)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def config():
    return ConfigManager(env="test")


@pytest.fixture
def evaluator():
    return SegmentEvaluator(sample_size=10)


@pytest.fixture
def renderer(config):
    return MessageTemplateRenderer(config)


@pytest.fixture
def dispatch_client():
    return FakeDispatchClient()


@pytest.fixture
def notifier():
    return LoggingNotificationSink()


@pytest.fixture
def processor(session_factory, dispatch_client, notifier, evaluator, renderer, config):
    return RunProcessor(
        session_factory=session_factory,
        dispatch_client=dispatch_client,
        run_lock=InMemoryRunLock(),
        notifier=notifier,
        evaluator=evaluator,
        renderer=renderer,
        config=config,
    )


@pytest.fixture
def service(session_factory, processor, evaluator, renderer, config):
    return CampaignService(
        session_factory=session_factory,
        run_processor=processor,
        evaluator=evaluator,
        renderer=renderer,
        config=config,
    )


@pytest.fixture
def admin():
    return CallerContext(user_id="admin-1", role=UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
def staff():
    return CallerContext(user_id="staff-1", role=UserRole.STAFF, name="Sam Staff")


@pytest.fixture
def add_customer(session):
    """Insert a contactable customer; keyword arguments override defaults."""
    def _add(**overrides) -> Customer:
        values = {
            "first_name": "Jane",
            "last_name": "Doe",
            "phone": "+14165550101",
            "email": "jane@example.com",
            "sms_opt_in": True,
            "email_opt_in": True,
            "is_active": True,
            "created_at": NOW,
        }
        values.update(overrides)
        customer = Customer(**values)
        session.add(customer)
        session.commit()
        return customer
    return _add


@pytest.fixture
def add_order(session):
    def _add(customer_id: str, **overrides) -> Order:
        values = {
            "customer_id": customer_id,
            "status": "PICKED_UP",
            "total_real": 300.0,
            "created_at": NOW,
            "picked_up_at": NOW,
        }
        values.update(overrides)
        order = Order(**values)
        session.add(order)
        session.commit()
        return order
    return _add


@pytest.fixture
def add_exam(session):
    def _add(customer_id: str, exam_date: datetime) -> Exam:
        exam = Exam(customer_id=customer_id, exam_date=exam_date)
        session.add(exam)
        session.commit()
        return exam
    return _add


@pytest.fixture
def add_prescription(session):
    def _add(customer_id: str, **overrides) -> Prescription:
        values = {"customer_id": customer_id, "type": "SINGLE_VISION", "date": NOW, "is_active": True}
        values.update(overrides)
        rx = Prescription(**values)
        session.add(rx)
        session.commit()
        return rx
    return _add


@pytest.fixture
def add_insurance(session):
    def _add(customer_id: str, **overrides) -> InsurancePolicy:
        values = {"customer_id": customer_id, "provider_name": "Sun Life", "renewal_month": 3,
                  "is_active": True, "created_at": NOW}
        values.update(overrides)
        policy = InsurancePolicy(**values)
        session.add(policy)
        session.commit()
        return policy
    return _add


@pytest.fixture
def enroll(session_factory):
    """Enroll a customer at an explicit time, outside the service layer."""
    def _enroll(campaign_id: str, customer_id: str, now: datetime = NOW):
        with get_db(session_factory) as db:
            return RecipientStore(db).enroll(campaign_id, customer_id, now=now)
    return _enroll



@pytest.fixture
def add_campaign(session):
    """Insert a campaign row directly, bypassing lifecycle validation."""
    def _add(config: Optional[dict] = None, **overrides) -> CampaignRecord:
        values = {
            "name": "Test Campaign",
            "type": "CUSTOM",
            "status": "ACTIVE",
            "config": config or {
                "steps": [{"stepIndex": 0, "delayDays": 0, "channel": "SMS", "templateBody": "Hi {{firstName}}!"}],
                "stopOnConversion": False,
                "cooldownDays": 30,
                "enrollmentMode": "manual",
            },
            "schedule_config": {"frequency": "daily"},
            "created_at": NOW,
        }
        values.update(overrides)
        campaign = CampaignRecord(**values)
        session.add(campaign)
        session.commit()
        return campaign
    return _add
