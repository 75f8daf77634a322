"""
Campaign Lifecycle Manager
Campaign CRUD and status transitions.

Status graph:
    DRAFT -> ACTIVE <-> PAUSED
    any non-archived -> ARCHIVED (terminal)
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from campaign_engine.domain.errors import (
    CampaignValidationError,
    InvalidTransitionError,
    NotFoundError,
)
from campaign_engine.domain.models.campaign import (
    ALLOWED_TRANSITIONS,
    Campaign,
    CampaignConfig,
    CampaignCreate,
    CampaignStatus,
    CampaignUpdate,
    EnrollmentMode,
    ScheduleConfig,
)
from campaign_engine.domain.models.segment import SegmentDefinition
from campaign_engine.domain.services.drip_presets import get_drip_config
from campaign_engine.domain.services.segment_evaluator import SegmentEvaluator
from campaign_engine.domain.services.segment_presets import get_segment_preset
from campaign_engine.domain.services.template_renderer import MessageTemplateRenderer
from campaign_engine.infrastructure.storage.models import CampaignRecord
from campaign_engine.infrastructure.storage.repositories import (
    CampaignRepository,
    TemplateRepository,
)
from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _dump(model) -> Optional[dict]:
    return model.model_dump(mode="json", by_alias=True) if model is not None else None


def to_campaign(record: CampaignRecord) -> Campaign:
    return Campaign.model_validate(record)


class CampaignLifecycleManager:
    """
    Creates, updates and transitions campaigns.

    Config blobs are validated before they are stored: segment fields against
    the evaluator's registry, inline bodies against the template renderer and
    step template ids against the template table.
    """

    def __init__(
        self,
        session: Session,
        evaluator: SegmentEvaluator,
        renderer: MessageTemplateRenderer,
    ):
        self.session = session
        self.evaluator = evaluator
        self.renderer = renderer
        self.campaigns = CampaignRepository(session)
        self.templates = TemplateRepository(session)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_config(self, config: CampaignConfig) -> None:
        referenced = {s.template_id for s in config.steps if s.template_id}
        found = self.templates.get_many(referenced)
        missing = sorted(referenced - set(found))
        if missing:
            raise CampaignValidationError(f"Unknown template(s): {', '.join(missing)}")

        for step in config.steps:
            if step.template_id:
                template = found[step.template_id]
                if template.channel != step.channel.value:
                    raise CampaignValidationError(
                        f"Step {step.step_index} is {step.channel.value} but template "
                        f"'{template.name}' is {template.channel}"
                    )
            if step.template_body:
                self.renderer.validate(step.template_body)
            if step.template_subject:
                self.renderer.validate(step.template_subject)

    def _validate_segment(self, segment: Optional[SegmentDefinition]) -> None:
        if segment is not None:
            self.evaluator.validate(segment)

    def _require_runnable(self, record: CampaignRecord) -> None:
        config = CampaignConfig.model_validate(record.config or {})
        if config.enrollment_mode == EnrollmentMode.AUTOMATIC and not record.segment_config:
            raise CampaignValidationError("Automatic enrollment requires a segment")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, data: CampaignCreate, created_by_id: Optional[str] = None,
               now: Optional[datetime] = None) -> CampaignRecord:
        """
        Create a DRAFT campaign.

        Missing config falls back to the type's drip preset; an automatic
        campaign without a segment gets the type's segment preset.
        """
        now = now or utcnow()
        config = data.config or get_drip_config(data.type)
        schedule = data.schedule_config or ScheduleConfig()
        segment = data.segment_config
        if segment is None and config.enrollment_mode == EnrollmentMode.AUTOMATIC:
            segment = get_segment_preset(data.type, now)
        self._validate_config(config)
        self._validate_segment(segment)

        record = CampaignRecord(
            name=data.name,
            description=data.description,
            type=data.type.value,
            status=CampaignStatus.DRAFT.value,
            segment_config=_dump(segment),
            config=_dump(config),
            schedule_config=_dump(schedule),
            created_by_id=created_by_id,
            created_at=now,
            updated_at=now,
        )
        self.campaigns.add(record)
        logger.info(f"Created campaign {record.id} ({record.name}, {record.type})")
        return record

    def get(self, campaign_id: str, for_update: bool = False) -> CampaignRecord:
        record = self.campaigns.get_by_id(campaign_id, for_update=for_update)
        if record is None:
            raise NotFoundError("Campaign", campaign_id)
        return record

    def list(self, status: Optional[CampaignStatus] = None, limit: int = 50,
             offset: int = 0) -> List[CampaignRecord]:
        return self.campaigns.list_campaigns(status.value if status else None, limit, offset)

    def update(self, campaign_id: str, patch: CampaignUpdate,
               now: Optional[datetime] = None) -> CampaignRecord:
        """Partial update. Archived campaigns are read-only."""
        record = self.get(campaign_id, for_update=True)
        if record.status == CampaignStatus.ARCHIVED.value:
            raise CampaignValidationError("Archived campaigns cannot be modified")

        changes = patch.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is None:
            raise CampaignValidationError("name is required")
        if "type" in changes and changes["type"] is None:
            raise CampaignValidationError("type is required")

        if "name" in changes:
            record.name = patch.name
        if "description" in changes:
            record.description = patch.description
        if "type" in changes:
            record.type = patch.type.value
        if "segment_config" in changes:
            self._validate_segment(patch.segment_config)
            record.segment_config = _dump(patch.segment_config)
        if "config" in changes:
            config = patch.config or get_drip_config(record.type)
            self._validate_config(config)
            record.config = _dump(config)
        if "schedule_config" in changes:
            schedule = patch.schedule_config or ScheduleConfig()
            record.schedule_config = _dump(schedule)
            if record.status == CampaignStatus.ACTIVE.value:
                record.next_run_at = schedule.first_run_at(now or utcnow())

        if record.status == CampaignStatus.ACTIVE.value:
            self._require_runnable(record)

        record.updated_at = now or utcnow()
        self.session.flush()
        logger.info(f"Updated campaign {campaign_id}: {sorted(changes)}")
        return record

    def delete(self, campaign_id: str) -> None:
        """Hard delete, with recipients, runs and messages. Not allowed while ACTIVE."""
        record = self.get(campaign_id, for_update=True)
        if record.status == CampaignStatus.ACTIVE.value:
            raise CampaignValidationError("Pause or archive an active campaign before deleting it")
        self.campaigns.delete(record)
        logger.info(f"Deleted campaign {campaign_id}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, record: CampaignRecord, target: CampaignStatus, now: datetime) -> None:
        current = CampaignStatus(record.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)
        record.status = target.value
        record.updated_at = now
        logger.info(f"Campaign {record.id}: {current.value} -> {target.value}")

    def activate(self, campaign_id: str, now: Optional[datetime] = None) -> CampaignRecord:
        """DRAFT/PAUSED -> ACTIVE; schedules the first run."""
        now = now or utcnow()
        record = self.get(campaign_id, for_update=True)
        self._transition(record, CampaignStatus.ACTIVE, now)
        self._require_runnable(record)
        schedule = ScheduleConfig.model_validate(record.schedule_config or {})
        record.next_run_at = schedule.first_run_at(now)
        self.session.flush()
        return record

    def pause(self, campaign_id: str, now: Optional[datetime] = None) -> CampaignRecord:
        now = now or utcnow()
        record = self.get(campaign_id, for_update=True)
        self._transition(record, CampaignStatus.PAUSED, now)
        record.next_run_at = None
        self.session.flush()
        return record

    def archive(self, campaign_id: str, now: Optional[datetime] = None) -> CampaignRecord:
        now = now or utcnow()
        record = self.get(campaign_id, for_update=True)
        self._transition(record, CampaignStatus.ARCHIVED, now)
        record.next_run_at = None
        self.session.flush()
        return record

    def schedule_after_run(self, record: CampaignRecord, now: datetime) -> Optional[datetime]:
        """Set next_run_at after a pass; only ACTIVE campaigns get a next run."""
        record.last_run_at = now
        if record.status != CampaignStatus.ACTIVE.value:
            record.next_run_at = None
            return None
        schedule = ScheduleConfig.model_validate(record.schedule_config or {})
        record.next_run_at = schedule.next_run_after(now)
        return record.next_run_at
