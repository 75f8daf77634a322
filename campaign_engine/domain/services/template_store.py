"""
Message Template Store
CRUD for reusable message templates.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from campaign_engine.domain.errors import CampaignValidationError, NotFoundError
from campaign_engine.domain.models.campaign import CampaignConfig
from campaign_engine.domain.models.message import (
    MessageChannel,
    MessageTemplateCreate,
    MessageTemplateUpdate,
)
from campaign_engine.domain.services.template_renderer import MessageTemplateRenderer
from campaign_engine.infrastructure.storage.models import MessageTemplateRecord
from campaign_engine.infrastructure.storage.repositories import (
    CampaignRepository,
    TemplateRepository,
)
from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


class TemplateStore:
    """Message templates are owned independently of any campaign."""

    def __init__(self, session: Session, renderer: MessageTemplateRenderer):
        self.session = session
        self.renderer = renderer
        self.templates = TemplateRepository(session)
        self.campaigns = CampaignRepository(session)

    def _validate_text(self, body: Optional[str], subject: Optional[str]) -> None:
        if body is not None:
            self.renderer.validate(body)
        if subject:
            self.renderer.validate(subject)

    def create(self, data: MessageTemplateCreate) -> MessageTemplateRecord:
        self._validate_text(data.body, data.subject)
        record = MessageTemplateRecord(
            name=data.name.strip(),
            channel=data.channel.value,
            campaign_type=data.campaign_type,
            subject=data.subject,
            body=data.body,
            is_default=data.is_default,
        )
        self.templates.add(record)
        logger.info(f"Created message template {record.id} ({record.name})")
        return record

    def get(self, template_id: str) -> MessageTemplateRecord:
        record = self.templates.get_by_id(template_id)
        if record is None:
            raise NotFoundError("Template", template_id)
        return record

    def list(self, channel: Optional[MessageChannel] = None) -> List[MessageTemplateRecord]:
        return self.templates.list_templates(channel.value if channel else None)

    def update(self, template_id: str, patch: MessageTemplateUpdate) -> MessageTemplateRecord:
        record = self.get(template_id)
        changes = patch.model_dump(exclude_unset=True)
        for key in ("name", "channel", "body"):
            if key in changes and changes[key] is None:
                raise CampaignValidationError(f"{key} is required")
        self._validate_text(changes.get("body"), changes.get("subject"))

        for key, value in changes.items():
            if key == "channel" and value is not None:
                value = MessageChannel(value).value
            if key == "name" and value is not None:
                value = value.strip()
            setattr(record, key, value)
        record.updated_at = utcnow()
        self.session.flush()
        logger.info(f"Updated message template {template_id}: {sorted(changes)}")
        return record

    def delete(self, template_id: str) -> None:
        """Delete a template that no live campaign step references."""
        record = self.get(template_id)
        for campaign in self.campaigns.list_not_archived():
            config = CampaignConfig.model_validate(campaign.config or {})
            if any(step.template_id == template_id for step in config.steps):
                raise CampaignValidationError(
                    f"Template is used by campaign '{campaign.name}'"
                )
        self.templates.delete(record)
        logger.info(f"Deleted message template {template_id}")
