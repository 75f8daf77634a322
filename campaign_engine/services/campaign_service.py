"""
Campaign Service
Operation boundary for the campaign engine, consumed by the API layer.

Every operation takes the caller's context explicitly and returns a plain
dict. Domain errors become {"error": message, "code": kind}; storage errors
become a generic "Failed to <action>" and are logged with traceback. No raw
exception escapes this module.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from campaign_engine.core.config import ConfigManager
from campaign_engine.domain.errors import (
    AuthorizationError,
    CampaignEngineError,
    CampaignValidationError,
)
from campaign_engine.domain.models import (
    CallerContext,
    CampaignCreate,
    CampaignRecipient,
    CampaignStatus,
    CampaignUpdate,
    MessageChannel,
    MessageTemplate,
    MessageTemplateCreate,
    MessageTemplateUpdate,
    RecipientStatus,
)
from campaign_engine.domain.services.analytics import AnalyticsAggregator
from campaign_engine.domain.services.campaign_lifecycle import CampaignLifecycleManager, to_campaign
from campaign_engine.domain.services.recipient_store import RecipientStore
from campaign_engine.domain.services.segment_evaluator import SegmentEvaluator
from campaign_engine.domain.services.template_renderer import TEMPLATE_VARIABLES, MessageTemplateRenderer
from campaign_engine.domain.services.template_store import TemplateStore
from campaign_engine.infrastructure.storage.database import get_db, get_session_factory
from campaign_engine.services.run_processor import RunProcessor

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Payload = Union[BaseModel, Dict[str, Any]]


def _parse(model: Type[ModelT], data: Optional[Payload]) -> ModelT:
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    return model.model_validate(data or {})


def _parse_enum(enum_cls, value: Optional[str], label: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise CampaignValidationError(f"Invalid {label} '{value}' (allowed: {allowed})")


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid input")
    return f"{location}: {message}" if location else message


class CampaignService:
    """
    Campaign engine facade.

    Usage:
        service = get_campaign_service()
        result = service.create_campaign(caller, {"name": "Spring", "type": "ONE_TIME_BLAST"})
        if "error" in result:
            ...
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        run_processor: Optional[RunProcessor] = None,
        evaluator: Optional[SegmentEvaluator] = None,
        renderer: Optional[MessageTemplateRenderer] = None,
        config: Optional[ConfigManager] = None,
    ):
        self._config = config or ConfigManager()
        self.session_factory = session_factory or get_session_factory()
        self.evaluator = evaluator or SegmentEvaluator(
            sample_size=self._config.get_int("campaigns.preview_sample_size", 10)
        )
        self.renderer = renderer or MessageTemplateRenderer(self._config)
        self.run_processor = run_processor or RunProcessor(
            session_factory=self.session_factory,
            evaluator=self.evaluator,
            renderer=self.renderer,
            config=self._config,
        )
        self.recent_runs_limit = self._config.get_int("campaigns.recent_runs_limit", 10)

    # ------------------------------------------------------------------
    # Error boundary
    # ------------------------------------------------------------------

    def _execute(self, action: str, operation: Callable[[Session], Dict[str, Any]]) -> Dict[str, Any]:
        """Run an operation in one transaction and map failures to result dicts."""
        try:
            with get_db(self.session_factory) as session:
                return operation(session)
        except CampaignEngineError as e:
            logger.info(f"Could not {action}: {e.message}")
            return {"error": e.message, "code": e.code}
        except ValidationError as e:
            return {"error": _validation_message(e), "code": "validation"}
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}", exc_info=True)
            return {"error": f"Failed to {action}", "code": "storage"}

    def _lifecycle(self, session: Session) -> CampaignLifecycleManager:
        return CampaignLifecycleManager(session, self.evaluator, self.renderer)

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    def create_campaign(self, caller: CallerContext, data: Payload) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            record = self._lifecycle(session).create(_parse(CampaignCreate, data), created_by_id=caller.user_id)
            return {"success": True, "id": record.id}
        return self._execute("create campaign", op)

    def get_campaign(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            record = self._lifecycle(session).get(campaign_id)
            return {"campaign": to_campaign(record).to_public_dict()}
        return self._execute("load campaign", op)

    def list_campaigns(self, caller: CallerContext, status: Optional[str] = None,
                       limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            records = self._lifecycle(session).list(
                _parse_enum(CampaignStatus, status, "status"), limit=limit, offset=offset
            )
            return {"campaigns": [to_campaign(r).to_public_dict() for r in records]}
        return self._execute("list campaigns", op)

    def update_campaign(self, caller: CallerContext, campaign_id: str, patch: Payload) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            if isinstance(patch, dict) and "status" in patch:
                raise CampaignValidationError("Use activate, pause or archive to change status")
            self._lifecycle(session).update(campaign_id, _parse(CampaignUpdate, patch))
            return {"success": True}
        return self._execute("update campaign", op)

    def delete_campaign(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            self._lifecycle(session).delete(campaign_id)
            return {"success": True}
        return self._execute("delete campaign", op)

    def activate_campaign(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            record = self._lifecycle(session).activate(campaign_id)
            return {"success": True, "nextRunAt": record.next_run_at.isoformat() if record.next_run_at else None}
        return self._execute("activate campaign", op)

    def pause_campaign(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            self._lifecycle(session).pause(campaign_id)
            return {"success": True}
        return self._execute("pause campaign", op)

    def archive_campaign(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            self._lifecycle(session).archive(campaign_id)
            return {"success": True}
        return self._execute("archive campaign", op)

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    def enroll_customer(self, caller: CallerContext, campaign_id: str, customer_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            enrollment = RecipientStore(session).enroll(campaign_id, customer_id)
            return {
                "success": True,
                "recipientId": enrollment.recipient.id,
                "outcome": enrollment.outcome.value,
            }
        return self._execute("enroll customer", op)

    def remove_recipient(self, caller: CallerContext, recipient_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            RecipientStore(session).remove(recipient_id)
            return {"success": True}
        return self._execute("remove recipient", op)

    def list_recipients(self, caller: CallerContext, campaign_id: str, status: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            records = RecipientStore(session).list_recipients(
                campaign_id,
                status=_parse_enum(RecipientStatus, status, "status"),
                limit=limit,
                offset=offset,
            )
            return {"recipients": [CampaignRecipient.model_validate(r).to_public_dict() for r in records]}
        return self._execute("list recipients", op)

    def process_opt_out(self, caller: CallerContext, customer_id: str, source: str,
                        reason: Optional[str] = None) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            closed = RecipientStore(session).process_opt_out(customer_id, source, reason)
            return {"success": True, "recipientsClosed": closed}
        return self._execute("process opt-out", op)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def trigger_campaign_run(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        """Run a campaign now. ADMIN only; nothing happens for other roles."""
        if not caller.is_admin:
            logger.warning(f"User {caller.user_id} ({caller.role.value}) tried to trigger campaign {campaign_id}")
            error = AuthorizationError()
            return {"error": error.message, "code": error.code}
        try:
            result = await self.run_processor.process_campaign(campaign_id)
        except CampaignEngineError as e:
            return {"error": e.message, "code": e.code}
        except SQLAlchemyError as e:
            logger.error(f"Failed to run campaign {campaign_id}: {e}", exc_info=True)
            return {"error": "Failed to run campaign", "code": "storage"}
        logger.info(f"Campaign {campaign_id} run triggered by {caller.user_id}")
        return {"success": True, "result": result.to_public_dict()}

    async def process_due_campaigns(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Scheduler entry point: run every due campaign."""
        try:
            results = await self.run_processor.process_due_campaigns(now)
        except SQLAlchemyError as e:
            logger.error(f"Failed to process due campaigns: {e}", exc_info=True)
            return {"error": "Failed to process campaigns", "code": "storage"}
        return {"success": True, "results": [r.to_public_dict() for r in results]}

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    def preview_segment(self, caller: CallerContext, segment_config: Payload) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            preview = self.evaluator.preview(session, segment_config)
            return preview.to_dict()
        return self._execute("preview segment", op)

    def list_segment_fields(self, caller: CallerContext) -> Dict[str, Any]:
        return {"fields": self.evaluator.list_fields()}

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _templates(self, session: Session) -> TemplateStore:
        return TemplateStore(session, self.renderer)

    def create_message_template(self, caller: CallerContext, data: Payload) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            record = self._templates(session).create(_parse(MessageTemplateCreate, data))
            return {"success": True, "id": record.id}
        return self._execute("create template", op)

    def update_message_template(self, caller: CallerContext, template_id: str, patch: Payload) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            self._templates(session).update(template_id, _parse(MessageTemplateUpdate, patch))
            return {"success": True}
        return self._execute("update template", op)

    def delete_message_template(self, caller: CallerContext, template_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            self._templates(session).delete(template_id)
            return {"success": True}
        return self._execute("delete template", op)

    def list_message_templates(self, caller: CallerContext, channel: Optional[str] = None) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            records = self._templates(session).list(_parse_enum(MessageChannel, channel, "channel"))
            return {"templates": [MessageTemplate.model_validate(r).to_public_dict() for r in records]}
        return self._execute("list templates", op)

    def list_template_variables(self, caller: CallerContext) -> Dict[str, Any]:
        return {"variables": TEMPLATE_VARIABLES}

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_campaign_analytics(self, caller: CallerContext, campaign_id: str) -> Dict[str, Any]:
        def op(session: Session) -> Dict[str, Any]:
            return AnalyticsAggregator(session, self.recent_runs_limit).get_campaign_analytics(campaign_id)
        return self._execute("load campaign analytics", op)


# Singleton instance
_campaign_service: Optional[CampaignService] = None


def get_campaign_service() -> CampaignService:
    """Get or create CampaignService instance."""
    global _campaign_service
    if _campaign_service is None:
        _campaign_service = CampaignService()
    return _campaign_service
