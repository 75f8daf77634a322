"""
Campaign Run Processor
One processing pass over a campaign: enroll segment matches, check
conversions, advance due drip steps and hand messages to the dispatcher.

Safe to invoke repeatedly. A run lock keeps a single pass in flight per
campaign, each recipient is advanced in its own transaction, and message
delivery runs in background tasks that update the PENDING message rows.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from campaign_engine.core.config import ConfigManager
from campaign_engine.domain.errors import (
    CampaignValidationError,
    CooldownActiveError,
    NotFoundError,
    RunInProgressError,
)
from campaign_engine.domain.models.campaign import CampaignConfig, CampaignStatus, DripStep, EnrollmentMode
from campaign_engine.domain.models.message import MessageChannel, MessageStatus
from campaign_engine.domain.models.recipient import RecipientStatus
from campaign_engine.domain.models.run import RecipientFailure, RunResult
from campaign_engine.domain.models.segment import SegmentDefinition
from campaign_engine.domain.services.campaign_lifecycle import CampaignLifecycleManager
from campaign_engine.domain.services.conversion_checker import ConversionChecker, ConversionSnapshot
from campaign_engine.domain.services.drip_scheduler import StepAction, decide_next_step
from campaign_engine.domain.services.recipient_store import RecipientStore, can_contact, contact_address
from campaign_engine.domain.services.segment_evaluator import SegmentEvaluator
from campaign_engine.domain.services.template_renderer import MessageTemplateRenderer
from campaign_engine.infrastructure.dispatch import DispatchClient, get_dispatch_client
from campaign_engine.infrastructure.locks import RunLock, create_run_lock
from campaign_engine.infrastructure.notifications import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    NotificationType,
)
from campaign_engine.infrastructure.storage.database import get_db, get_session_factory
from campaign_engine.infrastructure.storage.models import MessageRecord, RunRecord
from campaign_engine.infrastructure.storage.repositories import (
    CampaignRepository,
    CustomerRepository,
    MessageRepository,
    RecipientRepository,
    RunRepository,
    TemplateRepository,
)
from campaign_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class _PassContext:
    """State shared by every recipient in one pass."""
    campaign_id: str
    run_id: str
    now: datetime
    config: CampaignConfig
    templates: Dict[str, Tuple[str, Optional[str]]]
    checker: Optional[ConversionChecker]
    result: RunResult
    failures: List[RecipientFailure] = field(default_factory=list)


class RunProcessor:
    """
    Orchestrates campaign processing passes.

    Collaborators are injected so tests can swap the session factory,
    dispatch client, run lock and notification sink.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        dispatch_client: Optional[DispatchClient] = None,
        run_lock: Optional[RunLock] = None,
        notifier: Optional[NotificationSink] = None,
        evaluator: Optional[SegmentEvaluator] = None,
        renderer: Optional[MessageTemplateRenderer] = None,
        config: Optional[ConfigManager] = None,
    ):
        self._config = config or ConfigManager()
        self.session_factory = session_factory or get_session_factory()
        self.dispatch_client = dispatch_client or get_dispatch_client()
        self.run_lock = run_lock or create_run_lock(config=self._config)
        self.notifier = notifier or LoggingNotificationSink()
        self.evaluator = evaluator or SegmentEvaluator(
            sample_size=self._config.get_int("campaigns.preview_sample_size", 10)
        )
        self.renderer = renderer or MessageTemplateRenderer(self._config)
        self.batch_size = max(1, self._config.get_int("campaigns.run_batch_size", 50))
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_campaign(self, campaign_id: str, now: Optional[datetime] = None) -> RunResult:
        """
        Run one pass over a campaign.

        Raises:
            NotFoundError: Unknown campaign
            RunInProgressError: Another pass holds the campaign's run lock
        """
        async with self.run_lock.hold(campaign_id):
            return await self._run(campaign_id, now or utcnow())

    async def process_due_campaigns(self, now: Optional[datetime] = None) -> List[RunResult]:
        """
        Run every ACTIVE campaign whose next_run_at has passed.

        Each campaign is isolated: a failure is reported in its result and as
        a notification, and the remaining campaigns still run.
        """
        now = now or utcnow()
        with get_db(self.session_factory) as session:
            due = [(c.id, c.name) for c in CampaignRepository(session).list_due(now)]

        if due:
            logger.info(f"Processing {len(due)} due campaigns")

        results: List[RunResult] = []
        for campaign_id, name in due:
            try:
                result = await self.process_campaign(campaign_id, now)
            except RunInProgressError as e:
                logger.info(f"Skipping campaign {campaign_id}: {e.message}")
                results.append(RunResult(campaign_id=campaign_id, campaign_name=name,
                                         skipped=True, skip_reason=e.message))
                continue
            except Exception as e:
                logger.error(f"Campaign {campaign_id} run failed: {e}", exc_info=True)
                results.append(RunResult(campaign_id=campaign_id, campaign_name=name, error=str(e)))
                await self.notifier.notify(Notification(
                    type=NotificationType.CAMPAIGN_FAILED,
                    title="Campaign Run Failed",
                    body=f"{name} encountered an error: {e}",
                    ref_id=campaign_id,
                ))
                continue

            results.append(result)
            if not result.skipped:
                await self.notifier.notify(Notification(
                    type=NotificationType.CAMPAIGN_COMPLETED,
                    title="Campaign Run Complete",
                    body=f"{name}: {result.messages_queued} queued, {result.messages_failed} failed.",
                    ref_id=campaign_id,
                ))
        return results

    async def wait_for_dispatches(self) -> None:
        """Wait until every background delivery task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run(self, campaign_id: str, now: datetime) -> RunResult:
        started = time.monotonic()

        with get_db(self.session_factory) as session:
            campaign = CampaignRepository(session).get_by_id(campaign_id)
            if campaign is None:
                raise NotFoundError("Campaign", campaign_id)
            if campaign.status != CampaignStatus.ACTIVE.value:
                logger.info(f"Campaign {campaign_id} is {campaign.status}, nothing to do")
                return RunResult(
                    campaign_id=campaign_id,
                    campaign_name=campaign.name,
                    skipped=True,
                    skip_reason=f"Campaign is {campaign.status}",
                )
            config = CampaignConfig.model_validate(campaign.config or {})
            segment = (
                SegmentDefinition.model_validate(campaign.segment_config)
                if campaign.segment_config else None
            )
            run = RunRepository(session).add(RunRecord(campaign_id=campaign_id, started_at=now))
            result = RunResult(campaign_id=campaign_id, campaign_name=campaign.name, run_id=run.id)

        logger.info(f"Run {result.run_id} started for campaign {campaign_id} ({result.campaign_name})")

        try:
            if config.enrollment_mode == EnrollmentMode.AUTOMATIC and segment is not None:
                self._enroll_matches(campaign_id, segment, now, result)

            ctx = self._prepare_pass(campaign_id, result.run_id, now, config, result)
            await self._process_recipients(ctx)
            result.failures = ctx.failures
        except Exception as e:
            logger.error(f"Run {result.run_id} for campaign {campaign_id} aborted: {e}", exc_info=True)
            self._finish_run(result, now, started, error=str(e))
            raise

        self._finish_run(result, now, started)
        logger.info(
            f"Run {result.run_id} finished: processed={result.recipients_processed} "
            f"queued={result.messages_queued} failed={result.messages_failed} "
            f"converted={result.recipients_converted} completed={result.recipients_completed}"
        )
        return result

    def _enroll_matches(self, campaign_id: str, segment: SegmentDefinition,
                        now: datetime, result: RunResult) -> None:
        """Enroll segment matches that are not already ACTIVE."""
        with get_db(self.session_factory) as session:
            campaign = CampaignRepository(session).get_by_id(campaign_id)
            existing = RecipientRepository(session).map_by_customer(campaign_id)
            store = RecipientStore(session)

            for customer_id in self.evaluator.matching_ids(session, segment, now):
                current = existing.get(customer_id)
                if current is not None and current.status == RecipientStatus.ACTIVE.value:
                    continue
                try:
                    store.enroll(campaign_id, customer_id, now=now, campaign=campaign)
                except CooldownActiveError:
                    result.cooldown_blocked += 1
                    continue
                result.recipients_enrolled += 1

        if result.recipients_enrolled or result.cooldown_blocked:
            logger.info(
                f"Campaign {campaign_id}: enrolled {result.recipients_enrolled}, "
                f"{result.cooldown_blocked} in cooldown"
            )

    def _prepare_pass(self, campaign_id: str, run_id: str, now: datetime,
                      config: CampaignConfig, result: RunResult) -> _PassContext:
        """Load templates and the conversion snapshot used for the whole pass."""
        with get_db(self.session_factory) as session:
            template_ids = {s.template_id for s in config.steps if s.template_id}
            templates = {
                t.id: (t.body, t.subject)
                for t in TemplateRepository(session).get_many(template_ids).values()
            }

            checker = None
            if config.stop_on_conversion:
                recipients = RecipientRepository(session)
                active = recipients.list_by_ids(recipients.active_ids(campaign_id))
                since = min((r.enrolled_at for r in active), default=now)
                snapshot = ConversionSnapshot.load(session, {r.customer_id for r in active}, since, now)
                checker = ConversionChecker(snapshot)

        return _PassContext(
            campaign_id=campaign_id,
            run_id=run_id,
            now=now,
            config=config,
            templates=templates,
            checker=checker,
            result=result,
        )

    async def _process_recipients(self, ctx: _PassContext) -> None:
        with get_db(self.session_factory) as session:
            recipient_ids = RecipientRepository(session).active_ids(ctx.campaign_id)

        for offset in range(0, len(recipient_ids), self.batch_size):
            if offset and not self._still_active(ctx.campaign_id):
                logger.info(f"Campaign {ctx.campaign_id} is no longer ACTIVE, stopping after current batch")
                ctx.result.stopped_early = True
                break

            for recipient_id in recipient_ids[offset:offset + self.batch_size]:
                self._process_recipient(recipient_id, ctx)

            # Let delivery tasks progress between batches
            await asyncio.sleep(0)

    def _still_active(self, campaign_id: str) -> bool:
        with get_db(self.session_factory) as session:
            campaign = CampaignRepository(session).get_by_id(campaign_id)
            return campaign is not None and campaign.status == CampaignStatus.ACTIVE.value

    # ------------------------------------------------------------------
    # Recipient unit of work
    # ------------------------------------------------------------------

    def _step_content(self, step: DripStep, ctx: _PassContext) -> Tuple[str, Optional[str]]:
        if step.template_body and step.template_body.strip():
            return step.template_body, step.template_subject
        if step.template_id not in ctx.templates:
            raise CampaignValidationError(f"Template not found: {step.template_id}")
        body, subject = ctx.templates[step.template_id]
        return body, step.template_subject or subject

    def _process_recipient(self, recipient_id: str, ctx: _PassContext) -> None:
        """
        Advance one recipient in its own transaction.

        Any exception rolls back this recipient only; the failure is stored
        as a FAILED message and the pass moves on.
        """
        result = ctx.result
        session = self.session_factory()
        customer_id: Optional[str] = None
        step: Optional[DripStep] = None
        body: Optional[str] = None
        delivery = None

        try:
            recipient = RecipientRepository(session).get_by_id(recipient_id, for_update=True)
            if recipient is None or recipient.status != RecipientStatus.ACTIVE.value:
                return
            customer_id = recipient.customer_id
            result.recipients_processed += 1
            store = RecipientStore(session)

            if ctx.checker is not None:
                evidence = ctx.checker.check(recipient)
                if evidence is not None:
                    store.convert(recipient, ctx.now, evidence.order_value)
                    session.commit()
                    result.recipients_converted += 1
                    result.conversion_revenue += evidence.order_value
                    logger.info(f"Recipient {recipient_id} converted via order {evidence.order_id}")
                    return

            decision = decide_next_step(ctx.config.steps, recipient.enrolled_at,
                                        recipient.last_step_index, ctx.now)
            if decision.action == StepAction.WAIT:
                return
            if decision.action == StepAction.COMPLETE:
                store.complete(recipient, ctx.now)
                session.commit()
                result.recipients_completed += 1
                return

            step = decision.step
            customer = CustomerRepository(session).get_by_id(customer_id)
            if customer is None or not can_contact(customer, step.channel):
                result.recipients_skipped += 1
                logger.debug(f"Recipient {recipient_id} not contactable on {step.channel.value}, skipped")
                return

            body_source, subject_source = self._step_content(step, ctx)
            variables = self.renderer.resolve_variables(session, customer_id)
            body = self.renderer.render(body_source, variables, step.channel)
            subject = None
            if step.channel == MessageChannel.EMAIL and subject_source:
                subject = self.renderer.render(subject_source, variables)

            message = MessageRepository(session).add(MessageRecord(
                campaign_id=ctx.campaign_id,
                recipient_id=recipient_id,
                customer_id=customer_id,
                run_id=ctx.run_id,
                step_index=step.step_index,
                channel=step.channel.value,
                subject=subject,
                body=body,
                status=MessageStatus.PENDING.value,
                created_at=ctx.now,
            ))
            recipient.last_step_index = step.step_index
            recipient.last_message_at = ctx.now
            if decision.is_final:
                store.complete(recipient, ctx.now)
            session.commit()

            result.messages_queued += 1
            if decision.is_final:
                result.recipients_completed += 1
            delivery = (message.id, step.channel, contact_address(customer, step.channel), body, subject)

        except Exception as e:
            session.rollback()
            logger.error(f"Failed to process recipient {recipient_id}: {e}", exc_info=True)
            result.messages_failed += 1
            ctx.failures.append(RecipientFailure(
                recipient_id=recipient_id,
                customer_id=customer_id or "",
                error=str(e),
            ))
            if customer_id is not None:
                self._record_failed_message(ctx, recipient_id, customer_id, step, body, str(e))
        finally:
            session.close()

        if delivery is not None:
            self._schedule_delivery(*delivery)

    def _record_failed_message(self, ctx: _PassContext, recipient_id: str, customer_id: str,
                               step: Optional[DripStep], body: Optional[str], error: str) -> None:
        try:
            with get_db(self.session_factory) as session:
                MessageRepository(session).add(MessageRecord(
                    campaign_id=ctx.campaign_id,
                    recipient_id=recipient_id,
                    customer_id=customer_id,
                    run_id=ctx.run_id,
                    step_index=step.step_index if step else None,
                    channel=(step.channel if step else MessageChannel.SMS).value,
                    body=body or "",
                    status=MessageStatus.FAILED.value,
                    error_message=error,
                    created_at=ctx.now,
                    failed_at=ctx.now,
                ))
        except SQLAlchemyError as e:
            logger.error(f"Could not store failure for recipient {recipient_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _schedule_delivery(self, message_id: str, channel: MessageChannel, to: str,
                           body: str, subject: Optional[str]) -> None:
        task = asyncio.create_task(self._deliver(message_id, channel, to, body, subject))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message_id: str, channel: MessageChannel, to: str,
                       body: str, subject: Optional[str]) -> None:
        """Send one message and record the outcome on its row."""
        external_id = None
        try:
            outcome = await self.dispatch_client.send(channel, to, body, subject)
            error = None if outcome.success else (outcome.error or "Dispatch rejected")
            external_id = outcome.external_id
        except Exception as e:
            logger.error(f"Dispatch of message {message_id} raised: {e}", exc_info=True)
            error = str(e)

        try:
            with get_db(self.session_factory) as session:
                message = MessageRepository(session).get_by_id(message_id)
                if message is None:
                    logger.warning(f"Message {message_id} disappeared before delivery result")
                    return
                if error:
                    message.status = MessageStatus.FAILED.value
                    message.failed_at = utcnow()
                    message.error_message = error
                    logger.warning(f"Message {message_id} failed: {error}")
                    return
                message.status = MessageStatus.SENT.value
                message.sent_at = utcnow()
                message.external_id = external_id
                campaign = (
                    CampaignRepository(session).get_by_id(message.campaign_id)
                    if message.campaign_id else None
                )
                if campaign is not None:
                    campaign.total_sent = (campaign.total_sent or 0) + 1
        except SQLAlchemyError as e:
            logger.error(f"Could not record delivery result for message {message_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _finish_run(self, result: RunResult, now: datetime, started: float,
                    error: Optional[str] = None) -> None:
        """Write the run record and campaign aggregates, and schedule the next run."""
        with get_db(self.session_factory) as session:
            run = RunRepository(session).get_by_id(result.run_id)
            run.completed_at = utcnow()
            run.duration_ms = int((time.monotonic() - started) * 1000)
            run.recipients_processed = result.recipients_processed
            run.recipients_enrolled = result.recipients_enrolled
            run.recipients_converted = result.recipients_converted
            run.recipients_completed = result.recipients_completed
            run.recipients_skipped = result.recipients_skipped
            run.messages_queued = result.messages_queued
            run.messages_failed = result.messages_failed
            run.error = error

            campaign = CampaignRepository(session).get_by_id(result.campaign_id, for_update=True)
            if campaign is None:
                return
            campaign.total_converted = (campaign.total_converted or 0) + result.recipients_converted
            campaign.total_revenue = (campaign.total_revenue or 0.0) + result.conversion_revenue
            lifecycle = CampaignLifecycleManager(session, self.evaluator, self.renderer)
            result.next_run_at = lifecycle.schedule_after_run(campaign, now)
