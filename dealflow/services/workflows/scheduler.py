"""
Delivery scheduler for draft-email actions.

Each matched ``(event, workflow, action)`` becomes one or more durable
``scheduled_emails`` rows:

- immediate: one occurrence at ``now``
- delay: one occurrence at ``now + delay_minutes`` (immediate when the delay
  is not positive)
- recurring: ``min(recurring_times, 30)`` occurrences spaced
  ``recurring_every_days`` apart, starting at ``now`` (a single immediate
  occurrence when the interval is not positive)

Rows are claimed with a conditional update before firing, so concurrent
workers never fire the same occurrence twice. Cancellation (workflow inactive
or deleted, deal or patient deleted) is checked at firing time.
"""

import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.core.config import settings
from dealflow.core.logging import get_logger
from dealflow.db.models.scheduled_email import OccurrenceStatus, ScheduledEmail
from dealflow.db.models.workflow import Workflow, WorkflowAction
from dealflow.db.upsert import insert_ignore
from dealflow.schemas.action_config import DraftEmailConfig, SendMode
from dealflow.schemas.dispatch import DispatchRequest
from dealflow.schemas.event import DealStageChangedEvent
from dealflow.schemas.template_context import TemplateContext
from dealflow.services.workflows.context import load_template_context, parse_uuid
from dealflow.services.workflows.dispatcher import ActionDispatcher
from dealflow.services.workflows.errors import DispatchError, EntityNotFoundError
from dealflow.services.workflows.templating import render_email

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlannedOccurrence:
    index: int
    not_before: datetime


def plan_occurrences(config: DraftEmailConfig, now: datetime) -> List[PlannedOccurrence]:
    """
    Compute the occurrence times of an action scheduled at ``now``.

    Pure function; indices are 1-based.
    """
    if config.send_mode == SendMode.DELAY and config.effective_delay_minutes:
        delay = timedelta(minutes=config.effective_delay_minutes)
        return [PlannedOccurrence(1, now + delay)]

    if config.send_mode == SendMode.RECURRING and config.effective_every_days:
        interval = timedelta(days=config.effective_every_days)
        times = config.effective_times or 1
        return [PlannedOccurrence(i + 1, now + i * interval) for i in range(times)]

    return [PlannedOccurrence(1, now)]


def is_series(config: DraftEmailConfig) -> bool:
    """True when the action fires as a recurring series."""
    return (
        config.send_mode == SendMode.RECURRING
        and config.effective_every_days is not None
    )


@dataclass
class _Firing:
    """Everything needed to dispatch a claimed occurrence."""

    occurrence_id: uuid.UUID
    request: DispatchRequest


class DeliveryScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ActionDispatcher,
        clock: Callable[[], datetime] = utc_now,
        claim_timeout_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.clock = clock
        if claim_timeout_seconds is None:
            claim_timeout_seconds = settings.SCHEDULER_CLAIM_TIMEOUT_SECONDS
        self.claim_timeout = timedelta(seconds=claim_timeout_seconds)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    async def schedule(
        self,
        session: AsyncSession,
        event: DealStageChangedEvent,
        workflow_id: uuid.UUID,
        action: WorkflowAction,
        context: TemplateContext,
    ) -> List[uuid.UUID]:
        """
        Persist the planned occurrences of one matched action.

        Immediate and delayed sends are rendered now; recurring series are
        rendered at each firing. Re-scheduling the same event is a no-op.
        The caller owns the transaction.

        Returns:
            IDs of the newly created occurrences.
        """
        config = DraftEmailConfig.from_stored(action.config)
        now = self.clock()
        planned = plan_occurrences(config, now)
        render_at_fire = is_series(config)
        rendered = None if render_at_fire else render_email(config, context)

        created = []
        for occurrence in planned:
            occurrence_id = await insert_ignore(
                session,
                ScheduledEmail,
                values={
                    "id": uuid.uuid4(),
                    "trigger_id": event.trigger_id,
                    "workflow_id": workflow_id,
                    "action_id": action.id,
                    "occurrence_index": occurrence.index,
                    "occurrence_count": len(planned),
                    "send_mode": config.send_mode.value,
                    "deal_id": parse_uuid(event.deal_id),
                    "patient_id": parse_uuid(event.patient_id),
                    "from_stage_id": event.from_stage_id,
                    "to_stage_id": event.to_stage_id,
                    "pipeline": event.pipeline,
                    "not_before": occurrence.not_before,
                    "render_at_fire": render_at_fire,
                    "subject": rendered.subject if rendered else None,
                    "body_html": rendered.html if rendered else None,
                    "status": OccurrenceStatus.PENDING.value,
                    "attempts": 0,
                    "created_at": now,
                },
                index_elements=[
                    "trigger_id",
                    "workflow_id",
                    "action_id",
                    "occurrence_index",
                ],
            )
            if occurrence_id is not None:
                created.append(occurrence_id)

        if created:
            logger.info(
                "Scheduled %d %s occurrence(s) for workflow %s action %s (trigger %s)",
                len(created),
                config.send_mode.value,
                workflow_id,
                action.id,
                event.trigger_id,
            )
        else:
            logger.info(
                "Trigger %s already scheduled for action %s", event.trigger_id, action.id
            )
        return created

    # -------------------------------------------------------------------------
    # Firing
    # -------------------------------------------------------------------------
    async def fire(self, occurrence_id: uuid.UUID) -> Optional[OccurrenceStatus]:
        """
        Fire one occurrence if it is due and not owned by another firer.

        Returns:
            The terminal status reached, or None when the occurrence was not
            claimed (not due yet, already fired, or cancelled).
        """
        now = self.clock()
        async with self.session_factory() as session:
            if not await self._claim(session, occurrence_id, now):
                await session.rollback()
                return None
            await session.commit()

        async with self.session_factory() as session:
            firing = await self._prepare(session, occurrence_id)
        if not isinstance(firing, _Firing):
            return firing

        try:
            outcome = await self.dispatcher.dispatch(firing.request)
        except DispatchError as e:
            # Recurring series keep going; only this occurrence fails.
            await self._finish(occurrence_id, OccurrenceStatus.FAILED, error=str(e))
            return OccurrenceStatus.FAILED

        if outcome.in_doubt:
            # An earlier firer took the dedup key and never recorded a result
            logger.warning(
                "Occurrence %s: delivery of %s is in doubt; not sending again",
                occurrence_id,
                outcome.dedup_key,
            )
            await self._finish(
                occurrence_id,
                OccurrenceStatus.FAILED,
                error="Delivery in doubt: an earlier attempt never completed",
            )
            return OccurrenceStatus.FAILED

        if outcome.duplicate:
            logger.info("Occurrence %s was already dispatched", occurrence_id)
        await self._finish(occurrence_id, OccurrenceStatus.SENT)
        return OccurrenceStatus.SENT

    async def fire_many(self, occurrence_ids: List[uuid.UUID]) -> Dict[str, int]:
        """Fire the given occurrences in order; those not yet due are left pending."""
        counts: Counter = Counter()
        for occurrence_id in occurrence_ids:
            status = await self.fire(occurrence_id)
            if status is not None:
                counts[status.value] += 1
        return dict(counts)

    async def fire_due(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Fire every due occurrence, oldest first.

        Also picks up occurrences whose claim is older than the claim timeout
        (a firer that died mid-flight); the dispatcher's dedup key prevents a
        second send if the first one went out. When the earlier attempt died
        between taking the dedup key and recording its result, the occurrence
        is marked FAILED rather than risking a second email.
        """
        now = self.clock()
        statement = (
            select(ScheduledEmail.id)
            .where(self._claimable(now))
            .order_by(ScheduledEmail.not_before)
            .limit(limit or settings.SCHEDULER_BATCH_SIZE)
        )
        async with self.session_factory() as session:
            due = list((await session.exec(statement)).all())

        if not due:
            return {}
        logger.info("Firing %d due occurrence(s)", len(due))
        return await self.fire_many(due)

    def _claimable(self, now: datetime):
        return or_(
            and_(
                ScheduledEmail.status == OccurrenceStatus.PENDING.value,
                ScheduledEmail.not_before <= now,
            ),
            and_(
                ScheduledEmail.status == OccurrenceStatus.FIRING.value,
                ScheduledEmail.claimed_at < now - self.claim_timeout,
            ),
        )

    async def _claim(
        self, session: AsyncSession, occurrence_id: uuid.UUID, now: datetime
    ) -> bool:
        res = await session.execute(
            update(ScheduledEmail)
            .where(ScheduledEmail.id == occurrence_id, self._claimable(now))
            .values(
                status=OccurrenceStatus.FIRING.value,
                claimed_at=now,
                attempts=ScheduledEmail.attempts + 1,
            )
        )
        return res.rowcount == 1

    async def _prepare(self, session: AsyncSession, occurrence_id: uuid.UUID):
        """
        Run the firing-time checks and build the dispatch request.

        Returns a ``_Firing`` to dispatch, or the terminal status already
        recorded (cancelled or skipped).
        """
        occurrence = await session.get(ScheduledEmail, occurrence_id)

        workflow = await session.get(Workflow, occurrence.workflow_id)
        if workflow is None or not workflow.active:
            return await self._cancel_match(
                session, occurrence, "Workflow is inactive or was deleted"
            )

        action = await session.get(WorkflowAction, occurrence.action_id)
        if action is None:
            return await self._cancel_match(
                session, occurrence, "Workflow action was deleted"
            )

        try:
            context = await load_template_context(
                session,
                occurrence.deal_id,
                occurrence.patient_id,
                occurrence.from_stage_id,
                occurrence.to_stage_id,
            )
        except EntityNotFoundError as e:
            return await self._cancel_match(session, occurrence, str(e))

        destination = context.patient.email
        if not destination:
            logger.warning(
                "Occurrence %s skipped: patient %s has no email address",
                occurrence.id,
                occurrence.patient_id,
            )
            return await self._set_status(
                session,
                occurrence,
                OccurrenceStatus.SKIPPED,
                error="Patient has no email address",
            )

        if occurrence.render_at_fire or occurrence.subject is None:
            rendered = render_email(DraftEmailConfig.from_stored(action.config), context)
            subject, body = rendered.subject, rendered.html
        else:
            subject, body = occurrence.subject, occurrence.body_html or ""

        request = DispatchRequest(
            trigger_id=occurrence.trigger_id,
            rule_id=occurrence.workflow_id,
            action_id=occurrence.action_id,
            occurrence_index=occurrence.occurrence_index,
            rendered_subject=subject,
            rendered_body=body,
            destination=destination,
            not_before=occurrence.not_before,
        )
        return _Firing(occurrence_id=occurrence.id, request=request)

    async def _cancel_match(
        self, session: AsyncSession, occurrence: ScheduledEmail, reason: str
    ) -> OccurrenceStatus:
        """Cancel this occurrence and every remaining occurrence of the same match."""
        await session.execute(
            update(ScheduledEmail)
            .where(
                ScheduledEmail.trigger_id == occurrence.trigger_id,
                ScheduledEmail.workflow_id == occurrence.workflow_id,
                ScheduledEmail.action_id == occurrence.action_id,
                ScheduledEmail.status == OccurrenceStatus.PENDING.value,
            )
            .values(status=OccurrenceStatus.CANCELLED.value, last_error=reason)
        )
        logger.info("Cancelled occurrence %s and its series: %s", occurrence.id, reason)
        return await self._set_status(
            session, occurrence, OccurrenceStatus.CANCELLED, error=reason
        )

    async def _set_status(
        self,
        session: AsyncSession,
        occurrence: ScheduledEmail,
        status: OccurrenceStatus,
        error: Optional[str] = None,
    ) -> OccurrenceStatus:
        occurrence.status = status.value
        occurrence.last_error = error
        occurrence.fired_at = self.clock()
        session.add(occurrence)
        await session.commit()
        return status

    async def _finish(
        self,
        occurrence_id: uuid.UUID,
        status: OccurrenceStatus,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            occurrence = await session.get(ScheduledEmail, occurrence_id)
            await self._set_status(session, occurrence, status, error=error)

    # -------------------------------------------------------------------------
    # Cancellation and inspection
    # -------------------------------------------------------------------------
    async def cancel_for_workflow(
        self,
        session: AsyncSession,
        workflow_id: uuid.UUID,
        reason: str = "Workflow deactivated",
    ) -> int:
        """Cancel all pending occurrences of a workflow. The caller commits."""
        res = await session.execute(
            update(ScheduledEmail)
            .where(
                ScheduledEmail.workflow_id == workflow_id,
                ScheduledEmail.status == OccurrenceStatus.PENDING.value,
            )
            .values(status=OccurrenceStatus.CANCELLED.value, last_error=reason)
        )
        if res.rowcount:
            logger.info(
                "Cancelled %d pending occurrence(s) of workflow %s",
                res.rowcount,
                workflow_id,
            )
        return res.rowcount

    async def list_occurrences(
        self,
        session: AsyncSession,
        workflow_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> List[ScheduledEmail]:
        statement = (
            select(ScheduledEmail)
            .where(ScheduledEmail.workflow_id == workflow_id)
            .order_by(ScheduledEmail.not_before, ScheduledEmail.occurrence_index)
            .offset(skip)
            .limit(limit)
        )
        result = await session.exec(statement)
        return list(result.all())
