"""
Ingestion of deal stage change events.
"""

import uuid
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.core.logging import get_logger
from dealflow.core.notifier import notify_scheduler
from dealflow.db.models.scheduled_email import OccurrenceStatus
from dealflow.db.models.workflow import (
    Workflow,
    WorkflowAction,
    WorkflowActionType,
    WorkflowTriggerType,
)
from dealflow.schemas.event import DealStageChangedEvent
from dealflow.schemas.template_context import TemplateContext
from dealflow.schemas.workflow import TriggerSummary
from dealflow.services.workflows.context import load_template_context
from dealflow.services.workflows.errors import InvalidEventError, WorkflowConfigError
from dealflow.services.workflows.matcher import TriggerRule, match
from dealflow.services.workflows.scheduler import DeliveryScheduler

logger = get_logger(__name__)


def parse_event(payload: Mapping[str, Any]) -> DealStageChangedEvent:
    """
    Validate a raw deal stage change payload.

    Raises:
        InvalidEventError: dealId, patientId or toStageId is missing or blank.
    """
    try:
        return DealStageChangedEvent.model_validate(payload)
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise InvalidEventError(
            "Missing required fields: dealId, patientId, toStageId"
            f" (invalid: {', '.join(fields) or 'payload'})"
        ) from e


def to_trigger_rule(workflow: Workflow) -> TriggerRule:
    """
    Build the matcher view of a stored workflow.

    Raises:
        WorkflowConfigError: The workflow has no target stage.
    """
    return TriggerRule(
        id=str(workflow.id),
        name=workflow.name,
        active=workflow.active,
        to_stage_id=workflow.to_stage_id,
        from_stage_id=workflow.from_stage_id,
        pipeline_filter=workflow.pipeline,
    )


class TriggerService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: DeliveryScheduler,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler

    async def handle_deal_stage_changed(
        self, event: DealStageChangedEvent
    ) -> TriggerSummary:
        """
        Match an event against the active rules and schedule their actions.

        1. Load the deal and patient (404 when either is missing)
        2. Match active rules; rules without a target stage are skipped
        3. Persist the occurrences of every draft_email_patient action, each in
           its own transaction
        4. Fire the occurrences already due and wake the worker for the rest

        Raises:
            EntityNotFoundError: Deal or patient does not exist.
        """
        async with self.session_factory() as session:
            context = await load_template_context(
                session,
                event.deal_id,
                event.patient_id,
                event.from_stage_id,
                event.to_stage_id,
            )

            workflows = await self._active_workflows(session)
            rules = []
            for workflow in workflows.values():
                try:
                    rules.append(to_trigger_rule(workflow))
                except WorkflowConfigError as e:
                    logger.warning("Skipping workflow %s: %s", workflow.id, e)

            matched = match(event, rules)
            if not matched:
                logger.info(
                    "No workflow matched trigger %s (deal %s -> %s)",
                    event.trigger_id,
                    event.deal_id,
                    event.to_stage_id,
                )
                return TriggerSummary(trigger_id=event.trigger_id)

            planned = []
            for rule in matched:
                workflow = workflows[rule.id]
                for action in await self._email_actions(session, workflow.id):
                    planned.append((workflow, action))

        scheduled: List[uuid.UUID] = []
        for workflow, action in planned:
            scheduled.extend(
                await self._schedule_action(event, workflow, action, context)
            )

        counts = await self.scheduler.fire_many(scheduled) if scheduled else {}
        if len(scheduled) > sum(counts.values()):
            notify_scheduler()

        logger.info(
            "Trigger %s: %d workflow(s) matched, %d occurrence(s) scheduled, %s",
            event.trigger_id,
            len(matched),
            len(scheduled),
            counts or "none fired",
        )
        return TriggerSummary(
            trigger_id=event.trigger_id,
            workflows=len(matched),
            scheduled=len(scheduled),
            dispatched=counts.get(OccurrenceStatus.SENT.value, 0),
        )

    async def _schedule_action(
        self,
        event: DealStageChangedEvent,
        workflow: Workflow,
        action: WorkflowAction,
        context: TemplateContext,
    ) -> List[uuid.UUID]:
        """Schedule one action in its own transaction; a failure skips only this action."""
        async with self.session_factory() as session:
            try:
                ids = await self.scheduler.schedule(
                    session, event, workflow.id, action, context
                )
                await session.commit()
            except Exception:
                await session.rollback()
                logger.exception(
                    "Failed to schedule action %s of workflow %s for trigger %s",
                    action.id,
                    workflow.id,
                    event.trigger_id,
                )
                return []
        return ids

    async def _active_workflows(self, session: AsyncSession) -> Dict[str, Workflow]:
        statement = select(Workflow).where(
            Workflow.active == True,  # noqa: E712
            Workflow.trigger_type == WorkflowTriggerType.DEAL_STAGE_CHANGED.value,
        )
        result = await session.exec(statement)
        return {str(w.id): w for w in result.all()}

    async def _email_actions(
        self, session: AsyncSession, workflow_id: uuid.UUID
    ) -> List[WorkflowAction]:
        statement = (
            select(WorkflowAction)
            .where(
                WorkflowAction.workflow_id == workflow_id,
                WorkflowAction.action_type
                == WorkflowActionType.DRAFT_EMAIL_PATIENT.value,
            )
            .order_by(WorkflowAction.sort_order)
        )
        result = await session.exec(statement)
        return list(result.all())
