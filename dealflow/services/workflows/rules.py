"""
Rule save surface and operator views.

A saved rule is one ``workflows`` row holding the stage/pipeline filter plus a
single ``draft_email_patient`` action holding templates and timing.
"""

import uuid
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.core.logging import get_logger
from dealflow.db.models.scheduled_email import ScheduledEmailPublic
from dealflow.db.models.workflow import (
    Workflow,
    WorkflowAction,
    WorkflowActionType,
    WorkflowPublic,
    WorkflowTriggerType,
    to_public,
)
from dealflow.schemas.template_context import sample_context
from dealflow.schemas.workflow import SendTestEmailRequest, WorkflowSave
from dealflow.services.mail.transport import (
    EmailTransport,
    TransportError,
    TransportResult,
)
from dealflow.services.workflows.errors import (
    DispatchError,
    EntityNotFoundError,
    WorkflowConfigError,
)
from dealflow.services.workflows.scheduler import DeliveryScheduler
from dealflow.services.workflows.templating import render, text_to_html

logger = get_logger(__name__)

DEFAULT_WORKFLOW_NAME = "Deal stage change automation"

TEST_SUBJECT_TEMPLATE = "Workflow test email from your clinic"

TEST_BODY_TEMPLATE = "\n".join(
    [
        "Hi {{patient.first_name}}",
        "",
        "This is a test email generated from your workflow template.",
        "",
        "Deal: {{deal.title}}",
        "Pipeline: {{deal.pipeline}}",
        "",
        "Best regards,",
        "Your clinic team",
    ]
)


class WorkflowService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        scheduler: DeliveryScheduler,
        transport: EmailTransport,
    ):
        self.session_factory = session_factory
        self.scheduler = scheduler
        self.transport = transport

    async def save_workflow(
        self, payload: WorkflowSave, workflow_id: Optional[uuid.UUID] = None
    ) -> WorkflowPublic:
        """
        Create a rule, or update the rule ``workflow_id``.

        Deactivating a rule cancels its pending occurrences.

        Raises:
            WorkflowConfigError: No target stage was given, or a delay or
                interval exceeds its maximum.
            EntityNotFoundError: ``workflow_id`` does not exist.
        """
        if not payload.to_stage_id:
            raise WorkflowConfigError("to_stage_id is required")
        violations = payload.action.limit_violations()
        if violations:
            raise WorkflowConfigError("; ".join(violations))

        config = {
            "from_stage_id": payload.from_stage_id,
            "to_stage_id": payload.to_stage_id,
            "pipeline": payload.pipeline,
        }
        action_config = payload.action.normalized().to_stored()

        async with self.session_factory() as session:
            if workflow_id is None:
                workflow = Workflow(
                    name=payload.name or DEFAULT_WORKFLOW_NAME,
                    trigger_type=WorkflowTriggerType.DEAL_STAGE_CHANGED.value,
                    active=payload.active,
                    config=config,
                )
                session.add(workflow)
                await session.flush()
                action = None
            else:
                workflow = await self._get(session, workflow_id)
                action = await self._email_action(session, workflow.id)
                if workflow.active and not payload.active:
                    await self.scheduler.cancel_for_workflow(session, workflow.id)
                workflow.name = payload.name or DEFAULT_WORKFLOW_NAME
                workflow.active = payload.active
                workflow.config = config
                session.add(workflow)

            if action is None:
                action = WorkflowAction(
                    workflow_id=workflow.id,
                    action_type=WorkflowActionType.DRAFT_EMAIL_PATIENT.value,
                    sort_order=1,
                    config=action_config,
                )
            else:
                action.config = action_config
            session.add(action)

            await session.commit()
            await session.refresh(workflow)
            await session.refresh(action)

            logger.info(
                "Saved workflow %s (%s, active=%s, mode=%s)",
                workflow.id,
                workflow.name,
                workflow.active,
                action_config.get("send_mode"),
            )
            return to_public(workflow, [action])

    async def list_workflows(self, skip: int = 0, limit: int = 50) -> List[WorkflowPublic]:
        async with self.session_factory() as session:
            statement = (
                select(Workflow)
                .order_by(desc(Workflow.created_at))
                .offset(skip)
                .limit(limit)
            )
            workflows = (await session.exec(statement)).all()
            return [
                to_public(w, await self._actions(session, w.id)) for w in workflows
            ]

    async def get_workflow(self, workflow_id: uuid.UUID) -> WorkflowPublic:
        async with self.session_factory() as session:
            workflow = await self._get(session, workflow_id)
            return to_public(workflow, await self._actions(session, workflow.id))

    async def list_occurrences(
        self, workflow_id: uuid.UUID, skip: int = 0, limit: int = 50
    ) -> List[ScheduledEmailPublic]:
        """Scheduled occurrences of a rule, earliest first."""
        async with self.session_factory() as session:
            await self._get(session, workflow_id)
            rows = await self.scheduler.list_occurrences(
                session, workflow_id, skip=skip, limit=limit
            )
            return [row.to_public() for row in rows]

    async def send_test_email(self, request: SendTestEmailRequest) -> TransportResult:
        """
        Render templates against the sample context and send them to ``request.to``.

        Raises:
            WorkflowConfigError: No recipient was given.
            DispatchError: The transport rejected the message.
        """
        to = request.to.strip()
        if not to:
            raise WorkflowConfigError("to is required")

        context = sample_context(to)
        subject = render(
            (request.subject_template or TEST_SUBJECT_TEMPLATE).strip(), context
        )

        html_template = request.body_html_template
        if request.use_html and html_template and html_template.strip():
            html = render(html_template, context)
            if not html.strip():
                html = "<p>(Empty HTML body)</p>"
        else:
            body_template = request.body_template
            if body_template is None:
                body_template = TEST_BODY_TEMPLATE
            html = text_to_html(render(body_template, context) or "(Empty body)")

        try:
            result = await self.transport.send(to, subject, html)
        except TransportError as e:
            logger.error("Test email to %s failed: %s", to, e)
            raise DispatchError(f"Failed to send test email: {e}") from e

        logger.info("Test email sent to %s (message %s)", to, result.message_id)
        return result

    async def _get(self, session: AsyncSession, workflow_id: uuid.UUID) -> Workflow:
        workflow = await session.get(Workflow, workflow_id)
        if workflow is None:
            raise EntityNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    async def _actions(
        self, session: AsyncSession, workflow_id: uuid.UUID
    ) -> List[WorkflowAction]:
        statement = (
            select(WorkflowAction)
            .where(WorkflowAction.workflow_id == workflow_id)
            .order_by(WorkflowAction.sort_order)
        )
        return list((await session.exec(statement)).all())

    async def _email_action(
        self, session: AsyncSession, workflow_id: uuid.UUID
    ) -> Optional[WorkflowAction]:
        for action in await self._actions(session, workflow_id):
            if action.action_type == WorkflowActionType.DRAFT_EMAIL_PATIENT.value:
                return action
        return None
