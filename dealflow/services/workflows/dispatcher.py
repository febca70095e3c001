"""
Action dispatcher: hands rendered emails to the outbound transport.

Every logical send is recorded in ``workflow_dispatches`` under its dedup key
before the transport is called, so a retried dispatch of the same
``(trigger, rule, action, occurrence)`` never produces a second email.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.core.logging import get_logger
from dealflow.db.models.workflow_dispatch import DispatchStatus, WorkflowDispatch
from dealflow.db.upsert import insert_ignore
from dealflow.schemas.dispatch import DispatchOutcome, DispatchRequest
from dealflow.services.mail.transport import EmailTransport, TransportError
from dealflow.services.workflows.errors import DispatchError

logger = get_logger(__name__)


class ActionDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: EmailTransport,
    ):
        self.session_factory = session_factory
        self.transport = transport

    async def dispatch(self, request: DispatchRequest) -> DispatchOutcome:
        """
        Send one dispatch request.

        Returns:
            DispatchOutcome; ``duplicate`` is set when the same dedup key was
            already sent (or is being sent) and the transport was not called.
            ``in_doubt`` marks a duplicate whose earlier attempt never
            recorded a result, so whether it reached the provider is unknown.

        Raises:
            DispatchError: The transport failed. The ledger row is marked
                ``failed`` and a later dispatch with the same key may retry it.
        """
        key = request.dedup_key

        async with self.session_factory() as session:
            dispatch_id = await self._claim(session, request)
            if dispatch_id is None:
                existing = (
                    await session.exec(
                        select(WorkflowDispatch).where(WorkflowDispatch.dedup_key == key)
                    )
                ).one()
                await session.commit()
                logger.info(
                    "Dispatch %s already %s; not sending again", key, existing.status
                )
                return DispatchOutcome(
                    dispatch_id=existing.id,
                    dedup_key=key,
                    duplicate=True,
                    in_doubt=existing.status == DispatchStatus.QUEUED.value,
                    provider_message_id=existing.provider_message_id,
                )
            await session.commit()

        try:
            result = await self.transport.send(
                request.destination,
                request.rendered_subject,
                request.rendered_body,
                reply_to=str(dispatch_id),
            )
        except TransportError as e:
            logger.error("Dispatch %s to %s failed: %s", key, request.destination, e)
            await self._finish(dispatch_id, DispatchStatus.FAILED, error=str(e))
            raise DispatchError(str(e), dedup_key=key) from e

        await self._finish(
            dispatch_id,
            DispatchStatus.SENT,
            provider_message_id=result.message_id,
        )
        logger.info("Dispatched %s to %s", key, request.destination)
        return DispatchOutcome(
            dispatch_id=dispatch_id,
            dedup_key=key,
            provider_message_id=result.message_id,
        )

    async def _claim(
        self, session: AsyncSession, request: DispatchRequest
    ) -> Optional[uuid.UUID]:
        """
        Take ownership of the dedup key.

        A new key is inserted as ``queued``; a previously ``failed`` key is
        flipped back to ``queued``. Returns None when someone else owns it.
        """
        content = {
            "to_address": request.destination,
            "subject": request.rendered_subject,
            "body": request.rendered_body,
            "status": DispatchStatus.QUEUED.value,
        }
        dispatch_id = await insert_ignore(
            session,
            WorkflowDispatch,
            values={
                "id": uuid.uuid4(),
                "dedup_key": request.dedup_key,
                "workflow_id": request.rule_id,
                "action_id": request.action_id,
                "occurrence_index": request.occurrence_index,
                "created_at": datetime.now(timezone.utc),
                **content,
            },
            index_elements=["dedup_key"],
        )
        if dispatch_id is not None:
            return dispatch_id

        res = await session.execute(
            update(WorkflowDispatch)
            .where(
                WorkflowDispatch.dedup_key == request.dedup_key,
                WorkflowDispatch.status == DispatchStatus.FAILED.value,
            )
            .values(error=None, **content)
            .returning(WorkflowDispatch.id)
        )
        return res.scalar_one_or_none()

    async def _finish(
        self,
        dispatch_id: uuid.UUID,
        status: DispatchStatus,
        provider_message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            row = await session.get(WorkflowDispatch, dispatch_id)
            row.status = status.value
            row.error = error
            if status == DispatchStatus.SENT:
                row.provider_message_id = provider_message_id
                row.sent_at = datetime.now(timezone.utc)
            session.add(row)
            await session.commit()
