"""
Workflow engine dependencies.

Services are built per request from the session factory and the outbound
transport; tests override those two providers.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.dependencies.database import get_session_factory
from dealflow.services.mail.mailgun_client import get_email_transport
from dealflow.services.mail.transport import EmailTransport
from dealflow.services.workflows.dispatcher import ActionDispatcher
from dealflow.services.workflows.rules import WorkflowService
from dealflow.services.workflows.scheduler import DeliveryScheduler
from dealflow.services.workflows.triggers import TriggerService

SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]


def get_transport() -> EmailTransport:
    """Get the outbound email transport (Dependency Injection)."""
    return get_email_transport()


TransportDep = Annotated[EmailTransport, Depends(get_transport)]


def get_scheduler(
    session_factory: SessionFactoryDep, transport: TransportDep
) -> DeliveryScheduler:
    """Get delivery scheduler (Dependency Injection)."""
    return DeliveryScheduler(
        session_factory, ActionDispatcher(session_factory, transport)
    )


SchedulerDep = Annotated[DeliveryScheduler, Depends(get_scheduler)]


def get_trigger_service(
    session_factory: SessionFactoryDep, scheduler: SchedulerDep
) -> TriggerService:
    return TriggerService(session_factory, scheduler)


def get_workflow_service(
    session_factory: SessionFactoryDep,
    scheduler: SchedulerDep,
    transport: TransportDep,
) -> WorkflowService:
    return WorkflowService(session_factory, scheduler, transport)


TriggerServiceDep = Annotated[TriggerService, Depends(get_trigger_service)]
WorkflowServiceDep = Annotated[WorkflowService, Depends(get_workflow_service)]
