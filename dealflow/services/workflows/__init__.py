"""
Deal-stage workflow engine: matching, scheduling and dispatch of draft emails.
"""

from dealflow.services.workflows.dispatcher import ActionDispatcher
from dealflow.services.workflows.errors import (
    DispatchError,
    EntityNotFoundError,
    InvalidEventError,
    WorkflowConfigError,
    WorkflowError,
)
from dealflow.services.workflows.rules import WorkflowService
from dealflow.services.workflows.scheduler import DeliveryScheduler, plan_occurrences
from dealflow.services.workflows.triggers import TriggerService

__all__ = [
    "ActionDispatcher",
    "DeliveryScheduler",
    "TriggerService",
    "WorkflowService",
    "plan_occurrences",
    "WorkflowError",
    "WorkflowConfigError",
    "InvalidEventError",
    "EntityNotFoundError",
    "DispatchError",
]
