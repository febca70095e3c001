"""
Database models package.

Import all models here so Alembic can discover them.
"""

from dealflow.db.models.crm import Deal, DealStage, Patient
from dealflow.db.models.workflow import (
    Workflow,
    WorkflowAction,
    WorkflowActionType,
    WorkflowTriggerType,
)
from dealflow.db.models.scheduled_email import OccurrenceStatus, ScheduledEmail
from dealflow.db.models.workflow_dispatch import DispatchStatus, WorkflowDispatch

__all__ = [
    "Deal",
    "DealStage",
    "Patient",
    "Workflow",
    "WorkflowAction",
    "WorkflowActionType",
    "WorkflowTriggerType",
    "OccurrenceStatus",
    "ScheduledEmail",
    "DispatchStatus",
    "WorkflowDispatch",
]
