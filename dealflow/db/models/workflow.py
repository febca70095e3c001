"""
Workflow (rule) and workflow action models.

A workflow holds the trigger filter for ``deal_stage_changed`` events in its
JSON ``config``; each workflow owns ordered actions whose ``config`` holds the
email templates and delivery timing.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, String
from sqlmodel import SQLModel, Field

from dealflow.db.types import JSONDocument


class WorkflowTriggerType(str, Enum):
    """Trigger types stored on workflows."""

    DEAL_STAGE_CHANGED = "deal_stage_changed"


class WorkflowActionType(str, Enum):
    """Action types stored on workflow actions."""

    DRAFT_EMAIL_PATIENT = "draft_email_patient"
    DRAFT_EMAIL_INSURANCE = "draft_email_insurance"
    GENERATE_POSTOP_DOC = "generate_postop_doc"


# -----------------------------------------------------------------------------
# Workflow
# -----------------------------------------------------------------------------
class WorkflowBase(SQLModel):
    """Shared fields for Workflow."""

    name: str = Field(description="Human-readable workflow name.")
    trigger_type: str = Field(
        default=WorkflowTriggerType.DEAL_STAGE_CHANGED.value,
        sa_column=Column(String, nullable=False),
    )
    active: bool = Field(default=True, index=True)


class Workflow(WorkflowBase, table=True):
    """
    Workflow table.

    ``config`` shape for deal_stage_changed:
    ``{"from_stage_id": str | null, "to_stage_id": str, "pipeline": str | null}``
    """

    __tablename__ = "workflows"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )
    config: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONDocument, nullable=False),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def from_stage_id(self) -> Optional[str]:
        return (self.config or {}).get("from_stage_id") or None

    @property
    def to_stage_id(self) -> Optional[str]:
        return (self.config or {}).get("to_stage_id") or None

    @property
    def pipeline(self) -> Optional[str]:
        return (self.config or {}).get("pipeline") or None


# -----------------------------------------------------------------------------
# Workflow action
# -----------------------------------------------------------------------------
class WorkflowActionBase(SQLModel):
    """Shared fields for WorkflowAction."""

    action_type: str = Field(
        default=WorkflowActionType.DRAFT_EMAIL_PATIENT.value,
        sa_column=Column(String, nullable=False),
    )
    sort_order: int = Field(default=1)


class WorkflowAction(WorkflowActionBase, table=True):
    """
    Workflow action table.

    For ``draft_email_patient`` the ``config`` holds the persisted
    ``DraftEmailConfig`` shape.
    """

    __tablename__ = "workflow_actions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )
    workflow_id: uuid.UUID = Field(foreign_key="workflows.id", index=True)
    config: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONDocument, nullable=False),
    )


class WorkflowActionPublic(WorkflowActionBase):
    """
    Public DTO for WorkflowAction responses.
    """

    id: uuid.UUID
    workflow_id: uuid.UUID
    config: Dict[str, Any] = {}


class WorkflowPublic(WorkflowBase):
    """
    Public DTO for Workflow responses.
    """

    id: uuid.UUID
    from_stage_id: Optional[str] = None
    to_stage_id: Optional[str] = None
    pipeline: Optional[str] = None
    actions: List[WorkflowActionPublic] = []


def to_public(workflow: Workflow, actions: List[WorkflowAction]) -> WorkflowPublic:
    """Convert a workflow and its actions to the response DTO."""
    return WorkflowPublic(
        id=workflow.id,
        name=workflow.name,
        trigger_type=workflow.trigger_type,
        active=workflow.active,
        from_stage_id=workflow.from_stage_id,
        to_stage_id=workflow.to_stage_id,
        pipeline=workflow.pipeline,
        actions=[
            WorkflowActionPublic(
                id=a.id,
                workflow_id=a.workflow_id,
                action_type=a.action_type,
                sort_order=a.sort_order,
                config=dict(a.config or {}),
            )
            for a in actions
        ],
    )
