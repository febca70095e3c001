"""
Scheduled Email Model and Enums

One durable row per planned occurrence of a matched workflow action.
Key: (trigger_id, workflow_id, action_id, occurrence_index) (unique)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlmodel import SQLModel, Field


class OccurrenceStatus(str, Enum):
    """Occurrence lifecycle status."""

    PENDING = "PENDING"
    FIRING = "FIRING"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


# -----------------------------------------------------------------------------
# Base
# -----------------------------------------------------------------------------
class ScheduledEmailBase(SQLModel):
    """Shared fields for ScheduledEmail."""

    trigger_id: str = Field(
        index=True, description="Idempotency key of the ingested event."
    )
    workflow_id: uuid.UUID = Field(index=True)
    action_id: uuid.UUID
    occurrence_index: int = Field(description="1-based position in the series.")
    occurrence_count: int = Field(default=1, description="Planned series length.")
    send_mode: str = Field(default="immediate")

    # Event snapshot, used to rebuild the template context at firing time
    deal_id: uuid.UUID = Field(index=True)
    patient_id: uuid.UUID
    from_stage_id: Optional[str] = None
    to_stage_id: str
    pipeline: Optional[str] = None

    status: str = Field(
        default=OccurrenceStatus.PENDING.value,
        sa_column=Column(String, nullable=False, index=True),
    )
    attempts: int = Field(default=0)
    last_error: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )


# -----------------------------------------------------------------------------
# ORM Model (Database layer)
# -----------------------------------------------------------------------------
class ScheduledEmail(ScheduledEmailBase, table=True):
    """
    Scheduled email table.

    ``subject`` / ``body_html`` are rendered at scheduling time for immediate
    and delayed sends. Recurring rows set ``render_at_fire`` and are rendered
    against a context rebuilt at each firing.
    """

    __tablename__ = "scheduled_emails"
    __table_args__ = (
        UniqueConstraint(
            "trigger_id",
            "workflow_id",
            "action_id",
            "occurrence_index",
            name="uq_scheduled_emails_occurrence",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )
    not_before: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    render_at_fire: bool = Field(default=False)
    subject: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    body_html: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    claimed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    fired_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    def to_public(self) -> "ScheduledEmailPublic":
        """Convert to render-safe public DTO."""
        return ScheduledEmailPublic(
            id=self.id,
            trigger_id=self.trigger_id,
            workflow_id=self.workflow_id,
            action_id=self.action_id,
            occurrence_index=self.occurrence_index,
            occurrence_count=self.occurrence_count,
            send_mode=self.send_mode,
            deal_id=self.deal_id,
            patient_id=self.patient_id,
            from_stage_id=self.from_stage_id,
            to_stage_id=self.to_stage_id,
            pipeline=self.pipeline,
            status=self.status,
            attempts=self.attempts,
            last_error=self.last_error,
            not_before=self.not_before,
            fired_at=self.fired_at,
        )


# -----------------------------------------------------------------------------
# Public (Response/Read layer)
# -----------------------------------------------------------------------------
class ScheduledEmailPublic(ScheduledEmailBase):
    """
    Public DTO for ScheduledEmail responses.
    """

    id: uuid.UUID
    not_before: datetime
    fired_at: Optional[datetime] = None
