"""
Workflow Dispatch Model

Ledger of logical sends. ``dedup_key`` is unique, so a retried dispatch of the
same occurrence can never produce a second send.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import SQLModel, Field


class DispatchStatus(str, Enum):
    """Dispatch ledger status."""

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class WorkflowDispatch(SQLModel, table=True):
    """
    Workflow dispatch table.
    """

    __tablename__ = "workflow_dispatches"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )
    dedup_key: str = Field(
        unique=True,
        index=True,
        description="trigger_id:workflow_id:action_id:occurrence_index",
    )
    workflow_id: uuid.UUID = Field(index=True)
    action_id: uuid.UUID
    occurrence_index: int
    to_address: str
    subject: str = Field(sa_column=Column(Text, nullable=False))
    body: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(
        default=DispatchStatus.QUEUED.value,
        sa_column=Column(String, nullable=False),
    )
    provider_message_id: Optional[str] = None
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    sent_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
