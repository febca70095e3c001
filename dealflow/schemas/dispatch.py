"""
Dispatch DTOs passed between the delivery scheduler and the action dispatcher.
"""

import uuid
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel


class RenderedEmail(SQLModel):
    """Rendered subject and HTML body."""

    subject: str
    html: str


class DispatchRequest(SQLModel):
    """
    One concrete send.

    Consumed once by the dispatcher; ``dedup_key`` identifies the logical send
    across retries.
    """

    trigger_id: str
    rule_id: uuid.UUID
    action_id: uuid.UUID
    occurrence_index: int
    rendered_subject: str
    rendered_body: str
    destination: str
    not_before: datetime

    @property
    def dedup_key(self) -> str:
        return f"{self.trigger_id}:{self.rule_id}:{self.action_id}:{self.occurrence_index}"


class DispatchOutcome(SQLModel):
    """Result of a successful (or already completed) dispatch."""

    dispatch_id: uuid.UUID
    dedup_key: str
    duplicate: bool = False
    in_doubt: bool = False
    provider_message_id: Optional[str] = None
