"""
Deal stage change event received at the ingestion endpoint.
"""

import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class DealStageChangedEvent(BaseModel):
    """
    A deal moved from one pipeline stage to another.

    ``dealId``, ``patientId`` and ``toStageId`` are required; an event
    missing any of them is rejected before rule matching.
    ``eventId`` is an optional idempotency key supplied by the caller.
    """

    deal_id: str = Field(alias="dealId")
    patient_id: str = Field(alias="patientId")
    from_stage_id: Optional[str] = Field(default=None, alias="fromStageId")
    to_stage_id: str = Field(alias="toStageId")
    pipeline: Optional[str] = None
    event_id: Optional[str] = Field(default=None, alias="eventId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator(
        "deal_id", "patient_id", "to_stage_id", "from_stage_id", "event_id", mode="before"
    )
    @classmethod
    def _strip_ids(cls, value: Any) -> Any:
        return _clean(value)

    @model_validator(mode="after")
    def _assign_event_id(self) -> "DealStageChangedEvent":
        if self.event_id is None:
            self.event_id = str(uuid.uuid4())
        return self

    @property
    def trigger_id(self) -> str:
        """Idempotency key of this event."""
        return self.event_id
