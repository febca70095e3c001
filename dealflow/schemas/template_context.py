"""
Template context read-model.

Built fresh for every render from the CRM records; never mutated afterwards.
"""

from typing import Optional
from sqlmodel import SQLModel


class PatientContext(SQLModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class DealContext(SQLModel):
    id: str
    title: Optional[str] = None
    pipeline: Optional[str] = None
    notes: Optional[str] = None


class StageContext(SQLModel):
    id: str
    name: str
    type: str


class TemplateContext(SQLModel):
    """Values reachable from ``{{patient.*}}``, ``{{deal.*}}``, ``{{from_stage.*}}`` and ``{{to_stage.*}}``."""

    patient: PatientContext
    deal: DealContext
    from_stage: Optional[StageContext] = None
    to_stage: Optional[StageContext] = None


SAMPLE_CONTEXT_FIELDS = {
    "patient": {
        "id": "test-patient-id",
        "first_name": "Test",
        "last_name": "Patient",
        "phone": "+41000000000",
    },
    "deal": {
        "id": "test-deal-id",
        "title": "Sample procedure",
        "pipeline": "Test pipeline",
        "notes": "Sample notes for test email.",
    },
    "from_stage": {
        "id": "from-stage-id",
        "name": "Request for information",
        "type": "lead",
    },
    "to_stage": {
        "id": "to-stage-id",
        "name": "Request processed",
        "type": "consultation",
    },
}


def sample_context(email: str) -> TemplateContext:
    """Fixed context used for test emails sent from the authoring surface."""
    fields = {key: dict(value) for key, value in SAMPLE_CONTEXT_FIELDS.items()}
    fields["patient"]["email"] = email
    return TemplateContext.model_validate(fields)
