"""
Template context assembly.

Reads the CRM records referenced by an event. Called once when an event is
scheduled and again before every firing, so each render sees current data.
"""

import uuid
from typing import Dict, Optional, Union

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from dealflow.db.models.crm import Deal, DealStage, Patient
from dealflow.schemas.template_context import (
    DealContext,
    PatientContext,
    StageContext,
    TemplateContext,
)
from dealflow.services.workflows.errors import EntityNotFoundError


def parse_uuid(value: Union[str, uuid.UUID, None]) -> Optional[uuid.UUID]:
    """Parse an identifier, returning None for blank or malformed input."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def _load_stages(
    session: AsyncSession, *stage_ids: Optional[str]
) -> Dict[str, StageContext]:
    ids = {sid: parse_uuid(sid) for sid in stage_ids if sid}
    wanted = [u for u in ids.values() if u is not None]
    if not wanted:
        return {}

    result = await session.exec(select(DealStage).where(DealStage.id.in_(wanted)))
    rows = {row.id: row for row in result.all()}

    stages = {}
    for raw, parsed in ids.items():
        row = rows.get(parsed)
        if row is not None:
            stages[raw] = StageContext(id=str(row.id), name=row.name, type=row.type)
    return stages


async def load_template_context(
    session: AsyncSession,
    deal_id: Union[str, uuid.UUID],
    patient_id: Union[str, uuid.UUID],
    from_stage_id: Optional[str] = None,
    to_stage_id: Optional[str] = None,
) -> TemplateContext:
    """
    Build a fresh TemplateContext.

    Raises:
        EntityNotFoundError: The deal or the patient does not exist.
    """
    deal_uuid = parse_uuid(deal_id)
    deal = await session.get(Deal, deal_uuid) if deal_uuid else None
    if deal is None:
        raise EntityNotFoundError(f"Deal not found: {deal_id}")

    patient_uuid = parse_uuid(patient_id)
    patient = await session.get(Patient, patient_uuid) if patient_uuid else None
    if patient is None:
        raise EntityNotFoundError(f"Patient not found: {patient_id}")

    stages = await _load_stages(session, from_stage_id, to_stage_id)

    return TemplateContext(
        patient=PatientContext(
            id=str(patient.id),
            first_name=patient.first_name,
            last_name=patient.last_name,
            email=patient.email,
            phone=patient.phone,
        ),
        deal=DealContext(
            id=str(deal.id),
            title=deal.title,
            pipeline=deal.pipeline,
            notes=deal.notes,
        ),
        from_stage=stages.get(from_stage_id) if from_stage_id else None,
        to_stage=stages.get(to_stage_id) if to_stage_id else None,
    )
