"""
Read-only views of CRM records owned by the shared datastore.

Only the columns the workflow engine reads are mapped. This service never
writes to these tables.
"""

import uuid
from typing import Optional
from sqlmodel import SQLModel, Field


class Patient(SQLModel, table=True):
    """Patient (contact) record."""

    __tablename__ = "patients"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class DealStage(SQLModel, table=True):
    """Pipeline stage a deal can sit in."""

    __tablename__ = "deal_stages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    type: str = Field(default="other")
    sort_order: int = Field(default=0)


class Deal(SQLModel, table=True):
    """Deal (case / opportunity) attached to a patient."""

    __tablename__ = "deals"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    patient_id: uuid.UUID = Field(index=True)
    stage_id: Optional[uuid.UUID] = None
    pipeline: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
