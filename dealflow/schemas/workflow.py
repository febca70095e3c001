"""
Request/response payloads of the workflow API.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from dealflow.schemas.action_config import DraftEmailConfig


class WorkflowSave(BaseModel):
    """Create/update payload: trigger filter plus the single draft-email action."""

    name: str = ""
    active: bool = True
    from_stage_id: Optional[str] = None
    to_stage_id: Optional[str] = None
    pipeline: Optional[str] = None
    action: DraftEmailConfig = Field(default_factory=DraftEmailConfig)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("from_stage_id", "to_stage_id", "pipeline", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class TriggerSummary(BaseModel):
    """Outcome of processing one ingested event."""

    ok: bool = True
    trigger_id: str
    workflows: int = 0
    scheduled: int = 0
    dispatched: int = 0


class SendTestEmailRequest(BaseModel):
    """Send the given templates to ``to`` using the sample context."""

    to: str = ""
    subject_template: Optional[str] = Field(default=None, alias="subjectTemplate")
    body_template: Optional[str] = Field(default=None, alias="bodyTemplate")
    body_html_template: Optional[str] = Field(default=None, alias="bodyHtmlTemplate")
    use_html: bool = Field(default=False, alias="useHtml")

    model_config = {"populate_by_name": True}


class TemplatePreviewRequest(BaseModel):
    template: str = ""


class TemplateSegmentPublic(BaseModel):
    text: str
    path: Optional[str] = None


class TemplatePreview(BaseModel):
    segments: List[TemplateSegmentPublic]
    rendered: str

