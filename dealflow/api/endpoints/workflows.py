import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Body, HTTPException, Query

from dealflow.core.logging import get_logger
from dealflow.db.models.scheduled_email import ScheduledEmailPublic
from dealflow.db.models.workflow import WorkflowPublic
from dealflow.dependencies.workflows import TriggerServiceDep, WorkflowServiceDep
from dealflow.schemas.template_context import sample_context
from dealflow.schemas.workflow import (
    SendTestEmailRequest,
    TemplatePreview,
    TemplatePreviewRequest,
    TemplateSegmentPublic,
    TriggerSummary,
    WorkflowSave,
)
from dealflow.services.workflows.errors import (
    DispatchError,
    EntityNotFoundError,
    InvalidEventError,
    WorkflowConfigError,
)
from dealflow.services.workflows.templating import (
    load_variable_catalog,
    render,
    split_tokens,
)
from dealflow.services.workflows.triggers import parse_event

logger = get_logger(__name__)

router = APIRouter()

SAMPLE_PREVIEW_EMAIL = "patient@example.com"


@router.post("/deal-stage-changed", response_model=TriggerSummary)
async def deal_stage_changed(
    service: TriggerServiceDep,
    payload: Dict[str, Any] = Body(...),
):
    """
    Run the active workflows matching a deal stage change.

    ``dealId``, ``patientId`` and ``toStageId`` are required.
    """
    try:
        event = parse_event(payload)
    except InvalidEventError as e:
        logger.warning("Rejected deal stage event: %s", e)
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        return await service.handle_deal_stage_changed(event)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("/template-variables")
def template_variables():
    """Template variables offered by the email editor."""
    return {"variables": load_variable_catalog()}


@router.post("/template-preview", response_model=TemplatePreview)
def template_preview(request: TemplatePreviewRequest):
    """Split a template into text and variable segments and render it with sample data."""
    segments = [
        TemplateSegmentPublic(text=s.text, path=s.path)
        for s in split_tokens(request.template)
    ]
    rendered = render(request.template, sample_context(SAMPLE_PREVIEW_EMAIL))
    return TemplatePreview(segments=segments, rendered=rendered)


@router.post("/send-test-email")
async def send_test_email(request: SendTestEmailRequest, service: WorkflowServiceDep):
    try:
        result = await service.send_test_email(request)
    except WorkflowConfigError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except DispatchError as e:
        raise HTTPException(
            status_code=502,
            detail="Failed to send test email via provider. Check MAILGUN configuration.",
        ) from e
    return {"ok": True, "message_id": result.message_id}


@router.get("", response_model=List[WorkflowPublic])
async def list_workflows(
    service: WorkflowServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    return await service.list_workflows(skip=skip, limit=limit)


@router.post("", response_model=WorkflowPublic, status_code=201)
async def create_workflow(payload: WorkflowSave, service: WorkflowServiceDep):
    try:
        return await service.save_workflow(payload)
    except WorkflowConfigError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/{workflow_id}", response_model=WorkflowPublic)
async def get_workflow(workflow_id: uuid.UUID, service: WorkflowServiceDep):
    try:
        return await service.get_workflow(workflow_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.put("/{workflow_id}", response_model=WorkflowPublic)
async def update_workflow(
    workflow_id: uuid.UUID, payload: WorkflowSave, service: WorkflowServiceDep
):
    try:
        return await service.save_workflow(payload, workflow_id=workflow_id)
    except WorkflowConfigError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("/{workflow_id}/occurrences", response_model=List[ScheduledEmailPublic])
async def list_occurrences(
    workflow_id: uuid.UUID,
    service: WorkflowServiceDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Scheduled emails of a workflow with their delivery status."""
    try:
        return await service.list_occurrences(workflow_id, skip=skip, limit=limit)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
