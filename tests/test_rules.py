import uuid

import pytest

from dealflow.schemas.workflow import SendTestEmailRequest, WorkflowSave
from dealflow.services.workflows.errors import (
    DispatchError,
    EntityNotFoundError,
    WorkflowConfigError,
)
from dealflow.services.workflows.rules import DEFAULT_WORKFLOW_NAME, WorkflowService


@pytest.fixture
def service(session_factory, scheduler, transport):
    return WorkflowService(session_factory, scheduler, transport)


def payload(**overrides):
    data = {
        "name": "Processed follow-up",
        "from_stage_id": "S_lead",
        "to_stage_id": "S_processed",
        "action": {"send_mode": "immediate"},
    }
    data.update(overrides)
    return WorkflowSave.model_validate(data)


async def test_create_workflow_with_single_email_action(service):
    saved = await service.save_workflow(
        payload(
            pipeline="  ",
            action={
                "send_mode": "recurring",
                "delay_minutes": 15,
                "recurring_every_days": 7,
                "recurring_times": 45,
            },
        )
    )

    assert saved.active is True
    assert saved.trigger_type == "deal_stage_changed"
    assert saved.to_stage_id == "S_processed"
    assert saved.pipeline is None
    [action] = saved.actions
    assert action.action_type == "draft_email_patient"
    assert action.config["delay_minutes"] is None
    assert action.config["recurring_times"] == 30

    fetched = await service.get_workflow(saved.id)
    assert fetched.model_dump() == saved.model_dump()


async def test_blank_name_gets_default(service):
    saved = await service.save_workflow(payload(name="   "))
    assert saved.name == DEFAULT_WORKFLOW_NAME


async def test_target_stage_is_required(service):
    with pytest.raises(WorkflowConfigError):
        await service.save_workflow(payload(to_stage_id=" "))


@pytest.mark.parametrize(
    "action",
    [
        {"send_mode": "delay", "delay_minutes": 10**10},
        {"send_mode": "recurring", "recurring_every_days": 10**6, "recurring_times": 30},
    ],
)
async def test_oversize_timing_is_rejected(service, action):
    with pytest.raises(WorkflowConfigError, match="must be at most"):
        await service.save_workflow(payload(action=action))
    assert await service.list_workflows() == []


async def test_update_keeps_the_same_action(service):
    created = await service.save_workflow(payload())
    updated = await service.save_workflow(
        payload(name="Renamed", action={"send_mode": "delay", "delay_minutes": 45}),
        workflow_id=created.id,
    )

    assert updated.id == created.id
    assert updated.name == "Renamed"
    assert [a.id for a in updated.actions] == [a.id for a in created.actions]
    assert updated.actions[0].config["send_mode"] == "delay"
    assert len(await service.list_workflows()) == 1


async def test_update_unknown_workflow(service):
    with pytest.raises(EntityNotFoundError):
        await service.save_workflow(payload(), workflow_id=uuid.uuid4())


async def test_deactivation_cancels_pending_occurrences(
    service, trigger_service, crm, make_event
):
    saved = await service.save_workflow(
        payload(
            from_stage_id=crm.lead_stage_id,
            to_stage_id=crm.processed_stage_id,
            action={
                "send_mode": "recurring",
                "recurring_every_days": 1,
                "recurring_times": 3,
            },
        )
    )
    await trigger_service.handle_deal_stage_changed(make_event())

    await service.save_workflow(
        payload(
            from_stage_id=crm.lead_stage_id,
            to_stage_id=crm.processed_stage_id,
            active=False,
        ),
        workflow_id=saved.id,
    )

    rows = await service.list_occurrences(saved.id)
    assert [r.status for r in rows] == ["SENT", "CANCELLED", "CANCELLED"]


async def test_occurrences_of_unknown_workflow(service):
    with pytest.raises(EntityNotFoundError):
        await service.list_occurrences(uuid.uuid4())


async def test_send_test_email_uses_sample_context(service, transport):
    await service.send_test_email(
        SendTestEmailRequest(
            to=" tester@example.com ",
            subjectTemplate="Hi {{patient.first_name}}",
            bodyTemplate="Deal: {{deal.title}}\nNotes: {{deal.notes}}",
        )
    )
    [sent] = transport.sent
    assert sent.to == "tester@example.com"
    assert sent.subject == "Hi Test"
    assert sent.html == "Deal: Sample procedure<br />Notes: Sample notes for test email."


async def test_send_test_email_defaults(service, transport):
    await service.send_test_email(SendTestEmailRequest(to="tester@example.com"))
    [sent] = transport.sent
    assert sent.subject == "Workflow test email from your clinic"
    assert "This is a test email generated from your workflow template." in sent.html


async def test_send_test_email_empty_bodies(service, transport):
    await service.send_test_email(
        SendTestEmailRequest(to="t@example.com", bodyTemplate="{{deal.missing}}")
    )
    await service.send_test_email(
        SendTestEmailRequest(
            to="t@example.com", useHtml=True, bodyHtmlTemplate="{{deal.missing}} "
        )
    )
    assert [s.html for s in transport.sent] == ["(Empty body)", "<p>(Empty HTML body)</p>"]


async def test_send_test_email_requires_recipient(service):
    with pytest.raises(WorkflowConfigError):
        await service.send_test_email(SendTestEmailRequest(to="  "))


async def test_send_test_email_transport_failure(service, transport):
    transport.fail = True
    with pytest.raises(DispatchError):
        await service.send_test_email(SendTestEmailRequest(to="t@example.com"))
