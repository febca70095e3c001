from datetime import timedelta

from sqlalchemy import update
from sqlmodel import select

from dealflow.db.models.crm import Deal, Patient
from dealflow.db.models.scheduled_email import OccurrenceStatus, ScheduledEmail
from dealflow.db.models.workflow import Workflow
from dealflow.db.models.workflow_dispatch import DispatchStatus, WorkflowDispatch
from dealflow.services.workflows.context import load_template_context

from tests.conftest import T0


async def schedule(session_factory, scheduler, event, workflow, action):
    async with session_factory() as session:
        context = await load_template_context(
            session,
            event.deal_id,
            event.patient_id,
            event.from_stage_id,
            event.to_stage_id,
        )
        ids = await scheduler.schedule(session, event, workflow.id, action, context)
        await session.commit()
    return ids


async def occurrences(session_factory, scheduler, workflow):
    async with session_factory() as session:
        return await scheduler.list_occurrences(session, workflow.id)


async def update_patient(session_factory, patient_id, **fields):
    async with session_factory() as session:
        patient = await session.get(Patient, patient_id)
        for key, value in fields.items():
            setattr(patient, key, value)
        session.add(patient)
        await session.commit()


async def test_immediate_occurrence_is_sent_once(
    session_factory, scheduler, transport, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {
            "subject_template": "Hi {{patient.first_name}}",
            "body_template": "Deal {{deal.title}}",
        }
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    assert len(ids) == 1

    assert await scheduler.fire(ids[0]) == OccurrenceStatus.SENT
    assert await scheduler.fire(ids[0]) is None

    assert len(transport.sent) == 1
    sent = transport.sent[0]
    assert sent.to == "amal@example.com"
    assert sent.subject == "Hi Amal"
    assert sent.html == "Deal Rhinoplasty consultation"

    [row] = await occurrences(session_factory, scheduler, workflow)
    assert row.status == OccurrenceStatus.SENT.value
    assert row.attempts == 1
    assert row.fired_at is not None


async def test_scheduling_the_same_event_twice_is_a_noop(
    session_factory, scheduler, make_workflow, make_event
):
    workflow, action = await make_workflow()
    event = make_event()
    assert len(await schedule(session_factory, scheduler, event, workflow, action)) == 1
    assert await schedule(session_factory, scheduler, event, workflow, action) == []
    assert len(await occurrences(session_factory, scheduler, workflow)) == 1


async def test_delayed_occurrence_waits_until_due(
    session_factory, scheduler, transport, clock, make_workflow, make_event
):
    workflow, action = await make_workflow({"send_mode": "delay", "delay_minutes": 60})
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)

    [row] = await occurrences(session_factory, scheduler, workflow)
    assert row.send_mode == "delay"

    assert await scheduler.fire(ids[0]) is None
    assert await scheduler.fire_due() == {}

    clock.advance(minutes=59)
    assert await scheduler.fire_due() == {}

    clock.advance(minutes=1)
    assert await scheduler.fire_due() == {"SENT": 1}
    assert len(transport.sent) == 1


async def test_delayed_send_resolves_address_at_firing(
    session_factory, scheduler, transport, clock, crm, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {
            "send_mode": "delay",
            "delay_minutes": 30,
            "subject_template": "Hi {{patient.first_name}}",
        }
    )
    await schedule(session_factory, scheduler, make_event(), workflow, action)
    await update_patient(
        session_factory, crm.patient_id, first_name="Nour", email="nour@example.com"
    )

    clock.advance(minutes=30)
    await scheduler.fire_due()

    [sent] = transport.sent
    assert sent.to == "nour@example.com"
    # Subject and body were rendered when the event was scheduled
    assert sent.subject == "Hi Amal"


async def test_recurring_series_renders_each_occurrence_fresh(
    session_factory, scheduler, transport, clock, crm, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {
            "send_mode": "recurring",
            "recurring_every_days": 7,
            "recurring_times": 3,
            "subject_template": "Week for {{patient.first_name}}",
        }
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    rows = await occurrences(session_factory, scheduler, workflow)
    assert [r.occurrence_index for r in rows] == [1, 2, 3]
    assert [r.not_before.replace(tzinfo=None) for r in rows] == [
        (T0 + timedelta(days=7 * i)).replace(tzinfo=None) for i in range(3)
    ]
    assert all(r.render_at_fire for r in rows)

    assert await scheduler.fire_many(ids) == {"SENT": 1}

    await update_patient(session_factory, crm.patient_id, first_name="Nour")
    clock.advance(days=7)
    assert await scheduler.fire_due() == {"SENT": 1}
    clock.advance(days=7)
    assert await scheduler.fire_due() == {"SENT": 1}
    clock.advance(days=30)
    assert await scheduler.fire_due() == {}

    assert [s.subject for s in transport.sent] == [
        "Week for Amal",
        "Week for Nour",
        "Week for Nour",
    ]


async def test_recurring_series_is_capped(
    session_factory, scheduler, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 1, "recurring_times": 45}
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    assert len(ids) == 30
    rows = await occurrences(session_factory, scheduler, workflow)
    assert rows[-1].occurrence_index == 30
    assert rows[-1].occurrence_count == 30


async def test_deactivated_workflow_cancels_remaining_series(
    session_factory, scheduler, transport, clock, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 1, "recurring_times": 3}
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    await scheduler.fire_many(ids)

    async with session_factory() as session:
        stored = await session.get(Workflow, workflow.id)
        stored.active = False
        session.add(stored)
        await session.commit()

    clock.advance(days=1)
    assert await scheduler.fire_due() == {"CANCELLED": 1}
    clock.advance(days=5)
    assert await scheduler.fire_due() == {}

    rows = await occurrences(session_factory, scheduler, workflow)
    assert [r.status for r in rows] == ["SENT", "CANCELLED", "CANCELLED"]
    assert len(transport.sent) == 1


async def test_deleted_patient_cancels_occurrence(
    session_factory, scheduler, transport, clock, crm, make_workflow, make_event
):
    workflow, action = await make_workflow({"send_mode": "delay", "delay_minutes": 10})
    await schedule(session_factory, scheduler, make_event(), workflow, action)

    async with session_factory() as session:
        await session.delete(await session.get(Patient, crm.patient_id))
        await session.commit()

    clock.advance(minutes=10)
    assert await scheduler.fire_due() == {"CANCELLED": 1}
    [row] = await occurrences(session_factory, scheduler, workflow)
    assert "Patient not found" in row.last_error
    assert transport.sent == []


async def test_recurring_series_resolves_address_at_each_firing(
    session_factory, scheduler, transport, clock, crm, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 7, "recurring_times": 2}
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    assert await scheduler.fire_many(ids) == {"SENT": 1}

    await update_patient(session_factory, crm.patient_id, email="amal.new@example.com")
    clock.advance(days=7)
    assert await scheduler.fire_due() == {"SENT": 1}

    assert [s.to for s in transport.sent] == [
        "amal@example.com",
        "amal.new@example.com",
    ]


async def test_deleted_deal_cancels_remaining_series(
    session_factory, scheduler, transport, clock, crm, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 1, "recurring_times": 3}
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    await scheduler.fire_many(ids)

    async with session_factory() as session:
        await session.delete(await session.get(Deal, crm.deal_id))
        await session.commit()

    clock.advance(days=1)
    assert await scheduler.fire_due() == {"CANCELLED": 1}
    clock.advance(days=5)
    assert await scheduler.fire_due() == {}

    rows = await occurrences(session_factory, scheduler, workflow)
    assert [r.status for r in rows] == ["SENT", "CANCELLED", "CANCELLED"]
    assert "Deal not found" in rows[1].last_error
    assert len(transport.sent) == 1


async def test_patient_without_email_is_skipped(
    session_factory, scheduler, transport, crm, make_workflow, make_event
):
    workflow, action = await make_workflow()
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)
    await update_patient(session_factory, crm.patient_id, email=None)

    assert await scheduler.fire(ids[0]) == OccurrenceStatus.SKIPPED
    assert transport.sent == []


async def test_failed_occurrence_does_not_stop_the_series(
    session_factory, scheduler, transport, clock, make_workflow, make_event
):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 1, "recurring_times": 2}
    )
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)

    transport.fail = True
    assert await scheduler.fire_many(ids) == {"FAILED": 1}

    transport.fail = False
    clock.advance(days=1)
    assert await scheduler.fire_due() == {"SENT": 1}

    rows = await occurrences(session_factory, scheduler, workflow)
    assert [r.status for r in rows] == ["FAILED", "SENT"]
    assert "provider unavailable" in rows[0].last_error


async def test_stale_claim_is_reclaimed(
    session_factory, scheduler, transport, clock, make_workflow, make_event
):
    workflow, action = await make_workflow()
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)

    # Simulate a firer that claimed the row and died
    async with session_factory() as session:
        await session.execute(
            update(ScheduledEmail)
            .where(ScheduledEmail.id == ids[0])
            .values(status=OccurrenceStatus.FIRING.value, claimed_at=clock())
        )
        await session.commit()

    assert await scheduler.fire_due() == {}
    clock.advance(minutes=11)
    assert await scheduler.fire_due() == {"SENT": 1}
    assert len(transport.sent) == 1


async def test_reclaimed_occurrence_with_unfinished_dispatch_is_not_resent(
    session_factory, scheduler, transport, clock, make_workflow, make_event
):
    workflow, action = await make_workflow()
    ids = await schedule(session_factory, scheduler, make_event(), workflow, action)

    # A firer claimed the row and took the dedup key, then died before sending
    async with session_factory() as session:
        await session.execute(
            update(ScheduledEmail)
            .where(ScheduledEmail.id == ids[0])
            .values(status=OccurrenceStatus.FIRING.value, claimed_at=clock())
        )
        session.add(
            WorkflowDispatch(
                dedup_key=f"evt-1:{workflow.id}:{action.id}:1",
                workflow_id=workflow.id,
                action_id=action.id,
                occurrence_index=1,
                to_address="amal@example.com",
                subject="Hi",
                body="Hi",
            )
        )
        await session.commit()

    clock.advance(minutes=11)
    assert await scheduler.fire_due() == {"FAILED": 1}
    assert transport.sent == []

    [row] = await occurrences(session_factory, scheduler, workflow)
    assert row.status == OccurrenceStatus.FAILED.value
    assert "in doubt" in row.last_error
    async with session_factory() as session:
        [dispatch] = (await session.exec(select(WorkflowDispatch))).all()
    assert dispatch.status == DispatchStatus.QUEUED.value


async def test_cancel_for_workflow(session_factory, scheduler, make_workflow, make_event):
    workflow, action = await make_workflow(
        {"send_mode": "recurring", "recurring_every_days": 1, "recurring_times": 3}
    )
    await schedule(session_factory, scheduler, make_event(), workflow, action)

    async with session_factory() as session:
        assert await scheduler.cancel_for_workflow(session, workflow.id) == 3
        await session.commit()

    rows = await occurrences(session_factory, scheduler, workflow)
    assert {r.status for r in rows} == {"CANCELLED"}
