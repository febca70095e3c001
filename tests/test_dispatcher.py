import uuid

import pytest
from sqlmodel import select

from dealflow.db.models.workflow_dispatch import DispatchStatus, WorkflowDispatch
from dealflow.schemas.dispatch import DispatchRequest
from dealflow.services.workflows.errors import DispatchError

from tests.conftest import T0

RULE_ID = uuid.UUID("7b0c7e59-9a41-4c38-9d0c-0a54f0d2a001")
ACTION_ID = uuid.UUID("7b0c7e59-9a41-4c38-9d0c-0a54f0d2a002")


def request(occurrence_index=1, destination="amal@example.com"):
    return DispatchRequest(
        trigger_id="evt-1",
        rule_id=RULE_ID,
        action_id=ACTION_ID,
        occurrence_index=occurrence_index,
        rendered_subject="Hello",
        rendered_body="<p>Hello</p>",
        destination=destination,
        not_before=T0,
    )


async def ledger(session_factory):
    async with session_factory() as session:
        return list((await session.exec(select(WorkflowDispatch))).all())


def test_dedup_key_identifies_the_logical_send():
    assert request().dedup_key == f"evt-1:{RULE_ID}:{ACTION_ID}:1"


async def test_dispatch_sends_and_records(session_factory, dispatcher, transport):
    outcome = await dispatcher.dispatch(request())

    assert outcome.duplicate is False
    assert outcome.provider_message_id == "<msg-1@test>"
    [sent] = transport.sent
    assert sent.to == "amal@example.com"
    assert sent.subject == "Hello"
    assert sent.html == "<p>Hello</p>"
    assert sent.reply_to == str(outcome.dispatch_id)

    [row] = await ledger(session_factory)
    assert row.dedup_key == outcome.dedup_key
    assert row.status == DispatchStatus.SENT.value
    assert row.provider_message_id == "<msg-1@test>"
    assert row.sent_at is not None


async def test_repeated_dispatch_is_not_sent_twice(dispatcher, transport):
    first = await dispatcher.dispatch(request())
    second = await dispatcher.dispatch(request())

    assert second.duplicate is True
    assert second.in_doubt is False
    assert second.dispatch_id == first.dispatch_id
    assert len(transport.sent) == 1


async def test_each_occurrence_is_a_separate_send(dispatcher, transport):
    await dispatcher.dispatch(request(occurrence_index=1))
    await dispatcher.dispatch(request(occurrence_index=2))
    assert len(transport.sent) == 2


async def test_transport_failure_is_recorded_and_raised(
    session_factory, dispatcher, transport
):
    transport.fail = True
    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.dispatch(request())
    assert exc_info.value.dedup_key == request().dedup_key

    [row] = await ledger(session_factory)
    assert row.status == DispatchStatus.FAILED.value
    assert row.error == "provider unavailable"


async def test_failed_dispatch_can_be_retried(session_factory, dispatcher, transport):
    transport.fail = True
    with pytest.raises(DispatchError):
        await dispatcher.dispatch(request())

    transport.fail = False
    outcome = await dispatcher.dispatch(request())

    assert outcome.duplicate is False
    assert len(transport.sent) == 1
    [row] = await ledger(session_factory)
    assert row.status == DispatchStatus.SENT.value
    assert row.error is None


async def test_unfinished_earlier_attempt_is_reported_in_doubt(
    session_factory, dispatcher, transport
):
    async with session_factory() as session:
        session.add(
            WorkflowDispatch(
                dedup_key=request().dedup_key,
                workflow_id=RULE_ID,
                action_id=ACTION_ID,
                occurrence_index=1,
                to_address="amal@example.com",
                subject="Hello",
                body="<p>Hello</p>",
            )
        )
        await session.commit()

    outcome = await dispatcher.dispatch(request())

    assert outcome.duplicate is True
    assert outcome.in_doubt is True
    assert transport.sent == []
