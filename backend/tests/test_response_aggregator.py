from datetime import timedelta

import pytest

from lifelink.engine.lifelink import LifeLinkEngine
from lifelink.errors import NotNotified, RequisitionNotActive
from lifelink.models.blood import DonorResponseValue, RequisitionStatus
from lifelink.models.notification import ResponseCreate

from conftest import NOW, RecordingTransport, add_donor, create_requisition


def answer(donor_id, value="WILLING", message=None):
    return ResponseCreate(donor_id=donor_id, response=value, message=message)


async def notified_requisition(engine, donors=("d1", "d2", "d3"), **overrides):
    for donor_id in donors:
        await add_donor(engine, donor_id)
    requisition = await create_requisition(engine, **overrides)
    await engine.notifier.notify_all(requisition.id, now=NOW)
    return requisition


async def test_unsolicited_response_is_rejected(engine):
    requisition = await notified_requisition(engine)
    await add_donor(engine, "stranger", "A+")

    with pytest.raises(NotNotified) as excinfo:
        await engine.aggregator.record_response(requisition.id, answer("stranger"), now=NOW)
    assert excinfo.value.code == "NOT_NOTIFIED"
    assert await engine.responses.find_pair(requisition.id, "stranger") is None


async def test_second_response_replaces_the_first(engine):
    requisition = await notified_requisition(engine, units_needed=3)

    await engine.aggregator.record_response(requisition.id, answer("d1", "WILLING"), now=NOW)
    receipt = await engine.aggregator.record_response(
        requisition.id, answer("d1", "NOT_AVAILABLE", "Travelling this week"), now=NOW
    )

    rows = [row async for row in engine.responses.collection.find({"requisition_id": requisition.id})]
    assert len(rows) == 1
    assert rows[0]["response"] == "NOT_AVAILABLE"
    assert rows[0]["message"] == "Travelling this week"
    assert receipt.willing_donors_count == 0
    assert (await engine.requisitions.get(requisition.id))["willing_donors_count"] == 0


async def test_cancelled_requisition_rejects_responses(engine):
    requisition = await notified_requisition(engine)
    await engine.requisitions.cancel(requisition.id, "requester-1")

    for value in DonorResponseValue:
        with pytest.raises(RequisitionNotActive) as excinfo:
            await engine.aggregator.record_response(requisition.id, answer("d1", value.value), now=NOW)
        assert excinfo.value.status == "CANCELLED"


async def test_responding_marks_notification_read(engine):
    requisition = await notified_requisition(engine)

    await engine.aggregator.record_response(requisition.id, answer("d2", "NOT_SUITABLE"), now=NOW)

    row = await engine.notifications.find_pair(requisition.id, "d2")
    assert row["status"] == "READ"
    assert row["read_at"] == NOW
    assert row["delivered_at"] == NOW


async def test_contact_revealed_only_when_both_sides_allow(engine):
    await add_donor(engine, "shy", show_phone=False)
    requisition = await notified_requisition(engine, units_needed=5)

    open_receipt = await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)
    shy_receipt = await engine.aggregator.record_response(requisition.id, answer("shy"), now=NOW)
    unwilling = await engine.aggregator.record_response(requisition.id, answer("d2", "NOT_AVAILABLE"), now=NOW)

    assert open_receipt.contact_revealed
    assert not shy_receipt.contact_revealed
    assert not unwilling.contact_revealed
    assert (await engine.responses.find_pair(requisition.id, "d1"))["contact_phone"] == "9876543210"


async def test_requisition_without_contact_reveal_hides_phone(engine):
    requisition = await notified_requisition(engine, allow_contact_reveal=False)

    receipt = await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)

    assert not receipt.contact_revealed


async def test_requester_is_told_about_each_response(engine, transport):
    requisition = await notified_requisition(engine)

    await engine.aggregator.record_response(requisition.id, answer("d1", message="On my way"), now=NOW)

    messages = transport.sent_to("requester-1")
    assert len(messages) == 1
    assert messages[0].to == "9123456780"
    assert "is willing to donate" in messages[0].body
    assert "On my way" in messages[0].body


async def test_requester_message_failure_does_not_fail_the_response(database, settings, events):
    transport = RecordingTransport(failing={"requester-1"})
    engine = LifeLinkEngine(database, settings, transport=transport, event_sink=events)
    requisition = await notified_requisition(engine)

    receipt = await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)

    assert receipt.willing_donors_count == 1


async def test_manual_policy_never_auto_fulfils(engine, settings):
    settings.fulfillment_policy = "manual"
    requisition = await notified_requisition(engine, units_needed=1)

    receipt = await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)

    assert not receipt.fulfilled
    assert receipt.requisition_status is RequisitionStatus.ACTIVE
    fulfilled = await engine.fulfil_requisition(requisition.id, "requester-1", now=NOW)
    assert fulfilled.status is RequisitionStatus.FULFILLED
    assert fulfilled.willing_donors_count == 1


async def test_willing_donors_listing_and_detail_statistics(engine):
    requisition = await notified_requisition(engine, units_needed=5)
    await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)
    await engine.aggregator.record_response(requisition.id, answer("d2", "NOT_AVAILABLE"), now=NOW)
    await engine.aggregator.record_response(
        requisition.id, answer("d3", "NOT_SUITABLE"), now=NOW + timedelta(minutes=5)
    )

    willing = await engine.willing_donors(requisition.id, "requester-1", now=NOW)
    detail = await engine.requisition_detail(requisition.id, now=NOW)

    assert [donor.donor_id for donor in willing] == ["d1"]
    assert willing[0].contact_phone == "9876543210"
    assert willing[0].eligibility.is_eligible
    stats = detail.statistics
    assert stats.total_notifications_sent == 3
    assert stats.total_responses == 3
    assert (stats.willing_donors, stats.unavailable_donors, stats.not_suitable_donors) == (1, 1, 1)
    assert stats.contacts_revealed == 1
    assert not detail.is_overdue


async def test_response_events(engine, events):
    requisition = await notified_requisition(engine, units_needed=1)

    await engine.aggregator.record_response(requisition.id, answer("d1"), now=NOW)

    assert events.types()[-2:] == ["donor_responded", "requisition_fulfilled"]
