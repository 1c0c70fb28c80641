from datetime import timedelta

import httpx
import pytest

from lifelink.main import create_app
from lifelink.utils.clock import utcnow


@pytest.fixture
async def client(engine):
    app = create_app(engine)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


def requisition_body(**overrides):
    body = {
        "patient_name": "Ravi Kumar",
        "hospital_name": "General Hospital",
        "contact_number": "9123456780",
        "required_blood_group": "B+",
        "units_needed": 1,
        "urgency_level": "HIGH",
        "location": "Kochi",
        "required_by_date": (utcnow() + timedelta(days=1)).isoformat(),
    }
    body.update(overrides)
    return body


async def register_donor(client, donor_id, blood_group="O-"):
    response = await client.put(
        f"/donors/{donor_id}/profile",
        json={
            "name": donor_id.title(),
            "phone": "9988776655",
            "blood_group": blood_group,
            "is_blood_donor": True,
            "location": {"city": "Kochi", "state": "Kerala"},
            "show_phone": True,
        },
    )
    assert response.status_code == 200
    return response.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"status": "ok"}


async def test_full_request_flow(client):
    await register_donor(client, "asha")

    created = await client.post("/requisitions/", params={"requester_id": "req-1"}, json=requisition_body())
    assert created.status_code == 201
    requisition_id = created.json()["requisition"]["_id"]

    notified = await client.post(f"/requisitions/{requisition_id}/notify-all", json={"requester_id": "req-1"})
    assert notified.json()["notified"] == 1

    inbox = await client.get("/donors/asha/notifications")
    assert inbox.json()["total_count"] == 1
    notification_id = inbox.json()["notifications"][0]["_id"]

    delivered = await client.post(f"/notifications/{notification_id}/delivered")
    assert delivered.json() == {"notification_id": notification_id, "status": "DELIVERED", "already": False}

    responded = await client.post(
        f"/requisitions/{requisition_id}/responses", json={"donor_id": "asha", "response": "WILLING"}
    )
    body = responded.json()
    assert body["fulfilled"] is True
    assert body["requisition_status"] == "FULFILLED"
    assert body["contact_revealed"] is True

    willing = await client.get(f"/requisitions/{requisition_id}/willing-donors", params={"requester_id": "req-1"})
    assert [donor["donor_id"] for donor in willing.json()] == ["asha"]

    detail = await client.get(f"/requisitions/{requisition_id}")
    assert detail.json()["statistics"]["willing_donors"] == 1

    mine = await client.get("/requisitions/mine/req-1")
    assert mine.json()["total_count"] == 1


async def test_create_with_notify_flag(client):
    await register_donor(client, "asha")

    created = await client.post(
        "/requisitions/", params={"requester_id": "req-1", "notify": "true"}, json=requisition_body()
    )

    assert created.json()["notify"]["notified"] == 1


async def test_validation_errors_have_stable_code(client):
    response = await client.post(
        "/requisitions/", params={"requester_id": "req-1"}, json=requisition_body(contact_number="123")
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_past_deadline_is_a_validation_error(client):
    past = (utcnow() - timedelta(hours=1)).isoformat()
    response = await client.post(
        "/requisitions/", params={"requester_id": "req-1"}, json=requisition_body(required_by_date=past)
    )

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_unsolicited_and_closed_responses_are_conflicts(client):
    await register_donor(client, "asha")
    created = await client.post("/requisitions/", params={"requester_id": "req-1"}, json=requisition_body())
    requisition_id = created.json()["requisition"]["_id"]

    unsolicited = await client.post(
        f"/requisitions/{requisition_id}/responses", json={"donor_id": "asha", "response": "WILLING"}
    )
    assert unsolicited.status_code == 409
    assert unsolicited.json()["code"] == "NOT_NOTIFIED"

    await client.post(f"/requisitions/{requisition_id}/notify-all")
    cancelled = await client.post(f"/requisitions/{requisition_id}/cancel", json={"requester_id": "req-1"})
    assert cancelled.json()["status"] == "CANCELLED"

    closed = await client.post(
        f"/requisitions/{requisition_id}/responses", json={"donor_id": "asha", "response": "WILLING"}
    )
    assert closed.status_code == 409
    assert closed.json()["code"] == "REQUISITION_NOT_ACTIVE"

    again = await client.post(f"/requisitions/{requisition_id}/cancel", json={"requester_id": "req-1"})
    assert again.status_code == 409
    assert again.json()["code"] == "INVALID_TRANSITION"


async def test_ownership_and_missing_records(client):
    created = await client.post("/requisitions/", params={"requester_id": "req-1"}, json=requisition_body())
    requisition_id = created.json()["requisition"]["_id"]

    forbidden = await client.post(f"/requisitions/{requisition_id}/cancel", json={"requester_id": "req-2"})
    missing = await client.get("/requisitions/does-not-exist")
    no_donor = await client.get("/donors/nobody/profile")

    assert (forbidden.status_code, forbidden.json()["code"]) == (403, "FORBIDDEN")
    assert (missing.status_code, missing.json()["code"]) == (404, "REQUISITION_NOT_FOUND")
    assert (no_donor.status_code, no_donor.json()["code"]) == (404, "DONOR_NOT_FOUND")


async def test_search_and_stats(client):
    await register_donor(client, "asha", "O-")
    await register_donor(client, "bala", "A+")

    search = await client.post("/donors/search", json={"required_blood_group": "B+", "location": "Kochi"})
    stats = await client.get("/donors/stats/blood-groups")

    assert [donor["id"] for donor in search.json()["donors"]] == ["asha"]
    assert search.json()["eligible_donors"] == 1
    assert stats.json()["stats"]["O-"] == 1
    assert stats.json()["total"] == 2


async def test_donation_endpoints(client):
    await register_donor(client, "asha")

    added = await client.post(
        "/donors/asha/donations", json={"location": "Blood Bank", "units": 1, "notes": "Routine"}
    )
    status = await client.get("/donors/asha/donation-status")
    history = await client.get("/donors/asha/donations")

    assert added.status_code == 201
    assert status.json()["total_donations"] == 1
    assert status.json()["eligibility"]["is_eligible"] is False
    assert len(history.json()["donations"]) == 1


async def test_mark_read_checks_recipient(client):
    await register_donor(client, "asha")
    created = await client.post("/requisitions/", params={"requester_id": "req-1"}, json=requisition_body())
    requisition_id = created.json()["requisition"]["_id"]
    await client.post(f"/requisitions/{requisition_id}/notify-all")
    notification_id = (await client.get("/donors/asha/notifications")).json()["notifications"][0]["_id"]

    wrong = await client.post(f"/notifications/{notification_id}/read", params={"donor_id": "bala"})
    first = await client.post(f"/notifications/{notification_id}/read", params={"donor_id": "asha"})
    second = await client.post(f"/notifications/{notification_id}/read", params={"donor_id": "asha"})
    late_receipt = await client.post(f"/notifications/{notification_id}/delivered")

    assert wrong.status_code == 403
    assert first.json()["already"] is False
    assert second.json()["already"] is True
    assert late_receipt.json() == {"notification_id": notification_id, "status": "READ", "already": True}


async def test_dashboard_endpoint(client):
    await register_donor(client, "asha", "O-")
    await register_donor(client, "bala", "A+")

    everyone = await client.get("/donors/dashboard")
    o_neg = await client.get("/donors/dashboard", params={"blood_group": "O-", "city": "koc", "eligible_only": "true"})
    bad_group = await client.get("/donors/dashboard", params={"blood_group": "Q+"})

    assert everyone.json()["total_count"] == 2
    assert everyone.json()["stats"]["blood_group_distribution"]["A+"] == 1
    assert [card["id"] for card in o_neg.json()["donors"]] == ["asha"]
    assert o_neg.json()["filters"] == {"blood_group": "O-", "city": "koc", "eligible_only": True}
    assert bad_group.status_code == 422
