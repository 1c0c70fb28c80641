from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List

import pytest
from mongomock_motor import AsyncMongoMockClient

from lifelink.database import Settings, ensure_indexes
from lifelink.engine.events import LifeLinkEvent
from lifelink.engine.lifelink import LifeLinkEngine
from lifelink.errors import TransportError
from lifelink.models.blood import Location
from lifelink.models.donor import DonorProfileUpdate
from lifelink.utils.notifications import OutboundMessage

NOW = datetime(2026, 3, 1, 12, 0, 0)


class RecordingTransport:
    """Collects outbound messages; donors listed in ``failing`` always raise TransportError."""

    def __init__(self, failing=()) -> None:
        self.sent: List[OutboundMessage] = []
        self.failing = set(failing)
        self.attempts: Counter = Counter()

    async def dispatch(self, message: OutboundMessage) -> None:
        self.attempts[message.recipient_id] += 1
        if message.recipient_id in self.failing:
            raise TransportError("carrier rejected message", recipient_id=message.recipient_id)
        self.sent.append(message)

    def sent_to(self, recipient_id: str) -> List[OutboundMessage]:
        return [message for message in self.sent if message.recipient_id == recipient_id]


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[LifeLinkEvent] = []

    async def __call__(self, event: LifeLinkEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.type for event in self.events]


class YieldingCollection:
    """Collection proxy that yields to the event loop around every awaited call.

    Each database operation stays atomic, but concurrent coroutines are
    forced to interleave between operations, which is where races live.
    """

    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name: str):
        attribute = getattr(self._inner, name)
        if not callable(attribute):
            return attribute

        def call(*args, **kwargs):
            result = attribute(*args, **kwargs)
            if not inspect.isawaitable(result):
                return result

            async def yielding():
                await asyncio.sleep(0)
                value = await result
                await asyncio.sleep(0)
                return value

            return yielding()

        return call


def make_yielding(engine: LifeLinkEngine) -> None:
    engine.requisitions.collection = YieldingCollection(engine.requisitions.collection)
    engine.notifications.collection = YieldingCollection(engine.notifications.collection)
    engine.responses.collection = YieldingCollection(engine.responses.collection)
    engine.directory.collection = YieldingCollection(engine.directory.collection)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        dispatch_backoff_seconds=0,
        dispatch_backoff_max_seconds=0,
        sweeper_enabled=False,
    )


@pytest.fixture
async def database():
    client = AsyncMongoMockClient()
    database = client["lifelink_test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def engine(database, settings, transport, events) -> LifeLinkEngine:
    return LifeLinkEngine(database, settings, transport=transport, event_sink=events)


async def add_donor(
    engine: LifeLinkEngine,
    donor_id: str,
    blood_group: str | None = "O+",
    city: str | None = "Kochi",
    state: str | None = "Kerala",
    last_donation_date: datetime | None = None,
    is_blood_donor: bool = True,
    show_phone: bool = True,
    phone: str | None = "9876543210",
    total_donations: int = 0,
    name: str | None = None,
) -> Dict[str, Any]:
    location = Location(city=city, state=state) if city or state else None
    await engine.directory.upsert_profile(
        donor_id,
        DonorProfileUpdate(
            name=name or donor_id.title(),
            phone=phone,
            blood_group=blood_group,
            is_blood_donor=is_blood_donor,
            location=location,
            show_phone=show_phone,
        ),
        now=NOW,
    )
    await engine.directory.collection.update_one(
        {"_id": donor_id},
        {"$set": {"last_donation_date": last_donation_date, "total_donations": total_donations}},
    )
    return await engine.directory.get(donor_id)


def requisition_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "patient_name": "Anita Menon",
        "hospital_name": "Lakeshore Hospital",
        "contact_number": "9123456780",
        "required_blood_group": "O+",
        "units_needed": 2,
        "urgency_level": "HIGH",
        "location": "Kochi",
        "required_by_date": NOW + timedelta(days=1),
        "allow_contact_reveal": True,
    }
    payload.update(overrides)
    return payload


async def create_requisition(engine: LifeLinkEngine, requester_id: str = "requester-1", **overrides: Any):
    created = await engine.create_requisition(requester_id, requisition_payload(**overrides), now=NOW)
    return created.requisition
