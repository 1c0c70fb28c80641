from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from loguru import logger

REQUISITION_CREATED = "requisition_created"
DONORS_NOTIFIED = "donors_notified"
DONOR_RESPONDED = "donor_responded"
REQUISITION_FULFILLED = "requisition_fulfilled"
REQUISITION_CANCELLED = "requisition_cancelled"
REQUISITION_EXPIRED = "requisition_expired"


@dataclass
class LifeLinkEvent:
    type: str
    payload: Dict[str, Any]

    def serializable(self) -> Dict[str, Any]:
        return {
            key: value.isoformat() if isinstance(value, datetime) else value for key, value in self.payload.items()
        }


EventSink = Callable[[LifeLinkEvent], Awaitable[None]]


async def default_event_sink(event: LifeLinkEvent) -> None:
    logger.debug("Event {}: {}", event.type, event.payload)


async def publish(sink: EventSink | None, event_type: str, **payload: Any) -> None:
    """Hand an event to the sink; a broken sink is logged and never fails the operation."""
    if sink is None:
        return
    try:
        await sink(LifeLinkEvent(event_type, payload))
    except Exception as exc:  # pragma: no cover - sink is an outer collaborator
        logger.warning("Event sink failed for {}: {}", event_type, exc)
