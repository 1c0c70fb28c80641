from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..engine.lifelink import LifeLinkEngine
from ..models.notification import NotificationAdvance

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_engine() -> LifeLinkEngine:
    return router.engine


Engine = Annotated[LifeLinkEngine, Depends(get_engine)]


@router.post("/{notification_id}/delivered", response_model=NotificationAdvance)
async def mark_delivered(notification_id: str, engine: Engine) -> NotificationAdvance:
    """Delivery receipt from the transport."""
    return await engine.mark_delivered(notification_id)


@router.post("/{notification_id}/read", response_model=NotificationAdvance)
async def mark_read(notification_id: str, engine: Engine, donor_id: str = Query(..., min_length=1)) -> NotificationAdvance:
    return await engine.mark_read(notification_id, donor_id)


def init_router(engine: LifeLinkEngine) -> None:
    router.engine = engine
