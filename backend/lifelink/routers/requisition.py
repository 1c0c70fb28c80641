from __future__ import annotations

from typing import Annotated, List

from fastapi import APIRouter, Depends, Query, status

from ..engine.lifelink import LifeLinkEngine
from ..models.blood import RequisitionStatus
from ..models.notification import (
    NotifyAllRequest,
    NotifyResult,
    NotifySelectedRequest,
    ResponseCreate,
    ResponseReceipt,
)
from ..models.requisition import (
    ActingRequester,
    BloodRequisition,
    RequisitionCreate,
    RequisitionCreated,
    RequisitionDetail,
    RequisitionList,
    WillingDonor,
)

router = APIRouter(prefix="/requisitions", tags=["requisitions"])


def get_engine() -> LifeLinkEngine:
    return router.engine


Engine = Annotated[LifeLinkEngine, Depends(get_engine)]


@router.post("/", response_model=RequisitionCreated, status_code=status.HTTP_201_CREATED)
async def create_requisition(
    payload: RequisitionCreate,
    engine: Engine,
    requester_id: str = Query(..., min_length=1),
    notify: bool = False,
) -> RequisitionCreated:
    return await engine.create_requisition(requester_id, payload, notify=notify)


@router.get("/mine/{requester_id}", response_model=RequisitionList)
async def my_requisitions(
    requester_id: str,
    engine: Engine,
    status_filter: RequisitionStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> RequisitionList:
    return await engine.requisitions.list_by_requester(requester_id, page, limit, status_filter)


@router.get("/{requisition_id}", response_model=RequisitionDetail)
async def get_requisition(requisition_id: str, engine: Engine) -> RequisitionDetail:
    return await engine.requisition_detail(requisition_id)


@router.get("/{requisition_id}/willing-donors", response_model=List[WillingDonor])
async def willing_donors(
    requisition_id: str, engine: Engine, requester_id: str = Query(..., min_length=1)
) -> List[WillingDonor]:
    return await engine.willing_donors(requisition_id, requester_id)


@router.post("/{requisition_id}/notify-all", response_model=NotifyResult)
async def notify_all_donors(
    requisition_id: str, engine: Engine, payload: NotifyAllRequest | None = None
) -> NotifyResult:
    payload = payload or NotifyAllRequest()
    return await engine.notify_all(requisition_id, payload.requester_id, payload.custom_message)


@router.post("/{requisition_id}/notify-selected", response_model=NotifyResult)
async def notify_selected_donors(requisition_id: str, payload: NotifySelectedRequest, engine: Engine) -> NotifyResult:
    return await engine.notify_selected(requisition_id, payload.requester_id, payload.donor_ids, payload.custom_message)


@router.post("/{requisition_id}/rematch", response_model=NotifyResult)
async def rematch(requisition_id: str, payload: ActingRequester, engine: Engine) -> NotifyResult:
    return await engine.rematch(requisition_id, payload.requester_id)


@router.post("/{requisition_id}/cancel", response_model=BloodRequisition)
async def cancel_requisition(requisition_id: str, payload: ActingRequester, engine: Engine) -> BloodRequisition:
    return await engine.cancel_requisition(requisition_id, payload.requester_id)


@router.post("/{requisition_id}/fulfil", response_model=BloodRequisition)
async def fulfil_requisition(requisition_id: str, payload: ActingRequester, engine: Engine) -> BloodRequisition:
    return await engine.fulfil_requisition(requisition_id, payload.requester_id)


@router.post("/{requisition_id}/responses", response_model=ResponseReceipt)
async def respond_to_requisition(requisition_id: str, payload: ResponseCreate, engine: Engine) -> ResponseReceipt:
    return await engine.respond(requisition_id, payload)


def init_router(engine: LifeLinkEngine) -> None:
    router.engine = engine
