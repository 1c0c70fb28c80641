from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from ..database import Settings, db, settings as default_settings
from ..errors import (
    ConcurrentUpdate,
    InvalidTransition,
    NotRequisitionOwner,
    RequisitionNotFound,
    ValidationError,
)
from ..models.blood import BloodGroup, RequisitionStatus, UrgencyLevel
from ..models.requisition import BloodRequisition, RequisitionCreate, RequisitionList
from ..schemas.requisition import requisition_document
from ..utils.clock import utcnow
from ..utils.logging import log_transition
from ..utils.pagination import page_window

ACTIVE = RequisitionStatus.ACTIVE.value


@dataclass
class CountSync:
    requisition: Dict[str, Any]
    fulfilled: bool


class RequisitionStore:
    """Requisition records and their ACTIVE -> {FULFILLED, CANCELLED, EXPIRED} lifecycle.

    Every status change is a single compare-and-set on ``status`` (and
    ``version``), so concurrent fulfilment, cancellation and expiry attempts
    are totally ordered: exactly one wins and the rest observe a terminal
    state.
    """

    def __init__(self, database=None, config: Settings | None = None) -> None:
        database = database if database is not None else db
        self.settings = config or default_settings
        self.collection: AsyncIOMotorCollection = database.get_collection("requisitions")

    async def create(
        self, requester_id: str, payload: RequisitionCreate | Dict[str, Any], now: datetime | None = None
    ) -> BloodRequisition:
        now = now or utcnow()
        if not requester_id:
            raise ValidationError("requester_id is required")
        if not isinstance(payload, RequisitionCreate):
            try:
                payload = RequisitionCreate.model_validate(payload)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid requisition", errors=exc.errors(include_url=False, include_context=False, include_input=False)
                ) from exc
        if payload.required_by_date < now:
            raise ValidationError("Required by date cannot be in the past", required_by_date=payload.required_by_date)

        document = {
            "_id": str(ObjectId()),
            "requester_id": requester_id,
            **payload.model_dump(mode="json", exclude={"required_by_date"}),
            "required_by_date": payload.required_by_date,
            "urgency_rank": payload.urgency_level.rank,
            "status": ACTIVE,
            "willing_donors_count": 0,
            "version": 0,
            "created_at": now,
            "updated_at": now,
            "closed_at": None,
        }
        await self.collection.insert_one(document)
        logger.info(
            "Requisition {} created by {}: {} x{} ({}) at {}",
            document["_id"],
            requester_id,
            payload.required_blood_group.value,
            payload.units_needed,
            payload.urgency_level.value,
            payload.location,
        )
        return BloodRequisition(**requisition_document(document))

    async def get(self, requisition_id: str) -> Dict[str, Any]:
        requisition = await self.collection.find_one({"_id": requisition_id})
        if not requisition:
            raise RequisitionNotFound(requisition_id)
        return requisition

    async def status_of(self, requisition_id: str) -> Optional[str]:
        requisition = await self.collection.find_one({"_id": requisition_id}, projection={"status": 1})
        return requisition["status"] if requisition else None

    async def get_model(self, requisition_id: str) -> BloodRequisition:
        return BloodRequisition(**requisition_document(await self.get(requisition_id)))

    async def transition(
        self,
        requisition_id: str,
        target: RequisitionStatus,
        now: datetime | None = None,
        actor: str = "system",
    ) -> Dict[str, Any]:
        """Move an ACTIVE requisition to ``target`` or raise InvalidTransition."""
        if target is RequisitionStatus.ACTIVE:
            raise InvalidTransition(requisition_id, "?", target.value)
        now = now or utcnow()
        updated = await self.collection.find_one_and_update(
            {"_id": requisition_id, "status": ACTIVE},
            {
                "$set": {"status": target.value, "updated_at": now, "closed_at": now, "closed_by": actor},
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = await self.get(requisition_id)
            raise InvalidTransition(requisition_id, current["status"], target.value)
        log_transition(requisition_id, ACTIVE, target.value, actor)
        return updated

    async def cancel(self, requisition_id: str, requester_id: str, now: datetime | None = None) -> Dict[str, Any]:
        await self.ensure_owner(requisition_id, requester_id)
        return await self.transition(requisition_id, RequisitionStatus.CANCELLED, now, actor=f"requester:{requester_id}")

    async def mark_fulfilled(
        self, requisition_id: str, requester_id: str | None = None, now: datetime | None = None
    ) -> Dict[str, Any]:
        actor = "system"
        if requester_id is not None:
            await self.ensure_owner(requisition_id, requester_id)
            actor = f"requester:{requester_id}"
        return await self.transition(requisition_id, RequisitionStatus.FULFILLED, now, actor=actor)

    async def expire(self, requisition_id: str, now: datetime | None = None) -> Dict[str, Any]:
        return await self.transition(requisition_id, RequisitionStatus.EXPIRED, now, actor="sweeper")

    async def ensure_owner(self, requisition_id: str, requester_id: str) -> Dict[str, Any]:
        requisition = await self.get(requisition_id)
        if requisition["requester_id"] != requester_id:
            raise NotRequisitionOwner(requisition_id)
        return requisition

    async def sync_willing_count(
        self, requisition_id: str, count_willing, fulfil_threshold: Optional[int], now: datetime | None = None
    ) -> CountSync:
        """Recompute ``willing_donors_count`` under the version guard.

        ``count_willing`` is an async callable returning the current number
        of WILLING responses. It is re-run after every lost race, so the
        stored counter always reflects a count taken after the last write.
        When ``fulfil_threshold`` is given and the fresh count reaches it
        while the requisition is still ACTIVE, the same guarded write moves
        the requisition to FULFILLED.
        """
        for _ in range(self.settings.transition_max_attempts):
            current = await self.get(requisition_id)
            count = await count_willing()
            changes: Dict[str, Any] = {"willing_donors_count": count}
            fulfils = (
                fulfil_threshold is not None
                and current["status"] == ACTIVE
                and count >= fulfil_threshold
            )
            if fulfils:
                stamp = now or utcnow()
                changes.update(status=RequisitionStatus.FULFILLED.value, updated_at=stamp, closed_at=stamp,
                               closed_by="auto-fulfilment")
            elif current.get("willing_donors_count") == count:
                return CountSync(requisition=current, fulfilled=False)

            updated = await self.collection.find_one_and_update(
                {"_id": requisition_id, "version": current.get("version", 0)},
                {"$set": changes, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                if fulfils:
                    log_transition(requisition_id, ACTIVE, RequisitionStatus.FULFILLED.value, "auto-fulfilment")
                return CountSync(requisition=updated, fulfilled=fulfils)
            logger.debug("Lost version race on requisition {}; recounting", requisition_id)

        raise ConcurrentUpdate(
            "Requisition is being updated concurrently; retry shortly", requisition_id=requisition_id
        )

    async def list_by_requester(
        self, requester_id: str, page: int = 1, limit: int = 10, status: RequisitionStatus | None = None
    ) -> RequisitionList:
        skip, limit = page_window(page, limit)
        query: Dict[str, Any] = {"requester_id": requester_id}
        if status is not None:
            query["status"] = status.value
        cursor = self.collection.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        items = [BloodRequisition(**requisition_document(doc)) async for doc in cursor]
        total_count = await self.collection.count_documents(query)
        return RequisitionList(
            requisitions=items, page=page, limit=limit, total_count=total_count, has_next=skip + len(items) < total_count
        )

    async def find_open_for_groups(
        self,
        recipient_groups: List[BloodGroup],
        now: datetime,
        urgency: UrgencyLevel | None = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {
            "status": ACTIVE,
            "required_by_date": {"$gte": now},
            "required_blood_group": {"$in": [group.value for group in recipient_groups]},
        }
        if urgency is not None:
            query["urgency_level"] = urgency.value
        cursor = self.collection.find(query).sort([("urgency_rank", DESCENDING), ("created_at", DESCENDING)])
        return [doc async for doc in cursor]

    async def find_overdue(self, now: datetime) -> List[str]:
        cursor = self.collection.find(
            {"status": ACTIVE, "required_by_date": {"$lt": now}}, projection={"_id": 1}
        ).sort("required_by_date", ASCENDING)
        return [doc["_id"] async for doc in cursor]
