from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..database import db
from ..errors import NotificationNotFound, NotNotificationRecipient
from ..models.blood import NOTIFICATION_ORDER, NotificationStatus
from ..models.notification import DonorNotification, NotificationAdvance, NotificationList
from ..schemas.requisition import notification_document
from ..utils.clock import utcnow
from ..utils.pagination import page_window

STATUS_TIMESTAMPS = {
    NotificationStatus.DELIVERED: "delivered_at",
    NotificationStatus.READ: "read_at",
}


class NotificationStore:
    """One DonorNotification row per (requisition, donor), advanced SENT -> DELIVERED -> READ."""

    def __init__(self, database=None) -> None:
        database = database if database is not None else db
        self.collection: AsyncIOMotorCollection = database.get_collection("donor_notifications")

    async def insert_if_absent(
        self, requisition_id: str, donor_id: str, title: str, message: str, now: datetime | None = None
    ) -> Optional[Dict[str, Any]]:
        """Record a SENT notification; returns None when the pair already exists."""
        now = now or utcnow()
        document = {
            "_id": str(ObjectId()),
            "requisition_id": requisition_id,
            "donor_id": donor_id,
            "title": title,
            "message": message,
            "status": NotificationStatus.SENT.value,
            "created_at": now,
            "sent_at": now,
            "delivered_at": None,
            "read_at": None,
            "dispatched_at": None,
            "dispatch_attempts": 0,
            "dispatch_rounds": 0,
            "retry_eligible": False,
            "last_error": None,
        }
        try:
            result = await self.collection.update_one(
                {"requisition_id": requisition_id, "donor_id": donor_id},
                {"$setOnInsert": document},
                upsert=True,
            )
        except DuplicateKeyError:
            # Two upserts raced past the filter; the unique index kept one.
            return None
        if result.upserted_id is None:
            return None
        return document

    async def find_pair(self, requisition_id: str, donor_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"requisition_id": requisition_id, "donor_id": donor_id})

    async def get(self, notification_id: str) -> Dict[str, Any]:
        notification = await self.collection.find_one({"_id": notification_id})
        if not notification:
            raise NotificationNotFound(notification_id)
        return notification

    async def record_dispatch(self, notification_id: str, attempts: int, now: datetime | None = None) -> None:
        await self.collection.update_one(
            {"_id": notification_id},
            {
                "$set": {"dispatched_at": now or utcnow(), "retry_eligible": False, "last_error": None},
                "$inc": {"dispatch_attempts": attempts, "dispatch_rounds": 1},
            },
        )

    async def record_dispatch_failure(
        self, notification_id: str, attempts: int, error: str, retry_eligible: bool
    ) -> None:
        await self.collection.update_one(
            {"_id": notification_id},
            {
                "$set": {"retry_eligible": retry_eligible, "last_error": error},
                "$inc": {"dispatch_attempts": attempts, "dispatch_rounds": 1},
            },
        )

    async def drop_retry(self, notification_id: str, reason: str) -> None:
        await self.collection.update_one(
            {"_id": notification_id}, {"$set": {"retry_eligible": False, "last_error": reason}}
        )

    async def retry_candidates(self, limit: int = 200) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"retry_eligible": True}).sort("created_at", DESCENDING).limit(limit)
        return [doc async for doc in cursor]

    async def advance(
        self,
        notification_id: str,
        target: NotificationStatus,
        donor_id: str | None = None,
        now: datetime | None = None,
    ) -> NotificationAdvance:
        """Move a notification forward to ``target``; never backward.

        Advancing to READ also stamps ``delivered_at`` when the delivery
        receipt never arrived. Re-marking is a no-op reported as ``already``.
        """
        notification = await self.get(notification_id)
        if donor_id is not None and notification["donor_id"] != donor_id:
            raise NotNotificationRecipient(notification_id)

        now = now or utcnow()
        lower = [status.value for status in NOTIFICATION_ORDER[: target.rank]]
        changes: Dict[str, Any] = {"status": target.value, STATUS_TIMESTAMPS[target]: now}
        updated = await self.collection.find_one_and_update(
            {"_id": notification_id, "status": {"$in": lower}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = await self.get(notification_id)
            return NotificationAdvance(
                notification_id=notification_id, status=NotificationStatus(current["status"]), already=True
            )
        if target is NotificationStatus.READ and updated.get("delivered_at") is None:
            await self.collection.update_one(
                {"_id": notification_id, "delivered_at": None}, {"$set": {"delivered_at": now}}
            )
        logger.debug("Notification {} -> {}", notification_id, target.value)
        return NotificationAdvance(notification_id=notification_id, status=target, already=False)

    async def advance_pair(
        self, requisition_id: str, donor_id: str, target: NotificationStatus, now: datetime | None = None
    ) -> Optional[NotificationAdvance]:
        notification = await self.find_pair(requisition_id, donor_id)
        if notification is None:
            return None
        return await self.advance(notification["_id"], target, now=now)

    async def list_for_donor(
        self, donor_id: str, page: int = 1, limit: int = 20, status: NotificationStatus | None = None
    ) -> NotificationList:
        skip, limit = page_window(page, limit)
        query: Dict[str, Any] = {"donor_id": donor_id}
        if status is not None:
            query["status"] = status.value
        cursor = self.collection.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        items = [DonorNotification(**notification_document(doc)) async for doc in cursor]
        total_count = await self.collection.count_documents(query)
        return NotificationList(
            notifications=items, page=page, limit=limit, total_count=total_count, has_next=skip + len(items) < total_count
        )

    async def donor_ids_for(self, requisition_id: str) -> List[str]:
        cursor = self.collection.find({"requisition_id": requisition_id}, projection={"donor_id": 1})
        return [doc["donor_id"] async for doc in cursor]

    async def count_for_requisition(self, requisition_id: str) -> int:
        return await self.collection.count_documents({"requisition_id": requisition_id})
