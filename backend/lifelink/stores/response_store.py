from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..database import db
from ..models.blood import DonorResponseValue
from ..models.notification import DonorResponse
from ..schemas.requisition import response_document
from ..utils.clock import utcnow

WILLING = DonorResponseValue.WILLING.value


class ResponseStore:
    """At most one DonorResponse per (requisition, donor); later answers replace earlier ones."""

    def __init__(self, database=None) -> None:
        database = database if database is not None else db
        self.collection: AsyncIOMotorCollection = database.get_collection("donor_responses")

    async def upsert(
        self,
        requisition_id: str,
        donor_id: str,
        response: DonorResponseValue,
        message: str | None,
        contact_phone: str | None = None,
        now: datetime | None = None,
    ) -> DonorResponse:
        now = now or utcnow()
        changes = {
            "response": response.value,
            "message": message,
            "responded_at": now,
            "contact_revealed": contact_phone is not None,
            "contact_phone": contact_phone,
        }
        pair = {"requisition_id": requisition_id, "donor_id": donor_id}
        update = {"$set": changes, "$setOnInsert": {"_id": str(ObjectId()), **pair, "created_at": now}}
        try:
            stored = await self.collection.find_one_and_update(
                pair, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost an insert race for the same pair; the row exists now, so replace it.
            stored = await self.collection.find_one_and_update(
                pair, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        return DonorResponse(**response_document(stored))

    async def find_pair(self, requisition_id: str, donor_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"requisition_id": requisition_id, "donor_id": donor_id})

    async def count_willing(self, requisition_id: str) -> int:
        return await self.collection.count_documents({"requisition_id": requisition_id, "response": WILLING})

    async def list_willing(self, requisition_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"requisition_id": requisition_id, "response": WILLING}).sort(
            "responded_at", ASCENDING
        )
        return [doc async for doc in cursor]

    async def responses_by_donor(self, donor_id: str, requisition_ids: List[str]) -> Dict[str, str]:
        cursor = self.collection.find({"donor_id": donor_id, "requisition_id": {"$in": requisition_ids}})
        return {doc["requisition_id"]: doc["response"] async for doc in cursor}

    async def statistics(self, requisition_id: str) -> Dict[str, int]:
        counts = {value.value: 0 for value in DonorResponseValue}
        revealed = 0
        async for doc in self.collection.find({"requisition_id": requisition_id}):
            counts[doc["response"]] = counts.get(doc["response"], 0) + 1
            revealed += 1 if doc.get("contact_revealed") else 0
        return {
            "total_responses": sum(counts.values()),
            "willing_donors": counts[DonorResponseValue.WILLING.value],
            "unavailable_donors": counts[DonorResponseValue.NOT_AVAILABLE.value],
            "not_suitable_donors": counts[DonorResponseValue.NOT_SUITABLE.value],
            "contacts_revealed": revealed,
        }
