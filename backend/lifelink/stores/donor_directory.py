from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import DESCENDING
from pymongo.errors import AutoReconnect, ExecutionTimeout

from ..database import Settings, db, settings as default_settings
from ..errors import DonorNotFound, ValidationError
from ..matching.compatibility import compatible_donor_groups
from ..matching.eligibility import check_eligibility
from ..models.blood import BloodGroup, Location
from ..models.donor import (
    BloodDonation,
    BloodGroupStats,
    BloodProfile,
    DashboardFilters,
    DashboardStats,
    DonationCreate,
    DonationHistory,
    DonationStatus,
    DonationSummary,
    DonorCandidate,
    DonorCard,
    DonorDashboard,
    DonorProfile,
    DonorProfileUpdate,
)
from ..schemas.donor import donation_document, donor_document
from ..utils.clock import as_naive_utc, utcnow
from ..utils.pagination import page_window
from ..utils.retry import retry_async

RETRYABLE_QUERY_ERRORS = (AutoReconnect, ExecutionTimeout)
NO_LOCATION_RANK = 4


class DonorDirectory:
    """Donor profiles plus the append-only donation ledger behind them."""

    def __init__(self, database=None, config: Settings | None = None) -> None:
        database = database if database is not None else db
        self.settings = config or default_settings
        self.collection: AsyncIOMotorCollection = database.get_collection("donors")
        self.donations: AsyncIOMotorCollection = database.get_collection("blood_donations")

    async def get(self, donor_id: str) -> Dict[str, Any]:
        donor = await self.collection.find_one({"_id": donor_id})
        if not donor:
            raise DonorNotFound(donor_id)
        return donor

    async def get_many(self, donor_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        cursor = self.collection.find({"_id": {"$in": list(donor_ids)}})
        return {donor["_id"]: donor async for donor in cursor}

    async def upsert_profile(
        self, donor_id: str, payload: DonorProfileUpdate, now: datetime | None = None
    ) -> DonorProfile:
        now = now or utcnow()
        changes = payload.model_dump(exclude_unset=True, mode="json")
        await self.collection.update_one(
            {"_id": donor_id},
            {
                "$set": {**changes, "updated_at": now},
                "$setOnInsert": {
                    "created_at": now,
                    "total_donations": 0,
                    "total_units": 0,
                    "last_donation_date": None,
                },
            },
            upsert=True,
        )
        stored = await self.get(donor_id)
        logger.info("Blood profile saved for donor {} ({})", donor_id, ", ".join(sorted(changes)) or "no changes")
        return DonorProfile(**donor_document(stored))

    async def blood_profile(self, donor_id: str, now: datetime | None = None) -> BloodProfile:
        donor = await self.get(donor_id)
        profile = DonorProfile(**donor_document(donor))
        return BloodProfile(profile=profile, eligibility=self._eligibility(profile.last_donation_date, now))

    async def record_donation(
        self, donor_id: str, payload: DonationCreate, now: datetime | None = None
    ) -> BloodDonation:
        now = now or utcnow()
        donor = await self.get(donor_id)
        if not donor.get("is_blood_donor"):
            raise ValidationError("Only registered blood donors can add donation records", donor_id=donor_id)

        donation_date = as_naive_utc(payload.donation_date) or now
        if donation_date > now:
            raise ValidationError("Donation date cannot be in the future", donor_id=donor_id)

        document = {
            "_id": str(ObjectId()),
            "donor_id": donor_id,
            "donation_date": donation_date,
            "location": payload.location,
            "units": payload.units,
            "notes": payload.notes,
            "created_at": now,
        }
        await self.donations.insert_one(document)

        await self.collection.update_one(
            {"_id": donor_id},
            {"$inc": {"total_donations": 1, "total_units": payload.units}, "$set": {"updated_at": now}},
        )
        # Guarded write: last_donation_date only ever moves forward to the
        # ledger maximum, even when a back-dated donation lands late.
        latest = await self.donations.find_one({"donor_id": donor_id}, sort=[("donation_date", DESCENDING)])
        await self.collection.update_one(
            {
                "_id": donor_id,
                "$or": [
                    {"last_donation_date": None},
                    {"last_donation_date": {"$lt": latest["donation_date"]}},
                ],
            },
            {"$set": {"last_donation_date": latest["donation_date"]}},
        )
        logger.info("Recorded donation {} for donor {} ({} units)", document["_id"], donor_id, payload.units)
        return BloodDonation(**donation_document(document))

    async def list_donations(
        self, donor_id: str, page: int = 1, limit: int = 10, now: datetime | None = None
    ) -> DonationHistory:
        skip, limit = page_window(page, limit)
        donor = await self.get(donor_id)
        cursor = (
            self.donations.find({"donor_id": donor_id}).sort("donation_date", DESCENDING).skip(skip).limit(limit)
        )
        donations = [BloodDonation(**donation_document(item)) async for item in cursor]
        total_count = await self.donations.count_documents({"donor_id": donor_id})
        summary = DonationSummary(
            total_donations=donor.get("total_donations", 0),
            total_units=donor.get("total_units", 0),
            last_donation_date=donor.get("last_donation_date"),
            eligibility=self._eligibility(donor.get("last_donation_date"), now),
        )
        return DonationHistory(donations=donations, summary=summary, page=page, limit=limit, total_count=total_count)

    async def donation_status(self, donor_id: str, now: datetime | None = None) -> DonationStatus:
        donor = await self.get(donor_id)
        if not donor.get("is_blood_donor"):
            raise ValidationError("User is not registered as a blood donor", donor_id=donor_id)
        return DonationStatus(
            total_donations=donor.get("total_donations", 0),
            last_donation_date=donor.get("last_donation_date"),
            eligibility=self._eligibility(donor.get("last_donation_date"), now),
        )

    async def find_candidates(
        self,
        required_group: BloodGroup | str,
        location: str | None = None,
        limit: int | None = None,
        now: datetime | None = None,
        exclude: Iterable[str] = (),
    ) -> List[DonorCandidate]:
        """Compatible opted-in donors, eligible and nearest first.

        Donors still inside their cooldown follow, soonest-eligible first,
        flagged ``almost_eligible``. Never raises on an empty result.
        """
        required_group = BloodGroup.parse(required_group)
        limit = limit or self.settings.search_default_limit
        now = now or utcnow()
        query = {
            "is_blood_donor": True,
            "blood_group": {"$in": [group.value for group in compatible_donor_groups(required_group)]},
        }
        excluded = list(exclude)
        if excluded:
            query["_id"] = {"$nin": excluded}

        async def _query() -> List[Dict[str, Any]]:
            return [donor async for donor in self.collection.find(query)]

        donors = await retry_async(
            _query,
            attempts=self.settings.directory_query_attempts,
            base_delay=self.settings.dispatch_backoff_seconds,
            max_delay=self.settings.dispatch_backoff_max_seconds,
            retry_on=RETRYABLE_QUERY_ERRORS,
            context="Donor directory query",
        )

        candidates: List[DonorCandidate] = []
        for donor in donors:
            profile = DonorProfile(**donor_document(donor))
            if profile.location is not None:
                proximity = profile.location.proximity(location)
            else:
                proximity = None if location and location.strip() else NO_LOCATION_RANK
            if proximity is None:
                continue
            eligibility = self._eligibility(profile.last_donation_date, now)
            candidates.append(
                DonorCandidate(
                    id=profile.id,
                    name=profile.name,
                    blood_group=profile.blood_group,
                    location=profile.location.label if profile.location else Location().label,
                    proximity=proximity,
                    eligibility=eligibility,
                    almost_eligible=not eligibility.is_eligible,
                    total_donations=profile.total_donations,
                    contact_available=profile.show_phone,
                    phone=profile.phone if profile.show_phone else None,
                )
            )

        candidates.sort(key=_candidate_order)
        logger.debug(
            "Directory search {} near {!r}: {} compatible, returning {}",
            required_group.value,
            location,
            len(candidates),
            min(limit, len(candidates)),
        )
        return candidates[:limit]

    async def dashboard(
        self,
        blood_group: BloodGroup | str | None = None,
        city: str | None = None,
        eligible_only: bool = False,
        page: int = 1,
        limit: int = 20,
        now: datetime | None = None,
    ) -> DonorDashboard:
        """Paged directory of opted-in donors with a known blood group.

        ``city`` is a case-insensitive substring match on the donor's city.
        ``eligible_only`` is applied in the query, so pages and counts stay
        consistent with the filter.
        """
        skip, limit = page_window(page, limit)
        now = now or utcnow()
        group = BloodGroup.parse(blood_group)
        city = city.strip() if city and city.strip() else None

        query: Dict[str, Any] = {"is_blood_donor": True, "blood_group": group.value if group else {"$ne": None}}
        if city:
            query["location.city"] = {"$regex": re.escape(city), "$options": "i"}
        cutoff = now - timedelta(days=self.settings.eligibility_cooldown_days)
        eligible_query = {
            **query,
            "$or": [{"last_donation_date": None}, {"last_donation_date": {"$lte": cutoff}}],
        }
        listing = eligible_query if eligible_only else query

        cursor = (
            self.collection.find(listing)
            .sort([("last_donation_date", DESCENDING), ("total_donations", DESCENDING), ("created_at", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        cards = []
        async for donor in cursor:
            profile = DonorProfile(**donor_document(donor))
            cards.append(
                DonorCard(
                    id=profile.id,
                    name=profile.name,
                    blood_group=profile.blood_group,
                    location=profile.location.label if profile.location else Location().label,
                    total_donations=profile.total_donations,
                    last_donation_date=profile.last_donation_date,
                    eligibility=self._eligibility(profile.last_donation_date, now),
                    contact_available=profile.show_phone,
                )
            )

        total_count = await self.collection.count_documents(listing)
        eligible_count = await self.collection.count_documents(eligible_query)
        distribution = await self.blood_group_stats()
        return DonorDashboard(
            donors=cards,
            page=page,
            limit=limit,
            total_count=total_count,
            total_pages=math.ceil(total_count / limit),
            has_next=skip + len(cards) < total_count,
            has_prev=page > 1,
            stats=DashboardStats(
                total_donors=total_count,
                eligible_donors=eligible_count,
                blood_group_distribution=distribution.stats,
            ),
            filters=DashboardFilters(blood_group=group, city=city, eligible_only=eligible_only),
        )

    async def blood_group_stats(self) -> BloodGroupStats:
        stats = {}
        for group in BloodGroup:
            stats[group] = await self.collection.count_documents({"is_blood_donor": True, "blood_group": group.value})
        return BloodGroupStats(stats=stats, total=sum(stats.values()))

    def _eligibility(self, last_donation_date, now):
        return check_eligibility(last_donation_date, now, self.settings.eligibility_cooldown_days)


def _candidate_order(candidate: DonorCandidate):
    if candidate.eligibility.is_eligible:
        return (0, candidate.proximity, -candidate.total_donations, candidate.id)
    return (1, candidate.eligibility.next_eligible_date, candidate.proximity, candidate.id)
