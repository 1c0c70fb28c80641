from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..engine.lifelink import LifeLinkEngine
from ..models.blood import BloodGroup, NotificationStatus, UrgencyLevel
from ..models.donor import (
    BloodDonation,
    BloodGroupStats,
    BloodProfile,
    DonationCreate,
    DonationHistory,
    DonationStatus,
    DonorDashboard,
    DonorProfile,
    DonorProfileUpdate,
    DonorSearch,
    DonorSearchResult,
)
from ..models.notification import NotificationList
from ..models.requisition import DiscoveryPage

router = APIRouter(prefix="/donors", tags=["donors"])


def get_engine() -> LifeLinkEngine:
    return router.engine


Engine = Annotated[LifeLinkEngine, Depends(get_engine)]


@router.put("/{donor_id}/profile", response_model=DonorProfile)
async def update_blood_profile(donor_id: str, payload: DonorProfileUpdate, engine: Engine) -> DonorProfile:
    return await engine.directory.upsert_profile(donor_id, payload)


@router.get("/{donor_id}/profile", response_model=BloodProfile)
async def get_blood_profile(donor_id: str, engine: Engine) -> BloodProfile:
    return await engine.directory.blood_profile(donor_id)


@router.post("/{donor_id}/donations", response_model=BloodDonation, status_code=status.HTTP_201_CREATED)
async def add_donation(donor_id: str, payload: DonationCreate, engine: Engine) -> BloodDonation:
    return await engine.directory.record_donation(donor_id, payload)


@router.get("/{donor_id}/donations", response_model=DonationHistory)
async def my_donations(
    donor_id: str,
    engine: Engine,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> DonationHistory:
    return await engine.directory.list_donations(donor_id, page, limit)


@router.get("/{donor_id}/donation-status", response_model=DonationStatus)
async def donation_status(donor_id: str, engine: Engine) -> DonationStatus:
    return await engine.directory.donation_status(donor_id)


@router.post("/search", response_model=DonorSearchResult)
async def search_donors(payload: DonorSearch, engine: Engine) -> DonorSearchResult:
    """Read-only preview of compatible donors, used before a requisition is submitted."""
    return await engine.search_donors(payload)


@router.get("/dashboard", response_model=DonorDashboard)
async def donor_dashboard(
    engine: Engine,
    blood_group: BloodGroup | None = None,
    city: str | None = Query(None, max_length=100),
    eligible_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> DonorDashboard:
    return await engine.directory.dashboard(blood_group, city, eligible_only, page, limit)


@router.get("/stats/blood-groups", response_model=BloodGroupStats)
async def blood_group_stats(engine: Engine) -> BloodGroupStats:
    return await engine.directory.blood_group_stats()


@router.get("/{donor_id}/notifications", response_model=NotificationList)
async def my_notifications(
    donor_id: str,
    engine: Engine,
    status_filter: NotificationStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> NotificationList:
    return await engine.notifications.list_for_donor(donor_id, page, limit, status_filter)


@router.get("/{donor_id}/discover", response_model=DiscoveryPage)
async def discover_requisitions(
    donor_id: str,
    engine: Engine,
    urgency: UrgencyLevel | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> DiscoveryPage:
    return await engine.discover(donor_id, page, limit, urgency)


def init_router(engine: LifeLinkEngine) -> None:
    router.engine = engine
