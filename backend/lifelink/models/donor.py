from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator

from .blood import BloodGroup, Location


class Eligibility(BaseModel):
    is_eligible: bool
    days_since_last_donation: int | None = None
    next_eligible_date: datetime | None = None
    days_remaining: int = 0
    message: str


class DonorProfile(BaseModel):
    id: str = Field(alias="_id")
    name: str | None = None
    phone: str | None = None
    blood_group: BloodGroup | None = None
    is_blood_donor: bool = False
    last_donation_date: datetime | None = None
    location: Location | None = None
    show_phone: bool = False
    total_donations: int = 0
    total_units: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"populate_by_name": True}


class DonorProfileUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=20)
    blood_group: BloodGroup | None = None
    is_blood_donor: bool | None = None
    location: Location | None = None
    show_phone: bool | None = None

    @field_validator("blood_group", mode="before")
    @classmethod
    def _parse_group(cls, value):
        return BloodGroup.parse(value)


class BloodProfile(BaseModel):
    profile: DonorProfile
    eligibility: Eligibility


class DonationCreate(BaseModel):
    donation_date: datetime | None = None
    location: str = Field(min_length=3, max_length=200)
    units: int = Field(default=1, ge=1, le=5)
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("location", "notes", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value


class BloodDonation(BaseModel):
    id: str = Field(alias="_id")
    donor_id: str
    donation_date: datetime
    location: str
    units: int
    notes: str | None = None
    created_at: datetime

    model_config = {"populate_by_name": True}


class DonationSummary(BaseModel):
    total_donations: int
    total_units: int
    last_donation_date: datetime | None = None
    eligibility: Eligibility


class DonationHistory(BaseModel):
    donations: List[BloodDonation]
    summary: DonationSummary
    page: int
    limit: int
    total_count: int


class DonationStatus(BaseModel):
    total_donations: int
    last_donation_date: datetime | None = None
    eligibility: Eligibility


class DonorCandidate(BaseModel):
    """A compatible donor as seen by a requester; ``almost_eligible`` marks donors still in cooldown."""

    id: str
    name: str | None = None
    blood_group: BloodGroup
    location: str
    proximity: int
    eligibility: Eligibility
    almost_eligible: bool = False
    total_donations: int = 0
    contact_available: bool = False
    phone: str | None = None


class DonorSearch(BaseModel):
    required_blood_group: BloodGroup
    location: str | None = Field(default=None, max_length=100)
    limit: int | None = Field(default=None, ge=1, le=100)

    @field_validator("required_blood_group", mode="before")
    @classmethod
    def _parse_group(cls, value):
        return BloodGroup.parse(value)


class DonorSearchResult(BaseModel):
    donors: List[DonorCandidate]
    total_found: int
    eligible_donors: int


class BloodGroupStats(BaseModel):
    stats: Dict[BloodGroup, int]
    total: int


class DonorCard(BaseModel):
    id: str
    name: str | None = None
    blood_group: BloodGroup
    location: str
    total_donations: int = 0
    last_donation_date: datetime | None = None
    eligibility: Eligibility
    contact_available: bool = False


class DashboardStats(BaseModel):
    total_donors: int
    eligible_donors: int
    blood_group_distribution: Dict[BloodGroup, int]


class DashboardFilters(BaseModel):
    blood_group: BloodGroup | None = None
    city: str | None = None
    eligible_only: bool = False


class DonorDashboard(BaseModel):
    """One page of the donor directory with distribution stats for the whole directory."""

    donors: List[DonorCard]
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool
    stats: DashboardStats
    filters: DashboardFilters
