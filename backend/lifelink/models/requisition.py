from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.clock import as_naive_utc
from .blood import BloodGroup, DonorResponseValue, RequisitionStatus, UrgencyLevel
from .donor import Eligibility
from .notification import NotifyResult

MOBILE_NUMBER_PATTERN = r"^[6-9]\d{9}$"


class RequisitionCreate(BaseModel):
    patient_name: str = Field(min_length=2, max_length=100)
    hospital_name: str = Field(min_length=3, max_length=200)
    contact_number: str = Field(pattern=MOBILE_NUMBER_PATTERN)
    alternate_number: str | None = Field(default=None, pattern=MOBILE_NUMBER_PATTERN)
    required_blood_group: BloodGroup
    units_needed: int = Field(default=1, ge=1, le=10)
    urgency_level: UrgencyLevel = UrgencyLevel.HIGH
    medical_condition: str | None = Field(default=None, max_length=1000)
    location: str = Field(min_length=3, max_length=200)
    additional_notes: str | None = Field(default=None, max_length=500)
    required_by_date: datetime
    allow_contact_reveal: bool = True

    @field_validator("patient_name", "hospital_name", "location", "medical_condition", "additional_notes", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("alternate_number", mode="before")
    @classmethod
    def _empty_to_none(cls, value):
        return value or None

    @field_validator("required_blood_group", mode="before")
    @classmethod
    def _parse_group(cls, value):
        return BloodGroup.parse(value)

    @field_validator("required_by_date")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class BloodRequisition(BaseModel):
    id: str = Field(alias="_id")
    requester_id: str
    patient_name: str
    hospital_name: str
    contact_number: str
    alternate_number: str | None = None
    required_blood_group: BloodGroup
    units_needed: int
    urgency_level: UrgencyLevel
    medical_condition: str | None = None
    location: str
    additional_notes: str | None = None
    required_by_date: datetime
    allow_contact_reveal: bool = True
    status: RequisitionStatus
    willing_donors_count: int = 0
    version: int = 0
    created_at: datetime
    updated_at: datetime | None = None
    closed_at: datetime | None = None

    model_config = {"populate_by_name": True}


class RequisitionList(BaseModel):
    requisitions: List[BloodRequisition]
    page: int
    limit: int
    total_count: int
    has_next: bool


class RequisitionStatistics(BaseModel):
    total_notifications_sent: int
    total_responses: int
    willing_donors: int
    unavailable_donors: int
    not_suitable_donors: int
    contacts_revealed: int


class RequisitionDetail(BaseModel):
    requisition: BloodRequisition
    is_overdue: bool
    statistics: RequisitionStatistics


class WillingDonor(BaseModel):
    response_id: str
    donor_id: str
    name: str | None = None
    blood_group: BloodGroup | None = None
    location: str | None = None
    message: str | None = None
    responded_at: datetime
    contact_revealed: bool
    contact_phone: str | None = None
    eligibility: Eligibility | None = None


class DiscoveredRequisition(BaseModel):
    requisition: BloodRequisition
    has_responded: bool
    response: Optional[DonorResponseValue] = None
    hours_left: int
    is_urgent: bool


class DiscoveryPage(BaseModel):
    requisitions: List[DiscoveredRequisition]
    donor_blood_group: BloodGroup | None = None
    can_donate_to: List[BloodGroup]
    page: int
    limit: int
    total_count: int
    has_next: bool
    message: str


class ActingRequester(BaseModel):
    requester_id: str


class RequisitionCreated(BaseModel):
    requisition: BloodRequisition
    notify: Optional[NotifyResult] = None
