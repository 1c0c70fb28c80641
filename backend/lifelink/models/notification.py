from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator

from .blood import DonorResponseValue, NotificationStatus, RequisitionStatus

NO_ELIGIBLE_DONORS = "NO_ELIGIBLE_DONORS"
NOTIFIED = "NOTIFIED"


class DonorNotification(BaseModel):
    id: str = Field(alias="_id")
    requisition_id: str
    donor_id: str
    title: str
    message: str
    status: NotificationStatus
    created_at: datetime
    sent_at: datetime
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    dispatched_at: datetime | None = None
    dispatch_attempts: int = 0
    dispatch_rounds: int = 0
    retry_eligible: bool = False
    last_error: str | None = None

    model_config = {"populate_by_name": True}


class NotificationList(BaseModel):
    notifications: List[DonorNotification]
    page: int
    limit: int
    total_count: int
    has_next: bool


class NotificationAdvance(BaseModel):
    notification_id: str
    status: NotificationStatus
    already: bool


class NotifyResult(BaseModel):
    requisition_id: str
    notified: int = 0
    skipped: int = 0
    failed: int = 0
    candidates: int = 0
    outcome: str = NOTIFIED


class NotifySelectedRequest(BaseModel):
    requester_id: str
    donor_ids: List[str] = Field(min_length=1)
    custom_message: str | None = Field(default=None, max_length=500)


class NotifyAllRequest(BaseModel):
    requester_id: str | None = None
    custom_message: str | None = Field(default=None, max_length=500)


class DonorResponse(BaseModel):
    id: str = Field(alias="_id")
    requisition_id: str
    donor_id: str
    response: DonorResponseValue
    message: str | None = None
    responded_at: datetime
    contact_revealed: bool = False
    contact_phone: str | None = None

    model_config = {"populate_by_name": True}


class ResponseCreate(BaseModel):
    donor_id: str
    response: DonorResponseValue
    message: str | None = Field(default=None, max_length=300)

    @field_validator("message", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class ResponseReceipt(BaseModel):
    response_id: str
    requisition_id: str
    donor_id: str
    response: DonorResponseValue
    requisition_status: RequisitionStatus
    willing_donors_count: int
    fulfilled: bool
    contact_revealed: bool
