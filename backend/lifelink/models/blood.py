from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class BloodGroup(str, Enum):
    O_NEGATIVE = "O-"
    O_POSITIVE = "O+"
    A_NEGATIVE = "A-"
    A_POSITIVE = "A+"
    B_NEGATIVE = "B-"
    B_POSITIVE = "B+"
    AB_NEGATIVE = "AB-"
    AB_POSITIVE = "AB+"

    @classmethod
    def parse(cls, value: "BloodGroup | str | None") -> Optional["BloodGroup"]:
        """Accept "O+", "o pos", "O_POSITIVE", the typographic "O\u2212" and friends; None stays None."""
        if value is None or isinstance(value, BloodGroup):
            return value
        text = str(value).strip().upper().replace(" ", "").replace("\u2212", "-")
        if text in cls.__members__:
            return cls[text]
        text = text.replace("POSITIVE", "+").replace("NEGATIVE", "-").replace("POS", "+").replace("NEG", "-")
        text = text.replace("_", "")
        return cls(text)


class UrgencyLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return URGENCY_RANK[self]


URGENCY_RANK = {UrgencyLevel.LOW: 1, UrgencyLevel.MEDIUM: 2, UrgencyLevel.HIGH: 3}


class RequisitionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is not RequisitionStatus.ACTIVE


class NotificationStatus(str, Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"

    @property
    def rank(self) -> int:
        return NOTIFICATION_ORDER.index(self)


NOTIFICATION_ORDER = (NotificationStatus.SENT, NotificationStatus.DELIVERED, NotificationStatus.READ)


class DonorResponseValue(str, Enum):
    WILLING = "WILLING"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    NOT_SUITABLE = "NOT_SUITABLE"


class Location(BaseModel):
    """City/state pair. An absent location is ``None`` on the owner, never an empty Location."""

    city: str | None = None
    state: str | None = None

    @field_validator("city", "state")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def label(self) -> str:
        parts = [part for part in (self.city, self.state) if part]
        return ", ".join(parts) if parts else "Location not specified"

    def proximity(self, query: str | None) -> int | None:
        """Rank how closely this location matches a free-text query.

        0 exact city, 1 city prefix, 2 city substring either way, 3 state
        match, None when a query is given and nothing matches. An empty
        query matches everything at rank 3.
        """
        if not query or not query.strip():
            return 3
        needle = query.strip().lower()
        city = (self.city or "").lower()
        state = (self.state or "").lower()
        if city and city == needle:
            return 0
        if city and city.startswith(needle):
            return 1
        # "Kochi, Kerala" as a query still reaches a donor whose city is Kochi.
        if city and (needle in city or city in needle):
            return 2
        if state and (needle in state or state in needle):
            return 3
        return None
