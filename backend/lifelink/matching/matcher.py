from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List

from loguru import logger

from ..database import Settings, settings as default_settings
from ..models.donor import DonorCandidate
from ..models.notification import NO_ELIGIBLE_DONORS, NOTIFIED
from ..stores.donor_directory import DonorDirectory


@dataclass
class MatchResult:
    requisition_id: str
    candidates: List[DonorCandidate] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        return NOTIFIED if self.candidates else NO_ELIGIBLE_DONORS

    @property
    def donor_ids(self) -> List[str]:
        return [candidate.id for candidate in self.candidates]


class Matcher:
    """Turns a requisition into the bounded list of donors worth notifying."""

    def __init__(self, directory: DonorDirectory, config: Settings | None = None) -> None:
        self.directory = directory
        self.settings = config or default_settings

    async def match_donors(
        self, requisition: Dict[str, Any], now: datetime | None = None, exclude: Iterable[str] = ()
    ) -> MatchResult:
        # The directory ranks eligible donors first; cooling-down donors are
        # only useful for previews, never for fan-out.
        limit = self.settings.match_fanout_limit
        ranked = await self.directory.find_candidates(
            requisition["required_blood_group"],
            requisition.get("location"),
            limit=limit,
            now=now,
            exclude=exclude,
        )
        eligible = [candidate for candidate in ranked if candidate.eligibility.is_eligible]
        result = MatchResult(requisition_id=str(requisition["_id"]), candidates=eligible[:limit])
        if not result.candidates:
            logger.info(
                "No eligible {} donors near {!r} for requisition {}",
                requisition["required_blood_group"],
                requisition.get("location"),
                result.requisition_id,
            )
        return result
