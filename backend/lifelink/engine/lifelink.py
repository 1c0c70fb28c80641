from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from loguru import logger

from ..database import Settings, db, settings as default_settings
from ..matching.compatibility import compatible_recipient_groups
from ..matching.eligibility import check_eligibility
from ..matching.matcher import Matcher
from ..models.blood import (
    BloodGroup,
    DonorResponseValue,
    Location,
    NotificationStatus,
    RequisitionStatus,
    UrgencyLevel,
)
from ..models.donor import DonorSearch, DonorSearchResult
from ..models.notification import NotificationAdvance, NotifyResult, ResponseCreate, ResponseReceipt
from ..models.requisition import (
    BloodRequisition,
    DiscoveredRequisition,
    DiscoveryPage,
    RequisitionCreate,
    RequisitionCreated,
    RequisitionDetail,
    RequisitionStatistics,
    WillingDonor,
)
from ..schemas.requisition import requisition_document
from ..stores.donor_directory import DonorDirectory
from ..stores.notification_store import NotificationStore
from ..stores.requisition_store import RequisitionStore
from ..stores.response_store import ResponseStore
from ..utils.clock import utcnow
from ..utils.notifications import DonorTransport, SmsTransport
from ..utils.pagination import page_window
from .events import (
    REQUISITION_CANCELLED,
    REQUISITION_CREATED,
    REQUISITION_FULFILLED,
    EventSink,
    default_event_sink,
    publish,
)
from .expiry_sweeper import ExpirySweeper
from .notifier import Notifier
from .response_aggregator import ResponseAggregator

URGENT_WITHIN_HOURS = 24


class LifeLinkEngine:
    """Wires the stores, matcher, notifier, aggregator and sweeper over one database."""

    def __init__(
        self,
        database=None,
        config: Settings | None = None,
        transport: DonorTransport | None = None,
        event_sink: EventSink | None = default_event_sink,
    ) -> None:
        database = database if database is not None else db
        self.settings = config or default_settings
        self.database = database
        self.event_sink = event_sink
        self.transport = transport if transport is not None else SmsTransport(self.settings)

        self.directory = DonorDirectory(database, self.settings)
        self.requisitions = RequisitionStore(database, self.settings)
        self.notifications = NotificationStore(database)
        self.responses = ResponseStore(database)
        self.matcher = Matcher(self.directory, self.settings)
        self.notifier = Notifier(
            self.requisitions,
            self.notifications,
            self.directory,
            self.matcher,
            self.transport,
            self.settings,
            event_sink,
        )
        self.aggregator = ResponseAggregator(
            self.requisitions,
            self.notifications,
            self.responses,
            self.directory,
            self.transport,
            self.settings,
            event_sink,
        )
        self.sweeper = ExpirySweeper(self.requisitions, self.notifier, self.settings, event_sink)

    # Requisitions

    async def create_requisition(
        self,
        requester_id: str,
        payload: RequisitionCreate | Dict[str, Any],
        notify: bool = False,
        now: datetime | None = None,
    ) -> RequisitionCreated:
        requisition = await self.requisitions.create(requester_id, payload, now)
        await publish(
            self.event_sink,
            REQUISITION_CREATED,
            requisition_id=requisition.id,
            required_blood_group=requisition.required_blood_group.value,
            urgency_level=requisition.urgency_level.value,
            location=requisition.location,
        )
        result = None
        if notify:
            result = await self.notifier.notify_all(requisition.id, now=now)
        return RequisitionCreated(requisition=requisition, notify=result)

    async def cancel_requisition(
        self, requisition_id: str, requester_id: str, now: datetime | None = None
    ) -> BloodRequisition:
        document = await self.requisitions.cancel(requisition_id, requester_id, now)
        await publish(self.event_sink, REQUISITION_CANCELLED, requisition_id=requisition_id)
        return BloodRequisition(**requisition_document(document))

    async def fulfil_requisition(
        self, requisition_id: str, requester_id: str, now: datetime | None = None
    ) -> BloodRequisition:
        document = await self.requisitions.mark_fulfilled(requisition_id, requester_id, now)
        await publish(
            self.event_sink,
            REQUISITION_FULFILLED,
            requisition_id=requisition_id,
            willing_donors_count=document.get("willing_donors_count", 0),
        )
        return BloodRequisition(**requisition_document(document))

    async def requisition_detail(self, requisition_id: str, now: datetime | None = None) -> RequisitionDetail:
        now = now or utcnow()
        requisition = await self.requisitions.get_model(requisition_id)
        stats = await self.responses.statistics(requisition_id)
        return RequisitionDetail(
            requisition=requisition,
            is_overdue=requisition.status is RequisitionStatus.ACTIVE and requisition.required_by_date < now,
            statistics=RequisitionStatistics(
                total_notifications_sent=await self.notifications.count_for_requisition(requisition_id),
                **stats,
            ),
        )

    async def willing_donors(
        self, requisition_id: str, requester_id: str, now: datetime | None = None
    ) -> List[WillingDonor]:
        await self.requisitions.ensure_owner(requisition_id, requester_id)
        rows = await self.responses.list_willing(requisition_id)
        donors = await self.directory.get_many(row["donor_id"] for row in rows)
        willing = []
        for row in rows:
            donor = donors.get(row["donor_id"], {})
            location = Location(**donor["location"]) if donor.get("location") else None
            eligibility = None
            if donor:
                eligibility = check_eligibility(
                    donor.get("last_donation_date"), now, self.settings.eligibility_cooldown_days
                )
            willing.append(
                WillingDonor(
                    response_id=str(row["_id"]),
                    donor_id=row["donor_id"],
                    name=donor.get("name"),
                    blood_group=donor.get("blood_group"),
                    location=location.label if location else None,
                    message=row.get("message"),
                    responded_at=row["responded_at"],
                    contact_revealed=row.get("contact_revealed", False),
                    contact_phone=row.get("contact_phone"),
                    eligibility=eligibility,
                )
            )
        return willing

    # Notifications and responses

    async def notify_all(
        self, requisition_id: str, requester_id: str | None = None, custom_message: str | None = None
    ) -> NotifyResult:
        return await self.notifier.notify_all(requisition_id, requester_id, custom_message)

    async def notify_selected(
        self, requisition_id: str, requester_id: str, donor_ids: List[str], custom_message: str | None = None
    ) -> NotifyResult:
        return await self.notifier.notify_selected(requisition_id, requester_id, donor_ids, custom_message)

    async def rematch(self, requisition_id: str, requester_id: str | None = None) -> NotifyResult:
        return await self.notifier.rematch(requisition_id, requester_id)

    async def respond(
        self, requisition_id: str, payload: ResponseCreate, now: datetime | None = None
    ) -> ResponseReceipt:
        return await self.aggregator.record_response(requisition_id, payload, now)

    async def mark_delivered(self, notification_id: str) -> NotificationAdvance:
        return await self.notifications.advance(notification_id, NotificationStatus.DELIVERED)

    async def mark_read(self, notification_id: str, donor_id: str) -> NotificationAdvance:
        return await self.notifications.advance(notification_id, NotificationStatus.READ, donor_id=donor_id)

    # Donors

    async def search_donors(self, search: DonorSearch, now: datetime | None = None) -> DonorSearchResult:
        candidates = await self.directory.find_candidates(
            search.required_blood_group, search.location, search.limit, now
        )
        return DonorSearchResult(
            donors=candidates,
            total_found=len(candidates),
            eligible_donors=sum(1 for candidate in candidates if candidate.eligibility.is_eligible),
        )

    async def discover(
        self,
        donor_id: str,
        page: int = 1,
        limit: int = 10,
        urgency: UrgencyLevel | None = None,
        now: datetime | None = None,
    ) -> DiscoveryPage:
        """Open requisitions this donor could give to, most urgent and newest first."""
        skip, limit = page_window(page, limit)
        now = now or utcnow()
        donor = await self.directory.get(donor_id)
        group = BloodGroup.parse(donor.get("blood_group"))
        if group is None:
            return DiscoveryPage(
                requisitions=[],
                donor_blood_group=None,
                can_donate_to=[],
                page=page,
                limit=limit,
                total_count=0,
                has_next=False,
                message="Set your blood group in your profile to see requests you can help with",
            )

        recipients = compatible_recipient_groups(group)
        open_requisitions = await self.requisitions.find_open_for_groups(recipients, now, urgency)
        location = Location(**donor["location"]) if donor.get("location") else None
        if location is not None and (location.city or location.state):
            open_requisitions = [
                requisition
                for requisition in open_requisitions
                if location.proximity(requisition.get("location")) is not None
            ]

        total_count = len(open_requisitions)
        window = open_requisitions[skip : skip + limit]
        answered = await self.responses.responses_by_donor(donor_id, [str(item["_id"]) for item in window])
        items = []
        for document in window:
            requisition = BloodRequisition(**requisition_document(document))
            hours_left = max(0, int((requisition.required_by_date - now).total_seconds() // 3600))
            response = answered.get(requisition.id)
            items.append(
                DiscoveredRequisition(
                    requisition=requisition,
                    has_responded=response is not None,
                    response=DonorResponseValue(response) if response else None,
                    hours_left=hours_left,
                    is_urgent=requisition.urgency_level is UrgencyLevel.HIGH or hours_left <= URGENT_WITHIN_HOURS,
                )
            )
        logger.debug("Discovery for donor {} ({}): {} open requisitions", donor_id, group.value, total_count)
        return DiscoveryPage(
            requisitions=items,
            donor_blood_group=group,
            can_donate_to=recipients,
            page=page,
            limit=limit,
            total_count=total_count,
            has_next=skip + len(items) < total_count,
            message=f"Found {total_count} requests matching your blood group"
            if total_count
            else "No active requests match your blood group right now",
        )
