from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from loguru import logger

from ..database import Settings, settings as default_settings
from ..errors import NotNotified, RequisitionNotActive
from ..models.blood import DonorResponseValue, NotificationStatus, RequisitionStatus
from ..models.notification import ResponseCreate, ResponseReceipt
from ..stores.donor_directory import DonorDirectory
from ..stores.notification_store import NotificationStore
from ..stores.requisition_store import RequisitionStore
from ..stores.response_store import ResponseStore
from ..utils.clock import utcnow
from ..utils.notifications import DonorTransport, OutboundMessage
from .events import DONOR_RESPONDED, REQUISITION_FULFILLED, EventSink, publish

REJECTING_STATUSES = {RequisitionStatus.CANCELLED.value, RequisitionStatus.EXPIRED.value}

RESPONSE_LABELS = {
    DonorResponseValue.WILLING: "is willing to donate",
    DonorResponseValue.NOT_AVAILABLE: "is not available",
    DonorResponseValue.NOT_SUITABLE: "is not suitable to donate",
}


class ResponseAggregator:
    def __init__(
        self,
        requisitions: RequisitionStore,
        notifications: NotificationStore,
        responses: ResponseStore,
        directory: DonorDirectory,
        transport: DonorTransport | None = None,
        config: Settings | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.requisitions = requisitions
        self.notifications = notifications
        self.responses = responses
        self.directory = directory
        self.transport = transport
        self.settings = config or default_settings
        self.event_sink = event_sink

    async def record_response(
        self, requisition_id: str, payload: ResponseCreate, now: datetime | None = None
    ) -> ResponseReceipt:
        """Record (or replace) one donor's answer and keep the willing counter derived from it.

        CANCELLED and EXPIRED requisitions reject the call; a FULFILLED one
        still records the answer but never fulfils again. A WILLING answer
        that brings the count to ``units_needed`` under the threshold policy
        performs the guarded ACTIVE -> FULFILLED write; losing that race to
        another responder or to the sweeper is a normal outcome.
        """
        now = now or utcnow()
        donor_id = payload.donor_id
        requisition = await self.requisitions.get(requisition_id)
        if requisition["status"] in REJECTING_STATUSES:
            raise RequisitionNotActive(requisition_id, requisition["status"])
        if await self.notifications.find_pair(requisition_id, donor_id) is None:
            raise NotNotified(requisition_id, donor_id)

        donor = (await self.directory.get_many([donor_id])).get(donor_id) or {}
        contact_phone = None
        if (
            payload.response is DonorResponseValue.WILLING
            and requisition.get("allow_contact_reveal", True)
            and donor.get("show_phone")
        ):
            contact_phone = donor.get("phone")

        stored = await self.responses.upsert(
            requisition_id, donor_id, payload.response, payload.message, contact_phone, now
        )
        await self.notifications.advance_pair(requisition_id, donor_id, NotificationStatus.READ, now)

        threshold = None
        if payload.response is DonorResponseValue.WILLING and self.settings.fulfillment_policy == "threshold":
            threshold = requisition["units_needed"]
        sync = await self.requisitions.sync_willing_count(
            requisition_id, lambda: self.responses.count_willing(requisition_id), threshold, now
        )
        current = sync.requisition

        logger.info(
            "Donor {} responded {} to requisition {} ({} willing, status {})",
            donor_id,
            payload.response.value,
            requisition_id,
            current["willing_donors_count"],
            current["status"],
        )
        await publish(
            self.event_sink,
            DONOR_RESPONDED,
            requisition_id=requisition_id,
            donor_id=donor_id,
            response=payload.response.value,
            willing_donors_count=current["willing_donors_count"],
        )
        if sync.fulfilled:
            await publish(
                self.event_sink,
                REQUISITION_FULFILLED,
                requisition_id=requisition_id,
                willing_donors_count=current["willing_donors_count"],
            )
        await self._inform_requester(current, donor, payload, contact_phone)

        return ResponseReceipt(
            response_id=stored.id,
            requisition_id=requisition_id,
            donor_id=donor_id,
            response=payload.response,
            requisition_status=RequisitionStatus(current["status"]),
            willing_donors_count=current["willing_donors_count"],
            fulfilled=sync.fulfilled,
            contact_revealed=contact_phone is not None,
        )

    async def _inform_requester(
        self,
        requisition: Dict[str, Any],
        donor: Dict[str, Any],
        payload: ResponseCreate,
        contact_phone: str | None,
    ) -> None:
        if self.transport is None:
            return
        name = donor.get("name") or "A donor"
        body = f"{name} {RESPONSE_LABELS[payload.response]} for {requisition['patient_name']}."
        if contact_phone:
            body = f"{body} Contact: {contact_phone}"
        if payload.message:
            body = f"{body} Message: {payload.message}"
        message = OutboundMessage(
            recipient_id=requisition["requester_id"],
            to=requisition.get("contact_number"),
            title=f"Response to your {requisition['required_blood_group']} blood request",
            body=body,
            data={"requisition_id": str(requisition["_id"]), "donor_id": payload.donor_id},
        )
        try:
            await self.transport.dispatch(message)
        except Exception as exc:
            logger.warning("Could not inform requester of requisition {}: {}", requisition["_id"], exc)
