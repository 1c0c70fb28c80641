from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..database import Settings, settings as default_settings
from ..errors import RequisitionNotActive, TransportError, UndeliverableMessage, ValidationError
from ..matching.matcher import Matcher
from ..models.blood import RequisitionStatus
from ..models.notification import NO_ELIGIBLE_DONORS, NotifyResult
from ..stores.donor_directory import DonorDirectory
from ..stores.notification_store import NotificationStore
from ..stores.requisition_store import RequisitionStore
from ..utils.clock import utcnow
from ..utils.notifications import DonorTransport, OutboundMessage
from ..utils.retry import retry_async
from .events import DONORS_NOTIFIED, EventSink, publish

NOTIFIED, SKIPPED, FAILED = "notified", "skipped", "failed"


def compose_message(requisition: Dict[str, Any], custom_message: str | None = None) -> Tuple[str, str]:
    title = f"{requisition['urgency_level']} urgency: {requisition['required_blood_group']} blood needed"
    units = requisition["units_needed"]
    body = (
        f"{units} unit{'s' if units != 1 else ''} of {requisition['required_blood_group']} blood needed for "
        f"{requisition['patient_name']} at {requisition['hospital_name']}, {requisition['location']}. "
        f"Required by {requisition['required_by_date']:%d %b %Y %H:%M} UTC."
    )
    if custom_message:
        body = f"{body}\n{custom_message.strip()}"
    return title, body


class Notifier:
    """Idempotent, bounded-concurrency fan-out of requisition alerts to donors.

    A notification row is written (status SENT) before the transport is
    touched, and the unique (requisition, donor) pair makes the row the
    at-most-once boundary: repeated or concurrent fan-outs skip donors that
    already have a row. Transport failures are retried with backoff, then
    recorded on the row and flagged for the background retry pass.
    """

    def __init__(
        self,
        requisitions: RequisitionStore,
        notifications: NotificationStore,
        directory: DonorDirectory,
        matcher: Matcher,
        transport: DonorTransport,
        config: Settings | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.requisitions = requisitions
        self.notifications = notifications
        self.directory = directory
        self.matcher = matcher
        self.transport = transport
        self.settings = config or default_settings
        self.event_sink = event_sink

    async def notify_donors(
        self,
        requisition_id: str,
        donor_ids: Iterable[str],
        message: str | None = None,
        now: datetime | None = None,
    ) -> NotifyResult:
        """Fan out to ``donor_ids``; ``notified`` counts new rows, of which ``failed`` could not be dispatched."""
        requisition = await self._require_active(requisition_id)
        now = now or utcnow()
        unique_ids = list(dict.fromkeys(donor_id for donor_id in donor_ids if donor_id))
        if not unique_ids:
            return NotifyResult(requisition_id=requisition_id, outcome=NO_ELIGIBLE_DONORS)

        donors = await self.directory.get_many(unique_ids)
        title, body = compose_message(requisition, message)
        semaphore = asyncio.Semaphore(max(1, self.settings.notify_concurrency))

        async def _bounded(donor_id: str) -> str:
            async with semaphore:
                return await self._notify_one(requisition_id, donor_id, donors.get(donor_id), title, body, now)

        outcomes = await asyncio.gather(*(_bounded(donor_id) for donor_id in unique_ids))
        failed = outcomes.count(FAILED)
        result = NotifyResult(
            requisition_id=requisition_id,
            notified=outcomes.count(NOTIFIED) + failed,
            skipped=outcomes.count(SKIPPED),
            failed=failed,
            candidates=len(unique_ids),
        )
        logger.info(
            "Fan-out for requisition {}: {} notified, {} skipped, {} failed dispatch",
            requisition_id,
            result.notified,
            result.skipped,
            result.failed,
        )
        if result.notified:
            await publish(
                self.event_sink,
                DONORS_NOTIFIED,
                requisition_id=requisition_id,
                notified=result.notified,
                skipped=result.skipped,
                failed=result.failed,
            )
        return result

    async def notify_all(
        self,
        requisition_id: str,
        requester_id: str | None = None,
        custom_message: str | None = None,
        now: datetime | None = None,
        exclude_notified: bool = False,
    ) -> NotifyResult:
        if requester_id is not None:
            await self.requisitions.ensure_owner(requisition_id, requester_id)
        requisition = await self._require_active(requisition_id)
        exclude = await self.notifications.donor_ids_for(requisition_id) if exclude_notified else ()
        match = await self.matcher.match_donors(requisition, now=now, exclude=exclude)
        if not match.candidates:
            return NotifyResult(requisition_id=requisition_id, outcome=match.outcome)
        return await self.notify_donors(requisition_id, match.donor_ids, custom_message, now=now)

    async def rematch(
        self, requisition_id: str, requester_id: str | None = None, now: datetime | None = None
    ) -> NotifyResult:
        """Run matching again over donors without a notification for this requisition.

        Already-notified donors are left out before the fan-out cap applies,
        so each rematch can reach further down the ranked directory.
        """
        logger.info("Rematch requested for requisition {}", requisition_id)
        return await self.notify_all(requisition_id, requester_id, now=now, exclude_notified=True)

    async def notify_selected(
        self,
        requisition_id: str,
        requester_id: str,
        donor_ids: List[str],
        custom_message: str | None = None,
        now: datetime | None = None,
    ) -> NotifyResult:
        await self.requisitions.ensure_owner(requisition_id, requester_id)
        if not donor_ids:
            raise ValidationError("At least one donor must be selected")
        await self._require_active(requisition_id)
        found = await self.directory.get_many(donor_ids)
        invalid = sorted(
            {donor_id for donor_id in donor_ids if not found.get(donor_id, {}).get("is_blood_donor")}
        )
        if invalid:
            raise ValidationError("Some selected donors are not valid blood donors", donor_ids=invalid)
        return await self.notify_donors(requisition_id, donor_ids, custom_message, now=now)

    async def retry_failed_dispatches(self, now: datetime | None = None) -> int:
        """One background round for rows whose last dispatch failed. Returns rows re-dispatched."""
        rows = await self.notifications.retry_candidates()
        if not rows:
            return 0
        statuses: Dict[str, Optional[str]] = {}
        donors = await self.directory.get_many({row["donor_id"] for row in rows})
        semaphore = asyncio.Semaphore(max(1, self.settings.notify_concurrency))
        pending = []
        for row in rows:
            requisition_id = row["requisition_id"]
            if requisition_id not in statuses:
                statuses[requisition_id] = await self.requisitions.status_of(requisition_id)
            if statuses[requisition_id] != RequisitionStatus.ACTIVE.value:
                await self.notifications.drop_retry(row["_id"], f"requisition {statuses[requisition_id]}")
                continue
            pending.append(row)

        async def _bounded(row: Dict[str, Any]) -> bool:
            async with semaphore:
                return await self._dispatch(row, donors.get(row["donor_id"]), now)

        delivered = await asyncio.gather(*(_bounded(row) for row in pending))
        if pending:
            logger.info("Dispatch retry pass: {} of {} rows delivered", sum(delivered), len(pending))
        return sum(delivered)

    async def _require_active(self, requisition_id: str) -> Dict[str, Any]:
        requisition = await self.requisitions.get(requisition_id)
        if requisition["status"] != RequisitionStatus.ACTIVE.value:
            raise RequisitionNotActive(requisition_id, requisition["status"])
        return requisition

    async def _notify_one(
        self,
        requisition_id: str,
        donor_id: str,
        donor: Optional[Dict[str, Any]],
        title: str,
        body: str,
        now: datetime,
    ) -> str:
        row = await self.notifications.insert_if_absent(requisition_id, donor_id, title, body, now)
        if row is None:
            return SKIPPED
        return NOTIFIED if await self._dispatch(row, donor, now) else FAILED

    async def _dispatch(self, row: Dict[str, Any], donor: Optional[Dict[str, Any]], now: datetime | None) -> bool:
        message = OutboundMessage(
            recipient_id=row["donor_id"],
            to=(donor or {}).get("phone"),
            title=row["title"],
            body=row["message"],
            data={"requisition_id": row["requisition_id"], "notification_id": row["_id"]},
        )
        attempts = 0

        async def _send() -> None:
            nonlocal attempts
            attempts += 1
            await self.transport.dispatch(message)

        try:
            await retry_async(
                _send,
                attempts=self.settings.dispatch_max_attempts,
                base_delay=self.settings.dispatch_backoff_seconds,
                max_delay=self.settings.dispatch_backoff_max_seconds,
                retry_on=(TransportError,),
                give_up_on=(UndeliverableMessage,),
                context=f"Dispatch to donor {row['donor_id']}",
            )
        except UndeliverableMessage as exc:
            logger.warning("Notification {} is undeliverable: {}", row["_id"], exc.message)
            await self.notifications.record_dispatch_failure(row["_id"], attempts, exc.message, retry_eligible=False)
            return False
        except Exception as exc:
            if isinstance(exc, TransportError):
                error = exc.message
            else:
                logger.opt(exception=exc).error("Transport crashed dispatching to donor {}", row["donor_id"])
                error = f"{type(exc).__name__}: {exc}"
            rounds = row.get("dispatch_rounds", 0) + 1
            await self.notifications.record_dispatch_failure(
                row["_id"], attempts, error, retry_eligible=rounds < self.settings.dispatch_retry_rounds
            )
            return False
        await self.notifications.record_dispatch(row["_id"], attempts, now)
        return True
