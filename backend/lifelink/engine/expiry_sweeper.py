from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from loguru import logger
from pymongo.errors import PyMongoError

from ..database import Settings, settings as default_settings
from ..errors import InvalidTransition
from ..stores.requisition_store import RequisitionStore
from ..utils.clock import utcnow
from ..utils.logging import log_db_error
from .events import REQUISITION_EXPIRED, EventSink, publish
from .notifier import Notifier


@dataclass
class SweepReport:
    expired: List[str] = field(default_factory=list)
    already_closed: List[str] = field(default_factory=list)
    redispatched: int = 0


class ExpirySweeper:
    """Periodic pass moving overdue ACTIVE requisitions to EXPIRED.

    Uses the same guarded transition as fulfilment and cancellation, so a
    response landing mid-sweep either wins (FULFILLED) or loses (EXPIRED);
    the loser simply observes the terminal state.
    """

    def __init__(
        self,
        requisitions: RequisitionStore,
        notifier: Notifier | None = None,
        config: Settings | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.requisitions = requisitions
        self.notifier = notifier
        self.settings = config or default_settings
        self.event_sink = event_sink
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        for requisition_id in await self.requisitions.find_overdue(now):
            try:
                await self.requisitions.expire(requisition_id, now)
            except InvalidTransition as exc:
                logger.debug("Sweeper lost race on {}: already {}", requisition_id, exc.current)
                report.already_closed.append(requisition_id)
                continue
            report.expired.append(requisition_id)
            await publish(self.event_sink, REQUISITION_EXPIRED, requisition_id=requisition_id)

        if self.notifier is not None:
            report.redispatched = await self.notifier.retry_failed_dispatches(now)
        if report.expired or report.redispatched:
            logger.info(
                "Sweep finished: {} expired, {} already closed, {} notifications re-dispatched",
                len(report.expired),
                len(report.already_closed),
                report.redispatched,
            )
        return report

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="lifelink-expiry-sweeper")
        logger.info("Expiry sweeper started (every {}s)", self.settings.sweep_interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except PyMongoError as exc:  # pragma: no cover - external service
                log_db_error("expiry sweep", exc)
            except Exception:
                logger.exception("Expiry sweep failed; retrying in {}s", self.settings.sweep_interval_seconds)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.settings.sweep_interval_seconds)
            except asyncio.TimeoutError:
                continue
