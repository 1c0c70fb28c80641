import asyncio
from datetime import timedelta

from lifelink.engine.expiry_sweeper import ExpirySweeper

from conftest import NOW, create_requisition


async def test_sweep_expires_only_overdue_active_requisitions(engine, events):
    overdue = await create_requisition(engine, required_by_date=NOW + timedelta(hours=1))
    upcoming = await create_requisition(engine, required_by_date=NOW + timedelta(days=5))
    fulfilled = await create_requisition(engine, required_by_date=NOW + timedelta(hours=1))
    await engine.requisitions.mark_fulfilled(fulfilled.id, "requester-1", now=NOW)

    report = await engine.sweeper.sweep_once(NOW + timedelta(hours=2))

    assert report.expired == [overdue.id]
    assert (await engine.requisitions.get(upcoming.id))["status"] == "ACTIVE"
    assert (await engine.requisitions.get(fulfilled.id))["status"] == "FULFILLED"
    assert "requisition_expired" in events.types()


async def test_sweep_is_idempotent(engine):
    await create_requisition(engine, required_by_date=NOW + timedelta(hours=1))

    first = await engine.sweeper.sweep_once(NOW + timedelta(hours=2))
    second = await engine.sweeper.sweep_once(NOW + timedelta(hours=2))

    assert len(first.expired) == 1
    assert second.expired == []


async def test_concurrent_sweeps_expire_each_requisition_once(engine):
    requisitions = [
        await create_requisition(engine, required_by_date=NOW + timedelta(hours=1)) for _ in range(3)
    ]

    reports = await asyncio.gather(*(engine.sweeper.sweep_once(NOW + timedelta(hours=2)) for _ in range(3)))

    expired = [requisition_id for report in reports for requisition_id in report.expired]
    assert sorted(expired) == sorted(requisition.id for requisition in requisitions)


async def test_background_loop_runs_and_stops(engine, settings):
    settings.sweep_interval_seconds = 0.01
    requisition = await create_requisition(engine, required_by_date=NOW + timedelta(hours=1))
    await engine.requisitions.collection.update_one(
        {"_id": requisition.id}, {"$set": {"required_by_date": NOW - timedelta(days=1)}}
    )
    sweeper = ExpirySweeper(engine.requisitions, engine.notifier, settings)

    sweeper.start()
    for _ in range(100):
        if (await engine.requisitions.get(requisition.id))["status"] == "EXPIRED":
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert (await engine.requisitions.get(requisition.id))["status"] == "EXPIRED"


class FlakyRetryPass:
    """Stands in for the notifier; its retry pass raises on the first two rounds."""

    def __init__(self) -> None:
        self.calls = 0

    async def retry_failed_dispatches(self, now=None) -> int:
        self.calls += 1
        if self.calls <= 2:
            raise ConnectionError("transport down")
        return 0


async def test_background_loop_survives_a_failing_round(engine, settings):
    settings.sweep_interval_seconds = 0.01
    notifier = FlakyRetryPass()
    sweeper = ExpirySweeper(engine.requisitions, notifier, settings)

    sweeper.start()
    for _ in range(100):
        if notifier.calls >= 4:
            break
        await asyncio.sleep(0.01)
    running = not sweeper._task.done()
    await sweeper.stop()

    assert running
    assert notifier.calls >= 4
