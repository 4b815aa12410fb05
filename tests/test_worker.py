import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from waterbills.database.models import Invoice, Job, JobKind, JobStatus
from waterbills.jobs.worker import WorkerPool
from waterbills.services.queue_service import (
    enqueue_disconnect_job, enqueue_generation_job, enqueue_job, enqueue_penalty_job
)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    async def notify_operators(self, text):
        self.messages.append(text)
        return 1

    async def close(self):
        pass


async def load_job(session_factory, job_id):
    async with session_factory() as session:
        return await session.get(Job, job_id)


@pytest.mark.asyncio
async def test_generation_job_creates_invoices(app_context, async_session, billed_building, clock):
    job, _ = await enqueue_generation_job(async_session, billed_building.building.id, "2026-01", now=clock.now)

    processed = await WorkerPool(app_context).run_once()

    assert processed.id == job.id
    assert processed.status == JobStatus.completed.value
    assert processed.result["successful"] == 2
    assert processed.result["failed"] == 0

    invoices = (await async_session.execute(select(Invoice).order_by(Invoice.premise_id))).scalars().all()
    assert [i.total_amount for i in invoices] == [13300, 6700]


@pytest.mark.asyncio
async def test_penalty_job_uses_context_clock(app_context, async_session, overdue_invoice, clock):
    await enqueue_penalty_job(async_session, overdue_invoice.id, now=clock.now)

    processed = await WorkerPool(app_context).run_once()

    # Clock is 2026-02-25, due date 2026-02-08
    assert processed.status == JobStatus.completed.value
    assert processed.result["days_late"] == 17
    assert processed.result["penalty"] == 2550
    assert processed.result["status"] == "overdue"


@pytest.mark.asyncio
async def test_disconnect_job(app_context, async_session, billed_building, overdue_invoice, clock):
    await enqueue_disconnect_job(async_session, billed_building.building.id, now=clock.now)

    processed = await WorkerPool(app_context).run_once()

    assert processed.result["flagged"] == 1
    assert processed.result["premise_ids"] == [billed_building.a1.id]


@pytest.mark.asyncio
async def test_nothing_due(app_context):
    assert await WorkerPool(app_context).run_once() is None


@pytest.mark.asyncio
async def test_failing_job_retried_then_operators_alerted(app_context, async_session, clock):
    notifier = RecordingNotifier()
    app_context.notifier = notifier

    async def broken(context, payload):
        raise RuntimeError("ledger unavailable")

    pool = WorkerPool(app_context, handlers={JobKind.generation.value: broken})
    job, _ = await enqueue_job(
        async_session, JobKind.generation.value, "generation:1:2026-03",
        {"building_id": 1, "period": "2026-03"}, max_attempts=2, now=clock.now
    )

    first = await pool.run_once()
    assert first.status == JobStatus.enqueued.value
    assert "ledger unavailable" in first.last_error
    assert notifier.messages == []

    # Still backing off
    assert await pool.run_once() is None

    clock.now += timedelta(seconds=app_context.settings.JOB_BACKOFF_SECONDS)
    second = await pool.run_once()

    assert second.id == job.id
    assert second.status == JobStatus.failed.value
    assert len(notifier.messages) == 1
    assert "generation:1:2026-03" in notifier.messages[0]


@pytest.mark.asyncio
async def test_timeout_counts_as_failed_attempt(app_context, async_session, clock):
    async def slow(context, payload):
        await asyncio.sleep(5)
        return {}

    pool = WorkerPool(app_context, job_timeout=0.05, handlers={JobKind.disconnect.value: slow})
    await enqueue_disconnect_job(async_session, 1, now=clock.now)

    processed = await pool.run_once()

    assert processed.status == JobStatus.enqueued.value
    assert processed.attempts == 1
    assert processed.last_error.startswith("Timed out")


@pytest.mark.asyncio
async def test_pool_start_and_stop(app_context, async_session, session_factory, billed_building, clock):
    job, _ = await enqueue_generation_job(async_session, billed_building.building.id, "2026-01", now=clock.now)

    pool = WorkerPool(app_context, concurrency=2, poll_interval=0.01)
    await pool.start()
    assert pool.running
    try:
        for _ in range(200):
            current = await load_job(session_factory, job.id)
            if current.status == JobStatus.completed.value:
                break
            await asyncio.sleep(0.02)
    finally:
        await pool.stop()

    assert not pool.running
    assert (await load_job(session_factory, job.id)).status == JobStatus.completed.value
