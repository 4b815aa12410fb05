"""
Job queue on the jobs table.

job_key is the dedup identity of a job:
- generation:<building_id>:<period>
- penalty:<invoice_id>:<YYYY-MM-DD>
- disconnect:<building_id>:<YYYY-MM-DD>

Enqueueing a key that is already enqueued or running returns the existing
job. A key whose job already finished is re-armed. The unique index on
job_key settles two schedulers enqueueing at the same time.

Lifecycle: enqueued -> running -> completed | failed. A failed attempt goes
back to enqueued with exponential backoff until max_attempts is reached.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.config import config
from waterbills.database.models import Job, JobKind, JobStatus
from waterbills.utils.periods import parse_period

ACTIVE_JOB_STATUSES = (JobStatus.enqueued.value, JobStatus.running.value)


def _bucket(now) -> str:
    day = now.date() if isinstance(now, datetime) else now
    return day.isoformat()


def generation_job_key(building_id: int, period: str) -> str:
    return f"{JobKind.generation.value}:{building_id}:{period}"


def penalty_job_key(invoice_id: int, now: datetime) -> str:
    return f"{JobKind.penalty.value}:{invoice_id}:{_bucket(now)}"


def disconnect_job_key(building_id: int, now: datetime) -> str:
    return f"{JobKind.disconnect.value}:{building_id}:{_bucket(now)}"


async def get_job_by_key(session: AsyncSession, job_key: str) -> Optional[Job]:
    result = await session.execute(select(Job).where(Job.job_key == job_key))
    return result.scalar_one_or_none()


async def enqueue_job(
    session: AsyncSession,
    kind: str,
    job_key: str,
    payload: dict,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None
) -> Tuple[Job, bool]:
    """
    Enqueue a job unless one with the same key is pending or running.

    Returns:
        (job, created) - created is False when deduplicated
    """
    if now is None:
        now = datetime.now()
    if max_attempts is None:
        max_attempts = config.JOB_MAX_ATTEMPTS
    kind = JobKind(kind).value

    existing = await get_job_by_key(session, job_key)
    if existing:
        if existing.status in ACTIVE_JOB_STATUSES:
            logging.info(f"Job {job_key} already {existing.status}, skipping enqueue")
            return existing, False

        # Finished earlier: re-arm the same row
        existing.status = JobStatus.enqueued.value
        existing.payload = payload
        existing.attempts = 0
        existing.max_attempts = max_attempts
        existing.run_after = now
        existing.enqueued_at = now
        existing.started_at = None
        existing.finished_at = None
        existing.last_error = None
        existing.result = None
        await session.commit()
        logging.info(f"Job {job_key} re-enqueued")
        return existing, True

    job = Job(
        kind=kind,
        job_key=job_key,
        payload=payload,
        status=JobStatus.enqueued.value,
        attempts=0,
        max_attempts=max_attempts,
        run_after=now,
        enqueued_at=now
    )
    session.add(job)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        winner = await get_job_by_key(session, job_key)
        if winner is None:
            raise
        logging.info(f"Job {job_key} enqueued concurrently, using job {winner.id}")
        return winner, False

    logging.info(f"Job {job.id} enqueued: {job_key}")
    return job, True


async def enqueue_generation_job(
    session: AsyncSession,
    building_id: int,
    period: str,
    now: Optional[datetime] = None
) -> Tuple[Job, bool]:
    parse_period(period)
    return await enqueue_job(
        session,
        JobKind.generation.value,
        generation_job_key(building_id, period),
        {"building_id": building_id, "period": period},
        now=now
    )


async def enqueue_penalty_job(
    session: AsyncSession,
    invoice_id: int,
    now: Optional[datetime] = None
) -> Tuple[Job, bool]:
    if now is None:
        now = datetime.now()
    return await enqueue_job(
        session,
        JobKind.penalty.value,
        penalty_job_key(invoice_id, now),
        {"invoice_id": invoice_id},
        now=now
    )


async def enqueue_disconnect_job(
    session: AsyncSession,
    building_id: int,
    now: Optional[datetime] = None
) -> Tuple[Job, bool]:
    if now is None:
        now = datetime.now()
    return await enqueue_job(
        session,
        JobKind.disconnect.value,
        disconnect_job_key(building_id, now),
        {"building_id": building_id},
        now=now
    )


async def claim_next_job(
    session: AsyncSession,
    kinds: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None
) -> Optional[Job]:
    """
    Take the oldest due job and mark it running.
    The status check in the UPDATE makes the claim safe between workers.
    """
    if now is None:
        now = datetime.now()

    stmt = (
        select(Job.id)
        .where(
            Job.status == JobStatus.enqueued.value,
            Job.run_after <= now
        )
        .order_by(Job.run_after, Job.id)
        .limit(10)
    )
    if kinds:
        stmt = stmt.where(Job.kind.in_(list(kinds)))

    candidate_ids = list((await session.execute(stmt)).scalars().all())

    for job_id in candidate_ids:
        claim = (
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.enqueued.value)
            .values(
                status=JobStatus.running.value,
                started_at=now,
                attempts=Job.attempts + 1
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(claim)
        await session.commit()

        if result.rowcount == 1:
            job = await session.get(Job, job_id)
            await session.refresh(job)
            return job

    return None


async def complete_job(
    session: AsyncSession,
    job_id: int,
    result: Optional[dict] = None,
    now: Optional[datetime] = None
) -> Job:
    job = await session.get(Job, job_id)
    job.status = JobStatus.completed.value
    job.result = result
    job.last_error = None
    job.finished_at = now or datetime.now()
    await session.commit()
    return job


async def fail_job(
    session: AsyncSession,
    job_id: int,
    error: str,
    backoff_seconds: Optional[float] = None,
    now: Optional[datetime] = None
) -> Job:
    """
    Record a failed attempt. Re-enqueues with exponential backoff while
    attempts remain, otherwise the job stays failed for operators to see.
    """
    if now is None:
        now = datetime.now()
    if backoff_seconds is None:
        backoff_seconds = config.JOB_BACKOFF_SECONDS

    job = await session.get(Job, job_id)
    job.last_error = error

    if job.attempts >= job.max_attempts:
        job.status = JobStatus.failed.value
        job.finished_at = now
        logging.error(f"Job {job.id} ({job.job_key}) failed permanently after {job.attempts} attempts: {error}")
    else:
        delay = backoff_seconds * (2 ** max(job.attempts - 1, 0))
        job.status = JobStatus.enqueued.value
        job.run_after = now + timedelta(seconds=delay)
        logging.warning(
            f"Job {job.id} ({job.job_key}) attempt {job.attempts}/{job.max_attempts} failed: {error}. "
            f"Retrying in {delay:.0f}s"
        )

    await session.commit()
    return job


async def requeue_stale_jobs(
    session: AsyncSession,
    older_than: timedelta,
    now: Optional[datetime] = None
) -> int:
    """Put back jobs left running by a worker that died mid-job."""
    if now is None:
        now = datetime.now()

    stmt = select(Job).where(
        Job.status == JobStatus.running.value,
        Job.started_at < now - older_than
    )
    stale = list((await session.execute(stmt)).scalars().all())

    for job in stale:
        job.status = JobStatus.enqueued.value
        job.run_after = now
        job.last_error = "Worker stopped while job was running"

    await session.commit()
    if stale:
        logging.warning(f"Re-enqueued {len(stale)} stale running jobs")
    return len(stale)


async def list_failed_jobs(session: AsyncSession) -> List[Job]:
    stmt = (
        select(Job)
        .where(Job.status == JobStatus.failed.value)
        .order_by(Job.finished_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
