import asyncio
import html
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from waterbills.context import AppContext
from waterbills.database.models import Job, JobStatus
from waterbills.jobs.handlers import HANDLERS, JobHandler
from waterbills.services.queue_service import (
    claim_next_job, complete_job, fail_job, requeue_stale_jobs
)


class WorkerPool:
    """
    N asyncio workers pulling jobs from the jobs table.

    A worker claims one job, runs its handler under a timeout and records
    the outcome. Failures go back to the queue with backoff until the job
    runs out of attempts; operators are alerted on the terminal failure.
    """

    def __init__(
        self,
        context: AppContext,
        concurrency: Optional[int] = None,
        poll_interval: Optional[float] = None,
        job_timeout: Optional[float] = None,
        handlers: Optional[Dict[str, JobHandler]] = None
    ):
        settings = context.settings
        self.context = context
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.poll_interval = poll_interval if poll_interval is not None else settings.WORKER_POLL_SECONDS
        self.job_timeout = job_timeout if job_timeout is not None else settings.JOB_TIMEOUT_SECONDS
        self.handlers = dict(handlers) if handlers is not None else dict(HANDLERS)
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self):
        if self._tasks:
            return

        # Jobs left running by a previous process that died mid-job
        async with self.context.session_factory() as session:
            await requeue_stale_jobs(
                session,
                older_than=timedelta(seconds=self.job_timeout * 2),
                now=self.context.now()
            )

        self._stopping.clear()
        for i in range(self.concurrency):
            task = asyncio.create_task(self._worker_loop(f"worker-{i + 1}"))
            self._tasks.append(task)
        logging.info(f"Worker pool started with {self.concurrency} workers")

    async def stop(self):
        if not self._tasks:
            return
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logging.info("Worker pool stopped")

    async def _worker_loop(self, name: str):
        logging.info(f"{name} started")
        while not self._stopping.is_set():
            try:
                job = await self.run_once(name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.error(f"{name}: error while processing queue: {e}")
                job = None

            if job is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def run_once(self, name: str = "worker") -> Optional[Job]:
        """
        Claim and process a single job.

        Returns:
            The job after its outcome was recorded, or None if nothing was due
        """
        async with self.context.session_factory() as session:
            job = await claim_next_job(session, kinds=list(self.handlers), now=self.context.now())
        if job is None:
            return None

        job_id, job_key = job.id, job.job_key
        logging.info(f"{name}: running job {job_id} ({job_key}), attempt {job.attempts}/{job.max_attempts}")

        try:
            handler = self.handlers[job.kind]
            result = await asyncio.wait_for(handler(self.context, dict(job.payload or {})), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error = f"Timed out after {self.job_timeout:.0f}s"
            logging.warning(f"{name}: job {job_id} ({job_key}) {error}")
        except Exception as e:
            logging.exception(f"{name}: job {job_id} ({job_key}) raised")
            error = f"{type(e).__name__}: {e}"
        else:
            async with self.context.session_factory() as session:
                job = await complete_job(session, job_id, result=result, now=self.context.now())
            logging.info(f"{name}: job {job_id} ({job_key}) completed")
            return job

        async with self.context.session_factory() as session:
            job = await fail_job(
                session,
                job_id,
                error,
                backoff_seconds=self.context.settings.JOB_BACKOFF_SECONDS,
                now=self.context.now()
            )

        if job.status == JobStatus.failed.value:
            await self.context.alert_operators(
                f"⚠️ <b>Billing job failed</b>\n"
                f"Job: {job_key}\n"
                f"Attempts: {job.attempts}\n"
                f"Error: {html.escape(error)}"
            )
        return job
