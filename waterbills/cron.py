"""
Billing scheduler.

tick(now) decides which triggers are due and enqueues their jobs; run() is
only the timer around it, so tests drive tick() with whatever clock they
need. Each trigger fires at most once per calendar day:

- invoice generation on INVOICE_GENERATION_DAY at INVOICE_GENERATION_HOUR,
  for the next billing period, one job per building
- penalty recomputation daily at PENALTY_HOUR, one job per eligible invoice
- disconnection evaluation daily at DISCONNECT_HOUR, one job per building

Job keys deduplicate anything a restarted scheduler enqueues again.
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.context import AppContext
from waterbills.services.penalty_service import list_penalty_eligible_invoices
from waterbills.services.queue_service import (
    enqueue_disconnect_job, enqueue_generation_job, enqueue_penalty_job
)
from waterbills.services.registry_service import list_buildings
from waterbills.utils.periods import next_period, period_of

GENERATION_TRIGGER = "generation"
PENALTY_TRIGGER = "penalty"
DISCONNECT_TRIGGER = "disconnect"


async def enqueue_monthly_generation(session: AsyncSession, now: datetime) -> int:
    """Enqueue next period's invoice generation for every building."""
    period = next_period(period_of(now.date()))
    created = 0
    for building in await list_buildings(session):
        _, is_new = await enqueue_generation_job(session, building.id, period, now=now)
        created += int(is_new)
    logging.info(f"Enqueued {created} generation jobs for period {period}")
    return created


async def enqueue_daily_penalties(session: AsyncSession, now: datetime) -> int:
    invoices = await list_penalty_eligible_invoices(session, today=now.date())
    invoice_ids = [invoice.id for invoice in invoices]
    created = 0
    for invoice_id in invoice_ids:
        _, is_new = await enqueue_penalty_job(session, invoice_id, now=now)
        created += int(is_new)
    logging.info(f"Enqueued {created} penalty jobs ({len(invoice_ids)} eligible invoices)")
    return created


async def enqueue_daily_disconnections(session: AsyncSession, now: datetime) -> int:
    buildings = await list_buildings(session)
    building_ids = [building.id for building in buildings]
    created = 0
    for building_id in building_ids:
        _, is_new = await enqueue_disconnect_job(session, building_id, now=now)
        created += int(is_new)
    logging.info(f"Enqueued {created} disconnection jobs")
    return created


class BillingScheduler:
    def __init__(self, context: AppContext, tick_interval: Optional[float] = None):
        self.context = context
        self.tick_interval = tick_interval if tick_interval is not None else context.settings.SCHEDULER_TICK_SECONDS
        self._last_fired: Dict[str, date] = {}
        self._task: Optional[asyncio.Task] = None

    def last_fired(self, trigger: str) -> Optional[date]:
        return self._last_fired.get(trigger)

    def _is_due(self, trigger: str, now: datetime, hour: int, day: Optional[int] = None) -> bool:
        if self._last_fired.get(trigger) == now.date():
            return False
        if day is not None and now.day != day:
            return False
        return now.hour >= hour

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Fire every trigger due at `now`.

        Returns:
            {trigger: jobs enqueued} for the triggers that fired
        """
        if now is None:
            now = self.context.now()
        settings = self.context.settings

        triggers = [
            (GENERATION_TRIGGER, settings.INVOICE_GENERATION_HOUR, settings.INVOICE_GENERATION_DAY, enqueue_monthly_generation),
            (PENALTY_TRIGGER, settings.PENALTY_HOUR, None, enqueue_daily_penalties),
            (DISCONNECT_TRIGGER, settings.DISCONNECT_HOUR, None, enqueue_daily_disconnections),
        ]

        fired = {}
        for name, hour, day, enqueue in triggers:
            if not self._is_due(name, now, hour, day):
                continue
            try:
                async with self.context.session_factory() as session:
                    fired[name] = await enqueue(session, now)
            except Exception as e:
                # Not marked as fired, the next tick tries again
                logging.error(f"Scheduler trigger {name} failed: {e}")
                continue
            self._last_fired[name] = now.date()

        return fired

    async def run(self):
        """Timer loop around tick()."""
        logging.info("Scheduler started.")
        while True:
            try:
                await self.tick()
            except Exception as e:
                logging.error(f"Error in scheduler loop: {e}")
            await asyncio.sleep(self.tick_interval)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logging.info("Scheduler stopped.")
