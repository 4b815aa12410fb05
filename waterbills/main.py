import asyncio
import logging
import signal
import sys

from waterbills.config import config
from waterbills.context import AppContext
from waterbills.cron import BillingScheduler
from waterbills.database.core import create_tables
from waterbills.jobs.worker import WorkerPool


async def main():
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        stream=sys.stdout,
    )

    context = AppContext.from_config(config)
    await context.start()

    try:
        await create_tables(context.engine)
    except Exception as e:
        logging.error(f"Failed to create tables: {e}")
        await context.stop()
        raise

    workers = WorkerPool(context)
    scheduler = BillingScheduler(context)

    stop_event = asyncio.Event()
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    await workers.start()
    scheduler.start()
    logging.info("Billing service running.")

    try:
        await stop_event.wait()
    finally:
        # Scheduler first so nothing new is enqueued while workers drain
        await scheduler.stop()
        await workers.stop()
        await context.stop()


if __name__ == "__main__":
    try:
        if sys.platform == "win32":
            asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logging.info("Billing service stopped.")
