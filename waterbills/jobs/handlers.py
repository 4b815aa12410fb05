"""
Job handlers - one per job kind.

Each handler opens its own session, runs one service operation and returns
a JSON-safe summary stored on the job row. Exceptions propagate to the
worker, which records them and schedules the retry.
"""
import logging
from typing import Awaitable, Callable, Dict

from waterbills.context import AppContext
from waterbills.database.models import JobKind
from waterbills.services.disconnection_service import evaluate_disconnections
from waterbills.services.invoice_service import generate_building_invoices, summarize_generation
from waterbills.services.penalty_service import calculate_penalty

JobHandler = Callable[[AppContext, dict], Awaitable[dict]]


async def handle_generation(context: AppContext, payload: dict) -> dict:
    building_id = int(payload["building_id"])
    period = payload["period"]

    async with context.session_factory() as session:
        results = await generate_building_invoices(session, building_id, period)

    successful, failed = summarize_generation(results)
    logging.info(f"Generation for building {building_id}, period {period}: {successful} ok, {failed} failed")
    return {
        "building_id": building_id,
        "period": period,
        "successful": successful,
        "failed": failed,
        "errors": {str(r.premise_id): r.error for r in results if not r.success}
    }


async def handle_penalty(context: AppContext, payload: dict) -> dict:
    invoice_id = int(payload["invoice_id"])

    async with context.session_factory() as session:
        result = await calculate_penalty(session, invoice_id, today=context.now().date())

    return result._asdict()


async def handle_disconnect(context: AppContext, payload: dict) -> dict:
    building_id = int(payload["building_id"])

    async with context.session_factory() as session:
        tasks = await evaluate_disconnections(session, building_id, today=context.now().date())
        flagged = [task.premise_id for task in tasks]

    return {"building_id": building_id, "flagged": len(flagged), "premise_ids": flagged}


HANDLERS: Dict[str, JobHandler] = {
    JobKind.generation.value: handle_generation,
    JobKind.penalty.value: handle_penalty,
    JobKind.disconnect.value: handle_disconnect,
}


def get_handler(kind: str) -> JobHandler:
    handler = HANDLERS.get(kind)
    if handler is None:
        raise ValueError(f"No handler for job kind {kind!r}")
    return handler
