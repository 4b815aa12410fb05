import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import (
    Building, DisconnectionTask, Invoice, OPEN_INVOICE_STATUSES, WaterConnectionStatus
)
from waterbills.services.errors import NotFound
from waterbills.services.registry_service import list_premises


async def latest_open_invoice(session: AsyncSession, premise_id: int) -> Optional[Invoice]:
    """Most recent invoice still carrying a balance (unpaid, partial or overdue)."""
    stmt = (
        select(Invoice)
        .where(
            Invoice.premise_id == premise_id,
            Invoice.status.in_(OPEN_INVOICE_STATUSES)
        )
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def evaluate_disconnections(
    session: AsyncSession,
    building_id: int,
    today: Optional[date] = None
) -> List[DisconnectionTask]:
    """
    Flag premises whose latest open invoice is still unpaid after the
    premise's disconnect day of month.

    Only marks intent (water_connection_status = DISCONNECT plus a task);
    reconnection is an administrative action.

    Returns:
        Tasks for premises flagged by this run
    """
    if today is None:
        today = date.today()

    building = await session.get(Building, building_id)
    if not building:
        raise NotFound(f"Building {building_id} not found")

    tasks = []
    for premise in await list_premises(session, building_id):
        invoice = await latest_open_invoice(session, premise.id)
        if not invoice:
            continue

        if today.day <= premise.disconnect_after_day_of_month:
            continue

        unpaid_amount = invoice.unpaid_amount
        if unpaid_amount <= 0:
            continue

        if invoice.water_connection_status == WaterConnectionStatus.disconnect.value:
            # Flagged on an earlier run
            continue

        invoice.water_connection_status = WaterConnectionStatus.disconnect.value
        task = DisconnectionTask(
            building_id=building_id,
            premise_id=premise.id,
            invoice_id=invoice.id,
            unit_no=premise.unit_no,
            unpaid_amount=unpaid_amount,
            flagged_on=today
        )
        session.add(task)
        tasks.append(task)

        logging.info(f"Marked premise {premise.unit_no} (invoice {invoice.id}, unpaid {unpaid_amount}) for disconnection")

    await session.commit()

    logging.info(f"Disconnection evaluation for building {building_id}: {len(tasks)} premises flagged")
    return tasks


async def list_disconnection_tasks(session: AsyncSession, building_id: int) -> List[DisconnectionTask]:
    stmt = (
        select(DisconnectionTask)
        .where(DisconnectionTask.building_id == building_id)
        .order_by(DisconnectionTask.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
