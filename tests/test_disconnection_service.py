from datetime import date

import pytest

from waterbills.database.models import InvoiceStatus, WaterConnectionStatus
from waterbills.services.disconnection_service import (
    evaluate_disconnections, latest_open_invoice, list_disconnection_tasks
)
from waterbills.services.errors import NotFound


@pytest.mark.asyncio
async def test_unpaid_premise_flagged_after_cutoff_day(async_session, billed_building, overdue_invoice):
    tasks = await evaluate_disconnections(async_session, billed_building.building.id, today=date(2026, 2, 25))

    assert len(tasks) == 1
    task = tasks[0]
    assert task.premise_id == billed_building.a1.id
    assert task.invoice_id == overdue_invoice.id
    assert task.unit_no == "A1"
    assert task.unpaid_amount == 10000
    assert task.flagged_on == date(2026, 2, 25)

    await async_session.refresh(overdue_invoice)
    assert overdue_invoice.water_connection_status == WaterConnectionStatus.disconnect.value


@pytest.mark.asyncio
async def test_flagged_invoice_not_flagged_again(async_session, billed_building, overdue_invoice):
    building_id = billed_building.building.id
    await evaluate_disconnections(async_session, building_id, today=date(2026, 2, 25))

    again = await evaluate_disconnections(async_session, building_id, today=date(2026, 2, 26))

    assert again == []
    assert len(await list_disconnection_tasks(async_session, building_id)) == 1


@pytest.mark.asyncio
async def test_not_flagged_on_or_before_cutoff_day(async_session, billed_building, overdue_invoice):
    tasks = await evaluate_disconnections(async_session, billed_building.building.id, today=date(2026, 2, 20))

    assert tasks == []
    await async_session.refresh(overdue_invoice)
    assert overdue_invoice.water_connection_status == WaterConnectionStatus.connected.value


@pytest.mark.asyncio
async def test_paid_invoice_not_flagged(async_session, billed_building, overdue_invoice):
    overdue_invoice.amount_paid = 10000
    overdue_invoice.status = InvoiceStatus.paid.value
    await async_session.commit()

    assert await latest_open_invoice(async_session, billed_building.a1.id) is None
    tasks = await evaluate_disconnections(async_session, billed_building.building.id, today=date(2026, 2, 25))
    assert tasks == []


@pytest.mark.asyncio
async def test_premise_cutoff_day_respected(async_session, billed_building, overdue_invoice):
    billed_building.a1.disconnect_after_day_of_month = 28
    await async_session.commit()

    tasks = await evaluate_disconnections(async_session, billed_building.building.id, today=date(2026, 2, 25))
    assert tasks == []


@pytest.mark.asyncio
async def test_unknown_building(async_session):
    with pytest.raises(NotFound):
        await evaluate_disconnections(async_session, 999, today=date(2026, 2, 25))
