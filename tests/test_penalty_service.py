from datetime import date

import pytest

from waterbills.database.models import InvoiceStatus
from waterbills.services.errors import NotFound
from waterbills.services.payment_service import PaymentInput, process_payment
from waterbills.services.penalty_service import (
    calculate_penalty, compute_penalty, list_penalty_eligible_invoices, recalculate_penalty
)

TEN_DAYS_LATE = date(2026, 2, 18)


@pytest.mark.asyncio
async def test_penalty_ten_days_late(async_session, overdue_invoice):
    result = await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)

    assert result.days_late == 10
    assert result.penalty == 1500
    assert result.new_total == 11500
    assert result.status == InvoiceStatus.overdue.value

    await async_session.refresh(overdue_invoice)
    assert overdue_invoice.penalty_amount == 1500
    assert overdue_invoice.total_amount == 11500


@pytest.mark.asyncio
async def test_penalty_recomputed_from_scratch(async_session, overdue_invoice):
    first = await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)
    second = await recalculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)
    assert first == second

    # Grows with each late day, never compounds
    later = await calculate_penalty(async_session, overdue_invoice.id, today=date(2026, 2, 19))
    assert later.penalty == 1650
    assert later.new_total == 11650


@pytest.mark.asyncio
async def test_no_penalty_before_due_date(async_session, overdue_invoice):
    result = await calculate_penalty(async_session, overdue_invoice.id, today=date(2026, 2, 8))

    assert result.days_late == 0
    assert result.penalty == 0
    assert result.new_total == 10000
    assert result.status == InvoiceStatus.unpaid.value


@pytest.mark.asyncio
async def test_no_penalty_on_settled_invoice(async_session, overdue_invoice):
    overdue_invoice.amount_paid = 10000
    await async_session.commit()

    result = await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)

    assert result.penalty == 0
    assert result.status == InvoiceStatus.paid.value


@pytest.mark.asyncio
async def test_partial_payment_keeps_partial_status(async_session, overdue_invoice):
    overdue_invoice.amount_paid = 4000
    await async_session.commit()

    result = await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)

    assert result.penalty == 1500
    assert result.status == InvoiceStatus.partial.value


@pytest.mark.asyncio
async def test_unknown_invoice(async_session):
    with pytest.raises(NotFound):
        await calculate_penalty(async_session, 999, today=TEN_DAYS_LATE)


@pytest.mark.asyncio
async def test_eligible_invoices(async_session, overdue_invoice):
    assert await list_penalty_eligible_invoices(async_session, today=date(2026, 2, 8)) == []

    eligible = await list_penalty_eligible_invoices(async_session, today=TEN_DAYS_LATE)
    assert [i.id for i in eligible] == [overdue_invoice.id]

    overdue_invoice.status = InvoiceStatus.paid.value
    await async_session.commit()
    assert await list_penalty_eligible_invoices(async_session, today=TEN_DAYS_LATE) == []


def test_compute_penalty():
    assert compute_penalty(10, 150, 10000) == 1500
    assert compute_penalty(0, 150, 10000) == 0
    assert compute_penalty(10, 150, 0) == 0
    assert compute_penalty(3, None, 500) == 0


@pytest.mark.asyncio
async def test_penalty_survives_payment_of_base_amount(async_session, overdue_invoice):
    await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)
    await process_payment(
        async_session, overdue_invoice.id,
        PaymentInput(amount=10000, method="cash", created_by="cashier"),
        today=TEN_DAYS_LATE
    )

    # Daily run after the tenant paid only the rent
    result = await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)

    assert result.penalty == 1500
    assert result.new_total == 11500
    assert result.status == InvoiceStatus.partial.value

    later = await calculate_penalty(async_session, overdue_invoice.id, today=date(2026, 2, 20))
    assert later.penalty == 1800
    assert later.new_total == 11800
    assert later.status == InvoiceStatus.partial.value


@pytest.mark.asyncio
async def test_penalty_frozen_once_settled(async_session, overdue_invoice):
    await calculate_penalty(async_session, overdue_invoice.id, today=TEN_DAYS_LATE)
    await process_payment(
        async_session, overdue_invoice.id,
        PaymentInput(amount=11500, method="cash", created_by="cashier"),
        today=TEN_DAYS_LATE
    )

    result = await calculate_penalty(async_session, overdue_invoice.id, today=date(2026, 3, 1))

    assert result.penalty == 1500
    assert result.new_total == 11500
    assert result.status == InvoiceStatus.paid.value


@pytest.mark.asyncio
async def test_penalty_grows_every_late_day(async_session, overdue_invoice):
    penalties = []
    for day in range(9, 16):
        result = await calculate_penalty(async_session, overdue_invoice.id, today=date(2026, 2, day))
        penalties.append(result.penalty)

    assert penalties == [150 * n for n in range(1, 8)]
    assert all(a < b for a, b in zip(penalties, penalties[1:]))
