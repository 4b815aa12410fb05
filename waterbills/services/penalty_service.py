import logging
from datetime import date
from typing import List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import Invoice, OPEN_INVOICE_STATUSES
from waterbills.services.errors import ConfigurationMissing, NotFound
from waterbills.services.invoice_service import derive_status
from waterbills.services.registry_service import get_settings
from waterbills.utils.periods import days_late as count_days_late, round_to_precision


class PenaltyResult(NamedTuple):
    invoice_id: int
    days_late: int
    penalty: float
    new_total: float
    status: str


def compute_penalty(days_late: int, daily_rate: float, unpaid_amount: float) -> float:
    """Linear daily accrual; nothing accrues on a settled balance."""
    if unpaid_amount <= 0:
        return 0.0
    return round_to_precision(days_late * float(daily_rate or 0), 4)


async def calculate_penalty(
    session: AsyncSession,
    invoice_id: int,
    today: Optional[date] = None
) -> PenaltyResult:
    """
    Recompute the late penalty of an invoice from scratch.

    The penalty is never added incrementally, so running this several times
    on the same day gives the same result. total_amount is kept gross
    (rent + water + previous balance + penalty); amount_paid stays separate.
    Accrual continues while the stored total (including penalty already
    accrued) is not fully paid. A settled invoice keeps its penalty as is.

    Raises:
        NotFound: invoice does not exist
        ConfigurationMissing: building settings missing
    """
    stmt = select(Invoice).where(Invoice.id == invoice_id).with_for_update()
    result = await session.execute(stmt)
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")

    settings = await get_settings(session, invoice.building_id)
    if not settings:
        raise ConfigurationMissing(f"Building {invoice.building_id} has no settings")

    late = count_days_late(invoice.due_date, today)

    base_amount = (
        float(invoice.rent_amount or 0)
        + float(invoice.water_amount or 0)
        + float(invoice.previous_balance or 0)
    )
    amount_paid = float(invoice.amount_paid or 0)
    unpaid_amount = float(invoice.total_amount or 0) - amount_paid
    if unpaid_amount > 0:
        penalty = compute_penalty(late, settings.penalty_daily, unpaid_amount)
    else:
        # Settled: freeze the penalty that was paid
        penalty = float(invoice.penalty_amount or 0)

    invoice.penalty_amount = penalty
    invoice.total_amount = round_to_precision(base_amount + penalty, 4)
    invoice.status = derive_status(invoice.total_amount, amount_paid, late)

    await session.commit()

    logging.info(
        f"Penalty for invoice {invoice_id}: {late} days late, penalty {penalty}, "
        f"total {invoice.total_amount}, status {invoice.status}"
    )

    return PenaltyResult(
        invoice_id=invoice.id,
        days_late=late,
        penalty=penalty,
        new_total=float(invoice.total_amount),
        status=invoice.status
    )


# External name used by callers that trigger a manual recalculation
recalculate_penalty = calculate_penalty


async def list_penalty_eligible_invoices(
    session: AsyncSession,
    today: Optional[date] = None
) -> List[Invoice]:
    """Invoices still carrying a balance whose due date has passed."""
    if today is None:
        today = date.today()

    stmt = (
        select(Invoice)
        .where(
            Invoice.status.in_(OPEN_INVOICE_STATUSES),
            Invoice.due_date < today
        )
        .order_by(Invoice.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
