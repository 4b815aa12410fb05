"""
Invoice lifecycle - one invoice per (premise, period).

Generation is idempotent: an existing invoice is returned unchanged, and the
unique index on (premise_id, period) settles concurrent attempts.
"""
import logging
from datetime import date
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import (
    Invoice, InvoiceStatus, WaterConnectionStatus
)
from waterbills.services.allocation_service import calculate_building_water_usage
from waterbills.services.audit_service import log_audit
from waterbills.services.errors import AlreadyExists, NotFound
from waterbills.services.registry_service import get_premise, list_premises
from waterbills.utils.periods import due_date_for_period, parse_period, round_to_precision


class InvoiceGenerationResult(NamedTuple):
    premise_id: int
    success: bool
    invoice: Optional[Invoice] = None
    error: Optional[str] = None


def derive_status(total_amount: float, amount_paid: float, days_late: int) -> str:
    """
    Invoice status, first match wins:
    paid >= total -> paid; 0 < paid < total -> partial;
    nothing paid and late -> overdue; otherwise unpaid.
    """
    total_amount = float(total_amount or 0)
    amount_paid = float(amount_paid or 0)

    if amount_paid >= total_amount:
        return InvoiceStatus.paid.value
    if amount_paid > 0:
        return InvoiceStatus.partial.value
    if days_late > 0:
        return InvoiceStatus.overdue.value
    return InvoiceStatus.unpaid.value


def gross_total(invoice: Invoice) -> float:
    return (
        float(invoice.rent_amount or 0)
        + float(invoice.water_amount or 0)
        + float(invoice.previous_balance or 0)
        + float(invoice.penalty_amount or 0)
    )


async def get_invoice(session: AsyncSession, invoice_id: int) -> Invoice:
    invoice = await session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


async def find_invoice(session: AsyncSession, premise_id: int, period: str) -> Optional[Invoice]:
    stmt = select(Invoice).where(
        Invoice.premise_id == premise_id,
        Invoice.period == period
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _insert_invoice(session: AsyncSession, invoice: Invoice) -> Invoice:
    session.add(invoice)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise AlreadyExists(f"Invoice for premise {invoice.premise_id} period {invoice.period} already exists")
    return invoice


async def generate_invoice(
    session: AsyncSession,
    premise_id: int,
    period: str,
    invoice_date: Optional[date] = None
) -> Invoice:
    """
    Generate the invoice of a premise for a billing period.

    Steps:
    1. Return the existing invoice for (premise, period) if any
    2. Allocate the building's water bill for the period
    3. water = premise submeter consumption * per unit rate (rounded)
    4. total = rent + water + previous balance, penalty starts at 0
    5. Due on the 8th of the following month, status unpaid, water connected

    Raises:
        NotFound: premise or building missing
        ConfigurationMissing: building settings or bulk meters missing
    """
    parse_period(period)
    premise = await get_premise(session, premise_id)

    existing = await find_invoice(session, premise.id, period)
    if existing:
        logging.info(f"Invoice for premise {premise_id} period {period} already exists (#{existing.id})")
        return existing

    usage = await calculate_building_water_usage(session, premise.building_id, period)

    water_amount = 0.0
    submeter_usage = usage.for_premise(premise.id)
    if submeter_usage:
        water_amount = submeter_usage.water_amount
    else:
        logging.warning(f"Premise {premise_id} has no submeter in building {premise.building_id}; water billed as 0")

    rent_amount = float(premise.monthly_rent or 0)
    previous_balance = float(premise.previous_balance or 0)
    total_amount = round_to_precision(rent_amount + water_amount + previous_balance, 4)

    invoice = Invoice(
        premise_id=premise.id,
        building_id=premise.building_id,
        period=period,
        invoice_date=invoice_date or date.today(),
        due_date=due_date_for_period(period),
        rent_amount=rent_amount,
        water_amount=water_amount,
        previous_balance=previous_balance,
        penalty_amount=0.0,
        total_amount=total_amount,
        amount_paid=0.0,
        status=InvoiceStatus.unpaid.value,
        water_connection_status=WaterConnectionStatus.connected.value,
        payments=[]
    )

    try:
        invoice = await _insert_invoice(session, invoice)
    except AlreadyExists:
        # Another worker created it between our check and insert
        winner = await find_invoice(session, premise_id, period)
        if winner is None:
            raise
        logging.info(f"Invoice for premise {premise_id} period {period} created concurrently (#{winner.id})")
        return winner

    await log_audit(session, "Invoice", invoice.id, "CREATE", {
        "premise_id": premise.id,
        "period": period,
        "total_amount": total_amount
    })

    logging.info(f"Invoice #{invoice.id} generated for premise {premise_id}, period {period}: total {total_amount}")
    return invoice


async def generate_building_invoices(
    session: AsyncSession,
    building_id: int,
    period: str
) -> List[InvoiceGenerationResult]:
    """
    Generate invoices for every premise of a building.
    A failing premise is reported in the results and never aborts the batch.
    Its pending changes are rolled back so the next premise starts clean.
    """
    premises = await list_premises(session, building_id)
    premise_ids = [p.id for p in premises]
    results = []

    for premise_id in premise_ids:
        try:
            invoice = await generate_invoice(session, premise_id, period)
            # Detached so a later rollback in this batch does not expire it
            session.expunge(invoice)
            results.append(InvoiceGenerationResult(premise_id=premise_id, success=True, invoice=invoice))
        except Exception as e:
            logging.error(f"Failed to generate invoice for premise {premise_id}, period {period}: {e}")
            await session.rollback()
            results.append(InvoiceGenerationResult(premise_id=premise_id, success=False, error=str(e)))

    return results


def summarize_generation(results: List[InvoiceGenerationResult]) -> Tuple[int, int]:
    """(successful, failed) counts"""
    successful = sum(1 for r in results if r.success)
    return successful, len(results) - successful


async def list_premise_invoices(session: AsyncSession, premise_id: int) -> List[Invoice]:
    stmt = (
        select(Invoice)
        .where(Invoice.premise_id == premise_id)
        .order_by(Invoice.period.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
