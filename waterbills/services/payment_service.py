"""
Payment application - applies a payment to an invoice and emits a receipt.

Applying a payment is NOT idempotent: every call adds to amount_paid.
The transaction reference is the dedup key for gateway payments, so a
reference that was already applied raises PaymentAlreadyRecorded instead
of being counted twice.

Gateway flow (e.g. M-Pesa STK push):
1. create_pending_payment() when the push is initiated
2. the callback producer calls confirm_pending_payment(transaction_ref)
3. the pending payment is completed and applied like a cash payment

A completed payment posted with the reference of a pending one (e.g. the
bank statement import) completes that pending row rather than adding a
second payment. Non-null references are unique in the payments table.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterbills.database.models import (
    Building, Invoice, Payment, PaymentMethod, PaymentStatus, Premise, Receipt
)
from waterbills.services.audit_service import log_audit
from waterbills.services.errors import (
    AlreadyExists, InvalidAmount, InvalidPayment, NotFound, PaymentAlreadyRecorded
)
from waterbills.services.invoice_service import derive_status
from waterbills.utils.periods import days_late, round_to_precision


@dataclass
class PaymentInput:
    """Normalized payment event (cash desk, bank import or gateway callback)"""
    amount: float
    method: str
    created_by: str
    transaction_ref: Optional[str] = None
    payment_date: Optional[datetime] = None


@dataclass
class ReceiptView:
    """Receipt projection for rendering or storage by the caller"""
    receipt_number: str
    invoice_number: str
    invoice_id: int
    premise_id: int
    unit_no: str
    building_name: str
    period: str
    rent_amount: float
    water_amount: float
    previous_balance: float
    penalty_amount: float
    total_amount: float
    amount_paid: float
    balance: float
    status: str
    payment_amount: float
    payment_method: str
    payment_date: datetime
    payments: List[dict] = field(default_factory=list)


class PaymentOutcome(NamedTuple):
    payment: Payment
    invoice: Invoice
    receipt: ReceiptView


def _validate_amount(amount) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"Invalid payment amount: {amount!r}")
    if value <= 0:
        raise InvalidAmount(f"Payment amount must be positive, got {amount}")
    return value


def _validate_method(method) -> str:
    try:
        return PaymentMethod(method).value
    except ValueError:
        raise InvalidPayment(f"Unknown payment method: {method!r}")


async def find_payment_by_reference(
    session: AsyncSession,
    transaction_ref: str,
    status: Optional[str] = None
) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.transaction_ref == transaction_ref)
    if status:
        stmt = stmt.where(Payment.status == status)
    stmt = stmt.order_by(Payment.id)
    result = await session.execute(stmt)
    return result.scalars().first()


async def _lock_invoice(session: AsyncSession, invoice_id: int) -> Invoice:
    # Row lock: two payments on one invoice must not both read the old amount_paid
    stmt = select(Invoice).where(Invoice.id == invoice_id).with_for_update()
    result = await session.execute(stmt)
    invoice = result.scalar_one_or_none()
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


async def _lock_payment(session: AsyncSession, payment_id: int) -> Payment:
    # Re-read under lock: the status seen before the invoice lock may be stale
    stmt = (
        select(Payment)
        .where(Payment.id == payment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one()


def receipt_number_for(invoice: Invoice, payment: Payment) -> str:
    return f"RCP-{invoice.period.replace('-', '')}-{payment.id:06d}"


async def _build_receipt_view(
    session: AsyncSession,
    invoice: Invoice,
    payment: Payment,
    receipt: Receipt
) -> ReceiptView:
    premise = await session.get(Premise, invoice.premise_id)
    building = await session.get(Building, invoice.building_id)

    return ReceiptView(
        receipt_number=receipt.receipt_number,
        invoice_number=invoice.invoice_number,
        invoice_id=invoice.id,
        premise_id=invoice.premise_id,
        unit_no=premise.unit_no if premise else "",
        building_name=building.name if building else "",
        period=invoice.period,
        rent_amount=float(invoice.rent_amount),
        water_amount=float(invoice.water_amount),
        previous_balance=float(invoice.previous_balance),
        penalty_amount=float(invoice.penalty_amount),
        total_amount=float(invoice.total_amount),
        amount_paid=float(invoice.amount_paid),
        balance=invoice.unpaid_amount,
        status=invoice.status,
        payment_amount=float(payment.amount),
        payment_method=payment.method,
        payment_date=payment.payment_date,
        payments=list(invoice.payments or [])
    )


async def _apply_to_invoice(
    session: AsyncSession,
    invoice: Invoice,
    payment: Payment,
    today: Optional[date] = None
) -> PaymentOutcome:
    """
    Add a completed payment to the invoice, update status, persist receipt.
    The penalty is not recomputed here; only amount_paid changes.
    """
    invoice.amount_paid = round_to_precision(float(invoice.amount_paid or 0) + float(payment.amount), 4)
    invoice.status = derive_status(
        invoice.total_amount,
        invoice.amount_paid,
        days_late(invoice.due_date, today)
    )
    # Reassign so the JSON column is flagged dirty
    invoice.payments = list(invoice.payments or []) + [{
        "payment_id": payment.id,
        "amount": float(payment.amount),
        "date": payment.payment_date.isoformat()
    }]

    receipt = Receipt(
        payment_id=payment.id,
        invoice_id=invoice.id,
        premise_id=invoice.premise_id,
        receipt_number=receipt_number_for(invoice, payment),
        amount=float(payment.amount),
        payment_method=payment.method,
        payment_date=payment.payment_date
    )
    session.add(receipt)

    await session.commit()

    logging.info(
        f"Payment {payment.id} of {payment.amount} applied to invoice {invoice.id}: "
        f"paid {invoice.amount_paid} of {invoice.total_amount}, status {invoice.status}"
    )

    await log_audit(session, "Payment", payment.id, "APPLY", {
        "invoice_id": invoice.id,
        "amount": float(payment.amount),
        "method": payment.method,
        "transaction_ref": payment.transaction_ref,
        "status": invoice.status
    }, performed_by=payment.created_by)

    view = await _build_receipt_view(session, invoice, payment, receipt)
    return PaymentOutcome(payment=payment, invoice=invoice, receipt=view)


async def _complete_reserved_reference(
    session: AsyncSession,
    invoice: Invoice,
    existing: Payment,
    data: PaymentInput,
    amount: float,
    today: Optional[date] = None
) -> PaymentOutcome:
    """A completed payment arrives for a reference that already has a row."""
    payment = await _lock_payment(session, existing.id)

    if payment.status == PaymentStatus.completed.value:
        raise PaymentAlreadyRecorded(data.transaction_ref, payment.id)
    if payment.status == PaymentStatus.failed.value:
        raise AlreadyExists(f"Payment with reference {data.transaction_ref} already failed")
    if payment.invoice_id != invoice.id:
        raise InvalidPayment(
            f"Reference {data.transaction_ref} belongs to invoice {payment.invoice_id}, not {invoice.id}"
        )
    if float(payment.amount) != amount:
        raise InvalidPayment(
            f"Reference {data.transaction_ref} was initiated for {payment.amount}, got {amount}"
        )

    # The pending row becomes the payment, never a second one beside it
    payment.status = PaymentStatus.completed.value
    if data.payment_date:
        payment.payment_date = data.payment_date

    return await _apply_to_invoice(session, invoice, payment, today)


async def process_payment(
    session: AsyncSession,
    invoice_id: int,
    data: PaymentInput,
    today: Optional[date] = None
) -> PaymentOutcome:
    """
    Record a completed payment against an invoice.

    A transaction_ref that belongs to a pending gateway payment completes
    that payment instead of creating a new one.

    Raises:
        InvalidAmount: amount <= 0
        InvalidPayment: unknown method, or reference pending for another invoice or amount
        NotFound: invoice does not exist
        PaymentAlreadyRecorded: transaction_ref already applied
        AlreadyExists: transaction_ref belongs to a failed payment
    """
    amount = _validate_amount(data.amount)
    method = _validate_method(data.method)

    invoice = await _lock_invoice(session, invoice_id)

    if data.transaction_ref:
        existing = await find_payment_by_reference(session, data.transaction_ref)
        if existing:
            return await _complete_reserved_reference(session, invoice, existing, data, amount, today)

    payment = Payment(
        invoice_id=invoice.id,
        premise_id=invoice.premise_id,
        amount=amount,
        method=method,
        transaction_ref=data.transaction_ref,
        payment_date=data.payment_date or datetime.now(),
        created_by=data.created_by,
        status=PaymentStatus.completed.value
    )
    session.add(payment)
    try:
        await session.flush()  # Get payment.id
    except IntegrityError:
        await session.rollback()
        raise PaymentAlreadyRecorded(data.transaction_ref)

    return await _apply_to_invoice(session, invoice, payment, today)


# External name used by the API layer
apply_payment = process_payment


async def create_pending_payment(
    session: AsyncSession,
    invoice_id: int,
    data: PaymentInput
) -> Payment:
    """
    Record an asynchronous payment that the gateway has not confirmed yet.
    The invoice is untouched until confirm_pending_payment().

    Raises:
        InvalidPayment: unknown method or no transaction_ref
        PaymentAlreadyRecorded: reference already completed
        AlreadyExists: reference already failed
    """
    amount = _validate_amount(data.amount)
    method = _validate_method(data.method)
    if not data.transaction_ref:
        raise InvalidPayment("Pending payments need a transaction reference")

    invoice = await session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")

    existing = await find_payment_by_reference(session, data.transaction_ref)
    if existing:
        if existing.status == PaymentStatus.completed.value:
            raise PaymentAlreadyRecorded(data.transaction_ref, existing.id)
        if existing.status == PaymentStatus.failed.value:
            raise AlreadyExists(f"Payment with reference {data.transaction_ref} already failed")
        return existing

    payment = Payment(
        invoice_id=invoice.id,
        premise_id=invoice.premise_id,
        amount=amount,
        method=method,
        transaction_ref=data.transaction_ref,
        payment_date=data.payment_date or datetime.now(),
        created_by=data.created_by,
        status=PaymentStatus.pending.value
    )
    session.add(payment)
    try:
        await session.commit()
    except IntegrityError:
        # Same reference inserted concurrently
        await session.rollback()
        raise PaymentAlreadyRecorded(data.transaction_ref)
    return payment


async def confirm_pending_payment(
    session: AsyncSession,
    transaction_ref: str,
    paid_at: Optional[datetime] = None,
    today: Optional[date] = None
) -> PaymentOutcome:
    """
    Complete a pending gateway payment and apply it to its invoice.

    Raises:
        NotFound: no pending payment with this reference
        PaymentAlreadyRecorded: reference already completed
    """
    pending = await find_payment_by_reference(session, transaction_ref, PaymentStatus.pending.value)
    if not pending:
        applied = await find_payment_by_reference(session, transaction_ref, PaymentStatus.completed.value)
        if applied:
            raise PaymentAlreadyRecorded(transaction_ref, applied.id)
        raise NotFound(f"No pending payment with reference {transaction_ref}")

    invoice = await _lock_invoice(session, pending.invoice_id)
    payment = await _lock_payment(session, pending.id)

    if payment.status == PaymentStatus.completed.value:
        raise PaymentAlreadyRecorded(transaction_ref, payment.id)
    if payment.status != PaymentStatus.pending.value:
        raise NotFound(f"No pending payment with reference {transaction_ref}")

    payment.status = PaymentStatus.completed.value
    if paid_at:
        payment.payment_date = paid_at

    return await _apply_to_invoice(session, invoice, payment, today)


async def fail_pending_payment(session: AsyncSession, transaction_ref: str) -> Payment:
    """Gateway reported a failure: pending -> failed, invoice untouched."""
    pending = await find_payment_by_reference(session, transaction_ref, PaymentStatus.pending.value)
    if not pending:
        raise NotFound(f"No pending payment with reference {transaction_ref}")

    pending.status = PaymentStatus.failed.value
    await session.commit()
    logging.info(f"Pending payment {pending.id} ({transaction_ref}) marked as failed")
    return pending


async def list_invoice_payments(session: AsyncSession, invoice_id: int) -> List[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.invoice_id == invoice_id)
        .order_by(Payment.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
