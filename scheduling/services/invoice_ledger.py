"""
Invoice & Payment Ledger.

Invoice lifecycle:

    draft -> sent -> paid
    draft | sent | overdue -> cancelled
    sent -> overdue (past due date, request-triggered sweep)
    draft | sent | overdue -> paid (cumulative payments reach the amount)

paid and cancelled are terminal. The amount is editable only while draft.
Payments are append-only; ``paid_at`` is set exactly once, by the payment that
brings the cumulative total to (or past) the invoice amount.

Functions take the caller's session and never commit.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import is_postgres
from database.models import Invoice, InvoiceSequence, InvoiceStatus, Payment
from database.types import utcnow
from scheduling.errors import InvalidStateError, NotFoundError, ValidationError
from scheduling.services.booking_ledger import Actor, ensure_can_access
from scheduling.services.slot_generator import business_timezone
from shared.config import get_settings

logger = logging.getLogger(__name__)

TERMINAL_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})
PAYABLE_INVOICE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE})

CENT = Decimal("0.01")


def _normalize_amount(amount: Decimal | int | str, *, allow_zero: bool) -> Decimal:
    try:
        value = Decimal(str(amount)).quantize(CENT)
    except ArithmeticError as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError("Amount must be positive", details={"amount": str(amount)})
    return value


async def _start_sequence(session: AsyncSession, year: int) -> None:
    """Create the counter row for ``year``, continuing after any numbers already issued."""
    prefix = f"INV-{year}-"
    issued = await session.execute(select(Invoice.number).where(Invoice.number.like(f"{prefix}%")))
    last = max((int(number.removeprefix(prefix)) for number in issued.scalars()), default=0)

    insert = pg_insert if is_postgres(session) else sqlite_insert
    await session.execute(
        insert(InvoiceSequence)
        .values(year=year, last_number=last)
        .on_conflict_do_nothing(index_elements=[InvoiceSequence.year])
    )


async def _next_invoice_number(session: AsyncSession, now: datetime) -> str:
    """
    INV-<year>-<NNN>, the year taken in the business timezone.

    NNN comes from the invoice_sequences row for that year. On PostgreSQL the
    UPDATE holds the row lock until commit, so a concurrent creator waits and
    then draws the next number.
    """
    year = now.astimezone(business_timezone()).year
    increment = (
        update(InvoiceSequence)
        .where(InvoiceSequence.year == year)
        .values(last_number=InvoiceSequence.last_number + 1)
        .returning(InvoiceSequence.last_number)
    )

    number = (await session.execute(increment)).scalar_one_or_none()
    if number is None:
        await _start_sequence(session, year)
        number = (await session.execute(increment)).scalar_one()
    return f"INV-{year}-{number:03d}"


async def get_invoice(session: AsyncSession, invoice_id: UUID, *, for_update: bool = False) -> Invoice:
    stmt = select(Invoice).where(Invoice.id == invoice_id)
    if for_update:
        stmt = stmt.with_for_update()
    invoice = (await session.execute(stmt)).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": str(invoice_id)})
    return invoice


async def get_invoice_for_actor(session: AsyncSession, invoice_id: UUID, actor: Actor) -> Invoice:
    invoice = await get_invoice(session, invoice_id)
    ensure_can_access(invoice, actor)
    return invoice


async def create_invoice(
    session: AsyncSession,
    client_id: UUID,
    amount: Decimal,
    *,
    description: str | None = None,
    due_date: datetime | None = None,
    status: InvoiceStatus = InvoiceStatus.DRAFT,
    now: datetime | None = None,
) -> Invoice:
    """
    Create an invoice in ``draft`` (default) or ``sent``.

    A missing due date defaults to now + INVOICE_DUE_DAYS.

    Raises:
        ValidationError: Negative amount or an initial status other than draft/sent
    """
    if status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
        raise ValidationError(f"Invoices cannot be created as '{status.value}'")

    now = now or utcnow()
    invoice = Invoice(
        number=await _next_invoice_number(session, now),
        client_id=client_id,
        amount=_normalize_amount(amount, allow_zero=True),
        status=status,
        description=description,
        due_date=due_date or now + timedelta(days=get_settings().INVOICE_DUE_DAYS),
        created_at=now,
        updated_at=now,
    )
    session.add(invoice)
    await session.flush()

    logger.info(
        f"Invoice {invoice.number} created ({status.value}) for {invoice.amount}",
        extra={"invoice_id": invoice.id, "client_id": client_id},
    )
    return invoice


async def total_paid(session: AsyncSession, invoice_id: UUID) -> Decimal:
    # Summed in Python so SQLite and PostgreSQL agree on Decimal precision
    result = await session.execute(select(Payment.amount).where(Payment.invoice_id == invoice_id))
    return sum((amount for amount in result.scalars().all()), Decimal("0.00"))


def _mark_paid(invoice: Invoice, now: datetime) -> None:
    invoice.status = InvoiceStatus.PAID
    if invoice.paid_at is None:
        invoice.paid_at = now


async def record_payment(
    session: AsyncSession,
    invoice_id: UUID,
    amount: Decimal,
    *,
    method: str | None = None,
    external_payment_id: str | None = None,
    now: datetime | None = None,
) -> tuple[Invoice, Payment]:
    """
    Append a payment and settle the invoice once fully covered.

    Partial payments leave the status unchanged; an overpayment settles the
    invoice like an exact one.

    Raises:
        NotFoundError: Unknown invoice
        ValidationError: Non-positive amount
        InvalidStateError: Invoice already paid or cancelled
    """
    value = _normalize_amount(amount, allow_zero=False)
    invoice = await get_invoice(session, invoice_id, for_update=True)

    if invoice.status in TERMINAL_INVOICE_STATUSES:
        raise InvalidStateError(
            f"Cannot record a payment on a {invoice.status.value} invoice",
            details={"invoice_id": str(invoice.id), "status": invoice.status.value},
        )

    now = now or utcnow()
    payment = Payment(
        invoice_id=invoice.id,
        amount=value,
        method=method,
        external_payment_id=external_payment_id,
        paid_at=now,
    )
    session.add(payment)
    await session.flush()

    paid = await total_paid(session, invoice.id)
    if paid >= invoice.amount:
        _mark_paid(invoice, now)
        if paid > invoice.amount:
            logger.warning(
                f"Invoice {invoice.number} overpaid: {paid} received for {invoice.amount}",
                extra={"invoice_id": invoice.id},
            )
    await session.flush()

    logger.info(
        f"Payment of {value} recorded on {invoice.number} "
        f"(paid {paid}/{invoice.amount}, status={invoice.status.value})",
        extra={"invoice_id": invoice.id},
    )
    return invoice, payment


async def cancel_invoice(session: AsyncSession, invoice_id: UUID) -> Invoice:
    """
    Cancel an unpaid invoice.

    Raises:
        InvalidStateError: Invoice is paid or already cancelled
    """
    invoice = await get_invoice(session, invoice_id, for_update=True)
    if invoice.status not in PAYABLE_INVOICE_STATUSES:
        raise InvalidStateError(
            f"Cannot cancel a {invoice.status.value} invoice",
            details={"invoice_id": str(invoice.id), "status": invoice.status.value},
        )

    invoice.status = InvoiceStatus.CANCELLED
    await session.flush()
    logger.info(f"Invoice {invoice.number} cancelled", extra={"invoice_id": invoice.id})
    return invoice


async def send_invoice(session: AsyncSession, invoice_id: UUID) -> Invoice:
    """draft -> sent. Sending an already sent invoice is a no-op."""
    invoice = await get_invoice(session, invoice_id, for_update=True)
    if invoice.status == InvoiceStatus.SENT:
        return invoice
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvalidStateError(
            f"Cannot send a {invoice.status.value} invoice",
            details={"invoice_id": str(invoice.id), "status": invoice.status.value},
        )

    invoice.status = InvoiceStatus.SENT
    await session.flush()
    logger.info(f"Invoice {invoice.number} sent", extra={"invoice_id": invoice.id})
    return invoice


async def update_amount(session: AsyncSession, invoice_id: UUID, amount: Decimal) -> Invoice:
    invoice = await get_invoice(session, invoice_id, for_update=True)
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvalidStateError(
            "Invoice amount can only change while the invoice is a draft",
            details={"invoice_id": str(invoice.id), "status": invoice.status.value},
        )
    invoice.amount = _normalize_amount(amount, allow_zero=True)
    await session.flush()
    return invoice


async def refresh_overdue(session: AsyncSession, now: datetime | None = None) -> int:
    """
    Mark sent invoices whose due date has passed as overdue.

    Runs on demand (invoice listing); there is no background scheduler.

    Returns:
        Number of invoices moved to overdue
    """
    now = now or utcnow()
    result = await session.execute(
        update(Invoice)
        .where(
            Invoice.status == InvoiceStatus.SENT,
            Invoice.due_date.is_not(None),
            Invoice.due_date < now,
        )
        .values(status=InvoiceStatus.OVERDUE, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info(f"Marked {result.rowcount} invoice(s) overdue")
    return result.rowcount or 0


async def payment_succeeded(
    session: AsyncSession,
    invoice_id: UUID,
    *,
    external_payment_id: str | None = None,
    external_reference: str | None = None,
    now: datetime | None = None,
) -> tuple[Invoice, bool]:
    """
    Apply an external payment confirmation (processor callback).

    Records the outstanding balance as one payment and marks the invoice paid.
    Replays of the same callback are no-ops.

    Returns:
        (invoice, changed) - changed is False when the confirmation was a replay

    Raises:
        InvalidStateError: Invoice was cancelled before the payment arrived
    """
    invoice = await get_invoice(session, invoice_id, for_update=True)

    if external_payment_id is not None:
        seen = await session.scalar(
            select(Payment.id).where(
                Payment.invoice_id == invoice.id,
                Payment.external_payment_id == external_payment_id,
            )
        )
        if seen is not None:
            logger.info(
                f"Duplicate payment confirmation {external_payment_id} ignored",
                extra={"invoice_id": invoice.id},
            )
            return invoice, False

    if invoice.status == InvoiceStatus.PAID:
        logger.info(f"Invoice {invoice.number} already paid", extra={"invoice_id": invoice.id})
        return invoice, False
    if invoice.status == InvoiceStatus.CANCELLED:
        raise InvalidStateError(
            "Payment received for a cancelled invoice",
            details={"invoice_id": str(invoice.id), "external_payment_id": external_payment_id},
        )

    now = now or utcnow()
    outstanding = invoice.amount - await total_paid(session, invoice.id)
    if outstanding > 0:
        session.add(
            Payment(
                invoice_id=invoice.id,
                amount=outstanding,
                method="stripe",
                external_payment_id=external_payment_id,
                paid_at=now,
            )
        )
    if external_reference is not None:
        invoice.external_reference = external_reference
    _mark_paid(invoice, now)
    await session.flush()

    logger.info(
        f"Invoice {invoice.number} paid via processor ({external_payment_id})",
        extra={"invoice_id": invoice.id},
    )
    return invoice, True


def payment_failed(invoice_id: UUID | None, reason: str | None = None) -> None:
    """A failed processor payment changes nothing; it is only recorded in the log."""
    logger.warning(
        f"Payment failed: {reason or 'no reason given'}",
        extra={"invoice_id": invoice_id} if invoice_id else None,
    )


async def list_invoices(
    session: AsyncSession,
    actor: Actor,
    *,
    status: InvoiceStatus | None = None,
    client_id: UUID | None = None,
    now: datetime | None = None,
) -> list[Invoice]:
    """List invoices newest first; clients see only their own."""
    await refresh_overdue(session, now)

    stmt = select(Invoice).order_by(Invoice.created_at.desc())
    if not actor.is_admin:
        stmt = stmt.where(Invoice.client_id == actor.id)
    elif client_id is not None:
        stmt = stmt.where(Invoice.client_id == client_id)
    if status is not None:
        stmt = stmt.where(Invoice.status == status)

    result = await session.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def invoice_summary(session: AsyncSession, invoice: Invoice) -> dict[str, Any]:
    paid = await total_paid(session, invoice.id)
    return {
        "paid": paid,
        "balance": max(invoice.amount - paid, Decimal("0.00")),
    }
