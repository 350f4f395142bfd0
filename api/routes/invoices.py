"""
Invoice API Endpoints.

- GET  /api/invoices                 - list (own, or all for admins); refreshes overdue
- POST /api/invoices                 - create (admin)
- POST /api/invoices/{id}/send       - draft -> sent (admin)
- POST /api/invoices/{id}/payments   - record a direct payment (admin)
- POST /api/invoices/{id}/cancel     - cancel an unpaid invoice (admin)
- POST /api/invoices/{id}/checkout   - start a Stripe checkout for the balance
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.auth import CurrentAdmin, CurrentUser
from api.models.common import ERROR_RESPONSES
from api.models.invoices import (
    CheckoutResponse,
    CreateInvoiceRequest,
    InvoiceOut,
    RecordPaymentRequest,
)
from database.connection import get_async_session
from database.models import InvoiceStatus, User
from scheduling.errors import InvalidStateError
from scheduling.services import invoice_ledger, notification_service
from scheduling.transactions.reservation import get_reservation_coordinator
from shared.stripe_client import create_checkout_session, to_cents

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["invoices"], responses=ERROR_RESPONSES)


@router.get("", response_model=list[InvoiceOut])
async def list_invoices(
    current_user: CurrentUser,
    status_: InvoiceStatus | None = Query(default=None, alias="status"),
    client_id: UUID | None = Query(default=None, alias="clientId"),
):
    async with get_async_session() as session:
        invoices = await invoice_ledger.list_invoices(
            session, current_user, status=status_, client_id=client_id
        )
        items = [
            InvoiceOut.from_invoice(invoice, await invoice_ledger.invoice_summary(session, invoice))
            for invoice in invoices
        ]
        # Persist the overdue sweep
        await session.commit()
    return items


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def create_invoice(request: CreateInvoiceRequest, current_admin: CurrentAdmin):
    invoice = await get_reservation_coordinator().create_invoice(
        request.client_id,
        request.amount,
        description=request.description,
        due_date=request.due_date,
        status=InvoiceStatus(request.status),
    )
    return InvoiceOut.from_invoice(invoice)


@router.post("/{invoice_id}/send", response_model=InvoiceOut)
async def send_invoice(invoice_id: UUID, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        invoice = await invoice_ledger.send_invoice(session, invoice_id)
        client = await session.get(User, invoice.client_id)
        await session.commit()

    if client is not None:
        notification_service.dispatch(
            notification_service.INVOICE_SENT,
            client.email,
            {"invoiceId": str(invoice.id), "number": invoice.number, "amount": str(invoice.amount)},
        )
    return InvoiceOut.from_invoice(invoice)


@router.post("/{invoice_id}/payments", response_model=InvoiceOut)
async def record_payment(invoice_id: UUID, request: RecordPaymentRequest, current_admin: CurrentAdmin):
    """Record a cash/card-in-person payment; partial payments are allowed."""
    invoice = await get_reservation_coordinator().record_invoice_payment(
        invoice_id, request.amount, method=request.method
    )
    async with get_async_session() as session:
        summary = await invoice_ledger.invoice_summary(session, invoice)
    return InvoiceOut.from_invoice(invoice, summary)


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
async def cancel_invoice(invoice_id: UUID, current_admin: CurrentAdmin):
    invoice = await get_reservation_coordinator().cancel_invoice(invoice_id)
    return InvoiceOut.from_invoice(invoice)


@router.post("/{invoice_id}/checkout", response_model=CheckoutResponse)
async def checkout_invoice(invoice_id: UUID, current_user: CurrentUser):
    """Create a Stripe Checkout Session for the outstanding balance."""
    async with get_async_session() as session:
        invoice = await invoice_ledger.get_invoice_for_actor(session, invoice_id, current_user)
        if invoice.status not in invoice_ledger.PAYABLE_INVOICE_STATUSES:
            raise InvalidStateError(f"Cannot pay a {invoice.status.value} invoice")
        balance = (await invoice_ledger.invoice_summary(session, invoice))["balance"]
        if balance <= 0:
            raise InvalidStateError("Invoice has no outstanding balance")
        client = await session.get(User, invoice.client_id)

    # External call outside any open transaction
    checkout = await create_checkout_session(
        amount_cents=to_cents(balance),
        description=invoice.description or f"Invoice {invoice.number}",
        client_id=str(invoice.client_id),
        client_email=client.email,
        metadata={"type": "invoice_payment", "invoice_id": str(invoice.id)},
    )

    async with get_async_session() as session:
        locked = await invoice_ledger.get_invoice(session, invoice.id, for_update=True)
        locked.external_reference = checkout["session_id"]
        await session.commit()

    logger.info(
        f"Checkout started for {invoice.number}: {checkout['session_id']}",
        extra={"invoice_id": invoice.id},
    )
    return CheckoutResponse(session_id=checkout["session_id"], url=checkout["url"])
