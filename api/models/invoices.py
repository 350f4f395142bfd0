"""Pydantic models for invoices, payments and checkout."""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import AwareDatetime, Field, field_validator

from api.models.common import CamelModel
from database.models import Invoice, InvoiceStatus
from scheduling.services.slot_generator import business_timezone


class InvoiceOut(CamelModel):
    id: UUID
    number: str
    client_id: UUID
    amount: Decimal
    status: InvoiceStatus
    description: str | None = None
    due_date: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime
    amount_paid: Decimal | None = None
    balance: Decimal | None = None

    @classmethod
    def from_invoice(cls, invoice: Invoice, summary: dict | None = None) -> "InvoiceOut":
        out = cls.model_validate(invoice)
        if summary is not None:
            out.amount_paid = summary["paid"]
            out.balance = summary["balance"]
        return out


class CreateInvoiceRequest(CamelModel):
    client_id: UUID
    amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    description: str | None = Field(default=None, max_length=2000)
    due_date: AwareDatetime | None = None
    status: Literal["draft", "sent"] = "draft"

    @field_validator("due_date", mode="before")
    @classmethod
    def end_of_business_day(cls, v):
        """A bare date is due by the end of that day in the business timezone."""
        if isinstance(v, str) and len(v) == 10:
            try:
                v = date.fromisoformat(v)
            except ValueError:
                return v
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time(23, 59, 59), tzinfo=business_timezone())
        return v


class RecordPaymentRequest(CamelModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    method: str | None = Field(default=None, max_length=50)


class CheckoutResponse(CamelModel):
    session_id: str
    url: str
