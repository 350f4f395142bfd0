"""Pydantic models for Stripe webhook payloads."""

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator


class CheckoutMetadata(BaseModel):
    """Metadata attached to our Checkout Sessions by shared.stripe_client."""

    type: Literal["invoice_payment", "package_purchase"]
    client_id: UUID
    invoice_id: UUID | None = None
    package_id: UUID | None = None

    @field_validator("client_id", "invoice_id", "package_id", mode="before")
    @classmethod
    def validate_uuid(cls, v: Any) -> UUID | None:
        """Validate ids are UUIDs (Stripe echoes metadata back as strings)."""
        if v is None or isinstance(v, UUID):
            return v
        if isinstance(v, str):
            try:
                return UUID(v)
            except ValueError as exc:
                raise ValueError(f"Invalid UUID format: {v}") from exc
        raise ValueError(f"id must be UUID or string, got {type(v)}")

    @model_validator(mode="after")
    def require_target(self) -> "CheckoutMetadata":
        if self.type == "invoice_payment" and self.invoice_id is None:
            raise ValueError("invoice_payment metadata requires invoice_id")
        if self.type == "package_purchase" and self.package_id is None:
            raise ValueError("package_purchase metadata requires package_id")
        return self
