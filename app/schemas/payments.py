from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import InvoiceStatus, PaymentMethod


class CheckoutSessionCreate(BaseModel):
    invoice_id: UUID
    success_url: str | None = Field(default=None, max_length=2000)
    cancel_url: str | None = Field(default=None, max_length=2000)


class InvoiceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    amount: Decimal
    subject: str


class CheckoutSessionRead(BaseModel):
    session_id: str
    checkout_url: str
    invoice: InvoiceSummary


class PaymentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    paid_at: datetime
    method: PaymentMethod
    external_reference: str | None = None


class SessionInvoiceRead(BaseModel):
    id: UUID
    invoice_number: str | None = None
    amount: Decimal | None = None
    status: InvoiceStatus | None = None
    payment: PaymentSummary | None = None


class CheckoutSessionStatusRead(BaseModel):
    session_id: str
    status: str
    payment_status: str | None = None
    gateway_status: str | None = None
    amount: Decimal
    currency: str
    invoice: SessionInvoiceRead
    payer_email: str | None = None
    created_at: str | None = None
    expires_at: str | None = None
