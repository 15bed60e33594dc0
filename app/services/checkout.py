"""Checkout session initiation and status reads for invoice payments."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import PAYABLE_INVOICE_STATUSES, Invoice
from app.schemas.payments import (
    CheckoutSessionCreate,
    CheckoutSessionRead,
    CheckoutSessionStatusRead,
    InvoiceSummary,
    PaymentSummary,
    SessionInvoiceRead,
)
from app.services.common import coerce_uuid, get_by_id, get_or_404, safe_uuid
from app.services.stripe_gateway import (
    CheckoutSession,
    GatewayError,
    GatewaySessionNotFound,
    InvalidSettlementReference,
    SettlementReference,
    amount_to_minor_units,
    get_gateway,
    is_checkout_session_id,
    map_session_status,
    minor_units_to_amount,
)

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 500


def _line_item_description(invoice: Invoice) -> str:
    if invoice.description:
        text = f"{invoice.subject} - {invoice.description}"
    else:
        text = invoice.subject
    return text[:DESCRIPTION_MAX_LENGTH]


def _default_success_url() -> str:
    return f"{settings.app_base_url.rstrip('/')}/payments/success?session_id={{CHECKOUT_SESSION_ID}}"


def _default_cancel_url(invoice: Invoice) -> str:
    return f"{settings.app_base_url.rstrip('/')}/payments/cancel?invoice_id={invoice.id}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class CheckoutSessions:
    @staticmethod
    def create(
        db: Session,
        payload: CheckoutSessionCreate,
        caller_id,
        gateway=None,
        now: datetime | None = None,
    ) -> CheckoutSessionRead:
        """Open a hosted checkout session for the full amount of an invoice.

        Only the debtor may pay. Nothing is written locally; the invoice is
        settled later from the gateway's webhook.
        """
        invoice = get_or_404(db, Invoice, payload.invoice_id, detail="Invoice not found")
        if invoice.debtor_id != coerce_uuid(caller_id):
            raise HTTPException(
                status_code=403,
                detail="You can only pay invoices where you are the debtor",
            )
        if invoice.payment is not None:
            raise HTTPException(status_code=400, detail="This invoice has already been paid")
        if invoice.status not in PAYABLE_INVOICE_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"Cannot pay an invoice with status: {invoice.status.value}. "
                    "Only pending or overdue invoices can be paid"
                ),
            )

        gateway = gateway or get_gateway()
        now = now or datetime.now(timezone.utc)
        reference = SettlementReference(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            payer_id=invoice.debtor_id,
            payer_email=invoice.debtor.email,
            receiver_id=invoice.issuer_id,
            receiver_email=invoice.issuer.email,
        )
        try:
            session = gateway.create_checkout_session(
                amount_minor=amount_to_minor_units(invoice.amount),
                currency=settings.stripe_currency,
                product_name=f"Invoice {invoice.invoice_number}",
                description=_line_item_description(invoice),
                customer_email=invoice.debtor.email,
                reference=reference,
                success_url=payload.success_url or _default_success_url(),
                cancel_url=payload.cancel_url or _default_cancel_url(invoice),
                expires_at=now + timedelta(seconds=settings.checkout_session_ttl_seconds),
            )
        except GatewayError as exc:
            raise HTTPException(
                status_code=502, detail="Payment gateway unavailable"
            ) from exc
        if not session.url:
            logger.error(
                "Checkout session %s for invoice %s has no redirect URL",
                session.id,
                invoice.invoice_number,
            )
            raise HTTPException(status_code=500, detail="Failed to create checkout session")

        logger.info(
            "Checkout session %s created for invoice %s",
            session.id,
            invoice.invoice_number,
        )
        return CheckoutSessionRead(
            session_id=session.id,
            checkout_url=session.url,
            invoice=InvoiceSummary.model_validate(invoice),
        )

    @staticmethod
    def get_status(
        db: Session, session_id: str, caller_id, gateway=None
    ) -> CheckoutSessionStatusRead:
        """Merge the gateway's view of a session with the local ledger."""
        if not is_checkout_session_id(session_id):
            raise HTTPException(status_code=400, detail="Invalid session ID format")

        gateway = gateway or get_gateway()
        try:
            session = gateway.retrieve_checkout_session(session_id)
        except GatewaySessionNotFound as exc:
            raise HTTPException(status_code=404, detail="Checkout session not found") from exc
        except GatewayError as exc:
            raise HTTPException(
                status_code=502, detail="Payment gateway unavailable"
            ) from exc

        if not session.has_metadata:
            raise HTTPException(status_code=400, detail="Session metadata is missing")
        try:
            reference = session.settlement_reference()
        except InvalidSettlementReference as exc:
            raise HTTPException(status_code=400, detail="Session metadata is missing") from exc

        caller = safe_uuid(caller_id)
        if caller not in (reference.payer_id, reference.receiver_id):
            raise HTTPException(
                status_code=403, detail="You do not have access to this payment session"
            )

        return CheckoutSessionStatusRead(
            session_id=session.id,
            status=map_session_status(session.status, session.payment_status),
            payment_status=session.payment_status,
            gateway_status=session.status,
            amount=minor_units_to_amount(_session_amount(session)),
            currency=(session.currency or settings.stripe_currency).upper(),
            invoice=_session_invoice(db, reference),
            payer_email=reference.payer_email,
            created_at=_iso(session.created),
            expires_at=_iso(session.expires_at),
        )


def _session_amount(session: CheckoutSession) -> int:
    if session.line_items_total is not None:
        return session.line_items_total
    return session.amount_total or 0


def _session_invoice(db: Session, reference: SettlementReference) -> SessionInvoiceRead:
    invoice = get_by_id(db, Invoice, reference.invoice_id)
    if invoice is None:
        return SessionInvoiceRead(
            id=reference.invoice_id, invoice_number=reference.invoice_number
        )
    payment = None
    if invoice.payment is not None:
        payment = PaymentSummary.model_validate(invoice.payment)
    return SessionInvoiceRead(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount=invoice.amount,
        status=invoice.status,
        payment=payment,
    )


checkout_sessions = CheckoutSessions()
