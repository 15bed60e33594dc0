"""Invoice settlement from a paid checkout session.

A settled invoice has exactly one Payment row and status ``paid``. Both are
written in one transaction; the unique constraint on ``payments.invoice_id``
makes a second settlement of the same invoice fail at the database even when
two deliveries race past the existence check. Payout and the issuer
notification run after commit and never undo the settlement.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import PAYOUTS, SETTLEMENTS
from app.models.billing import Invoice, InvoiceStatus, Payment, PaymentMethod
from app.services import notification as notification_service
from app.services.paypal_payouts import PayoutError, PayoutRequest, get_payout_client
from app.services.stripe_gateway import (
    CheckoutSession,
    InvalidSettlementReference,
    SettlementReference,
)

logger = logging.getLogger(__name__)


def receipt_url_for(session_id: str) -> str:
    return f"stripe://session/{session_id}"


def _find_payment(db: Session, invoice_id) -> Payment | None:
    return db.query(Payment).filter(Payment.invoice_id == invoice_id).first()


def settle_checkout_session(
    db: Session,
    session: CheckoutSession,
    *,
    payouts=None,
    now: datetime | None = None,
) -> Payment | None:
    """Record the payment for a paid session and forward the funds.

    Returns the new Payment, or None when nothing was written (unidentifiable
    session, unknown invoice, or already settled).
    """
    try:
        reference = session.settlement_reference()
    except InvalidSettlementReference as exc:
        logger.error("Checkout session %s cannot be settled: %s", session.id, exc)
        SETTLEMENTS.labels(outcome="unidentified").inc()
        return None

    existing = _find_payment(db, reference.invoice_id)
    if existing:
        logger.info(
            "Payment already exists for invoice %s (session %s)",
            reference.invoice_number or reference.invoice_id,
            session.id,
        )
        SETTLEMENTS.labels(outcome="duplicate").inc()
        return None

    invoice = db.get(Invoice, reference.invoice_id)
    if not invoice:
        logger.error(
            "Invoice %s not found for checkout session %s",
            reference.invoice_id,
            session.id,
        )
        SETTLEMENTS.labels(outcome="invoice_missing").inc()
        return None
    if invoice.status == InvoiceStatus.paid:
        logger.info("Invoice %s already paid", invoice.invoice_number)
        SETTLEMENTS.labels(outcome="duplicate").inc()
        return None
    if invoice.status == InvoiceStatus.canceled:
        logger.error(
            "Refusing to settle canceled invoice %s from session %s",
            invoice.invoice_number,
            session.id,
        )
        SETTLEMENTS.labels(outcome="rejected").inc()
        return None
    if not reference.matches_invoice(invoice):
        logger.error(
            "Checkout session %s metadata does not match parties of invoice %s",
            session.id,
            invoice.invoice_number,
        )
        SETTLEMENTS.labels(outcome="rejected").inc()
        return None
    reference = dataclasses.replace(
        reference,
        invoice_number=reference.invoice_number or invoice.invoice_number,
        payer_id=reference.payer_id or invoice.debtor_id,
        receiver_id=reference.receiver_id or invoice.issuer_id,
    )

    payment = Payment(
        invoice_id=invoice.id,
        paid_at=now or datetime.now(timezone.utc),
        method=PaymentMethod.paypal,
        external_reference=session.payment_intent or session.id,
        receipt_url=receipt_url_for(session.id),
        subject=f"Payment via Stripe Checkout - Session {session.id}",
    )
    db.add(payment)
    invoice.status = InvoiceStatus.paid
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Invoice %s settled concurrently; session %s ignored",
            reference.invoice_number,
            session.id,
        )
        SETTLEMENTS.labels(outcome="duplicate").inc()
        return None
    db.refresh(payment)
    SETTLEMENTS.labels(outcome="settled").inc()
    logger.info(
        "Payment %s recorded for invoice %s (session %s)",
        payment.id,
        invoice.invoice_number,
        session.id,
    )

    dispatch_payout(reference, session, payouts=payouts)

    try:
        notification_service.notify_payment_received(db, invoice)
    except Exception:
        db.rollback()
        logger.exception(
            "Payment-received notification failed for invoice %s (issuer %s)",
            invoice.invoice_number,
            invoice.issuer_id,
        )
    return payment


def dispatch_payout(reference: SettlementReference, session: CheckoutSession, payouts=None):
    """Forward the gross session amount to the receiver. Failures are logged only."""
    if not reference.receiver_email:
        logger.error(
            "Payout failed for invoice %s (invoice id %s, session %s, receiver %s): "
            "no receiver email in session metadata",
            reference.invoice_number,
            reference.invoice_id,
            session.id,
            reference.receiver_id,
        )
        PAYOUTS.labels(outcome="failed").inc()
        return None
    payouts = payouts or get_payout_client()
    request = PayoutRequest(
        receiver_email=reference.receiver_email,
        amount_minor=session.amount_total or 0,
        currency=session.currency or settings.stripe_currency,
        invoice_number=reference.invoice_number,
        payer_id=reference.payer_id,
        receiver_id=reference.receiver_id,
    )
    try:
        result = payouts.send_payout(request)
    except PayoutError as exc:
        logger.error(
            "Payout failed for invoice %s (invoice id %s, session %s, receiver %s, amount %s %s): %s",
            reference.invoice_number,
            reference.invoice_id,
            session.id,
            reference.receiver_email,
            request.amount_minor,
            request.currency,
            exc,
        )
        PAYOUTS.labels(outcome="failed").inc()
        return None
    except Exception:
        logger.exception(
            "Unexpected payout error for invoice %s (invoice id %s, session %s, receiver %s)",
            reference.invoice_number,
            reference.invoice_id,
            session.id,
            reference.receiver_email,
        )
        PAYOUTS.labels(outcome="failed").inc()
        return None
    PAYOUTS.labels(outcome="simulated" if result.simulated else "submitted").inc()
    logger.info(
        "Payout %s (%s) initiated for invoice %s",
        result.payout_batch_id,
        result.batch_status,
        reference.invoice_number,
    )
    return result
