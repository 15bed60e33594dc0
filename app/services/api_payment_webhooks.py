"""Stripe Checkout webhook orchestration."""

from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.metrics import WEBHOOK_EVENTS
from app.services.settlement import settle_checkout_session
from app.services.stripe_gateway import (
    CheckoutSession,
    WebhookVerificationError,
    get_gateway,
)

logger = logging.getLogger(__name__)

EVENT_SESSION_COMPLETED = "checkout.session.completed"
EVENT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
EVENT_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
EVENT_SESSION_EXPIRED = "checkout.session.expired"


def _handle_session_completed(db: Session, session: CheckoutSession, payouts) -> None:
    # Asynchronous funding methods complete the session before the money moves.
    if session.payment_status == "paid":
        settle_checkout_session(db, session, payouts=payouts)
        return
    logger.info(
        "Checkout session %s completed with payment status %s; waiting for async confirmation",
        session.id,
        session.payment_status,
    )


def _handle_async_payment_succeeded(db: Session, session: CheckoutSession, payouts) -> None:
    settle_checkout_session(db, session, payouts=payouts)


def _handle_async_payment_failed(db: Session, session: CheckoutSession, payouts) -> None:
    logger.warning(
        "Async payment failed for checkout session %s (invoice %s)",
        session.id,
        session.metadata.get("invoiceNumber"),
    )


def _handle_session_expired(db: Session, session: CheckoutSession, payouts) -> None:
    logger.info(
        "Checkout session %s expired (invoice %s)",
        session.id,
        session.metadata.get("invoiceNumber"),
    )


EVENT_HANDLERS: dict[str, Callable[[Session, CheckoutSession, Any], None]] = {
    EVENT_SESSION_COMPLETED: _handle_session_completed,
    EVENT_ASYNC_PAYMENT_SUCCEEDED: _handle_async_payment_succeeded,
    EVENT_ASYNC_PAYMENT_FAILED: _handle_async_payment_failed,
    EVENT_SESSION_EXPIRED: _handle_session_expired,
}


def process_stripe_webhook(
    *,
    db: Session,
    body: bytes,
    signature: str | None,
    gateway=None,
    payouts=None,
) -> JSONResponse:
    if not signature:
        logger.warning("Stripe webhook without stripe-signature header")
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="rejected").inc()
        return JSONResponse({"error": "Missing stripe-signature header"}, status_code=400)

    gateway = gateway or get_gateway()
    try:
        event = gateway.verify_webhook(body, signature)
    except WebhookVerificationError as exc:
        WEBHOOK_EVENTS.labels(event_type="unknown", outcome="rejected").inc()
        logger.warning("Invalid Stripe webhook signature: %s", exc)
        return JSONResponse({"error": "Invalid signature"}, status_code=400)

    event_type = event.get("type", "unknown")
    logger.info("Stripe webhook: %s (%s)", event_type, event.get("id"))

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled Stripe event type: %s", event_type)
        WEBHOOK_EVENTS.labels(event_type="other", outcome="ignored").inc()
        return JSONResponse({"received": True}, status_code=200)

    data_object = (event.get("data") or {}).get("object") or {}
    try:
        handler(db, CheckoutSession.from_stripe(data_object), payouts)
    except Exception:
        db.rollback()
        logger.exception("Stripe webhook processing error for event %s", event.get("id"))
        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="error").inc()
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    WEBHOOK_EVENTS.labels(event_type=event_type, outcome="processed").inc()
    return JSONResponse({"received": True}, status_code=200)
