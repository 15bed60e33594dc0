"""Tests for the Stripe Checkout gateway client."""

import json
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from app.services.stripe_gateway import (
    CheckoutSession,
    GatewayError,
    GatewaySessionNotFound,
    InvalidSettlementReference,
    SettlementReference,
    StripeGateway,
    WebhookVerificationError,
    amount_to_minor_units,
    is_checkout_session_id,
    map_session_status,
    minor_units_to_amount,
)
from tests.mocks import WEBHOOK_SECRET, stripe_signature


def _reference(**overrides):
    values = {
        "invoice_id": uuid.uuid4(),
        "invoice_number": "INV-2026-001",
        "payer_id": uuid.uuid4(),
        "payer_email": "payer@example.com",
        "receiver_id": uuid.uuid4(),
        "receiver_email": "receiver@example.com",
    }
    values.update(overrides)
    return SettlementReference(**values)


def test_amount_to_minor_units_rounds_half_up():
    assert amount_to_minor_units(Decimal("99.99")) == 9999
    assert amount_to_minor_units("10.005") == 1001
    assert amount_to_minor_units(12) == 1200


def test_minor_units_to_amount():
    assert minor_units_to_amount(9999) == Decimal("99.99")
    assert minor_units_to_amount(None) == Decimal("0.00")


def test_is_checkout_session_id():
    assert is_checkout_session_id("cs_test_a1b2")
    assert not is_checkout_session_id("pi_123")
    assert not is_checkout_session_id("")
    assert not is_checkout_session_id(None)


@pytest.mark.parametrize(
    ("status", "payment_status", "expected"),
    [
        ("complete", "paid", "completed"),
        ("expired", "unpaid", "expired"),
        ("open", "unpaid", "pending"),
        ("complete", "unpaid", "pending"),
        ("complete", "no_payment_required", "completed"),
        ("open", None, "processing"),
    ],
)
def test_map_session_status(status, payment_status, expected):
    assert map_session_status(status, payment_status) == expected


def test_settlement_reference_metadata_values_are_strings():
    reference = _reference()

    metadata = reference.to_metadata()

    assert set(metadata) == {
        "invoiceId",
        "payerId",
        "receiverId",
        "invoiceNumber",
        "payerEmail",
        "receiverEmail",
    }
    assert all(isinstance(value, str) for value in metadata.values())
    assert SettlementReference.from_metadata(metadata) == reference


def test_settlement_reference_requires_invoice_id():
    metadata = _reference().to_metadata()
    metadata.pop("invoiceId")

    with pytest.raises(InvalidSettlementReference):
        SettlementReference.from_metadata(metadata)


def test_settlement_reference_rejects_malformed_ids():
    metadata = _reference().to_metadata()
    metadata["payerId"] = "42"

    with pytest.raises(InvalidSettlementReference):
        SettlementReference.from_metadata(metadata)


def test_settlement_reference_matches_invoice_parties():
    reference = _reference()
    invoice = SimpleNamespace(
        id=reference.invoice_id,
        debtor_id=reference.payer_id,
        issuer_id=reference.receiver_id,
    )
    swapped = SimpleNamespace(
        id=reference.invoice_id,
        debtor_id=reference.receiver_id,
        issuer_id=reference.payer_id,
    )

    assert reference.matches_invoice(invoice)
    assert not reference.matches_invoice(swapped)


def test_settlement_reference_needs_only_invoice_id():
    invoice_id = uuid.uuid4()

    reference = SettlementReference.from_metadata({"invoiceId": f" {invoice_id} ", "payerEmail": ""})

    assert reference == SettlementReference(invoice_id=invoice_id)
    assert reference.to_metadata() == {"invoiceId": str(invoice_id)}
    assert reference.matches_invoice(
        SimpleNamespace(id=invoice_id, debtor_id=uuid.uuid4(), issuer_id=uuid.uuid4())
    )


def test_settlement_reference_rejects_empty_invoice_id():
    metadata = _reference().to_metadata()
    metadata["invoiceId"] = "  "

    with pytest.raises(InvalidSettlementReference):
        SettlementReference.from_metadata(metadata)


def test_checkout_session_from_webhook_object():
    created = int(time.time())
    session = CheckoutSession.from_stripe(
        {
            "id": "cs_test_1",
            "status": "complete",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_1", "object": "payment_intent"},
            "amount_total": 9999,
            "currency": "eur",
            "metadata": {"invoiceNumber": "INV-1"},
            "created": created,
            "expires_at": created + 1800,
            "line_items": {"data": [{"amount_total": 5000}, {"amount_total": 4999}]},
        }
    )

    assert session.payment_intent == "pi_1"
    assert session.line_items_total == 9999
    assert session.metadata == {"invoiceNumber": "INV-1"}
    assert session.created == datetime.fromtimestamp(created, tz=timezone.utc)
    assert (session.expires_at - session.created).total_seconds() == 1800


def test_create_checkout_session_sends_single_line_item():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    reference = _reference()
    expires_at = datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc)
    created = {
        "id": "cs_test_created",
        "url": "https://checkout.stripe.com/c/pay/cs_test_created",
        "status": "open",
        "payment_status": "unpaid",
        "metadata": reference.to_metadata(),
    }

    with patch("stripe.checkout.Session.create", return_value=created) as create:
        session = gateway.create_checkout_session(
            amount_minor=9999,
            currency="eur",
            product_name="Invoice INV-2026-001",
            description="Consulting - October",
            customer_email="payer@example.com",
            reference=reference,
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            expires_at=expires_at,
        )

    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["api_key"] == "sk_test_x"
    assert kwargs["customer_email"] == "payer@example.com"
    assert kwargs["expires_at"] == int(expires_at.timestamp())
    assert kwargs["metadata"] == reference.to_metadata()
    assert len(kwargs["line_items"]) == 1
    assert kwargs["line_items"][0]["quantity"] == 1
    assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 9999
    assert session.id == "cs_test_created"
    assert session.url.endswith("cs_test_created")


def test_create_checkout_session_wraps_stripe_errors():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)

    with patch(
        "stripe.checkout.Session.create",
        side_effect=stripe.APIConnectionError("connection reset"),
    ):
        with pytest.raises(GatewayError):
            gateway.create_checkout_session(
                amount_minor=100,
                currency="eur",
                product_name="Invoice X",
                description=None,
                customer_email="payer@example.com",
                reference=_reference(),
                success_url="https://app.test/ok",
                cancel_url="https://app.test/cancel",
                expires_at=datetime.now(timezone.utc),
            )


def test_retrieve_missing_session_maps_to_not_found():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    error = stripe.InvalidRequestError(
        "No such checkout.session: 'cs_test_missing'", "id", code="resource_missing"
    )

    with patch("stripe.checkout.Session.retrieve", side_effect=error):
        with pytest.raises(GatewaySessionNotFound):
            gateway.retrieve_checkout_session("cs_test_missing")


def test_gateway_without_secret_key_raises():
    gateway = StripeGateway(secret_key="", webhook_secret=WEBHOOK_SECRET)

    with pytest.raises(GatewayError):
        gateway.retrieve_checkout_session("cs_test_1")


def test_verify_webhook_accepts_valid_signature():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps({"id": "evt_1", "type": "checkout.session.expired"}).encode()

    event = gateway.verify_webhook(body, stripe_signature(body))

    assert event["type"] == "checkout.session.expired"


def test_verify_webhook_rejects_modified_body():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps({"id": "evt_1", "type": "checkout.session.expired"}).encode()
    signature = stripe_signature(body)
    reserialized = json.dumps(json.loads(body), indent=2).encode()

    with pytest.raises(WebhookVerificationError):
        gateway.verify_webhook(reserialized, signature)


def test_verify_webhook_rejects_stale_timestamp():
    gateway = StripeGateway(
        secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET, webhook_tolerance=300
    )
    body = b'{"id": "evt_1", "type": "checkout.session.expired"}'
    signature = stripe_signature(body, timestamp=int(time.time()) - 3600)

    with pytest.raises(WebhookVerificationError):
        gateway.verify_webhook(body, signature)


def test_verify_webhook_rejects_wrong_secret():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    body = b'{"id": "evt_1", "type": "checkout.session.expired"}'

    with pytest.raises(WebhookVerificationError):
        gateway.verify_webhook(body, stripe_signature(body, secret="whsec_other"))


def test_verify_webhook_without_secret_fails_closed():
    gateway = StripeGateway(secret_key="sk_test_x", webhook_secret="")
    body = b'{"id": "evt_1"}'

    with pytest.raises(WebhookVerificationError):
        gateway.verify_webhook(body, stripe_signature(body))
