"""Stripe Checkout gateway client."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from app.config import settings

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PREFIX = "cs_"

# Metadata keys attached to every checkout session; all values are strings.
METADATA_INVOICE_ID = "invoiceId"
METADATA_INVOICE_NUMBER = "invoiceNumber"
METADATA_PAYER_ID = "payerId"
METADATA_PAYER_EMAIL = "payerEmail"
METADATA_RECEIVER_ID = "receiverId"
METADATA_RECEIVER_EMAIL = "receiverEmail"


class GatewayError(Exception):
    """Gateway unreachable or returned an API error."""


class GatewaySessionNotFound(GatewayError):
    """The gateway has no checkout session with the requested id."""


class WebhookVerificationError(Exception):
    """Webhook signature missing, stale or not matching the shared secret."""


class InvalidSettlementReference(ValueError):
    """Checkout session metadata does not carry a usable invoice linkage."""


def amount_to_minor_units(amount: Decimal | float | int | str) -> int:
    """Convert a major-unit amount to integer minor units (EUR × 100), rounding half up."""
    return int(
        (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


def minor_units_to_amount(minor: int | None) -> Decimal:
    """Convert minor units back to a two-decimal amount."""
    return (Decimal(minor or 0) / 100).quantize(Decimal("0.01"))


def is_checkout_session_id(value: str | None) -> bool:
    return bool(value) and str(value).startswith(CHECKOUT_SESSION_PREFIX)


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_mapping(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return {str(key): value for key, value in obj.items()}
    keys = getattr(obj, "keys", None)
    if callable(keys):
        return {str(key): obj[key] for key in keys()}
    return {}


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _optional_uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


@dataclass(frozen=True)
class SettlementReference:
    """Invoice linkage carried by a checkout session through the gateway.

    Only ``invoice_id`` is required to settle; the remaining fields are
    cross-checked against the invoice or used for the payout when present.
    """

    invoice_id: uuid.UUID
    invoice_number: str | None = None
    payer_id: uuid.UUID | None = None
    payer_email: str | None = None
    receiver_id: uuid.UUID | None = None
    receiver_email: str | None = None

    def to_metadata(self) -> dict[str, str]:
        values = {
            METADATA_INVOICE_ID: self.invoice_id,
            METADATA_PAYER_ID: self.payer_id,
            METADATA_RECEIVER_ID: self.receiver_id,
            METADATA_INVOICE_NUMBER: self.invoice_number,
            METADATA_PAYER_EMAIL: self.payer_email,
            METADATA_RECEIVER_EMAIL: self.receiver_email,
        }
        return {key: str(value) for key, value in values.items() if value is not None}

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any] | None) -> "SettlementReference":
        """Parse session metadata.

        Raises:
            InvalidSettlementReference: When ``invoiceId`` is missing or empty,
                or when any id that is present is not a UUID.
        """
        metadata = metadata or {}
        values = {
            key: str(raw).strip() or None
            for key, raw in metadata.items()
            if raw is not None
        }
        if not values.get(METADATA_INVOICE_ID):
            raise InvalidSettlementReference(f"Missing metadata key: {METADATA_INVOICE_ID}")
        try:
            invoice_id = uuid.UUID(values[METADATA_INVOICE_ID])
            payer_id = _optional_uuid(values.get(METADATA_PAYER_ID))
            receiver_id = _optional_uuid(values.get(METADATA_RECEIVER_ID))
        except ValueError as exc:
            raise InvalidSettlementReference("Malformed id in metadata") from exc
        return cls(
            invoice_id=invoice_id,
            invoice_number=values.get(METADATA_INVOICE_NUMBER),
            payer_id=payer_id,
            payer_email=values.get(METADATA_PAYER_EMAIL),
            receiver_id=receiver_id,
            receiver_email=values.get(METADATA_RECEIVER_EMAIL),
        )

    def matches_invoice(self, invoice) -> bool:
        """Ids carried in the metadata must agree with the invoice row."""
        if invoice.id != self.invoice_id:
            return False
        if self.payer_id is not None and invoice.debtor_id != self.payer_id:
            return False
        if self.receiver_id is not None and invoice.issuer_id != self.receiver_id:
            return False
        return True


@dataclass(frozen=True)
class CheckoutSession:
    """Gateway-neutral view of a Stripe checkout session."""

    id: str
    status: str | None = None
    payment_status: str | None = None
    payment_intent: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    url: str | None = None
    created: datetime | None = None
    expires_at: datetime | None = None
    line_items_total: int | None = None

    @classmethod
    def from_stripe(cls, obj: Any) -> "CheckoutSession":
        """Build from an SDK session object or a webhook ``data.object`` dict."""
        payment_intent = _field(obj, "payment_intent")
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = _field(payment_intent, "id")
        line_items = _field(obj, "line_items")
        line_items_total = None
        if line_items is not None:
            line_items_total = sum(
                int(_field(item, "amount_total", 0) or 0)
                for item in (_field(line_items, "data") or [])
            )
        amount_total = _field(obj, "amount_total")
        return cls(
            id=str(_field(obj, "id")),
            status=_field(obj, "status"),
            payment_status=_field(obj, "payment_status"),
            payment_intent=payment_intent,
            amount_total=int(amount_total) if amount_total is not None else None,
            currency=_field(obj, "currency"),
            metadata={
                key: str(value)
                for key, value in _as_mapping(_field(obj, "metadata")).items()
                if value is not None
            },
            url=_field(obj, "url"),
            created=_timestamp(_field(obj, "created")),
            expires_at=_timestamp(_field(obj, "expires_at")),
            line_items_total=line_items_total,
        )

    @property
    def has_metadata(self) -> bool:
        return bool(self.metadata)

    def settlement_reference(self) -> SettlementReference:
        return SettlementReference.from_metadata(self.metadata)


def map_session_status(status: str | None, payment_status: str | None) -> str:
    """Collapse gateway status and payment status into a display status.

    Rules are checked in order: complete and paid is ``completed``; expired
    is ``expired``; unpaid is ``pending``; no payment required is
    ``completed``; anything else is ``processing``.
    """
    if status == "complete" and payment_status == "paid":
        return "completed"
    if status == "expired":
        return "expired"
    if payment_status == "unpaid":
        return "pending"
    if payment_status == "no_payment_required":
        return "completed"
    return "processing"


class StripeGateway:
    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        *,
        payment_method_types: list[str] | None = None,
        webhook_tolerance: int | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )
        self.payment_method_types = payment_method_types or settings.payment_method_types()
        self.webhook_tolerance = (
            webhook_tolerance
            if webhook_tolerance is not None
            else settings.stripe_webhook_tolerance_seconds
        )

    def _api_key(self) -> str:
        if not self.secret_key:
            raise GatewayError("Stripe secret key not configured")
        return self.secret_key

    def create_checkout_session(
        self,
        *,
        amount_minor: int,
        currency: str,
        product_name: str,
        description: str | None,
        customer_email: str,
        reference: SettlementReference,
        success_url: str,
        cancel_url: str,
        expires_at: datetime,
    ) -> CheckoutSession:
        """Create a one-line-item payment-mode checkout session.

        Args:
            amount_minor: Amount in minor units (EUR × 100).
            currency: ISO currency code, lower case.
            product_name: Line item name shown on the hosted page.
            description: Optional line item description.
            customer_email: Payer email, prefilled on the hosted page.
            reference: Invoice linkage stored as session metadata.
            success_url: Redirect after payment.
            cancel_url: Redirect when the payer abandons.
            expires_at: Session expiry.

        Returns:
            The created session.

        Raises:
            GatewayError: On Stripe API or connectivity errors.
        """
        product_data: dict[str, Any] = {"name": product_name}
        if description:
            product_data["description"] = description
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key(),
                payment_method_types=self.payment_method_types,
                mode="payment",
                customer_email=customer_email,
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": product_data,
                            "unit_amount": amount_minor,
                        },
                        "quantity": 1,
                    }
                ],
                metadata=reference.to_metadata(),
                success_url=success_url,
                cancel_url=cancel_url,
                expires_at=int(expires_at.timestamp()),
            )
        except stripe.StripeError as exc:
            logger.error(
                "Stripe checkout session create failed for invoice %s: %s",
                reference.invoice_number,
                exc,
            )
            raise GatewayError(str(exc)) from exc
        return CheckoutSession.from_stripe(session)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                api_key=self._api_key(),
                expand=["payment_intent", "line_items"],
            )
        except stripe.InvalidRequestError as exc:
            message = str(getattr(exc, "user_message", None) or exc)
            if getattr(exc, "code", None) == "resource_missing" or "No such checkout.session" in message:
                raise GatewaySessionNotFound(session_id) from exc
            raise GatewayError(message) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session retrieve failed for %s: %s", session_id, exc)
            raise GatewayError(str(exc)) from exc
        return CheckoutSession.from_stripe(session)

    def verify_webhook(self, body: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature over the raw body and return the event.

        Raises:
            WebhookVerificationError: Missing secret, bad signature, stale
                timestamp or a body that is not a JSON object.
        """
        if not self.webhook_secret:
            logger.error("Stripe webhook secret not configured")
            raise WebhookVerificationError("Webhook secret not configured")
        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, self.webhook_tolerance
            )
            event = json.loads(payload)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError(str(exc)) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise WebhookVerificationError("Invalid payload") from exc
        if not isinstance(event, dict):
            raise WebhookVerificationError("Invalid payload")
        return event


def get_gateway() -> StripeGateway:
    return StripeGateway()
