"""PayPal Payouts client used to forward settled funds to the invoice issuer."""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from app.config import Settings, settings

logger = logging.getLogger(__name__)

PAYPAL_API_BASE_SANDBOX = "https://api-m.sandbox.paypal.com"
PAYPAL_API_BASE_LIVE = "https://api-m.paypal.com"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


class PayoutError(Exception):
    """Payout could not be submitted."""


@dataclass(frozen=True)
class PayoutRequest:
    receiver_email: str
    amount_minor: int
    currency: str
    invoice_number: str
    payer_id: uuid.UUID | str
    receiver_id: uuid.UUID | str
    note: str | None = None


@dataclass(frozen=True)
class PayoutResult:
    payout_batch_id: str
    batch_status: str
    payout_item_id: str | None = None
    transaction_id: str | None = None
    transaction_status: str | None = None
    simulated: bool = False


def format_payout_amount(amount_minor: int) -> str:
    """Minor units to the two-decimal string PayPal expects (9999 -> "99.99")."""
    return str((Decimal(amount_minor) / 100).quantize(Decimal("0.01")))


def build_sender_batch_id(
    invoice_number: str, prefix: str | None = None, now_ms: int | None = None
) -> str:
    """Unique batch id: ``{prefix}_{epoch_ms}_{alphanumeric invoice number}``."""
    prefix = prefix or settings.payout_batch_prefix
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}_{now_ms}_{_NON_ALNUM.sub('', invoice_number)}"


def build_payout_body(request: PayoutRequest, sender_batch_id: str) -> dict[str, Any]:
    amount = format_payout_amount(request.amount_minor)
    currency = request.currency.upper()
    return {
        "sender_batch_header": {
            "sender_batch_id": sender_batch_id,
            "email_subject": f"Payment received for Invoice {request.invoice_number}",
            "email_message": request.note
            or (
                f"You have received a payment of {amount} {currency} "
                f"for Invoice {request.invoice_number}."
            ),
        },
        "items": [
            {
                "recipient_type": "EMAIL",
                "amount": {"value": amount, "currency": currency},
                "receiver": request.receiver_email,
                "note": f"Payment for Invoice {request.invoice_number}",
                "sender_item_id": (
                    f"ITEM_{request.payer_id}_{request.receiver_id}_{request.invoice_number}"
                ),
            }
        ],
    }


class PayPalPayoutClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        mode: str = "sandbox",
        timeout: int = 30,
        batch_prefix: str | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = PAYPAL_API_BASE_LIVE if mode == "live" else PAYPAL_API_BASE_SANDBOX
        self.timeout = timeout
        self.batch_prefix = batch_prefix

    def _access_token(self) -> str:
        resp = httpx.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        token = resp.json().get("access_token")
        if not token:
            raise PayoutError("PayPal payout failed: no access token returned")
        return str(token)

    def send_payout(self, request: PayoutRequest) -> PayoutResult:
        """Submit a single-item payout batch.

        Args:
            request: Receiver, amount in minor units and invoice linkage.

        Returns:
            The batch id and status as reported by PayPal. The status is the
            submission status, not the final transfer outcome.

        Raises:
            PayoutError: On HTTP or transport failures.
        """
        sender_batch_id = build_sender_batch_id(request.invoice_number, self.batch_prefix)
        body = build_payout_body(request, sender_batch_id)
        try:
            token = self._access_token()
            resp = httpx.post(
                f"{self.base_url}/v1/payments/payouts",
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _api_error_message(exc.response)
            logger.error(
                "PayPal payout failed for invoice %s: %s",
                request.invoice_number,
                message,
            )
            raise PayoutError(f"PayPal payout failed: {message}") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "PayPal payout request error for invoice %s: %s",
                request.invoice_number,
                exc,
            )
            raise PayoutError(f"PayPal payout failed: {exc}") from exc

        data = resp.json()
        header = data.get("batch_header") or {}
        items = data.get("items") or [{}]
        result = PayoutResult(
            payout_batch_id=header.get("payout_batch_id") or sender_batch_id,
            batch_status=header.get("batch_status") or "PENDING",
            payout_item_id=items[0].get("payout_item_id"),
            transaction_id=items[0].get("transaction_id"),
            transaction_status=items[0].get("transaction_status"),
        )
        logger.info(
            "PayPal payout batch %s created (%s) to %s: %s %s",
            result.payout_batch_id,
            result.batch_status,
            request.receiver_email,
            format_payout_amount(request.amount_minor),
            request.currency.upper(),
        )
        return result


class SimulatedPayoutClient:
    """Stand-in used when PayPal credentials are not configured."""

    def __init__(self, batch_prefix: str | None = None):
        self.batch_prefix = batch_prefix

    def send_payout(self, request: PayoutRequest) -> PayoutResult:
        sender_batch_id = build_sender_batch_id(request.invoice_number, self.batch_prefix)
        logger.info(
            "Simulated payout %s to %s: %s %s for invoice %s",
            sender_batch_id,
            request.receiver_email,
            format_payout_amount(request.amount_minor),
            request.currency.upper(),
            request.invoice_number,
        )
        return PayoutResult(
            payout_batch_id=sender_batch_id,
            batch_status="PENDING",
            payout_item_id=f"SIMULATED_ITEM_{sender_batch_id}",
            transaction_id=f"SIMULATED_TXN_{sender_batch_id}",
            transaction_status="SUCCESS",
            simulated=True,
        )


def _api_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(
            data.get("message")
            or data.get("error_description")
            or data.get("name")
            or data.get("error")
            or f"HTTP {response.status_code}"
        )
    return f"HTTP {response.status_code}"


def get_payout_client(config: Settings | None = None):
    config = config or settings
    if config.has_payout_credentials():
        return PayPalPayoutClient(
            config.paypal_client_id or "",
            config.paypal_client_secret or "",
            mode=config.paypal_mode,
            timeout=config.payout_timeout_seconds,
            batch_prefix=config.payout_batch_prefix,
        )
    logger.warning("PayPal credentials not configured; payouts will be simulated")
    return SimulatedPayoutClient(batch_prefix=config.payout_batch_prefix)
