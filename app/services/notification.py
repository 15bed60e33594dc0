"""In-app notifications and the matching notification emails."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import Invoice
from app.models.notification import Notification, NotificationType
from app.models.user import User
from app.services import email as email_service

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.invoice_issued: (
        "New invoice {invoice_number} for {amount} has been issued to you by {issuer_name}."
    ),
    NotificationType.payment_due: (
        "Payment for invoice {invoice_number} ({amount}) is due on {due_date}."
    ),
    NotificationType.payment_overdue: (
        "Invoice {invoice_number} ({amount}) is overdue. Please make payment as soon as possible."
    ),
    NotificationType.payment_received: (
        "Payment of {amount} for invoice {invoice_number} has been received from {debtor_name}."
    ),
    NotificationType.invoice_canceled: (
        "Invoice {invoice_number} ({amount}) has been canceled by {issuer_name}."
    ),
}

SUBJECT_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.invoice_issued: "New Invoice {invoice_number} from {issuer_name}",
    NotificationType.payment_due: "Payment Reminder: Invoice {invoice_number}",
    NotificationType.payment_overdue: "Urgent: Invoice {invoice_number} is Overdue",
    NotificationType.payment_received: "Payment Received for Invoice {invoice_number}",
    NotificationType.invoice_canceled: "Invoice {invoice_number} Canceled",
}

# Extra line in the email body for reminder types.
EMAIL_DETAIL_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.payment_due: "Due in {days_until_due}.",
    NotificationType.payment_overdue: "Now {days_overdue} overdue.",
}


class _Context(dict):
    # Unknown placeholders are left in place.
    def __missing__(self, key):
        return "{" + key + "}"


def format_amount(amount: Decimal | None, currency: str | None = None) -> str:
    if amount is None:
        return ""
    text = str(Decimal(amount).quantize(Decimal("0.01")))
    return f"{text} {currency.upper()}" if currency else text


def format_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def format_days(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


def _whole_days_between(later: datetime, earlier: datetime) -> int:
    if later.tzinfo is None:
        later = later.replace(tzinfo=timezone.utc)
    if earlier.tzinfo is None:
        earlier = earlier.replace(tzinfo=timezone.utc)
    return (later - earlier).days


def invoice_context(
    invoice: Invoice, currency: str | None = None, now: datetime | None = None
) -> dict[str, str]:
    currency = currency or settings.stripe_currency
    context = {
        "invoice_number": invoice.invoice_number,
        "issuer_name": invoice.issuer.full_name if invoice.issuer else "",
        "debtor_name": invoice.debtor.full_name if invoice.debtor else "",
        "amount": format_amount(invoice.amount, currency),
        "due_date": format_date(invoice.due_at),
    }
    if invoice.due_at is not None:
        now = now or datetime.now(timezone.utc)
        # Reminders never show less than zero days left or one day late.
        context["days_until_due"] = format_days(
            max(0, _whole_days_between(invoice.due_at, now))
        )
        context["days_overdue"] = format_days(
            max(1, _whole_days_between(now, invoice.due_at))
        )
    return context


def build_notification_message(notification_type: NotificationType, context: dict) -> str:
    return MESSAGE_TEMPLATES[notification_type].format_map(_Context(context))


def build_email_subject(notification_type: NotificationType, context: dict) -> str:
    return SUBJECT_TEMPLATES[notification_type].format_map(_Context(context))


def create_notification(
    db: Session, user_id, invoice_id, notification_type: NotificationType
) -> Notification:
    notification = Notification(
        user_id=user_id,
        invoice_id=invoice_id,
        type=notification_type,
        read=False,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def _send_notification_email(
    recipient: User, notification_type: NotificationType, context: dict
) -> bool:
    if not recipient.email_notifications:
        return False
    message = build_notification_message(notification_type, context)
    detail = EMAIL_DETAIL_TEMPLATES.get(notification_type)
    if detail and "days_until_due" in context:
        message = f"{message}\n{detail.format_map(_Context(context))}"
    link = f"{settings.frontend_url.rstrip('/')}/invoices"
    body_text = f"Hello {recipient.full_name},\n{message}\nView your invoices: {link}"
    return email_service.send_email(
        recipient.email,
        build_email_subject(notification_type, context),
        email_service.text_to_html(body_text),
        body_text=body_text,
    )


def _notify(
    db: Session,
    invoice: Invoice,
    recipient: User,
    notification_type: NotificationType,
    now: datetime | None = None,
) -> Notification:
    notification = create_notification(db, recipient.id, invoice.id, notification_type)
    logger.info(
        "%s notification created for invoice %s (user %s)",
        notification_type.value,
        invoice.invoice_number,
        recipient.id,
    )
    try:
        _send_notification_email(recipient, notification_type, invoice_context(invoice, now=now))
    except Exception as exc:
        logger.error(
            "Failed to send %s email for invoice %s: %s",
            notification_type.value,
            invoice.invoice_number,
            exc,
        )
    return notification


def notify_payment_received(db: Session, invoice: Invoice) -> Notification:
    """Tell the issuer their invoice has been paid."""
    return _notify(db, invoice, invoice.issuer, NotificationType.payment_received)


def notify_payment_due(
    db: Session, invoice: Invoice, now: datetime | None = None
) -> Notification:
    return _notify(db, invoice, invoice.debtor, NotificationType.payment_due, now=now)


def notify_payment_overdue(
    db: Session, invoice: Invoice, now: datetime | None = None
) -> Notification:
    return _notify(db, invoice, invoice.debtor, NotificationType.payment_overdue, now=now)
