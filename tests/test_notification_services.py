from datetime import datetime, timezone
from decimal import Decimal

from app.models.notification import Notification, NotificationType
from app.services import email as email_service
from app.services import notification as notification_service


def test_format_amount():
    assert notification_service.format_amount(Decimal("99.9"), "eur") == "99.90 EUR"
    assert notification_service.format_amount(Decimal("12"), None) == "12.00"
    assert notification_service.format_amount(None) == ""


def test_payment_received_message_and_subject(make_invoice):
    invoice = make_invoice(invoice_number="INV-2026-042", amount=Decimal("250.00"))
    context = notification_service.invoice_context(invoice, currency="eur")

    message = notification_service.build_notification_message(
        NotificationType.payment_received, context
    )
    subject = notification_service.build_email_subject(NotificationType.payment_received, context)

    assert message == (
        "Payment of 250.00 EUR for invoice INV-2026-042 has been received from Bob Debtor."
    )
    assert subject == "Payment Received for Invoice INV-2026-042"


def test_payment_due_message_includes_due_date(make_invoice):
    invoice = make_invoice(
        invoice_number="INV-7",
        due_at=datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc),
    )
    context = notification_service.invoice_context(invoice, currency="eur")

    message = notification_service.build_notification_message(
        NotificationType.payment_due, context
    )

    assert message == "Payment for invoice INV-7 (99.99 EUR) is due on 2026-10-20."


def test_unknown_placeholder_left_in_place():
    message = notification_service.build_notification_message(
        NotificationType.payment_overdue, {"invoice_number": "INV-1"}
    )

    assert message.startswith("Invoice INV-1 ({amount}) is overdue.")


def test_notify_payment_received_targets_issuer(db_session, invoice, issuer, monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_service,
        "send_email",
        lambda to_email, subject, body_html, body_text=None, config=None: sent.append(
            (to_email, subject, body_text)
        )
        or True,
    )

    notification = notification_service.notify_payment_received(db_session, invoice)

    assert notification.user_id == issuer.id
    assert notification.type == NotificationType.payment_received
    assert notification.read is False
    assert db_session.get(Notification, notification.id) is not None
    assert len(sent) == 1
    to_email, subject, body_text = sent[0]
    assert to_email == issuer.email
    assert invoice.invoice_number in subject
    assert body_text.startswith("Hello Ada Issuer,")


def test_notify_respects_email_opt_out(db_session, make_user, make_invoice, monkeypatch):
    debtor = make_user(email_notifications=False)
    invoice = make_invoice(debtor_id=debtor.id)
    sent = []
    monkeypatch.setattr(
        email_service, "send_email", lambda *args, **kwargs: sent.append(args) or True
    )

    notification = notification_service.notify_payment_due(db_session, invoice)

    assert notification.user_id == debtor.id
    assert sent == []


def test_email_failure_keeps_notification(db_session, invoice, monkeypatch, caplog):
    def _fail(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(email_service, "send_email", _fail)

    with caplog.at_level("ERROR"):
        notification = notification_service.notify_payment_overdue(db_session, invoice)

    assert db_session.get(Notification, notification.id) is not None
    assert "smtp down" in caplog.text


def test_context_counts_days_to_and_past_due(make_invoice):
    invoice = make_invoice(due_at=datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc))

    before = notification_service.invoice_context(
        invoice, now=datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
    )
    after = notification_service.invoice_context(
        invoice, now=datetime(2026, 10, 25, 13, 0, tzinfo=timezone.utc)
    )
    same_day = notification_service.invoice_context(
        invoice, now=datetime(2026, 10, 20, 18, 0, tzinfo=timezone.utc)
    )

    assert before["days_until_due"] == "3 days"
    assert after["days_overdue"] == "5 days"
    assert after["days_until_due"] == "0 days"
    assert same_day["days_overdue"] == "1 day"


def test_context_without_due_date_has_no_day_counts(make_invoice):
    context = notification_service.invoice_context(make_invoice(due_at=None))

    assert "days_until_due" not in context
    assert "days_overdue" not in context


def _capture_email(monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_service,
        "send_email",
        lambda to_email, subject, body_html, body_text=None, config=None: sent.append(
            body_text
        )
        or True,
    )
    return sent


def test_payment_due_email_states_days_left(db_session, make_invoice, monkeypatch):
    invoice = make_invoice(due_at=datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc))
    sent = _capture_email(monkeypatch)

    notification_service.notify_payment_due(
        db_session, invoice, now=datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
    )

    assert len(sent) == 1
    assert "is due on 2026-10-20." in sent[0]
    assert "Due in 2 days." in sent[0]


def test_payment_overdue_email_states_days_late(db_session, make_invoice, monkeypatch):
    invoice = make_invoice(due_at=datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc))
    sent = _capture_email(monkeypatch)

    notification_service.notify_payment_overdue(
        db_session, invoice, now=datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    )

    assert len(sent) == 1
    assert "Now 8 days overdue." in sent[0]
