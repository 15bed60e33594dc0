import logging
from datetime import UTC, datetime, time, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import PAYABLE_INVOICE_STATUSES, Invoice
from app.models.notification import Notification, NotificationType
from app.schemas.lifecycle import (
    LifecycleRunRequest,
    LifecycleRunResponse,
    LifecycleRunResults,
    LifecycleTask,
)
from app.services import notification as notification_service

logger = logging.getLogger(__name__)


def _start_of_day(now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return datetime.combine(now.astimezone(UTC).date(), time.min, tzinfo=UTC)


def _has_notification(db: Session, invoice_id, notification_type: NotificationType) -> bool:
    return (
        db.query(Notification.id)
        .filter(Notification.invoice_id == invoice_id)
        .filter(Notification.type == notification_type)
        .first()
        is not None
    )


def _unnotified_payable_invoices(db: Session, notification_type: NotificationType):
    return (
        db.query(Invoice)
        .filter(Invoice.status.in_(PAYABLE_INVOICE_STATUSES))
        .filter(Invoice.due_at.is_not(None))
        .filter(~Invoice.notifications.any(Notification.type == notification_type))
    )


def _notify_each(db: Session, invoices, notification_type: NotificationType, notify) -> int:
    sent = 0
    for invoice in invoices:
        invoice_number = invoice.invoice_number
        try:
            # Re-checked per invoice; the query result may be stale.
            if _has_notification(db, invoice.id, notification_type):
                continue
            notify(db, invoice)
            sent += 1
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to send %s notification for invoice %s",
                notification_type.value,
                invoice_number,
            )
    return sent


def notify_due_soon(
    db: Session, now: datetime | None = None, days_before_due: int | None = None
) -> int:
    """Notify debtors of unpaid invoices due between today and today + N days.

    Each invoice gets at most one payment-due notification. Returns the
    number of notifications sent by this run.
    """
    now = now or datetime.now(UTC)
    if days_before_due is None:
        days_before_due = settings.payment_due_days
    window_start = _start_of_day(now)
    window_end = window_start + timedelta(days=days_before_due + 1) - timedelta(microseconds=1)
    invoices = (
        _unnotified_payable_invoices(db, NotificationType.payment_due)
        .filter(Invoice.due_at >= window_start)
        .filter(Invoice.due_at <= window_end)
        .order_by(Invoice.due_at.asc())
        .all()
    )
    sent = _notify_each(
        db, invoices, NotificationType.payment_due, notification_service.notify_payment_due
    )
    logger.info(
        f"Payment due sweep: {sent} notifications sent for {len(invoices)} invoices "
        f"due by {window_end.date().isoformat()}"
    )
    return sent


def notify_overdue(db: Session, now: datetime | None = None) -> int:
    """Notify debtors of unpaid invoices whose due date is before today.

    Invoice status is not changed here.
    """
    now = now or datetime.now(UTC)
    today = _start_of_day(now)
    invoices = (
        _unnotified_payable_invoices(db, NotificationType.payment_overdue)
        .filter(Invoice.due_at < today)
        .order_by(Invoice.due_at.asc())
        .all()
    )
    sent = _notify_each(
        db,
        invoices,
        NotificationType.payment_overdue,
        notification_service.notify_payment_overdue,
    )
    logger.info(f"Payment overdue sweep: {sent} notifications sent for {len(invoices)} invoices")
    return sent


def cleanup_read_notifications(
    db: Session, now: datetime | None = None, days_old: int | None = None
) -> int:
    now = now or datetime.now(UTC)
    if days_old is None:
        days_old = settings.notification_retention_days
    cutoff = now - timedelta(days=days_old)
    deleted = (
        db.query(Notification)
        .filter(Notification.read.is_(True))
        .filter(Notification.updated_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Deleted {deleted} read notifications older than {days_old} days")
    return deleted


def run(db: Session, payload: LifecycleRunRequest) -> LifecycleRunResponse:
    run_at = payload.run_at or datetime.now(UTC)
    results = LifecycleRunResults()
    if payload.task in (None, LifecycleTask.due):
        results.payment_due = notify_due_soon(db, run_at, payload.days_before_due)
    if payload.task in (None, LifecycleTask.overdue):
        results.payment_overdue = notify_overdue(db, run_at)
    if payload.task in (None, LifecycleTask.cleanup):
        results.cleanup_old_notifications = cleanup_read_notifications(
            db, run_at, payload.retention_days
        )
    return LifecycleRunResponse(results=results, timestamp=run_at)
