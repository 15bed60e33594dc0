from app.tasks.lifecycle import (
    cleanup_read_notifications,
    notify_payments_due,
    notify_payments_overdue,
)

__all__ = [
    "cleanup_read_notifications",
    "notify_payments_due",
    "notify_payments_overdue",
]
