import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services import lifecycle as lifecycle_service

logger = logging.getLogger(__name__)


def _run_job(job_name: str, func):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        result = func(session)
        logger.info("%s finished: %s", job_name, result)
        return result
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("%s failed.", job_name)
        raise
    finally:
        session.close()
        observe_job(job_name, status, time.monotonic() - start)


@celery_app.task(name="app.tasks.lifecycle.notify_payments_due")
def notify_payments_due():
    return _run_job("payment_due_sweep", lifecycle_service.notify_due_soon)


@celery_app.task(name="app.tasks.lifecycle.notify_payments_overdue")
def notify_payments_overdue():
    return _run_job("payment_overdue_sweep", lifecycle_service.notify_overdue)


@celery_app.task(name="app.tasks.lifecycle.cleanup_read_notifications")
def cleanup_read_notifications():
    return _run_job("notification_cleanup", lifecycle_service.cleanup_read_notifications)
