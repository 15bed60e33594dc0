import logging
import os

from celery.schedules import crontab

from app.config import settings

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str) -> bool | None:
    raw = _env_value(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return None


def get_celery_config() -> dict:
    broker = (
        _env_value("CELERY_BROKER_URL")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        _env_value("CELERY_RESULT_BACKEND")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    timezone = _env_value("CELERY_TIMEZONE") or "UTC"
    return {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": timezone,
        "task_acks_late": True,
    }


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    sweep_hour = _env_int("LIFECYCLE_SWEEP_HOUR")
    if sweep_hour is None:
        sweep_hour = settings.lifecycle_sweep_hour
    cleanup_hour = _env_int("NOTIFICATION_CLEANUP_HOUR")
    if cleanup_hour is None:
        cleanup_hour = settings.notification_cleanup_hour

    if _env_bool("LIFECYCLE_SWEEP_ENABLED") is not False:
        schedule["payment_due_notifications"] = {
            "task": "app.tasks.lifecycle.notify_payments_due",
            "schedule": crontab(hour=sweep_hour, minute=0),
        }
        schedule["payment_overdue_notifications"] = {
            "task": "app.tasks.lifecycle.notify_payments_overdue",
            "schedule": crontab(hour=sweep_hour, minute=0),
        }
    else:
        logger.info("Lifecycle sweep disabled; due/overdue tasks not scheduled")

    if _env_bool("NOTIFICATION_CLEANUP_ENABLED") is not False:
        schedule["notification_cleanup"] = {
            "task": "app.tasks.lifecycle.cleanup_read_notifications",
            "schedule": crontab(hour=cleanup_hour, minute=0, day_of_week="sun"),
        }
    return schedule
