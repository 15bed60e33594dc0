from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class LifecycleTask(str, Enum):
    due = "due"
    overdue = "overdue"
    cleanup = "cleanup"


class LifecycleRunRequest(BaseModel):
    task: LifecycleTask | None = None
    run_at: datetime | None = None
    days_before_due: int | None = Field(default=None, ge=0)
    retention_days: int | None = Field(default=None, ge=1)


class LifecycleRunResults(BaseModel):
    payment_due: int | None = None
    payment_overdue: int | None = None
    cleanup_old_notifications: int | None = None


class LifecycleRunResponse(BaseModel):
    success: bool = True
    message: str = "Scheduled tasks executed"
    results: LifecycleRunResults
    timestamp: datetime
