from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import require_cron_secret
from app.db import get_db
from app.schemas.lifecycle import LifecycleRunRequest, LifecycleRunResponse, LifecycleTask
from app.services import lifecycle as lifecycle_service

router = APIRouter(prefix="/cron", dependencies=[Depends(require_cron_secret)])


@router.get(
    "/check-payments",
    response_model=LifecycleRunResponse,
    tags=["scheduler"],
)
def check_payments(
    task: LifecycleTask | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return lifecycle_service.run(db, LifecycleRunRequest(task=task))
