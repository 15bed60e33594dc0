import hmac

from fastapi import Depends, Header, HTTPException

from app.config import settings
from app.db import get_db
from app.services.auth_dependencies import require_user_auth


def get_current_user(auth=Depends(require_user_auth)):
    """Get current authenticated user info.

    Returns a dict with user_id and email.
    """
    return auth


def require_cron_secret(x_cron_secret: str | None = Header(default=None)):
    """Guard scheduler-triggered endpoints when CRON_SECRET is configured."""
    expected = settings.cron_secret
    if not expected:
        return
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


__all__ = [
    "get_db",
    "get_current_user",
    "require_cron_secret",
    "require_user_auth",
]
