import os
from typing import Any, cast

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db as _get_db
from app.models.user import User
from app.services.common import safe_uuid


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET") or settings.jwt_secret
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret


def _jwt_algorithm() -> str:
    return os.getenv("JWT_ALGORITHM") or settings.jwt_algorithm or "HS256"


def decode_access_token(token: str) -> dict:
    try:
        return cast(
            dict[Any, Any],
            jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()]),
        )
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc


def require_user_auth(
    authorization: str | None = Header(default=None),
    request: Request = None,
    db: Session = Depends(_get_db),
):
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_access_token(token)
    user_id = safe_uuid(payload.get("sub"))
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if request is not None:
        request.state.actor_id = str(user_id)
        request.state.actor_type = "user"
    return {"user_id": str(user_id), "email": user.email}
