"""Common helper functions for the service layer.

- UUID handling
- Entity retrieval with 404 handling
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, TypeVar

from fastapi import HTTPException

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

T = TypeVar("T")


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def safe_uuid(value) -> uuid.UUID | None:
    """Like coerce_uuid but returns None for malformed values."""
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError):
        return None


def get_or_404(db: Session, model: type[T], id, detail: str | None = None, **options) -> T:
    """Get entity by ID or raise 404.

    Args:
        db: Database session
        model: SQLAlchemy model class
        id: Entity ID (string or UUID)
        detail: Custom error message (defaults to "{ModelName} not found")
        **options: Additional options passed to db.get()

    Raises:
        HTTPException: 404 if entity not found or the id is malformed
    """
    entity_id = safe_uuid(id)
    entity = db.get(model, entity_id, **options) if entity_id else None
    if not entity:
        raise HTTPException(
            status_code=404,
            detail=detail or f"{model.__name__} not found"
        )
    return entity


def get_by_id(db: Session, model: type[T], value, **kwargs) -> T | None:
    """Get entity by ID, returning None if not found or value is None."""
    entity_id = safe_uuid(value)
    if entity_id is None:
        return None
    return db.get(model, entity_id, **kwargs)
