from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.activity_log import ActivityLog
from app.models.user import User


def log_activity(
    db: Session,
    *,
    user: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict | None = None,
    actor_name: str | None = None,
) -> None:
    """Stage an activity row in the caller's transaction; the caller commits."""
    record = ActivityLog(
        user_id=user.id if user is not None else None,
        actor_name=actor_name or (user.name if user is not None else None),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )
    db.add(record)
