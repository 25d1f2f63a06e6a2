"""Append-only activity log."""
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.activity import ActivityLog
from app.utils.audit import sanitize_payload_for_audit
from app.utils.time import utcnow


def log(
    db: Session,
    actor_user_id: int | None,
    action: str,
    bill_id: int | None,
    details: dict[str, Any] | None = None,
) -> ActivityLog:
    """Add an activity entry to the session; the caller owns the commit."""

    entry = ActivityLog(
        actor_user_id=actor_user_id,
        action=action,
        bill_id=bill_id,
        details_json=sanitize_payload_for_audit(details or {}),
        at=utcnow(),
    )
    db.add(entry)
    return entry


def list_activity(db: Session, bill_id: int) -> list[ActivityLog]:
    stmt = select(ActivityLog).where(ActivityLog.bill_id == bill_id).order_by(ActivityLog.id)
    return list(db.scalars(stmt).all())


__all__ = ["log", "list_activity"]
