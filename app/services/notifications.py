"""Notification dispatcher: resolves a target selector and inserts messages."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationKind
from app.models.user import Role, User
from app.utils.errors import LifecycleError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserTarget:
    user_id: int


@dataclass(frozen=True)
class RoleCohort:
    """Every active user holding ``role``, optionally limited to one scope (MDA)."""

    role: Role
    scope_id: int | None = None


Target = Union[UserTarget, RoleCohort]


class NotificationNotFound(LifecycleError):
    status_code = 404
    default_code = "NOTIFICATION_NOT_FOUND"


def target_to_json(target: Target) -> dict[str, Any]:
    if isinstance(target, UserTarget):
        return {"user_id": target.user_id}
    return {"role": target.role.value, "scope_id": target.scope_id}


def target_from_json(data: dict[str, Any]) -> Target:
    if "user_id" in data:
        return UserTarget(user_id=int(data["user_id"]))
    return RoleCohort(role=Role(data["role"]), scope_id=data.get("scope_id"))


def resolve_recipients(db: Session, target: Target) -> list[int]:
    """Return recipient user ids for ``target`` as of now."""

    if isinstance(target, UserTarget):
        return [target.user_id]

    stmt = select(User.id).where(User.role == target.role, User.is_active.is_(True))
    if target.scope_id is not None:
        stmt = stmt.where(User.role_scope_id == target.scope_id)
    return list(db.scalars(stmt.order_by(User.id)).all())


def notify(
    db: Session,
    target: Target,
    title: str,
    message: str,
    kind: NotificationKind | str = NotificationKind.INFO,
    bill_id: int | None = None,
) -> list[Notification]:
    """Insert one notification per resolved recipient. No dedup; caller commits."""

    recipients = resolve_recipients(db, target)
    if not recipients:
        logger.info("Notification target resolved to no recipients", extra={"target": target_to_json(target), "bill_id": bill_id})
        return []

    rows = [
        Notification(
            recipient_user_id=user_id,
            title=title,
            message=message,
            kind=NotificationKind(kind),
            bill_id=bill_id,
            read=False,
        )
        for user_id in recipients
    ]
    db.add_all(rows)
    db.flush()
    logger.info(
        "Notifications queued",
        extra={"bill_id": bill_id, "title": title, "recipients": len(rows)},
    )
    return rows


def list_notifications(db: Session, user_id: int, *, unread_only: bool = False) -> list[Notification]:
    stmt = select(Notification).where(Notification.recipient_user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    return list(db.scalars(stmt.order_by(Notification.id.desc())).all())


def mark_read(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.recipient_user_id != user_id:
        raise NotificationNotFound("Notification not found.")
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


__all__ = [
    "UserTarget",
    "RoleCohort",
    "Target",
    "NotificationNotFound",
    "target_to_json",
    "target_from_json",
    "resolve_recipients",
    "notify",
    "list_notifications",
    "mark_read",
]
