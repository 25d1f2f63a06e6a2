"""In-app notification endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.notification import Notification
from app.schemas.notification import NotificationRead
from app.security import require_actor
from app.services import notifications as notification_service
from app.services.lifecycle import Actor

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRead])
def list_my_notifications(
    unread_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    return notification_service.list_notifications(db, actor.user_id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Notification:
    return notification_service.mark_read(db, notification_id, actor.user_id)
