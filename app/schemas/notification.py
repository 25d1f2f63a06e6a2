"""Notification schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.notification import NotificationKind


class NotificationRead(BaseModel):
    id: int
    recipient_user_id: int
    title: str
    message: str
    kind: NotificationKind
    bill_id: int | None = None
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
