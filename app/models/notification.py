"""Notification model."""
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Enum as SqlEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class NotificationKind(str, PyEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(Base):
    """In-app message addressed to one user about one bill."""

    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_recipient_read", "recipient_user_id", "read"),)

    recipient_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(
        SqlEnum(NotificationKind, name="notification_kind"), default=NotificationKind.INFO, nullable=False
    )
    bill_id: Mapped[int | None] = mapped_column(ForeignKey("bills.id"), nullable=True, index=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
