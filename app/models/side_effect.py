"""Outbox rows for side effects fired after a bill mutation commits."""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SideEffectKind(str, PyEnum):
    NOTIFY = "notify"
    ACTIVITY = "activity"
    DEED = "deed"


class SideEffectStatus(str, PyEnum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class SideEffect(Base):
    """A queued notification, activity entry or deed request."""

    __tablename__ = "side_effects"
    __table_args__ = (Index("ix_side_effects_status", "status"),)

    bill_id: Mapped[int | None] = mapped_column(ForeignKey("bills.id"), nullable=True, index=True)
    kind: Mapped[SideEffectKind] = mapped_column(SqlEnum(SideEffectKind, name="side_effect_kind"), nullable=False)
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[SideEffectStatus] = mapped_column(
        SqlEnum(SideEffectStatus, name="side_effect_status"), default=SideEffectStatus.PENDING, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
