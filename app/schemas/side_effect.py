"""Side-effect outbox schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.side_effect import SideEffectKind, SideEffectStatus


class SideEffectRead(BaseModel):
    id: int
    bill_id: int | None = None
    kind: SideEffectKind
    status: SideEffectStatus
    attempts: int
    last_error: str | None = None
    processed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DispatchRead(BaseModel):
    done: list[int]
    failed: list[int]
    pending: int
