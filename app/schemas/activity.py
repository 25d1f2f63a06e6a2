"""Activity log schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActivityRead(BaseModel):
    id: int
    actor_user_id: int | None = None
    action: str
    bill_id: int | None = None
    details: dict[str, Any] = Field(default_factory=dict, validation_alias="details_json")
    at: datetime

    model_config = ConfigDict(from_attributes=True)
