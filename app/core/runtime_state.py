"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

from datetime import datetime

_scheduler_active = False
_last_outbox_run: datetime | None = None


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def record_outbox_run(at: datetime) -> None:
    """Remember when the side-effect retry job last completed."""

    global _last_outbox_run
    _last_outbox_run = at


def last_outbox_run() -> datetime | None:
    return _last_outbox_run
