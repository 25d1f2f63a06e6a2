"""Scheduled maintenance: drains the side-effect outbox."""
from __future__ import annotations

import logging

from app.core.runtime_state import record_outbox_run
from app.db import session_scope
from app.services.side_effects import DispatchReport, dispatch_pending
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


def retry_failed_side_effects_once() -> DispatchReport:
    """Drain PENDING and retryable FAILED outbox rows with a fresh session."""

    with session_scope() as db:
        report = dispatch_pending(db)
    record_outbox_run(utcnow())
    if report.done or report.failed:
        logger.info(
            "Side-effect retry run finished",
            extra={"done": len(report.done), "failed": len(report.failed)},
        )
    return report
