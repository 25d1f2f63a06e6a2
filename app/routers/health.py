"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.runtime_state import is_scheduler_active, last_outbox_run
from app.db import get_db, get_engine
from app.services.blockchain import get_deed_stats
from app.services.side_effects import pending_count

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        if expected_head and current == expected_head:
            return True, "up_to_date"
        if expected_head is None:
            return False, "unknown"
        return False, "out_of_date"
    except Exception:  # noqa: BLE001
        logger.warning("Migration check failed; alembic_version unavailable")
        return False, "unknown"


def _pending_side_effects(db: Session) -> int | None:
    try:
        return pending_count(db)
    except Exception:  # noqa: BLE001
        logger.exception("Side-effect backlog check failed")
        return None


@router.get("", summary="Health check")
def healthcheck(db: Session = Depends(get_db)) -> dict[str, object]:
    """Database, migrations, scheduler and outbox status."""

    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    last_run = last_outbox_run()
    return {
        "status": "degraded" if degraded else "ok",
        "env": settings.app_env,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "blockchain_enabled": bool(settings.BLOCKCHAIN_ENABLED),
        "deed_metrics": get_deed_stats(),
        "side_effects_pending": _pending_side_effects(db) if db_ok else None,
        "last_outbox_run": last_run.isoformat() if last_run else None,
    }
