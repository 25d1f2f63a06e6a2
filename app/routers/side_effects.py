"""Admin controls for the side-effect outbox."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.side_effect import SideEffect, SideEffectStatus
from app.models.user import Role
from app.schemas.side_effect import DispatchRead, SideEffectRead
from app.security import require_role
from app.services import side_effects as side_effect_service

router = APIRouter(
    prefix="/side-effects",
    tags=["side-effects"],
    dependencies=[Depends(require_role(Role.ADMIN))],
)


@router.get("", response_model=list[SideEffectRead])
def list_side_effects(
    status: SideEffectStatus | None = Query(default=None),
    bill_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    stmt = select(SideEffect)
    if status is not None:
        stmt = stmt.where(SideEffect.status == status)
    if bill_id is not None:
        stmt = stmt.where(SideEffect.bill_id == bill_id)
    return list(db.scalars(stmt.order_by(SideEffect.id.desc()).limit(limit)).all())


@router.post("/dispatch", response_model=DispatchRead)
def dispatch_side_effects(
    bill_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DispatchRead:
    """Retry the outbox now instead of waiting for the scheduler."""

    report = side_effect_service.dispatch_pending(db, bill_id=bill_id)
    return DispatchRead(
        done=report.done,
        failed=report.failed,
        pending=side_effect_service.pending_count(db),
    )
