"""Role dashboards over the bill store."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.bill import BillStatus
from app.models.user import Role
from app.schemas.bill import BillSummary, SpvOffersRead, StatusBreakdownRead
from app.security import require_actor, require_role
from app.services import projections
from app.services.lifecycle import Actor

router = APIRouter(prefix="/bills/views", tags=["views"])


@router.get("/awaiting-offers", response_model=list[BillSummary])
def awaiting_offers(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.SPV, Role.ADMIN)),
):
    return projections.bills_awaiting_offers(db)


@router.get("/awaiting-mda", response_model=list[BillSummary])
def awaiting_mda(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    return projections.bills_awaiting_mda(db, actor)


@router.get("/awaiting-treasury", response_model=list[BillSummary])
def awaiting_treasury(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.TREASURY, Role.ADMIN)),
):
    return projections.bills_awaiting_treasury(db)


@router.get("/certified", response_model=list[BillSummary])
def certified(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.TREASURY, Role.ADMIN)),
):
    return projections.certified_bills(db)


@router.get("/mine", response_model=list[BillSummary])
def my_bills(
    status: BillStatus | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.SUPPLIER)),
):
    return projections.supplier_bills(db, actor.user_id, status)


@router.get("/offers", response_model=SpvOffersRead)
def my_offers(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.SPV)),
) -> SpvOffersRead:
    offers = projections.spv_offers(db, actor.user_id)
    return SpvOffersRead.model_validate(offers, from_attributes=True)


@router.get("/status-breakdown", response_model=StatusBreakdownRead)
def status_breakdown(
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.ADMIN, Role.TREASURY)),
) -> StatusBreakdownRead:
    counts = projections.status_breakdown(db)
    return StatusBreakdownRead(counts=counts, total=sum(counts.values()))
