"""Bill lifecycle endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.bill import Bill
from app.models.user import Role
from app.schemas.activity import ActivityRead
from app.schemas.bill import (
    AmendTermsPayload,
    ApprovalPayload,
    AvailableActionsRead,
    BillCreate,
    BillRead,
    CertificationPayload,
    OfferCreate,
    RejectionPayload,
    TransitionNote,
)
from app.security import require_actor, require_role
from app.services import activity as activity_service
from app.services import lifecycle
from app.services.bill_store import get_bill
from app.services.lifecycle import Actor, TransitionName
from app.services.projections import can_view
from app.utils.errors import error_response

router = APIRouter(prefix="/bills", tags=["bills"])


def _get_visible_bill(db: Session, bill_id: int, actor: Actor) -> Bill:
    bill = get_bill(db, bill_id)
    if bill is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("BILL_NOT_FOUND", "Bill not found."),
        )
    if not can_view(bill, actor):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("BILL_ACCESS_FORBIDDEN", "You cannot view this bill."),
        )
    return bill


def _note(payload: TransitionNote | None) -> str | None:
    return payload.note if payload is not None else None


@router.post("", response_model=BillRead, status_code=status.HTTP_201_CREATED)
def submit_bill(
    payload: BillCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_role(Role.SUPPLIER)),
) -> Bill:
    return lifecycle.submit_bill(db, actor, payload)


@router.get("/{bill_id}", response_model=BillRead)
def read_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return _get_visible_bill(db, bill_id, actor)


@router.get("/{bill_id}/actions", response_model=AvailableActionsRead)
def list_available_actions(
    bill_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> AvailableActionsRead:
    """Transitions the caller could request right now."""

    bill = _get_visible_bill(db, bill_id, actor)
    actions = [name.value for name in lifecycle.available_transitions(bill, actor)]
    return AvailableActionsRead(bill_id=bill.id, status=bill.status, actions=actions)


@router.get("/{bill_id}/activity", response_model=list[ActivityRead])
def list_bill_activity(
    bill_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    _get_visible_bill(db, bill_id, actor)
    return activity_service.list_activity(db, bill_id)


@router.post("/{bill_id}/start-review", response_model=BillRead)
def start_review(
    bill_id: int,
    payload: TransitionNote | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.start_review(db, bill_id, actor, _note(payload))


@router.post("/{bill_id}/offer", response_model=BillRead)
def make_offer(
    bill_id: int,
    payload: OfferCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.make_offer(db, bill_id, actor, payload)


@router.post("/{bill_id}/accept-offer", response_model=BillRead)
def accept_offer(
    bill_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.accept_offer(db, bill_id, actor)


@router.post("/{bill_id}/reject-offer", response_model=BillRead)
def reject_offer(
    bill_id: int,
    payload: RejectionPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.reject_offer(db, bill_id, actor, payload)


@router.post("/{bill_id}/mda-review", response_model=BillRead)
def begin_mda_review(
    bill_id: int,
    payload: TransitionNote | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.begin_mda_review(db, bill_id, actor, _note(payload))


@router.post("/{bill_id}/approve", response_model=BillRead)
def approve(
    bill_id: int,
    payload: ApprovalPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.approve(db, bill_id, actor, payload)


@router.post("/{bill_id}/set-terms", response_model=BillRead)
def set_terms(
    bill_id: int,
    payload: TransitionNote | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.advance(db, bill_id, actor, TransitionName.SET_TERMS, _note(payload))


@router.post("/{bill_id}/send-agreement", response_model=BillRead)
def send_agreement(
    bill_id: int,
    payload: TransitionNote | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.advance(db, bill_id, actor, TransitionName.SEND_AGREEMENT, _note(payload))


@router.post("/{bill_id}/treasury-review", response_model=BillRead)
def begin_treasury_review(
    bill_id: int,
    payload: TransitionNote | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.advance(db, bill_id, actor, TransitionName.BEGIN_TREASURY_REVIEW, _note(payload))


@router.post("/{bill_id}/certify", response_model=BillRead)
def certify(
    bill_id: int,
    payload: CertificationPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.certify(db, bill_id, actor, payload)


@router.post("/{bill_id}/reject", response_model=BillRead)
def reject(
    bill_id: int,
    payload: RejectionPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.reject(db, bill_id, actor, payload)


@router.post("/{bill_id}/amend-terms", response_model=BillRead)
def amend_terms(
    bill_id: int,
    payload: AmendTermsPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
) -> Bill:
    return lifecycle.amend_terms(db, bill_id, actor, payload)
