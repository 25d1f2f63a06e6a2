"""Role dashboards: read-only views over the bill store.

Every view re-queries the store; nothing here is cached or written.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.bill import Bill, BillStatus
from app.models.user import Role
from app.services.bill_store import BillFilter, query_bills
from app.services.lifecycle import (
    AWAITING_MDA_STATUSES,
    AWAITING_OFFER_STATUSES,
    AWAITING_TREASURY_STATUSES,
    Actor,
)
from app.utils.errors import GuardViolation

# Supplier dashboard buckets
SUPPLIER_PENDING = frozenset({BillStatus.SUBMITTED, BillStatus.UNDER_REVIEW, BillStatus.OFFER_MADE})
SPV_ACCEPTED = frozenset({BillStatus.OFFER_ACCEPTED}) | AWAITING_MDA_STATUSES | AWAITING_TREASURY_STATUSES


@dataclass
class SpvOffers:
    pending: list[Bill] = field(default_factory=list)
    rejected: list[Bill] = field(default_factory=list)
    accepted: list[Bill] = field(default_factory=list)
    completed: list[Bill] = field(default_factory=list)
    closed: list[Bill] = field(default_factory=list)


def bills_awaiting_offers(db: Session) -> list[Bill]:
    return query_bills(db, BillFilter(statuses=AWAITING_OFFER_STATUSES))


def bills_awaiting_mda(db: Session, actor: Actor) -> list[Bill]:
    """Bills accepted by a supplier and waiting on the actor's own MDA."""

    if actor.role != Role.MDA or actor.role_scope_id is None:
        raise GuardViolation(
            "Only MDA users have an approval queue.",
            code="ROLE_NOT_ALLOWED",
            details={"role": actor.role.value},
            forbidden=True,
        )
    return query_bills(db, BillFilter(statuses=AWAITING_MDA_STATUSES, mda_id=actor.role_scope_id))


def bills_awaiting_treasury(db: Session) -> list[Bill]:
    return query_bills(db, BillFilter(statuses=AWAITING_TREASURY_STATUSES))


def certified_bills(db: Session) -> list[Bill]:
    return query_bills(db, BillFilter(statuses={BillStatus.CERTIFIED}))


def supplier_bills(db: Session, supplier_id: int, status: BillStatus | None = None) -> list[Bill]:
    statuses = {status} if status is not None else None
    return query_bills(db, BillFilter(statuses=statuses, supplier_id=supplier_id))


def spv_offers(db: Session, spv_id: int) -> SpvOffers:
    """Bucket an SPV's bills by offer outcome.

    ``rejected`` holds offers the supplier turned down; ``closed`` holds bills
    the MDA or Treasury rejected after the SPV bid.
    """

    offers = SpvOffers()
    for bill in query_bills(db, BillFilter(spv_id=spv_id)):
        if bill.status == BillStatus.OFFER_MADE:
            offers.pending.append(bill)
        elif bill.status == BillStatus.SUBMITTED and bill.last_rejected_by_supplier:
            offers.rejected.append(bill)
        elif bill.status in SPV_ACCEPTED:
            offers.accepted.append(bill)
        elif bill.status == BillStatus.CERTIFIED:
            offers.completed.append(bill)
        elif bill.status == BillStatus.REJECTED:
            offers.closed.append(bill)
    return offers


def status_breakdown(db: Session) -> dict[str, int]:
    rows = db.execute(select(Bill.status, func.count(Bill.id)).group_by(Bill.status)).all()
    counts = {status.value: 0 for status in BillStatus}
    for status, count in rows:
        counts[BillStatus(status).value] = int(count)
    return counts


def can_view(bill: Bill, actor: Actor) -> bool:
    """Whether ``actor`` may read ``bill``."""

    if actor.role in {Role.ADMIN, Role.TREASURY}:
        return True
    if actor.role == Role.SUPPLIER:
        return bill.supplier_id == actor.user_id
    if actor.role == Role.MDA:
        return bill.mda_id == actor.role_scope_id
    if actor.role == Role.SPV:
        # SPVs browse the open marketplace and anything they have bid on.
        return bill.spv_id == actor.user_id or bill.status in AWAITING_OFFER_STATUSES
    return False


__all__ = [
    "SpvOffers",
    "bills_awaiting_offers",
    "bills_awaiting_mda",
    "bills_awaiting_treasury",
    "certified_bills",
    "supplier_bills",
    "spv_offers",
    "status_breakdown",
    "can_view",
]
