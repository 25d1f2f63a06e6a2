"""Bill persistence boundary: reads, inserts and compare-and-set updates."""
from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.models.bill import Bill, BillStatus, BillStatusEvent
from app.utils.errors import ValidationError
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

# Columns no transition may write; ``status``/``version`` go through CAS only.
IMMUTABLE_FIELDS = frozenset(
    {"id", "amount", "supplier_id", "mda_id", "created_at", "version", "status_events"}
)


@dataclass(frozen=True)
class BillFilter:
    statuses: Collection[BillStatus] | None = None
    mda_id: int | None = None
    supplier_id: int | None = None
    spv_id: int | None = None


def get_bill(db: Session, bill_id: int) -> Bill | None:
    """Return the latest committed state of a bill, bypassing the identity map."""

    return db.get(Bill, bill_id, populate_existing=True)


def query_bills(db: Session, bill_filter: BillFilter | None = None) -> list[Bill]:
    stmt = select(Bill)
    if bill_filter is not None:
        if bill_filter.statuses is not None:
            stmt = stmt.where(Bill.status.in_(list(bill_filter.statuses)))
        if bill_filter.mda_id is not None:
            stmt = stmt.where(Bill.mda_id == bill_filter.mda_id)
        if bill_filter.supplier_id is not None:
            stmt = stmt.where(Bill.supplier_id == bill_filter.supplier_id)
        if bill_filter.spv_id is not None:
            stmt = stmt.where(Bill.spv_id == bill_filter.spv_id)
    stmt = stmt.order_by(Bill.created_at.desc(), Bill.id.desc())
    return list(db.scalars(stmt.execution_options(populate_existing=True)).all())


def certificate_number_taken(db: Session, certificate_number: str) -> bool:
    stmt = select(Bill.id).where(Bill.certificate_number == certificate_number).limit(1)
    return db.scalar(stmt) is not None


def append_status_event(
    db: Session,
    bill_id: int,
    status: BillStatus,
    *,
    note: str | None,
    actor_user_id: int | None,
) -> BillStatusEvent:
    """Add the next history row for ``bill_id``; callers own the commit."""

    current = db.scalar(select(func.coalesce(func.max(BillStatusEvent.seq), 0)).where(BillStatusEvent.bill_id == bill_id))
    event = BillStatusEvent(
        bill_id=bill_id,
        seq=int(current or 0) + 1,
        status=status,
        note=note,
        actor_user_id=actor_user_id,
        at=utcnow(),
    )
    db.add(event)
    return event


def insert_bill(db: Session, bill: Bill, *, note: str, actor_user_id: int | None) -> Bill:
    """Persist a new bill together with its first history entry (not committed)."""

    bill.status = BillStatus.SUBMITTED
    bill.version = 1
    db.add(bill)
    db.flush()
    append_status_event(db, bill.id, BillStatus.SUBMITTED, note=note, actor_user_id=actor_user_id)
    return bill


def cas_update_bill(
    db: Session,
    bill_id: int,
    expected_status: BillStatus,
    patch: Mapping[str, Any],
    *,
    expected_version: int | None = None,
) -> bool:
    """Apply ``patch`` only if the bill still has ``expected_status``.

    Issues a single ``UPDATE ... WHERE id = :id AND status = :expected`` (and
    ``version`` when given) and bumps ``version``. Returns ``False`` on
    conflict, in which case nothing was written. Does not commit.
    """

    forbidden = IMMUTABLE_FIELDS.intersection(patch)
    if forbidden:
        raise ValidationError(
            "Attempted to modify immutable bill fields",
            code="IMMUTABLE_FIELD",
            details={"fields": sorted(forbidden)},
        )

    stmt = update(Bill).where(Bill.id == bill_id, Bill.status == expected_status)
    if expected_version is not None:
        stmt = stmt.where(Bill.version == expected_version)
    stmt = stmt.values(**dict(patch), version=Bill.version + 1, updated_at=utcnow()).execution_options(
        synchronize_session=False
    )
    result = db.execute(stmt)
    won = result.rowcount == 1
    if not won:
        logger.info(
            "Bill compare-and-set lost",
            extra={"bill_id": bill_id, "expected_status": expected_status.value, "expected_version": expected_version},
        )
    return won


__all__ = [
    "BillFilter",
    "IMMUTABLE_FIELDS",
    "get_bill",
    "query_bills",
    "certificate_number_taken",
    "append_status_event",
    "insert_bill",
    "cas_update_bill",
]
