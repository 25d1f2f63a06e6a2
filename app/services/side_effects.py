"""Transactional outbox for notification, activity and deed side effects.

Rows are added in the same transaction as the bill mutation, then dispatched
after commit. A failing row is marked ``FAILED`` and retried later; it never
rolls back or blocks the transition that produced it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.bill import BillStatus
from app.models.notification import NotificationKind
from app.models.side_effect import SideEffect, SideEffectKind, SideEffectStatus
from app.services import activity
from app.services import notifications
from app.services.bill_store import cas_update_bill, get_bill
from app.services.blockchain import DeedServiceClient, deed_terms, get_deed_client
from app.utils.audit import sanitize_payload_for_audit
from app.utils.errors import SideEffectFailure
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    done: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def enqueue_notification(
    db: Session,
    bill_id: int | None,
    target: notifications.Target,
    title: str,
    message: str,
    kind: NotificationKind = NotificationKind.INFO,
) -> SideEffect:
    effect = SideEffect(
        bill_id=bill_id,
        kind=SideEffectKind.NOTIFY,
        payload_json={
            "target": notifications.target_to_json(target),
            "title": title,
            "message": message,
            "kind": NotificationKind(kind).value,
        },
        status=SideEffectStatus.PENDING,
        attempts=0,
    )
    db.add(effect)
    return effect


def enqueue_activity(
    db: Session,
    bill_id: int | None,
    actor_user_id: int | None,
    action: str,
    details: dict[str, Any] | None = None,
) -> SideEffect:
    effect = SideEffect(
        bill_id=bill_id,
        kind=SideEffectKind.ACTIVITY,
        payload_json={
            "actor_user_id": actor_user_id,
            "action": action,
            "details": sanitize_payload_for_audit(details or {}),
        },
        status=SideEffectStatus.PENDING,
        attempts=0,
    )
    db.add(effect)
    return effect


def enqueue_deed(db: Session, bill_id: int, metadata: dict[str, Any] | None = None) -> SideEffect:
    effect = SideEffect(
        bill_id=bill_id,
        kind=SideEffectKind.DEED,
        payload_json={"metadata": sanitize_payload_for_audit(metadata or {})},
        status=SideEffectStatus.PENDING,
        attempts=0,
    )
    db.add(effect)
    return effect


def _create_deed(db: Session, effect: SideEffect, deed_client: DeedServiceClient) -> None:
    bill = get_bill(db, effect.bill_id) if effect.bill_id is not None else None
    if bill is None:
        raise SideEffectFailure("deed", f"bill {effect.bill_id} not found")
    if bill.deed_id:
        logger.info("Deed already recorded; skipping", extra={"bill_id": bill.id, "deed_id": bill.deed_id})
        return
    if bill.status != BillStatus.CERTIFIED:
        raise SideEffectFailure("deed", f"bill {bill.id} is {bill.status.value}, not certified")

    discount_rate, purchase_price = deed_terms(bill.amount, bill.offer_amount)
    metadata = {
        "invoice_number": bill.invoice_number,
        "invoice_date": bill.invoice_date.isoformat(),
        "certificate_number": bill.certificate_number,
        "payment_quarters": bill.payment_quarters,
        "payment_start_quarter": bill.payment_start_quarter,
        **effect.payload_json.get("metadata", {}),
    }
    deed_id = deed_client.create_deed(
        bill.id,
        bill.supplier_id,
        bill.mda_id,
        bill.amount,
        discount_rate,
        purchase_price,
        metadata,
    )
    if not cas_update_bill(db, bill.id, BillStatus.CERTIFIED, {"deed_id": deed_id}, expected_version=bill.version):
        raise SideEffectFailure("deed", f"bill {bill.id} changed while recording deed")
    logger.info("Deed of assignment created", extra={"bill_id": bill.id, "deed_id": deed_id})


def _execute(db: Session, effect: SideEffect, deed_client: DeedServiceClient) -> None:
    payload = effect.payload_json
    if effect.kind == SideEffectKind.NOTIFY:
        notifications.notify(
            db,
            notifications.target_from_json(payload["target"]),
            payload["title"],
            payload["message"],
            payload.get("kind", NotificationKind.INFO.value),
            effect.bill_id,
        )
    elif effect.kind == SideEffectKind.ACTIVITY:
        activity.log(db, payload.get("actor_user_id"), payload["action"], effect.bill_id, payload.get("details"))
    elif effect.kind == SideEffectKind.DEED:
        _create_deed(db, effect, deed_client)
    else:  # pragma: no cover - enum is closed
        raise SideEffectFailure(str(effect.kind), "unknown side effect kind")


def dispatch_pending(
    db: Session,
    *,
    bill_id: int | None = None,
    max_attempts: int | None = None,
    deed_client: DeedServiceClient | None = None,
) -> DispatchReport:
    """Run PENDING and retryable FAILED rows in id order, one savepoint each."""

    limit = max_attempts if max_attempts is not None else get_settings().SIDE_EFFECT_MAX_ATTEMPTS
    stmt = select(SideEffect).where(
        or_(
            SideEffect.status == SideEffectStatus.PENDING,
            (SideEffect.status == SideEffectStatus.FAILED) & (SideEffect.attempts < limit),
        )
    )
    if bill_id is not None:
        stmt = stmt.where(SideEffect.bill_id == bill_id)
    effects = list(db.scalars(stmt.order_by(SideEffect.id)).all())

    report = DispatchReport()
    if not effects:
        return report

    client = deed_client
    try:
        for effect in effects:
            effect.attempts += 1
            try:
                with db.begin_nested():
                    if effect.kind == SideEffectKind.DEED and client is None:
                        client = get_deed_client()
                    _execute(db, effect, client)  # type: ignore[arg-type]
            except Exception as exc:  # noqa: BLE001 - recorded on the row, retried later
                logger.exception(
                    "Side effect failed",
                    extra={"side_effect_id": effect.id, "bill_id": effect.bill_id, "kind": effect.kind.value},
                )
                effect.status = SideEffectStatus.FAILED
                effect.last_error = str(exc)[:500]
                report.failed.append(effect.id)
            else:
                effect.status = SideEffectStatus.DONE
                effect.last_error = None
                effect.processed_at = utcnow()
                report.done.append(effect.id)
            db.commit()
    finally:
        # Only clients built here are closed; callers own the ones they pass in.
        if deed_client is None and client is not None:
            client.close()

    if report.failed:
        logger.warning(
            "Side effects left for retry",
            extra={"bill_id": bill_id, "failed": report.failed, "done": len(report.done)},
        )
    return report


def pending_count(db: Session) -> int:
    stmt = select(func.count(SideEffect.id)).where(SideEffect.status != SideEffectStatus.DONE)
    return int(db.scalar(stmt) or 0)


__all__ = [
    "DispatchReport",
    "enqueue_notification",
    "enqueue_activity",
    "enqueue_deed",
    "dispatch_pending",
    "pending_count",
]
