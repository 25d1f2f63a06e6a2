"""Bill lifecycle engine.

``TRANSITIONS`` is the only place that says which status may follow which and
who may move it there. Every mutating operation goes through :func:`_apply`,
which compare-and-sets the bill row, appends one history entry and queues the
side effects in a single savepoint, then commits and dispatches the outbox.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.bill import Bill, BillStatus
from app.models.mda import Mda
from app.models.notification import NotificationKind
from app.models.user import Role
from app.schemas.bill import (
    AmendTermsPayload,
    ApprovalPayload,
    BillCreate,
    CertificationPayload,
    OfferCreate,
    RejectionPayload,
)
from app.services import activity, side_effects
from app.services.bill_store import (
    append_status_event,
    cas_update_bill,
    certificate_number_taken,
    get_bill,
    insert_bill,
)
from app.services.notifications import RoleCohort, UserTarget
from app.services.payment_terms import MAX_AMOUNT, compute_schedule, schedule_to_json
from app.utils.errors import BillNotFound, ConcurrencyConflict, GuardViolation, ValidationError
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved upstream: user, role and role scope."""

    user_id: int
    role: Role
    role_scope_id: int | None = None


class TransitionName(str, PyEnum):
    START_REVIEW = "start_review"
    MAKE_OFFER = "make_offer"
    ACCEPT_OFFER = "accept_offer"
    REJECT_OFFER = "reject_offer"
    BEGIN_MDA_REVIEW = "begin_mda_review"
    APPROVE = "approve"
    SET_TERMS = "set_terms"
    SEND_AGREEMENT = "send_agreement"
    BEGIN_TREASURY_REVIEW = "begin_treasury_review"
    CERTIFY = "certify"
    REJECT = "reject"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset[BillStatus]
    target: BillStatus
    roles: frozenset[Role]
    # Roles in ``mda_scoped`` must have ``role_scope_id == bill.mda_id``.
    mda_scoped: frozenset[Role] = frozenset()
    # Roles in ``owner_only`` must be the bill's supplier.
    owner_only: frozenset[Role] = frozenset()


TERMINAL_STATUSES = frozenset({BillStatus.CERTIFIED, BillStatus.REJECTED})
NON_TERMINAL_STATUSES = frozenset(set(BillStatus) - TERMINAL_STATUSES)
AWAITING_OFFER_STATUSES = frozenset({BillStatus.SUBMITTED, BillStatus.UNDER_REVIEW})
AWAITING_MDA_STATUSES = frozenset({BillStatus.OFFER_ACCEPTED, BillStatus.MDA_REVIEWING})
AWAITING_TREASURY_STATUSES = frozenset(
    {
        BillStatus.MDA_APPROVED,
        BillStatus.TERMS_SET,
        BillStatus.AGREEMENT_SENT,
        BillStatus.TREASURY_REVIEWING,
    }
)
# Offer-bearing statuses: a new offer on any of these is a duplicate.
OFFER_HELD_STATUSES = frozenset(
    {BillStatus.OFFER_MADE, BillStatus.OFFER_ACCEPTED} | AWAITING_MDA_STATUSES | AWAITING_TREASURY_STATUSES
)

_MDA = frozenset({Role.MDA})

TRANSITIONS: dict[TransitionName, TransitionRule] = {
    TransitionName.START_REVIEW: TransitionRule(
        sources=frozenset({BillStatus.SUBMITTED}),
        target=BillStatus.UNDER_REVIEW,
        roles=frozenset({Role.SPV, Role.ADMIN}),
    ),
    TransitionName.MAKE_OFFER: TransitionRule(
        sources=AWAITING_OFFER_STATUSES,
        target=BillStatus.OFFER_MADE,
        roles=frozenset({Role.SPV}),
    ),
    TransitionName.ACCEPT_OFFER: TransitionRule(
        sources=frozenset({BillStatus.OFFER_MADE}),
        target=BillStatus.OFFER_ACCEPTED,
        roles=frozenset({Role.SUPPLIER}),
        owner_only=frozenset({Role.SUPPLIER}),
    ),
    TransitionName.REJECT_OFFER: TransitionRule(
        sources=frozenset({BillStatus.OFFER_MADE}),
        target=BillStatus.SUBMITTED,
        roles=frozenset({Role.SUPPLIER}),
        owner_only=frozenset({Role.SUPPLIER}),
    ),
    TransitionName.BEGIN_MDA_REVIEW: TransitionRule(
        sources=frozenset({BillStatus.OFFER_ACCEPTED}),
        target=BillStatus.MDA_REVIEWING,
        roles=_MDA,
        mda_scoped=_MDA,
    ),
    TransitionName.APPROVE: TransitionRule(
        sources=AWAITING_MDA_STATUSES,
        target=BillStatus.MDA_APPROVED,
        roles=_MDA,
        mda_scoped=_MDA,
    ),
    TransitionName.SET_TERMS: TransitionRule(
        sources=frozenset({BillStatus.MDA_APPROVED}),
        target=BillStatus.TERMS_SET,
        roles=frozenset({Role.MDA, Role.ADMIN}),
        mda_scoped=_MDA,
    ),
    TransitionName.SEND_AGREEMENT: TransitionRule(
        sources=frozenset({BillStatus.MDA_APPROVED, BillStatus.TERMS_SET}),
        target=BillStatus.AGREEMENT_SENT,
        roles=frozenset({Role.MDA, Role.ADMIN}),
        mda_scoped=_MDA,
    ),
    TransitionName.BEGIN_TREASURY_REVIEW: TransitionRule(
        sources=frozenset({BillStatus.MDA_APPROVED, BillStatus.TERMS_SET, BillStatus.AGREEMENT_SENT}),
        target=BillStatus.TREASURY_REVIEWING,
        roles=frozenset({Role.TREASURY, Role.MDA, Role.ADMIN}),
        mda_scoped=_MDA,
    ),
    TransitionName.CERTIFY: TransitionRule(
        sources=AWAITING_TREASURY_STATUSES,
        target=BillStatus.CERTIFIED,
        roles=frozenset({Role.TREASURY}),
    ),
    TransitionName.REJECT: TransitionRule(
        sources=NON_TERMINAL_STATUSES,
        target=BillStatus.REJECTED,
        roles=frozenset({Role.MDA, Role.TREASURY}),
        mda_scoped=_MDA,
    ),
}


def _build_edges() -> dict[BillStatus, frozenset[BillStatus]]:
    edges: dict[BillStatus, set[BillStatus]] = {status: set() for status in BillStatus}
    for rule in TRANSITIONS.values():
        for source in rule.sources:
            edges[source].add(rule.target)
    return {status: frozenset(targets) for status, targets in edges.items()}


ALLOWED_EDGES: dict[BillStatus, frozenset[BillStatus]] = _build_edges()


def is_valid_edge(source: BillStatus, target: BillStatus) -> bool:
    return target in ALLOWED_EDGES[source]


def is_valid_history(statuses: Sequence[BillStatus]) -> bool:
    """True when ``statuses`` starts at ``submitted`` and follows allowed edges."""

    if not statuses or statuses[0] != BillStatus.SUBMITTED:
        return False
    return all(is_valid_edge(prev, nxt) for prev, nxt in zip(statuses, statuses[1:]))


def _check_actor(rule: TransitionRule, bill: Bill, actor: Actor, name: TransitionName) -> None:
    if actor.role not in rule.roles:
        raise GuardViolation(
            f"Role '{actor.role.value}' cannot {name.value.replace('_', ' ')}.",
            code="ROLE_NOT_ALLOWED",
            details={"transition": name.value, "role": actor.role.value},
            forbidden=True,
        )
    if actor.role in rule.mda_scoped and actor.role_scope_id != bill.mda_id:
        raise GuardViolation(
            "Bill belongs to a different MDA.",
            code="SCOPE_MISMATCH",
            details={"transition": name.value, "bill_mda_id": bill.mda_id, "actor_mda_id": actor.role_scope_id},
            forbidden=True,
        )
    if actor.role in rule.owner_only and actor.user_id != bill.supplier_id:
        raise GuardViolation(
            "Only the submitting supplier can act on this bill.",
            code="NOT_BILL_OWNER",
            details={"transition": name.value},
            forbidden=True,
        )


def _check_status(rule: TransitionRule, bill: Bill, name: TransitionName) -> None:
    if bill.status in rule.sources:
        return
    if name == TransitionName.MAKE_OFFER and bill.status in OFFER_HELD_STATUSES:
        raise GuardViolation(
            "Bill already has an active offer.",
            code="OFFER_ALREADY_EXISTS",
            details={"bill_id": bill.id, "status": bill.status.value},
        )
    raise GuardViolation(
        f"Cannot {name.value.replace('_', ' ')} a bill in status '{bill.status.value}'.",
        code="INVALID_TRANSITION",
        details={
            "bill_id": bill.id,
            "status": bill.status.value,
            "allowed_from": sorted(s.value for s in rule.sources),
        },
    )


def available_transitions(bill: Bill, actor: Actor) -> list[TransitionName]:
    """Transitions ``actor`` could currently request on ``bill``."""

    allowed = []
    for name, rule in TRANSITIONS.items():
        try:
            _check_actor(rule, bill, actor, name)
            _check_status(rule, bill, name)
        except GuardViolation:
            continue
        allowed.append(name)
    return allowed


def _record_denial(db: Session, actor: Actor, bill_id: int | None, action: str, exc: GuardViolation) -> None:
    logger.warning(
        "Bill transition denied",
        extra={"bill_id": bill_id, "action": action, "code": exc.code, "actor_user_id": actor.user_id, "role": actor.role.value},
    )
    activity.log(
        db,
        actor.user_id,
        "Transition Denied",
        bill_id,
        {"attempted": action, "code": exc.code, "message": exc.message},
    )
    db.commit()


def _load(db: Session, bill_id: int) -> Bill:
    bill = get_bill(db, bill_id)
    if bill is None:
        raise BillNotFound("Bill not found.", details={"bill_id": bill_id})
    return bill


def _reload(db: Session, bill: Bill) -> Bill:
    bill_id = bill.id
    db.expire(bill)
    return _load(db, bill_id)


def _authorize(db: Session, bill: Bill, actor: Actor, name: TransitionName) -> TransitionRule:
    rule = TRANSITIONS[name]
    try:
        _check_actor(rule, bill, actor, name)
        _check_status(rule, bill, name)
    except GuardViolation as exc:
        _record_denial(db, actor, bill.id, name.value, exc)
        raise
    return rule


def _dispatch_after_commit(db: Session, bill_id: int) -> None:
    try:
        side_effects.dispatch_pending(db, bill_id=bill_id)
    except Exception:  # noqa: BLE001 - outbox rows stay queued for the retry job
        logger.exception("Side-effect dispatch aborted", extra={"bill_id": bill_id})


def _apply(
    db: Session,
    bill: Bill,
    actor: Actor,
    target: BillStatus,
    patch: dict[str, Any],
    *,
    note: str | None,
    effects: Callable[[Session], None] | None = None,
    append_history: bool = True,
) -> Bill:
    """Compare-and-set ``bill`` to ``target`` with ``patch``; all or nothing."""

    expected_status, expected_version = bill.status, bill.version
    values = dict(patch)
    if target != expected_status:
        values["status"] = target
    try:
        with db.begin_nested():
            if not cas_update_bill(db, bill.id, expected_status, values, expected_version=expected_version):
                raise ConcurrencyConflict(
                    "Bill was changed by another user; reload and try again.",
                    details={"bill_id": bill.id, "expected_status": expected_status.value},
                )
            if append_history:
                append_status_event(db, bill.id, target, note=note, actor_user_id=actor.user_id)
            if effects is not None:
                effects(db)
    except IntegrityError as exc:
        if target == BillStatus.CERTIFIED:
            raise GuardViolation(
                "Certificate number is already in use.",
                code="CERTIFICATE_NUMBER_TAKEN",
                details={"certificate_number": values.get("certificate_number")},
            ) from exc
        raise
    db.commit()
    logger.info(
        "Bill transitioned",
        extra={
            "bill_id": bill.id,
            "from_status": expected_status.value,
            "to_status": target.value,
            "actor_user_id": actor.user_id,
            "role": actor.role.value,
        },
    )
    _dispatch_after_commit(db, bill.id)
    return _reload(db, bill)


def _money(bill: Bill, value: Decimal | None) -> str:
    return f"{bill.currency} {Decimal(value or 0):,.2f}"


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid {field}: {value!r}", code="INVALID_AMOUNT") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid {field}: {value!r}", code="INVALID_AMOUNT")
    return result


def _require_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A rejection reason is required.", code="REASON_REQUIRED")
    return cleaned


def _notify_spv(db: Session, bill: Bill, title: str, message: str, kind: NotificationKind) -> None:
    if bill.spv_id is not None:
        side_effects.enqueue_notification(db, bill.id, UserTarget(bill.spv_id), title, message, kind)


# --- Creation -------------------------------------------------------------


def submit_bill(db: Session, actor: Actor, payload: BillCreate) -> Bill:
    """Create a bill in ``submitted`` with its first history entry."""

    if actor.role != Role.SUPPLIER:
        exc = GuardViolation(
            "Only suppliers can submit bills.",
            code="ROLE_NOT_ALLOWED",
            details={"role": actor.role.value},
            forbidden=True,
        )
        _record_denial(db, actor, None, "submit_bill", exc)
        raise exc

    amount = _to_decimal(payload.amount, "amount")
    if amount <= 0:
        raise ValidationError("Bill amount must be positive.", code="INVALID_AMOUNT")
    if amount >= MAX_AMOUNT:
        raise ValidationError(
            "Bill amount exceeds the largest storable amount.",
            code="INVALID_AMOUNT",
            details={"max_exclusive": str(MAX_AMOUNT)},
        )
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError("Bill amount cannot carry more than two decimals.", code="INVALID_AMOUNT")
    invoice_number = (payload.invoice_number or "").strip()
    if not invoice_number:
        raise ValidationError("Invoice number is required.", code="INVOICE_NUMBER_REQUIRED")
    if payload.due_date is not None and payload.due_date < payload.invoice_date:
        raise ValidationError("Due date cannot precede the invoice date.", code="INVALID_DUE_DATE")
    if db.get(Mda, payload.mda_id) is None:
        raise ValidationError("Unknown MDA.", code="UNKNOWN_MDA", details={"mda_id": payload.mda_id})
    currency = (payload.currency or get_settings().DEFAULT_CURRENCY).upper()

    bill = Bill(
        supplier_id=actor.user_id,
        mda_id=payload.mda_id,
        invoice_number=invoice_number,
        invoice_date=payload.invoice_date,
        due_date=payload.due_date,
        amount=amount,
        currency=currency,
        description=payload.description,
        contract_reference=payload.contract_reference,
        last_rejected_by_supplier=False,
    )
    with db.begin_nested():
        insert_bill(db, bill, note="Bill submitted by supplier", actor_user_id=actor.user_id)
        side_effects.enqueue_notification(
            db,
            bill.id,
            RoleCohort(Role.SPV),
            "New Payable Available",
            f"A new invoice {invoice_number} worth {_money(bill, amount)} is available for offers.",
            NotificationKind.INFO,
        )
        side_effects.enqueue_activity(
            db,
            bill.id,
            actor.user_id,
            "Bill Submitted",
            {"invoice_number": invoice_number, "amount": amount, "mda_id": payload.mda_id},
        )
    db.commit()
    logger.info("Bill submitted", extra={"bill_id": bill.id, "supplier_id": actor.user_id})
    _dispatch_after_commit(db, bill.id)
    return _reload(db, bill)


# --- SPV ------------------------------------------------------------------


def start_review(db: Session, bill_id: int, actor: Actor, note: str | None = None) -> Bill:
    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.START_REVIEW)

    def effects(session: Session) -> None:
        side_effects.enqueue_activity(session, bill.id, actor.user_id, "Bill Review Started", {"note": note})

    return _apply(db, bill, actor, BillStatus.UNDER_REVIEW, {}, note=note or "Under review", effects=effects)


def make_offer(db: Session, bill_id: int, actor: Actor, payload: OfferCreate) -> Bill:
    """SPV offer (or revised offer after a supplier rejection)."""

    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.MAKE_OFFER)

    offer_amount = _to_decimal(payload.offer_amount, "offer_amount")
    if offer_amount.copy_abs() < MAX_AMOUNT:
        offer_amount = offer_amount.quantize(Decimal("0.01"))
    discount_rate = _to_decimal(payload.discount_rate, "discount_rate")
    if offer_amount <= 0 or offer_amount > bill.amount:
        raise ValidationError(
            "Offer amount must be positive and not exceed the bill amount.",
            code="INVALID_OFFER_AMOUNT",
            details={"offer_amount": str(offer_amount), "amount": str(bill.amount)},
        )
    if discount_rate < 0 or discount_rate >= 100:
        raise ValidationError("Discount rate must be in [0, 100).", code="INVALID_DISCOUNT_RATE")

    resubmission = bill.last_rejected_by_supplier
    previous_reason = bill.rejection_reason
    patch = {
        "spv_id": actor.user_id,
        "offer_amount": offer_amount,
        "offer_discount_rate": discount_rate,
        "offer_date": utcnow(),
        "offer_accepted_date": None,
        "rejection_reason": None,
        "last_rejected_by_supplier": False,
        "last_rejection_date": None,
    }

    def effects(session: Session) -> None:
        if resubmission:
            title = "New Offer Received"
            message = (
                f"A revised offer of {_money(bill, offer_amount)} has been made on your invoice "
                f"{bill.invoice_number}. Please review."
            )
        else:
            title = "New Offer Received!"
            message = f"You received an offer of {_money(bill, offer_amount)} for invoice {bill.invoice_number}."
        side_effects.enqueue_notification(
            session, bill.id, UserTarget(bill.supplier_id), title, message, NotificationKind.SUCCESS
        )
        details: dict[str, Any] = {
            "invoice_number": bill.invoice_number,
            "offer_amount": offer_amount,
            "discount_rate": discount_rate,
        }
        if resubmission:
            details["previous_rejection_reason"] = previous_reason
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "SPV Resubmitted Offer" if resubmission else "SPV Made Offer",
            details,
        )

    note = "Revised offer submitted" if resubmission else "Offer made by SPV"
    return _apply(db, bill, actor, BillStatus.OFFER_MADE, patch, note=note, effects=effects)


# --- Supplier -------------------------------------------------------------


def accept_offer(db: Session, bill_id: int, actor: Actor) -> Bill:
    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.ACCEPT_OFFER)
    if bill.offer_amount is None or bill.spv_id is None:
        exc = GuardViolation("Bill has no offer to accept.", code="OFFER_MISSING", details={"bill_id": bill.id})
        _record_denial(db, actor, bill.id, TransitionName.ACCEPT_OFFER.value, exc)
        raise exc

    def effects(session: Session) -> None:
        side_effects.enqueue_notification(
            session,
            bill.id,
            RoleCohort(Role.MDA, scope_id=bill.mda_id),
            "Bill Pending Your Approval",
            f"Invoice {bill.invoice_number} worth {_money(bill, bill.amount)} has been accepted by the supplier "
            "and requires MDA approval.",
            NotificationKind.INFO,
        )
        _notify_spv(
            session,
            bill,
            "Offer Accepted!",
            f"Your offer on invoice {bill.invoice_number} has been accepted by the supplier. Awaiting MDA approval.",
            NotificationKind.SUCCESS,
        )
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "Supplier Accepted Offer",
            {"invoice_number": bill.invoice_number, "offer_amount": bill.offer_amount, "mda_id": bill.mda_id},
        )

    return _apply(
        db,
        bill,
        actor,
        BillStatus.OFFER_ACCEPTED,
        {"offer_accepted_date": utcnow()},
        note="Offer accepted by supplier",
        effects=effects,
    )


def reject_offer(db: Session, bill_id: int, actor: Actor, payload: RejectionPayload) -> Bill:
    """Return the bill to ``submitted``; the SPV keeps ``spv_id`` and may re-offer."""

    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.REJECT_OFFER)
    reason = _require_reason(payload.reason)
    rejected_amount = bill.offer_amount
    patch = {
        "offer_amount": None,
        "offer_discount_rate": None,
        "offer_date": None,
        "offer_accepted_date": None,
        "rejection_reason": reason,
        "last_rejected_by_supplier": True,
        "last_rejection_date": utcnow(),
    }

    def effects(session: Session) -> None:
        _notify_spv(
            session,
            bill,
            "Offer Rejected - Action Required",
            f"Your offer on invoice {bill.invoice_number} was rejected. Reason: {reason}. "
            "You can revise and resubmit your offer.",
            NotificationKind.ERROR,
        )
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "Supplier Rejected Offer",
            {
                "invoice_number": bill.invoice_number,
                "rejected_offer_amount": rejected_amount,
                "rejection_reason": reason,
            },
        )

    return _apply(db, bill, actor, BillStatus.SUBMITTED, patch, note=f"Offer rejected: {reason}", effects=effects)


# --- MDA ------------------------------------------------------------------


def begin_mda_review(db: Session, bill_id: int, actor: Actor, note: str | None = None) -> Bill:
    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.BEGIN_MDA_REVIEW)

    def effects(session: Session) -> None:
        side_effects.enqueue_activity(session, bill.id, actor.user_id, "MDA Review Started", {"note": note})

    return _apply(db, bill, actor, BillStatus.MDA_REVIEWING, {}, note=note or "MDA reviewing", effects=effects)


def approve(db: Session, bill_id: int, actor: Actor, payload: ApprovalPayload) -> Bill:
    """MDA approval: fixes the quarterly payment schedule."""

    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.APPROVE)
    schedule = compute_schedule(
        bill.amount,
        payload.payment_quarters,
        payload.start_quarter,
        annual_rate=payload.annual_rate,
        allowed_quarters=get_settings().ALLOWED_PAYMENT_QUARTERS,
    )
    terms = schedule_to_json(schedule)
    terms["revision"] = 1
    patch = {
        "mda_approved_date": utcnow(),
        "mda_approved_by": actor.user_id,
        "mda_notes": payload.notes,
        "payment_quarters": schedule.quarters,
        "payment_start_quarter": schedule.start_quarter,
        "payment_terms_json": terms,
    }
    terms_text = f"{schedule.quarters} quarters starting {schedule.start_quarter}"

    def effects(session: Session) -> None:
        side_effects.enqueue_notification(
            session,
            bill.id,
            UserTarget(bill.supplier_id),
            "Bill Approved by MDA",
            f"Your invoice {bill.invoice_number} has been approved. Payment terms: {terms_text}.",
            NotificationKind.SUCCESS,
        )
        _notify_spv(
            session,
            bill,
            "MDA Approved Bill",
            f"Invoice {bill.invoice_number} has been approved by MDA. Awaiting Treasury certification.",
            NotificationKind.SUCCESS,
        )
        side_effects.enqueue_notification(
            session,
            bill.id,
            RoleCohort(Role.TREASURY),
            "Bill Pending Certification",
            f"Invoice {bill.invoice_number} worth {_money(bill, bill.amount)} requires Treasury certification.",
            NotificationKind.INFO,
        )
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "MDA Approved Bill",
            {
                "invoice_number": bill.invoice_number,
                "payment_quarters": schedule.quarters,
                "start_quarter": schedule.start_quarter,
            },
        )

    return _apply(db, bill, actor, BillStatus.MDA_APPROVED, patch, note=f"Approved: {terms_text}", effects=effects)


# --- Document-signing intermediates ----------------------------------------

_ADVANCE_TARGETS = {
    TransitionName.SET_TERMS: ("Payment Terms Set", "Terms set"),
    TransitionName.SEND_AGREEMENT: ("Agreement Sent", "Agreement sent for signature"),
    TransitionName.BEGIN_TREASURY_REVIEW: ("Treasury Review Started", "Treasury reviewing"),
}


def advance(db: Session, bill_id: int, actor: Actor, name: TransitionName, note: str | None = None) -> Bill:
    """Move between ``mda_approved`` and ``treasury_reviewing`` intermediates."""

    if name not in _ADVANCE_TARGETS:
        raise ValueError(f"{name.value} is not an intermediate transition")
    bill = _load(db, bill_id)
    rule = _authorize(db, bill, actor, name)
    action, default_note = _ADVANCE_TARGETS[name]

    def effects(session: Session) -> None:
        side_effects.enqueue_activity(
            session, bill.id, actor.user_id, action, {"invoice_number": bill.invoice_number, "note": note}
        )

    return _apply(db, bill, actor, rule.target, {}, note=note or default_note, effects=effects)


# --- Treasury ---------------------------------------------------------------


def certify(db: Session, bill_id: int, actor: Actor, payload: CertificationPayload) -> Bill:
    """Treasury certification; queues the deed of assignment."""

    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.CERTIFY)
    certificate_number = (payload.certificate_number or "").strip()
    if not certificate_number:
        raise ValidationError("Certificate number is required.", code="CERTIFICATE_NUMBER_REQUIRED")
    if certificate_number_taken(db, certificate_number):
        exc = GuardViolation(
            "Certificate number is already in use.",
            code="CERTIFICATE_NUMBER_TAKEN",
            details={"certificate_number": certificate_number},
        )
        _record_denial(db, actor, bill.id, TransitionName.CERTIFY.value, exc)
        raise exc

    patch = {
        "treasury_certified_date": utcnow(),
        "treasury_certified_by": actor.user_id,
        "certificate_number": certificate_number,
    }

    def effects(session: Session) -> None:
        side_effects.enqueue_notification(
            session,
            bill.id,
            UserTarget(bill.supplier_id),
            "Bill Certified by Treasury",
            f"Your invoice {bill.invoice_number} has been certified. Certificate: {certificate_number}. "
            "A Deed of Assignment is being created.",
            NotificationKind.SUCCESS,
        )
        _notify_spv(
            session,
            bill,
            "Bill Certified - Sign the Deed of Assignment",
            f"Invoice {bill.invoice_number} has been certified by Treasury. "
            "Please sign the Tripartite Deed of Assignment.",
            NotificationKind.SUCCESS,
        )
        side_effects.enqueue_notification(
            session,
            bill.id,
            RoleCohort(Role.MDA, scope_id=bill.mda_id),
            "Bill Certified by Treasury",
            f"Invoice {bill.invoice_number} has been certified. Certificate: {certificate_number}.",
            NotificationKind.INFO,
        )
        side_effects.enqueue_notification(
            session,
            bill.id,
            RoleCohort(Role.ADMIN),
            "Bill Certified & Deed Initiated",
            f"Invoice {bill.invoice_number} worth {_money(bill, bill.amount)} has been certified. "
            "Blockchain deed initiated.",
            NotificationKind.INFO,
        )
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "Treasury Certified Bill",
            {
                "invoice_number": bill.invoice_number,
                "certificate_number": certificate_number,
                "amount": bill.amount,
            },
        )
        side_effects.enqueue_deed(session, bill.id, {"certified_by": actor.user_id})

    return _apply(
        db,
        bill,
        actor,
        BillStatus.CERTIFIED,
        patch,
        note=f"Certified: {certificate_number}",
        effects=effects,
    )


def amend_terms(db: Session, bill_id: int, actor: Actor, payload: AmendTermsPayload) -> Bill:
    """Treasury revision of payment terms; recomputes the schedule in place.

    Not a status transition: the bill keeps its status and no history entry
    is appended, but ``version`` moves and every party is re-notified.
    """

    bill = _load(db, bill_id)
    if actor.role != Role.TREASURY:
        exc = GuardViolation(
            "Only Treasury can amend payment terms.",
            code="ROLE_NOT_ALLOWED",
            details={"role": actor.role.value},
            forbidden=True,
        )
        _record_denial(db, actor, bill.id, "amend_terms", exc)
        raise exc
    if bill.status not in AWAITING_TREASURY_STATUSES:
        exc = GuardViolation(
            f"Cannot amend payment terms of a bill in status '{bill.status.value}'.",
            code="INVALID_TRANSITION",
            details={"bill_id": bill.id, "status": bill.status.value},
        )
        _record_denial(db, actor, bill.id, "amend_terms", exc)
        raise exc

    schedule = compute_schedule(
        bill.amount,
        payload.payment_quarters,
        payload.start_quarter,
        annual_rate=payload.annual_rate,
        rate_overrides=payload.rate_overrides,
        allowed_quarters=get_settings().ALLOWED_PAYMENT_QUARTERS,
    )
    terms = schedule_to_json(schedule)
    terms["revision"] = int((bill.payment_terms_json or {}).get("revision", 1)) + 1
    patch = {
        "payment_quarters": schedule.quarters,
        "payment_start_quarter": schedule.start_quarter,
        "payment_terms_json": terms,
    }
    terms_text = f"{schedule.quarters} quarters starting {schedule.start_quarter}"
    message = f"Payment terms for invoice {bill.invoice_number} were amended by Treasury: {terms_text}."

    def effects(session: Session) -> None:
        side_effects.enqueue_notification(
            session, bill.id, UserTarget(bill.supplier_id), "Payment Terms Amended", message, NotificationKind.WARNING
        )
        _notify_spv(session, bill, "Payment Terms Amended", message, NotificationKind.WARNING)
        side_effects.enqueue_notification(
            session,
            bill.id,
            RoleCohort(Role.MDA, scope_id=bill.mda_id),
            "Payment Terms Amended",
            message,
            NotificationKind.WARNING,
        )
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            "Treasury Amended Payment Terms",
            {
                "invoice_number": bill.invoice_number,
                "payment_quarters": schedule.quarters,
                "start_quarter": schedule.start_quarter,
                "revision": terms["revision"],
                "note": payload.note,
            },
        )

    return _apply(db, bill, actor, bill.status, patch, note=None, effects=effects, append_history=False)


# --- Permanent rejection ----------------------------------------------------


def reject(db: Session, bill_id: int, actor: Actor, payload: RejectionPayload) -> Bill:
    bill = _load(db, bill_id)
    _authorize(db, bill, actor, TransitionName.REJECT)
    reason = _require_reason(payload.reason)
    by = "MDA" if actor.role == Role.MDA else "Treasury"
    patch: dict[str, Any] = {"rejection_reason": reason, "last_rejected_by_supplier": False}
    if actor.role == Role.MDA:
        patch["mda_notes"] = reason

    def effects(session: Session) -> None:
        message = f"Invoice {bill.invoice_number} has been rejected by the {by}. Reason: {reason}."
        side_effects.enqueue_notification(
            session, bill.id, UserTarget(bill.supplier_id), "Bill Rejected", message, NotificationKind.ERROR
        )
        _notify_spv(session, bill, "Bill Rejected", message, NotificationKind.ERROR)
        side_effects.enqueue_activity(
            session,
            bill.id,
            actor.user_id,
            f"{by} Rejected Bill",
            {"invoice_number": bill.invoice_number, "reason": reason, "previous_status": bill.status.value},
        )

    return _apply(db, bill, actor, BillStatus.REJECTED, patch, note=f"Rejected by {by}: {reason}", effects=effects)


__all__ = [
    "Actor",
    "TransitionName",
    "TransitionRule",
    "TRANSITIONS",
    "ALLOWED_EDGES",
    "TERMINAL_STATUSES",
    "NON_TERMINAL_STATUSES",
    "AWAITING_OFFER_STATUSES",
    "AWAITING_MDA_STATUSES",
    "AWAITING_TREASURY_STATUSES",
    "is_valid_edge",
    "is_valid_history",
    "available_transitions",
    "submit_bill",
    "start_review",
    "make_offer",
    "accept_offer",
    "reject_offer",
    "begin_mda_review",
    "approve",
    "advance",
    "certify",
    "amend_terms",
    "reject",
]
