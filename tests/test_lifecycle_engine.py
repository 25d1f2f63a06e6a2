from decimal import Decimal

import pytest

from app.models.activity import ActivityLog
from app.models.bill import BillStatus
from app.models.user import Role
from app.schemas.bill import (
    AmendTermsPayload,
    ApprovalPayload,
    BillCreate,
    CertificationPayload,
    OfferCreate,
    RejectionPayload,
)
from app.services import lifecycle
from app.services.lifecycle import (
    ALLOWED_EDGES,
    TERMINAL_STATUSES,
    Actor,
    TransitionName,
    available_transitions,
    is_valid_history,
)
from app.services.notifications import list_notifications
from app.utils.errors import ConcurrencyConflict, GuardViolation, ValidationError


def _titles(db, user):
    return [n.title for n in list_notifications(db, user.id)]


def _history(bill):
    return [event.status for event in bill.status_events]


def _actions(db, bill_id):
    return [row.action for row in db.query(ActivityLog).filter(ActivityLog.bill_id == bill_id).order_by(ActivityLog.id)]


def _offer(amount="920000.00", rate="8"):
    return OfferCreate(offer_amount=Decimal(amount), discount_rate=Decimal(rate))


def _approval(quarters=4, start="Q1 2025"):
    return ApprovalPayload(payment_quarters=quarters, start_quarter=start)


def _to_mda_approved(db, parties, bill):
    lifecycle.make_offer(db, bill.id, parties.spv_actor, _offer())
    lifecycle.accept_offer(db, bill.id, parties.supplier_actor)
    return lifecycle.approve(db, bill.id, parties.mda_actor, _approval())


def test_submit_writes_first_history_entry_and_notifies_spvs(db_session, parties, make_bill):
    bill = make_bill()

    assert bill.status == BillStatus.SUBMITTED
    assert bill.version == 1
    assert bill.currency == "NGN"
    assert [e.seq for e in bill.status_events] == [1]
    assert _history(bill) == [BillStatus.SUBMITTED]
    assert "New Payable Available" in _titles(db_session, parties.spv)
    assert _actions(db_session, bill.id) == ["Bill Submitted"]


def test_full_certification_scenario(db_session, parties, make_bill):
    bill = make_bill("1000000.00")

    bill = lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer("920000.00", "8"))
    assert bill.status == BillStatus.OFFER_MADE
    assert bill.spv_id == parties.spv.id
    assert bill.offer_amount == Decimal("920000.00")
    assert "New Offer Received!" in _titles(db_session, parties.supplier)

    bill = lifecycle.accept_offer(db_session, bill.id, parties.supplier_actor)
    assert bill.status == BillStatus.OFFER_ACCEPTED
    assert bill.offer_accepted_date is not None
    assert "Bill Pending Your Approval" in _titles(db_session, parties.mda_user)
    assert _titles(db_session, parties.other_mda_user) == []
    assert "Offer Accepted!" in _titles(db_session, parties.spv)

    bill = lifecycle.approve(db_session, bill.id, parties.mda_actor, _approval(4, "Q1 2025"))
    assert bill.status == BillStatus.MDA_APPROVED
    assert bill.mda_approved_by == parties.mda_user.id
    assert bill.payment_quarters == 4
    entries = bill.payment_terms_json["entries"]
    assert [e["amount"] for e in entries] == ["250000.00"] * 4
    assert sum(Decimal(e["amount"]) for e in entries) == bill.amount
    assert "Bill Pending Certification" in _titles(db_session, parties.treasury)

    bill = lifecycle.certify(
        db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="CERT-2025-00001")
    )
    assert bill.status == BillStatus.CERTIFIED
    assert bill.certificate_number == "CERT-2025-00001"
    assert bill.treasury_certified_by == parties.treasury.id
    assert bill.deed_id and bill.deed_id.startswith(f"offchain-{bill.id}-")

    assert "Bill Certified by Treasury" in _titles(db_session, parties.supplier)
    assert "Bill Certified - Sign the Deed of Assignment" in _titles(db_session, parties.spv)
    assert "Bill Certified by Treasury" in _titles(db_session, parties.mda_user)
    assert "Bill Certified & Deed Initiated" in _titles(db_session, parties.admin)

    statuses = _history(bill)
    assert statuses == [
        BillStatus.SUBMITTED,
        BillStatus.OFFER_MADE,
        BillStatus.OFFER_ACCEPTED,
        BillStatus.MDA_APPROVED,
        BillStatus.CERTIFIED,
    ]
    assert is_valid_history(statuses)
    assert [e.seq for e in bill.status_events] == [1, 2, 3, 4, 5]
    assert _actions(db_session, bill.id) == [
        "Bill Submitted",
        "SPV Made Offer",
        "Supplier Accepted Offer",
        "MDA Approved Bill",
        "Treasury Certified Bill",
    ]


def test_supplier_reject_then_resubmit(db_session, parties, make_bill):
    bill = make_bill("1000000.00")
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer("950000.00", "5"))

    bill = lifecycle.reject_offer(
        db_session, bill.id, parties.supplier_actor, RejectionPayload(reason="discount too high")
    )
    assert bill.status == BillStatus.SUBMITTED
    assert bill.offer_amount is None
    assert bill.offer_discount_rate is None
    assert bill.spv_id == parties.spv.id
    assert bill.last_rejected_by_supplier is True
    assert bill.rejection_reason == "discount too high"
    spv_messages = list_notifications(db_session, parties.spv.id)
    rejected = [n for n in spv_messages if n.title == "Offer Rejected - Action Required"]
    assert len(rejected) == 1
    assert "discount too high" in rejected[0].message

    bill = lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer("930000.00", "7"))
    assert bill.status == BillStatus.OFFER_MADE
    assert bill.offer_amount == Decimal("930000.00")
    assert bill.rejection_reason is None
    assert bill.last_rejected_by_supplier is False
    assert "SPV Resubmitted Offer" in _actions(db_session, bill.id)
    assert is_valid_history(_history(bill))


def test_second_offer_is_a_guard_violation(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())

    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer("900000.00"))

    assert exc_info.value.code == "OFFER_ALREADY_EXISTS"
    assert exc_info.value.status_code == 409
    refreshed = lifecycle.get_bill(db_session, bill.id)
    assert refreshed.offer_amount == Decimal("920000.00")
    assert _actions(db_session, bill.id)[-1] == "Transition Denied"


def test_certificate_number_must_be_unique(db_session, parties, make_bill):
    first = _to_mda_approved(db_session, parties, make_bill())
    second = _to_mda_approved(db_session, parties, make_bill())
    lifecycle.certify(db_session, first.id, parties.treasury_actor, CertificationPayload(certificate_number="CERT-1"))

    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.certify(
            db_session, second.id, parties.treasury_actor, CertificationPayload(certificate_number="CERT-1")
        )

    assert exc_info.value.code == "CERTIFICATE_NUMBER_TAKEN"
    refreshed = lifecycle.get_bill(db_session, second.id)
    assert refreshed.status == BillStatus.MDA_APPROVED
    assert refreshed.certificate_number is None


def test_blank_certificate_number_is_rejected(db_session, parties, make_bill):
    bill = _to_mda_approved(db_session, parties, make_bill())

    with pytest.raises(ValidationError) as exc_info:
        lifecycle.certify(db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="  "))
    assert exc_info.value.code == "CERTIFICATE_NUMBER_REQUIRED"


def test_mda_from_another_ministry_cannot_approve(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())
    lifecycle.accept_offer(db_session, bill.id, parties.supplier_actor)

    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.approve(db_session, bill.id, parties.other_mda_actor, _approval())

    assert exc_info.value.code == "SCOPE_MISMATCH"
    assert exc_info.value.status_code == 403
    assert lifecycle.get_bill(db_session, bill.id).status == BillStatus.OFFER_ACCEPTED


def test_role_and_ownership_guards(db_session, parties, make_bill, make_user):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())

    with pytest.raises(GuardViolation) as wrong_role:
        lifecycle.accept_offer(db_session, bill.id, parties.spv_actor)
    assert wrong_role.value.code == "ROLE_NOT_ALLOWED"
    assert wrong_role.value.status_code == 403

    stranger = make_user(Role.SUPPLIER)
    with pytest.raises(GuardViolation) as not_owner:
        lifecycle.accept_offer(db_session, bill.id, Actor(user_id=stranger.id, role=Role.SUPPLIER))
    assert not_owner.value.code == "NOT_BILL_OWNER"

    with pytest.raises(GuardViolation) as treasury_offer:
        lifecycle.certify(db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="X-1"))
    assert treasury_offer.value.code == "INVALID_TRANSITION"
    assert treasury_offer.value.status_code == 409


def test_only_suppliers_submit(db_session, parties):
    payload = BillCreate(
        mda_id=parties.mda.id, invoice_number="INV-1", invoice_date="2025-01-01", amount=Decimal("10.00")
    )
    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.submit_bill(db_session, parties.spv_actor, payload)
    assert exc_info.value.code == "ROLE_NOT_ALLOWED"


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"amount": Decimal("0")}, "INVALID_AMOUNT"),
        ({"amount": Decimal("-5.00")}, "INVALID_AMOUNT"),
        ({"amount": Decimal("10.005")}, "INVALID_AMOUNT"),
        ({"amount": Decimal("1e30")}, "INVALID_AMOUNT"),
        ({"amount": Decimal("10000000000000000.00")}, "INVALID_AMOUNT"),
        ({"invoice_number": "   "}, "INVOICE_NUMBER_REQUIRED"),
        ({"mda_id": 999999}, "UNKNOWN_MDA"),
        ({"due_date": "2024-12-31"}, "INVALID_DUE_DATE"),
    ],
)
def test_submit_validation(db_session, parties, overrides, code):
    data = {
        "mda_id": parties.mda.id,
        "invoice_number": "INV-42",
        "invoice_date": "2025-01-01",
        "amount": Decimal("1000.00"),
    }
    data.update(overrides)

    with pytest.raises(ValidationError) as exc_info:
        lifecycle.submit_bill(db_session, parties.supplier_actor, BillCreate(**data))
    assert exc_info.value.code == code


@pytest.mark.parametrize(
    "amount, rate, code",
    [
        ("1000000.01", "5", "INVALID_OFFER_AMOUNT"),
        ("0", "5", "INVALID_OFFER_AMOUNT"),
        ("1e30", "5", "INVALID_OFFER_AMOUNT"),
        ("-1e30", "5", "INVALID_OFFER_AMOUNT"),
        ("900000.00", "100", "INVALID_DISCOUNT_RATE"),
        ("900000.00", "-1", "INVALID_DISCOUNT_RATE"),
    ],
)
def test_offer_validation_leaves_bill_untouched(db_session, parties, make_bill, amount, rate, code):
    bill = make_bill("1000000.00")

    with pytest.raises(ValidationError) as exc_info:
        lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer(amount, rate))

    assert exc_info.value.code == code
    refreshed = lifecycle.get_bill(db_session, bill.id)
    assert refreshed.status == BillStatus.SUBMITTED
    assert refreshed.version == 1


def test_reject_offer_requires_reason(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())

    with pytest.raises(ValidationError) as exc_info:
        lifecycle.reject_offer(db_session, bill.id, parties.supplier_actor, RejectionPayload(reason="  "))

    assert exc_info.value.code == "REASON_REQUIRED"
    assert lifecycle.get_bill(db_session, bill.id).status == BillStatus.OFFER_MADE


def test_approve_rejects_unsupported_quarter_count(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())
    lifecycle.accept_offer(db_session, bill.id, parties.supplier_actor)

    with pytest.raises(ValidationError) as exc_info:
        lifecycle.approve(db_session, bill.id, parties.mda_actor, _approval(quarters=3))
    assert exc_info.value.code == "INVALID_PAYMENT_QUARTERS"

    with pytest.raises(ValidationError) as bad_quarter:
        lifecycle.approve(db_session, bill.id, parties.mda_actor, _approval(start="Quarter one"))
    assert bad_quarter.value.code == "INVALID_START_QUARTER"

    with pytest.raises(ValidationError) as past_calendar:
        lifecycle.approve(db_session, bill.id, parties.mda_actor, _approval(start="Q4 9999"))
    assert past_calendar.value.code == "INVALID_START_QUARTER"

    refreshed = lifecycle.get_bill(db_session, bill.id)
    assert refreshed.status == BillStatus.OFFER_ACCEPTED
    assert refreshed.payment_terms_json is None


def test_document_signing_path_to_certification(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())
    lifecycle.accept_offer(db_session, bill.id, parties.supplier_actor)
    lifecycle.begin_mda_review(db_session, bill.id, parties.mda_actor, "checking delivery notes")
    lifecycle.approve(db_session, bill.id, parties.mda_actor, _approval(8, "Q3 2025"))
    lifecycle.advance(db_session, bill.id, parties.admin_actor, TransitionName.SET_TERMS)
    lifecycle.advance(db_session, bill.id, parties.mda_actor, TransitionName.SEND_AGREEMENT)
    lifecycle.advance(db_session, bill.id, parties.treasury_actor, TransitionName.BEGIN_TREASURY_REVIEW)
    bill = lifecycle.certify(
        db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="CERT-2025-00077")
    )

    statuses = _history(bill)
    assert statuses[-5:] == [
        BillStatus.MDA_APPROVED,
        BillStatus.TERMS_SET,
        BillStatus.AGREEMENT_SENT,
        BillStatus.TREASURY_REVIEWING,
        BillStatus.CERTIFIED,
    ]
    assert is_valid_history(statuses)
    assert bill.status_events[3].note == "checking delivery notes"


def test_rejection_is_terminal(db_session, parties, make_bill):
    bill = make_bill()
    lifecycle.start_review(db_session, bill.id, parties.spv_actor)

    bill = lifecycle.reject(db_session, bill.id, parties.mda_actor, RejectionPayload(reason="No contract on file"))
    assert bill.status == BillStatus.REJECTED
    assert bill.rejection_reason == "No contract on file"
    assert "Bill Rejected" in _titles(db_session, parties.supplier)

    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.make_offer(db_session, bill.id, parties.spv_actor, _offer())
    assert exc_info.value.code == "INVALID_TRANSITION"

    with pytest.raises(GuardViolation):
        lifecycle.reject(db_session, bill.id, parties.treasury_actor, RejectionPayload(reason="again"))


def test_certified_bill_cannot_be_rejected(db_session, parties, make_bill):
    bill = _to_mda_approved(db_session, parties, make_bill())
    lifecycle.certify(db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="C-9"))

    with pytest.raises(GuardViolation) as exc_info:
        lifecycle.reject(db_session, bill.id, parties.treasury_actor, RejectionPayload(reason="late"))
    assert exc_info.value.code == "INVALID_TRANSITION"


def test_amend_terms_recomputes_without_new_history(db_session, parties, make_bill):
    bill = _to_mda_approved(db_session, parties, make_bill("1000000.00"))
    history_before = len(bill.status_events)
    version_before = bill.version

    bill = lifecycle.amend_terms(
        db_session,
        bill.id,
        parties.treasury_actor,
        AmendTermsPayload(payment_quarters=8, start_quarter="Q3 2025", note="fiscal calendar shift"),
    )

    assert bill.status == BillStatus.MDA_APPROVED
    assert len(bill.status_events) == history_before
    assert bill.version == version_before + 1
    assert bill.payment_quarters == 8
    assert bill.payment_start_quarter == "Q3 2025"
    assert bill.payment_terms_json["revision"] == 2
    assert [e["amount"] for e in bill.payment_terms_json["entries"]] == ["125000.00"] * 8
    assert "Payment Terms Amended" in _titles(db_session, parties.supplier)
    assert "Payment Terms Amended" in _titles(db_session, parties.spv)
    assert "Payment Terms Amended" in _titles(db_session, parties.mda_user)
    assert "Treasury Amended Payment Terms" in _actions(db_session, bill.id)


def test_amend_terms_guards(db_session, parties, make_bill):
    bill = _to_mda_approved(db_session, parties, make_bill())
    payload = AmendTermsPayload(payment_quarters=2, start_quarter="Q1 2026")

    with pytest.raises(GuardViolation) as wrong_role:
        lifecycle.amend_terms(db_session, bill.id, parties.mda_actor, payload)
    assert wrong_role.value.code == "ROLE_NOT_ALLOWED"

    lifecycle.certify(db_session, bill.id, parties.treasury_actor, CertificationPayload(certificate_number="C-10"))
    with pytest.raises(GuardViolation) as too_late:
        lifecycle.amend_terms(db_session, bill.id, parties.treasury_actor, payload)
    assert too_late.value.code == "INVALID_TRANSITION"


def test_lost_compare_and_set_raises_conflict(db_session, parties, make_bill, monkeypatch):
    bill = make_bill()
    monkeypatch.setattr(lifecycle, "cas_update_bill", lambda *args, **kwargs: False)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        lifecycle.start_review(db_session, bill.id, parties.spv_actor)

    assert exc_info.value.code == "STALE_STATE"
    refreshed = lifecycle.get_bill(db_session, bill.id)
    assert refreshed.status == BillStatus.SUBMITTED
    assert len(refreshed.status_events) == 1


def test_unknown_bill(db_session, parties):
    with pytest.raises(lifecycle.BillNotFound):
        lifecycle.start_review(db_session, 424242, parties.spv_actor)


def test_available_transitions_depend_on_role_and_status(db_session, parties, make_bill):
    bill = make_bill()

    assert set(available_transitions(bill, parties.spv_actor)) == {
        TransitionName.START_REVIEW,
        TransitionName.MAKE_OFFER,
    }
    assert available_transitions(bill, parties.supplier_actor) == []
    assert available_transitions(bill, parties.mda_actor) == [TransitionName.REJECT]
    assert available_transitions(bill, parties.other_mda_actor) == []


def test_edge_table_shape():
    for status in TERMINAL_STATUSES:
        assert ALLOWED_EDGES[status] == frozenset()
    assert ALLOWED_EDGES[BillStatus.OFFER_MADE] == frozenset(
        {BillStatus.OFFER_ACCEPTED, BillStatus.SUBMITTED, BillStatus.REJECTED}
    )
    assert is_valid_history([BillStatus.SUBMITTED, BillStatus.UNDER_REVIEW, BillStatus.OFFER_MADE])
    assert not is_valid_history([BillStatus.SUBMITTED, BillStatus.CERTIFIED])
    assert not is_valid_history([BillStatus.UNDER_REVIEW])
