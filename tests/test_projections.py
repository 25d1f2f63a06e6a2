from decimal import Decimal

import pytest

from app.models.bill import BillStatus
from app.models.user import Role
from app.schemas.bill import ApprovalPayload, CertificationPayload, OfferCreate, RejectionPayload
from app.services import lifecycle, projections
from app.services.lifecycle import Actor
from app.utils.errors import GuardViolation


def _offer(db, parties, bill):
    return lifecycle.make_offer(
        db, bill.id, parties.spv_actor, OfferCreate(offer_amount=Decimal("900000.00"), discount_rate=Decimal("10"))
    )


def _approve(db, parties, bill):
    _offer(db, parties, bill)
    lifecycle.accept_offer(db, bill.id, parties.supplier_actor)
    return lifecycle.approve(
        db, bill.id, parties.mda_actor, ApprovalPayload(payment_quarters=2, start_quarter="Q2 2025")
    )


@pytest.fixture
def portfolio(db_session, parties, make_bill):
    """One bill per interesting status, all on the parties' MDA."""

    submitted = make_bill()
    reviewing = make_bill()
    lifecycle.start_review(db_session, reviewing.id, parties.spv_actor)
    offered = _offer(db_session, parties, make_bill())
    accepted = make_bill()
    _offer(db_session, parties, accepted)
    lifecycle.accept_offer(db_session, accepted.id, parties.supplier_actor)
    approved = _approve(db_session, parties, make_bill())
    certified = _approve(db_session, parties, make_bill())
    lifecycle.certify(
        db_session, certified.id, parties.treasury_actor, CertificationPayload(certificate_number="CERT-P-1")
    )
    bounced = make_bill()
    _offer(db_session, parties, bounced)
    lifecycle.reject_offer(db_session, bounced.id, parties.supplier_actor, RejectionPayload(reason="rate"))
    return {
        "submitted": submitted.id,
        "reviewing": reviewing.id,
        "offered": offered.id,
        "accepted": accepted.id,
        "approved": approved.id,
        "certified": certified.id,
        "bounced": bounced.id,
    }


def _ids(bills):
    return {bill.id for bill in bills}


def test_awaiting_offers(db_session, portfolio):
    assert _ids(projections.bills_awaiting_offers(db_session)) == {
        portfolio["submitted"],
        portfolio["reviewing"],
        portfolio["bounced"],
    }


def test_awaiting_mda_is_scoped_to_the_actor(db_session, parties, portfolio):
    assert _ids(projections.bills_awaiting_mda(db_session, parties.mda_actor)) == {portfolio["accepted"]}
    assert projections.bills_awaiting_mda(db_session, parties.other_mda_actor) == []

    with pytest.raises(GuardViolation) as exc_info:
        projections.bills_awaiting_mda(db_session, parties.treasury_actor)
    assert exc_info.value.status_code == 403


def test_awaiting_treasury_and_certified(db_session, portfolio):
    assert _ids(projections.bills_awaiting_treasury(db_session)) == {portfolio["approved"]}
    assert _ids(projections.certified_bills(db_session)) == {portfolio["certified"]}


def test_supplier_bills_with_status_filter(db_session, parties, portfolio, make_user, make_bill):
    other_supplier = make_user(Role.SUPPLIER)
    make_bill(supplier=other_supplier)

    mine = projections.supplier_bills(db_session, parties.supplier.id)
    assert _ids(mine) == set(portfolio.values())
    submitted = projections.supplier_bills(db_session, parties.supplier.id, BillStatus.SUBMITTED)
    assert _ids(submitted) == {portfolio["submitted"], portfolio["bounced"]}


def test_spv_offers_buckets(db_session, parties, portfolio):
    offers = projections.spv_offers(db_session, parties.spv.id)

    assert _ids(offers.pending) == {portfolio["offered"]}
    assert _ids(offers.rejected) == {portfolio["bounced"]}
    assert _ids(offers.accepted) == {portfolio["accepted"], portfolio["approved"]}
    assert _ids(offers.completed) == {portfolio["certified"]}
    assert offers.closed == []


def test_spv_offers_keep_bills_rejected_after_bidding(db_session, parties, make_bill):
    bill = make_bill()
    _offer(db_session, parties, bill)
    lifecycle.accept_offer(db_session, bill.id, parties.supplier_actor)
    lifecycle.reject(db_session, bill.id, parties.mda_actor, RejectionPayload(reason="Works not delivered"))

    offers = projections.spv_offers(db_session, parties.spv.id)

    assert _ids(offers.closed) == {bill.id}
    assert offers.pending == offers.rejected == offers.accepted == offers.completed == []


def test_status_breakdown_lists_every_status(db_session, portfolio):
    counts = projections.status_breakdown(db_session)

    assert set(counts) == {status.value for status in BillStatus}
    assert counts["submitted"] == 2
    assert counts["under_review"] == 1
    assert counts["offer_made"] == 1
    assert counts["certified"] == 1
    assert counts["rejected"] == 0
    assert sum(counts.values()) == len(portfolio)


def test_can_view(db_session, parties, portfolio, make_user):
    offered = lifecycle.get_bill(db_session, portfolio["offered"])
    submitted = lifecycle.get_bill(db_session, portfolio["submitted"])
    stranger = make_user(Role.SUPPLIER)
    rival_spv = make_user(Role.SPV)
    rival = Actor(user_id=rival_spv.id, role=Role.SPV)

    assert projections.can_view(offered, parties.supplier_actor)
    assert not projections.can_view(offered, Actor(user_id=stranger.id, role=Role.SUPPLIER))
    assert projections.can_view(offered, parties.mda_actor)
    assert not projections.can_view(offered, parties.other_mda_actor)
    assert projections.can_view(offered, parties.spv_actor)
    assert not projections.can_view(offered, rival)
    assert projections.can_view(submitted, rival)
    assert projections.can_view(offered, parties.treasury_actor)
    assert projections.can_view(offered, parties.admin_actor)
