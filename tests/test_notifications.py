import pytest

from app.models.notification import NotificationKind
from app.models.user import Role
from app.services import notifications
from app.services.notifications import NotificationNotFound, RoleCohort, UserTarget


def test_cohort_resolution_respects_scope_and_active_flag(db_session, parties, make_user):
    inactive = make_user(Role.MDA, mda=parties.mda, is_active=False)

    recipients = notifications.resolve_recipients(db_session, RoleCohort(Role.MDA, scope_id=parties.mda.id))

    assert recipients == [parties.mda_user.id]
    assert inactive.id not in recipients
    assert parties.other_mda_user.id not in recipients


def test_unscoped_cohort_reaches_every_active_holder(db_session, parties, make_user):
    second = make_user(Role.TREASURY)

    recipients = notifications.resolve_recipients(db_session, RoleCohort(Role.TREASURY))

    assert set(recipients) == {parties.treasury.id, second.id}


def test_notify_inserts_one_row_per_recipient(db_session, parties):
    rows = notifications.notify(
        db_session,
        RoleCohort(Role.MDA),
        "Bill Pending Your Approval",
        "Invoice INV-1 awaits approval.",
        NotificationKind.INFO,
    )
    db_session.commit()

    assert {row.recipient_user_id for row in rows} == {parties.mda_user.id, parties.other_mda_user.id}
    assert all(row.read is False for row in rows)


def test_empty_cohort_is_a_no_op(db_session, parties):
    assert notifications.notify(db_session, RoleCohort(Role.MDA, scope_id=424242), "t", "m") == []


def test_target_json_round_trip():
    for target in (UserTarget(7), RoleCohort(Role.MDA, scope_id=3), RoleCohort(Role.ADMIN)):
        assert notifications.target_from_json(notifications.target_to_json(target)) == target


def test_mark_read_is_owner_only(db_session, parties):
    (row,) = notifications.notify(db_session, UserTarget(parties.supplier.id), "Hello", "World", "success")
    db_session.commit()

    with pytest.raises(NotificationNotFound):
        notifications.mark_read(db_session, row.id, parties.spv.id)

    updated = notifications.mark_read(db_session, row.id, parties.supplier.id)
    assert updated.read is True
    assert updated.kind == NotificationKind.SUCCESS
    assert notifications.list_notifications(db_session, parties.supplier.id, unread_only=True) == []
    assert len(notifications.list_notifications(db_session, parties.supplier.id)) == 1
