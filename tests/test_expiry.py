from datetime import date

from billing.models import ChargeStatus, Membership, Notification, SubscriptionStatus
from billing.services.expiry import expire_stale_charges_once, expire_subscriptions_once
from billing.services.memberships import DatabaseMembershipStore

TODAY = date(2024, 6, 10)


def _activate_membership(db_session, user_id="student-1"):
    DatabaseMembershipStore(db_session).set_active(user_id, True, date(2024, 6, 9))
    db_session.commit()


def test_subscription_past_end_date_expires(db_session, make_plan, make_subscription):
    plan = make_plan()
    subscription = make_subscription(plan, end_date=date(2024, 6, 9))
    _activate_membership(db_session)

    summary = expire_subscriptions_once(db_session, today=TODAY)

    assert summary == {"selected": 1, "expired": 1, "failed": 0}
    db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.EXPIRED
    membership = db_session.query(Membership).filter_by(user_id="student-1").one()
    db_session.refresh(membership)
    assert membership.active is False
    notification = db_session.query(Notification).one()
    assert notification.type == "subscription_expired"
    assert notification.metadata_json["subscription_id"] == subscription.id


def test_subscription_ending_today_is_still_active(db_session, make_plan, make_subscription):
    subscription = make_subscription(make_plan(), end_date=TODAY)

    summary = expire_subscriptions_once(db_session, today=TODAY)

    assert summary["selected"] == 0
    db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.ACTIVE


def test_expiry_runs_once_per_subscription(db_session, make_plan, make_subscription):
    make_subscription(make_plan(), end_date=date(2024, 5, 1))

    expire_subscriptions_once(db_session, today=TODAY)
    second = expire_subscriptions_once(db_session, today=TODAY)

    assert second["selected"] == 0
    assert db_session.query(Notification).count() == 1


def test_other_active_subscription_keeps_membership(db_session, make_plan, make_subscription):
    make_subscription(make_plan(), end_date=date(2024, 6, 1))
    make_subscription(make_plan(teacher_id="teacher-2"), end_date=date(2024, 7, 1))
    _activate_membership(db_session)

    expire_subscriptions_once(db_session, today=TODAY)

    membership = db_session.query(Membership).filter_by(user_id="student-1").one()
    db_session.refresh(membership)
    assert membership.active is True


def test_cancelled_subscriptions_are_ignored(db_session, make_plan, make_subscription):
    make_subscription(make_plan(), end_date=date(2024, 5, 1), status=SubscriptionStatus.CANCELLED)

    assert expire_subscriptions_once(db_session, today=TODAY)["selected"] == 0


def test_stale_unpaid_charges_expire(db_session, make_charge):
    overdue_created = make_charge(due_date=date(2024, 6, 1))
    overdue_pending = make_charge(status=ChargeStatus.PENDING, due_date=date(2024, 6, 9))
    due_today = make_charge(status=ChargeStatus.PENDING, due_date=TODAY)
    paid = make_charge(status=ChargeStatus.PAID, due_date=date(2024, 6, 1))

    assert expire_stale_charges_once(db_session, today=TODAY) == 2

    for charge in (overdue_created, overdue_pending, due_today, paid):
        db_session.refresh(charge)
    assert overdue_created.status == ChargeStatus.EXPIRED
    assert overdue_pending.status == ChargeStatus.EXPIRED
    assert due_today.status == ChargeStatus.PENDING
    assert paid.status == ChargeStatus.PAID
