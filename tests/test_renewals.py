from datetime import date

from billing.models import AuditLog, Charge, ChargeStatus, Notification
from billing.services.renewals import open_renewal_charges_once
from billing.utils.errors import GatewayUnavailable

TODAY = date(2024, 6, 7)
END = date(2024, 6, 10)


def test_renewal_opens_linked_charge(db_session, make_plan, make_subscription, gateway_factory, fake_gateway):
    plan = make_plan(price="199.90")
    subscription = make_subscription(plan, end_date=END, auto_renew=True)

    summary = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert summary == {"selected": 1, "opened": 1, "skipped": 0, "failed": 0}
    charge = db_session.query(Charge).one()
    assert charge.status == ChargeStatus.PENDING
    assert charge.subscription_id == subscription.id
    assert charge.due_date == END
    assert str(charge.amount) == "199.90"
    assert fake_gateway.link_calls == [charge.id]

    notification = db_session.query(Notification).one()
    assert notification.type == "auto_renewal"
    assert notification.metadata_json["checkout_url"] == charge.payment_link
    assert db_session.query(AuditLog).filter_by(actor="renewal-job").count() == 2


def test_existing_renewal_is_not_duplicated(db_session, make_plan, make_subscription, gateway_factory):
    subscription = make_subscription(make_plan(), end_date=END, auto_renew=True)

    open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)
    second = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert second == {"selected": 1, "opened": 0, "skipped": 1, "failed": 0}
    assert db_session.query(Charge).filter_by(subscription_id=subscription.id).count() == 1


def test_gateway_failure_is_retried_on_next_run(
    db_session, make_plan, make_subscription, gateway_factory, fake_gateway
):
    make_subscription(make_plan(), end_date=END, auto_renew=True)
    fake_gateway.fail_with = GatewayUnavailable("Payment gateway timed out.")

    failed = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert failed["failed"] == 1
    charge = db_session.query(Charge).one()
    db_session.refresh(charge)
    assert charge.status == ChargeStatus.CREATED
    assert db_session.query(Notification).count() == 0

    fake_gateway.fail_with = None
    retried = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert retried["opened"] == 1
    assert db_session.query(Charge).count() == 1
    db_session.refresh(charge)
    assert charge.status == ChargeStatus.PENDING


def test_subscriptions_without_auto_renew_are_skipped(db_session, make_plan, make_subscription, gateway_factory):
    make_subscription(make_plan(), end_date=END, auto_renew=False)
    make_subscription(make_plan(), user_id="student-2", end_date=date(2024, 6, 20), auto_renew=True)

    summary = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert summary["selected"] == 0
    assert db_session.query(Charge).count() == 0


def test_inactive_plan_is_not_renewed(db_session, make_plan, make_subscription, gateway_factory):
    make_subscription(make_plan(is_active=False), end_date=END, auto_renew=True)

    summary = open_renewal_charges_once(db_session, today=TODAY, gateway_factory=gateway_factory, lead_days=3)

    assert summary["skipped"] == 1
    assert db_session.query(Charge).count() == 0
