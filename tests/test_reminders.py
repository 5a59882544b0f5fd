from datetime import date

from billing.models import Notification, SubscriptionStatus
from billing.services.reminders import send_expiry_reminders_once

TODAY = date(2024, 6, 3)


def test_reminder_sent_for_matching_horizon(db_session, make_plan, make_subscription):
    subscription = make_subscription(make_plan(), end_date=date(2024, 6, 10))

    summary = send_expiry_reminders_once(db_session, today=TODAY, horizons=[7, 3, 1])

    assert summary == {"sent": 1, "skipped": 0, "failed": 0}
    notification = db_session.query(Notification).one()
    assert notification.type == "subscription_expiring"
    assert notification.user_id == "student-1"
    assert notification.metadata_json == {
        "subscription_id": subscription.id,
        "days_left": 7,
        "end_date": "2024-06-10",
    }
    assert "10/06/2024" in notification.message
    db_session.refresh(subscription)
    assert "reminder_7days" in subscription.metadata_json


def test_rerun_on_same_day_sends_nothing(db_session, make_plan, make_subscription):
    make_subscription(make_plan(), end_date=date(2024, 6, 4))

    first = send_expiry_reminders_once(db_session, today=TODAY, horizons=[7, 3, 1])
    second = send_expiry_reminders_once(db_session, today=TODAY, horizons=[7, 3, 1])

    assert first["sent"] == 1
    assert second == {"sent": 0, "skipped": 1, "failed": 0}
    assert db_session.query(Notification).count() == 1


def test_each_horizon_fires_once(db_session, make_plan, make_subscription):
    make_subscription(make_plan(), end_date=date(2024, 6, 10))

    send_expiry_reminders_once(db_session, today=date(2024, 6, 3), horizons=[7, 3, 1])
    send_expiry_reminders_once(db_session, today=date(2024, 6, 7), horizons=[7, 3, 1])
    send_expiry_reminders_once(db_session, today=date(2024, 6, 9), horizons=[7, 3, 1])

    days = sorted(n.metadata_json["days_left"] for n in db_session.query(Notification))
    assert days == [1, 3, 7]


def test_off_horizon_and_inactive_subscriptions_are_ignored(db_session, make_plan, make_subscription):
    plan = make_plan()
    make_subscription(plan, end_date=date(2024, 6, 8))
    make_subscription(plan, user_id="student-2", end_date=date(2024, 6, 10), status=SubscriptionStatus.CANCELLED)

    summary = send_expiry_reminders_once(db_session, today=TODAY, horizons=[7, 3, 1])

    assert summary == {"sent": 0, "skipped": 0, "failed": 0}
