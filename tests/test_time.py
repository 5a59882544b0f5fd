from datetime import date, datetime, timezone

from billing.models import PlanInterval
from billing.models.subscription import SubscriptionHealth
from billing.services.subscriptions import add_interval, derive_subscription_health
from billing.utils.time import add_months, parse_iso_utc


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_add_interval_per_plan():
    start = date(2024, 6, 1)
    assert add_interval(start, PlanInterval.MONTHLY) == date(2024, 7, 1)
    assert add_interval(start, PlanInterval.QUARTERLY) == date(2024, 9, 1)
    assert add_interval(start, PlanInterval.YEARLY) == date(2025, 6, 1)


def test_parse_iso_utc_normalises_offsets():
    parsed = parse_iso_utc("2024-05-31T21:30:00.000-04:00")
    assert parsed == datetime(2024, 6, 1, 1, 30, tzinfo=timezone.utc)
    assert parse_iso_utc("2024-05-31T12:00:00Z").tzinfo is not None


def test_subscription_health_thresholds():
    today = date(2024, 6, 1)
    assert derive_subscription_health(date(2024, 6, 9), today) == (SubscriptionHealth.ACTIVE, 8)
    assert derive_subscription_health(date(2024, 6, 8), today) == (SubscriptionHealth.DUE_SOON, 7)
    assert derive_subscription_health(date(2024, 6, 2), today) == (SubscriptionHealth.DUE_SOON, 1)
    assert derive_subscription_health(date(2024, 6, 1), today) == (SubscriptionHealth.OVERDUE, 0)
    assert derive_subscription_health(date(2024, 5, 20), today)[0] == SubscriptionHealth.OVERDUE
