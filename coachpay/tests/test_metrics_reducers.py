"""Tests for the pure metric reducers."""
from datetime import datetime, timedelta, timezone

import pytest

from coachpay.features.metrics import reducers
from coachpay.features.metrics.windows import MetricWindow
from coachpay.features.billing.provider import PaymentRecord

UTC = timezone.utc
WINTER = "price_1SGzgzBa6NGVc5lJvVOssWsG"
SUMMER = "price_1SGzfcBa6NGVc5lJwmTNs2xk"


def payment(pid, amount, status="succeeded", created=None, price_id=WINTER, charge_id="auto"):
    return PaymentRecord(
        id=pid,
        amount=amount,
        currency="usd",
        status=status,
        created=created or datetime(2024, 1, 1, 12, tzinfo=UTC),
        price_id=price_id,
        charge_id=f"ch_{pid}" if charge_id == "auto" else charge_id,
    )


def test_historical_series_is_zero_filled_per_day():
    window = MetricWindow(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 3, tzinfo=UTC))
    points = reducers.reduce_historical([payment("a", 1000)], window)
    assert [p.model_dump() for p in points] == [
        {"date": "2024-01-01", "revenue": 10.0},
        {"date": "2024-01-02", "revenue": 0},
    ]


def test_historical_ignores_unsucceeded_and_out_of_window_payments():
    window = MetricWindow(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 3, tzinfo=UTC))
    records = [
        payment("a", 1000, status="canceled"),
        payment("b", 2500, created=datetime(2024, 1, 2, 23, 59, tzinfo=UTC)),
        payment("c", 9900, created=datetime(2024, 1, 5, tzinfo=UTC)),
    ]
    points = reducers.reduce_historical(records, window)
    assert [(p.date, p.revenue) for p in points] == [("2024-01-01", 0), ("2024-01-02", 25.0)]


def test_full_refund_contributes_nothing_to_net_revenue():
    revenue = reducers.reduce_revenue([payment("a", 5000)], [], {"ch_a": 5000})
    assert revenue.total_revenue == 50.0
    assert revenue.net_revenue == 0
    assert revenue.refunded_amount == 50.0


def test_partial_refund_contributes_the_remainder():
    revenue = reducers.reduce_revenue([payment("a", 5000)], [], {"ch_a": 2000})
    assert revenue.net_revenue == 30.0
    assert revenue.refunded_amount == 20.0


def test_refund_never_exceeds_the_payment():
    revenue = reducers.reduce_revenue([payment("a", 1000)], [], {"ch_a": 5000})
    assert revenue.net_revenue == 0
    assert revenue.refunded_amount == 10.0


def test_revenue_counts_only_succeeded_payments():
    current = [payment("a", 1000), payment("b", 3000), payment("c", 7000, status="requires_payment_method")]
    previous = [payment("p", 2000)]
    revenue = reducers.reduce_revenue(current, previous, {})
    assert revenue.total_revenue == 40.0
    assert revenue.net_revenue == 40.0
    assert revenue.transaction_count == 2
    assert revenue.average_transaction_value == 20.0
    assert revenue.previous_revenue == 20.0
    assert revenue.growth_percentage == 100.0


def test_revenue_of_empty_window():
    revenue = reducers.reduce_revenue([], [], {})
    assert revenue.total_revenue == 0
    assert revenue.average_transaction_value == 0
    assert revenue.growth_percentage == 0


def test_refundable_charges_skip_missing_charge_ids():
    records = [payment("a", 100), payment("b", 100, charge_id=None), payment("c", 100, status="canceled")]
    assert reducers.refundable_charges(records) == ["ch_a"]


def test_sales_grouped_by_plan_name():
    current = [
        payment("a", 1000, price_id=WINTER),
        payment("b", 1000, price_id=WINTER),
        payment("c", 2000, price_id=SUMMER),
        payment("d", 500, price_id=None),
        payment("e", 500, price_id=SUMMER, status="canceled"),
    ]
    sales = reducers.reduce_sales(current, [payment("p", 1000)])
    assert sales.total_sales == 4
    assert sales.total_sales_value == 45.0
    assert sales.sales_by_plan == {"Summer Plan": 1, "Unknown Product": 1, "Winter Plan": 2}
    assert sales.previous_sales == 1
    assert sales.growth_percentage == 300.0


def test_transaction_failed_partition_is_exact():
    records = [
        payment("a", 100),
        payment("b", 100, status="requires_payment_method"),
        payment("c", 100, status="canceled"),
        payment("d", 100, status="requires_action"),
        payment("e", 100, status="processing"),
    ]
    tx = reducers.reduce_transactions(records)
    assert tx.total_transactions == 5
    assert tx.successful_transactions == 1
    assert tx.failed_transactions == 2
    assert tx.success_rate == 20.0


def test_transactions_of_empty_window():
    tx = reducers.reduce_transactions([])
    assert tx.total_transactions == 0
    assert tx.success_rate == 0


def test_customers_active_and_new():
    window = MetricWindow(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC))
    users = [
        ("u1", {"trainingProgramStatus": "winter", "createdAt": datetime(2024, 1, 15, tzinfo=UTC)}),
        ("u2", {"subscriptionStatus": "premium", "createdAt": {"seconds": 1700000000}}),
        ("u3", {"trainingProgramStatus": "none", "subscriptionStatus": "free", "createdAt": "2024-01-20T10:00:00Z"}),
        ("u4", {"createdAt": "not a date"}),
        ("u5", {}),
    ]
    customers = reducers.reduce_customers(users, window)
    assert customers.active_customers == 2
    assert customers.new_customers == 2


def test_customers_with_unparseable_created_at_are_logged(caplog):
    window = MetricWindow(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC) + timedelta(days=1))
    with caplog.at_level("WARNING", logger="coachpay"):
        reducers.reduce_customers([("u4", {"createdAt": "not a date"})], window)
    assert "u4" in caplog.text


@pytest.mark.parametrize("minor,major", [(0, 0.0), (1, 0.01), (1999, 19.99)])
def test_to_major(minor, major):
    assert reducers.to_major(minor) == major
