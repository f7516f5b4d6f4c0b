"""Tests for the metrics aggregator."""
import time
from datetime import datetime, timezone

import pytest

from coachpay.core.errors import UpstreamTimeoutError
from coachpay.features.billing.documents import USERS, InMemoryDocumentStore
from coachpay.features.billing.provider import BillingProviderError, PaymentRecord
from coachpay.features.metrics import service as metrics
from coachpay.features.metrics.service import MetricsService
from coachpay.features.metrics.windows import MetricWindow
from coachpay.tests.fakes import FakePaymentService

UTC = timezone.utc
WINDOW = MetricWindow(datetime(2024, 1, 11, tzinfo=UTC), datetime(2024, 1, 21, tzinfo=UTC))


def record(pid, amount, day, status="succeeded", charge_id=None):
    return PaymentRecord(
        id=pid,
        amount=amount,
        currency="usd",
        status=status,
        created=datetime(2024, 1, day, 9, tzinfo=UTC),
        price_id="price_1SGzfcBa6NGVc5lJwmTNs2xk",
        charge_id=charge_id,
    )


@pytest.fixture
def fake():
    fake = FakePaymentService()
    fake.payments = [
        record("pi_prev", 2000, 5, charge_id="ch_prev"),
        record("pi_a", 5000, 12, charge_id="ch_a"),
        record("pi_b", 3000, 15, charge_id="ch_b"),
        record("pi_c", 1000, 16, status="canceled"),
    ]
    fake.refunds = {"ch_a": 2000}
    return fake


@pytest.fixture
def users():
    store = InMemoryDocumentStore()
    store.set(USERS, "u1", {"trainingProgramStatus": "summer", "createdAt": datetime(2024, 1, 12, tzinfo=UTC)})
    store.set(USERS, "u2", {"trainingProgramStatus": "none", "createdAt": datetime(2023, 6, 1, tzinfo=UTC)})
    return store


@pytest.mark.asyncio
async def test_dashboard_combines_all_groups(fake, users):
    service = MetricsService(fake, users)
    dashboard = await service.dashboard(WINDOW)

    assert dashboard.period.start_date == "2024-01-11T00:00:00.000Z"
    assert dashboard.period.end_date == "2024-01-21T00:00:00.000Z"
    assert dashboard.revenue.total_revenue == 80.0
    assert dashboard.revenue.net_revenue == 60.0
    assert dashboard.revenue.previous_revenue == 20.0
    assert dashboard.revenue.growth_percentage == 300.0
    assert dashboard.sales.sales_by_plan == {"Summer Plan": 2}
    assert dashboard.transactions.total_transactions == 3
    assert dashboard.transactions.failed_transactions == 1
    assert dashboard.customers.active_customers == 1
    assert dashboard.customers.new_customers == 1
    assert len(dashboard.historical) == 10


@pytest.mark.asyncio
async def test_single_group_matches_dashboard(fake, users):
    service = MetricsService(fake, users)
    single = await service.single(WINDOW, metrics.REVENUE)
    dashboard = await service.dashboard(WINDOW)
    assert single == dashboard.revenue


@pytest.mark.asyncio
async def test_transactions_skip_previous_window_and_refunds(fake, users):
    service = MetricsService(fake, users)
    await service.single(WINDOW, metrics.TRANSACTIONS)
    assert fake.call_names() == ["list_payments"]


@pytest.mark.asyncio
async def test_page_limit_is_passed_to_provider(fake, users):
    service = MetricsService(fake, users, page_limit=1)
    revenue = await service.single(WINDOW, metrics.REVENUE)
    limits = {call[3] for call in fake.calls if call[0] == "list_payments"}
    assert limits == {1}
    assert revenue.transaction_count == 1


@pytest.mark.asyncio
async def test_refund_lookups_are_bounded(users):
    fake = FakePaymentService()
    fake.payments = [record(f"pi_{i}", 100, 12, charge_id=f"ch_{i}") for i in range(12)]
    fake.refund_delay = 0.02
    service = MetricsService(fake, users, refund_concurrency=3)

    revenue = await service.single(WINDOW, metrics.REVENUE)

    assert revenue.transaction_count == 12
    assert fake.call_names().count("get_refunded_amount") == 12
    assert 1 <= fake.max_refund_concurrency <= 3


@pytest.mark.asyncio
async def test_failed_read_aborts_the_aggregate(fake, users):
    fake.fail_on["get_refunded_amount"] = BillingProviderError("rate limited")
    service = MetricsService(fake, users)
    with pytest.raises(BillingProviderError):
        await service.dashboard(WINDOW)


@pytest.mark.asyncio
async def test_failed_user_read_aborts_the_aggregate(fake):
    class BrokenStore(InMemoryDocumentStore):
        def stream(self, collection):
            raise RuntimeError("firestore unavailable")

    service = MetricsService(fake, BrokenStore())
    with pytest.raises(RuntimeError):
        await service.single(WINDOW, metrics.CUSTOMERS)


@pytest.mark.asyncio
async def test_slow_upstream_times_out(users):
    fake = FakePaymentService()
    fake.payments = [record("pi_a", 100, 12, charge_id="ch_a")]
    fake.refund_delay = 0.5
    service = MetricsService(fake, users, timeout=0.05)
    with pytest.raises(UpstreamTimeoutError):
        await service.single(WINDOW, metrics.REVENUE)


@pytest.mark.asyncio
async def test_unknown_group_is_rejected(fake, users):
    service = MetricsService(fake, users)
    with pytest.raises(ValueError):
        await service.aggregate(WINDOW, {"profit"})


@pytest.mark.asyncio
async def test_slow_user_read_names_the_call(fake):
    class SlowStore(InMemoryDocumentStore):
        def stream(self, collection):
            time.sleep(0.3)
            return iter([])

    service = MetricsService(fake, SlowStore(), timeout=0.05)
    with pytest.raises(UpstreamTimeoutError) as exc_info:
        await service.single(WINDOW, metrics.CUSTOMERS)
    assert str(exc_info.value).startswith("stream_users timed out")
