"""
Pure metric reducers: payment records / user documents -> summaries.

No I/O here. Amounts arrive in minor units and leave in major units.
"""
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from coachpay.core.timestamps import TimestampParseError, parse_timestamp
from coachpay.features.billing.plans import product_name
from coachpay.features.billing.provider import PaymentRecord
from coachpay.features.metrics.models import (
    CustomerMetrics,
    HistoricalPoint,
    RevenueMetrics,
    SalesMetrics,
    TransactionMetrics,
)
from coachpay.features.metrics.windows import MetricWindow

logger = logging.getLogger("coachpay")

SUCCEEDED = "succeeded"
# Anything else (processing, requires_action, ...) counts toward the total only
FAILED_STATUSES = frozenset({"requires_payment_method", "canceled"})
INACTIVE_STATUSES = frozenset({"none", "free"})
STATUS_FIELDS = ("trainingProgramStatus", "subscriptionStatus")


def growth_percent(current: float, previous: float) -> float:
    """Percentage change from previous to current; 0 when previous is 0."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def to_major(minor: int) -> float:
    return minor / 100


def succeeded(records: Iterable[PaymentRecord]) -> List[PaymentRecord]:
    return [r for r in records if r.status == SUCCEEDED]


def refundable_charges(records: Iterable[PaymentRecord]) -> List[str]:
    """Charge ids whose refund totals are needed for net revenue."""
    return [r.charge_id for r in succeeded(records) if r.charge_id]


def reduce_revenue(
    current: Sequence[PaymentRecord],
    previous: Sequence[PaymentRecord],
    refunds: Mapping[str, int],
) -> RevenueMetrics:
    """
    Revenue summary for the current window.

    Args:
        current: Payment records created in the window
        previous: Payment records created in the preceding window
        refunds: Refunded minor units per charge id
    """
    paid = succeeded(current)
    total_minor = sum(r.amount for r in paid)
    # A charge can never be refunded for more than was paid
    refunded_minor = sum(min(refunds.get(r.charge_id, 0), r.amount) for r in paid if r.charge_id)
    previous_minor = sum(r.amount for r in succeeded(previous))

    total = to_major(total_minor)
    count = len(paid)
    return RevenueMetrics(
        total_revenue=round(total, 2),
        net_revenue=round(to_major(total_minor - refunded_minor), 2),
        refunded_amount=round(to_major(refunded_minor), 2),
        average_transaction_value=round(total / count, 2) if count else 0.0,
        transaction_count=count,
        previous_revenue=round(to_major(previous_minor), 2),
        growth_percentage=growth_percent(total_minor, previous_minor),
    )


def reduce_sales(current: Sequence[PaymentRecord], previous: Sequence[PaymentRecord]) -> SalesMetrics:
    paid = succeeded(current)
    by_plan = Counter(product_name(r.price_id) for r in paid)
    previous_count = len(succeeded(previous))
    return SalesMetrics(
        total_sales=len(paid),
        total_sales_value=round(to_major(sum(r.amount for r in paid)), 2),
        sales_by_plan=dict(sorted(by_plan.items())),
        previous_sales=previous_count,
        growth_percentage=growth_percent(len(paid), previous_count),
    )


def reduce_transactions(records: Sequence[PaymentRecord]) -> TransactionMetrics:
    total = len(records)
    ok = sum(1 for r in records if r.status == SUCCEEDED)
    failed = sum(1 for r in records if r.status in FAILED_STATUSES)
    return TransactionMetrics(
        total_transactions=total,
        successful_transactions=ok,
        failed_transactions=failed,
        success_rate=round(ok / total * 100, 2) if total else 0.0,
    )


def reduce_historical(records: Iterable[PaymentRecord], window: MetricWindow) -> List[HistoricalPoint]:
    """Daily succeeded revenue, one point per UTC day of the window (zero-filled)."""
    buckets: Dict[str, int] = {day.isoformat(): 0 for day in window.days()}
    for record in succeeded(records):
        key = parse_timestamp(record.created).date().isoformat()
        if key in buckets:
            buckets[key] += record.amount
    return [
        HistoricalPoint(date=day, revenue=round(to_major(amount), 2))
        for day, amount in sorted(buckets.items())
    ]


def _is_active(user: Mapping[str, Any]) -> bool:
    for field in STATUS_FIELDS:
        status = user.get(field)
        if status and status not in INACTIVE_STATUSES:
            return True
    return False


def reduce_customers(users: Iterable[Tuple[str, Mapping[str, Any]]], window: MetricWindow) -> CustomerMetrics:
    active = 0
    new = 0
    for user_id, user in users:
        if _is_active(user):
            active += 1
        created = user.get("createdAt")
        if created is None:
            continue
        try:
            created_at = parse_timestamp(created)
        except TimestampParseError as e:
            logger.warning(f"Skipping unparseable createdAt for user {user_id}: {e}")
            continue
        if window.contains(created_at):
            new += 1
    return CustomerMetrics(active_customers=active, new_customers=new)
