"""
Metrics aggregation.

One parameterized aggregate() serves both the single-metric endpoints and
the dashboard. Independent reads (current payments, previous payments,
user documents) are issued concurrently; refund lookups run through a
bounded pool. Any failed read fails the whole aggregate.
"""
import asyncio
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

from coachpay.core.timestamps import to_iso
from coachpay.core.upstream import call_upstream, gather_bounded
from coachpay.features.billing.documents import USERS, DocumentStore
from coachpay.features.billing.provider import PaymentRecord, PaymentService
from coachpay.features.metrics import reducers
from coachpay.features.metrics.models import DashboardMetrics, MetricsPeriod
from coachpay.features.metrics.windows import MetricWindow

logger = logging.getLogger("coachpay")

REVENUE = "revenue"
SALES = "sales"
TRANSACTIONS = "transactions"
CUSTOMERS = "customers"
HISTORICAL = "historical"
ALL_GROUPS: FrozenSet[str] = frozenset({REVENUE, SALES, TRANSACTIONS, CUSTOMERS, HISTORICAL})

_NEEDS_CURRENT = {REVENUE, SALES, TRANSACTIONS, HISTORICAL}
_NEEDS_PREVIOUS = {REVENUE, SALES}


class MetricsService:
    """
    Args:
        payments: Payment provider to list payments and refunds from
        documents: Document store holding user records
        page_limit: Max payments fetched per window (Stripe caps lists at 100)
        refund_concurrency: Max refund lookups in flight
        timeout: Per-call upstream timeout in seconds
    """

    def __init__(
        self,
        payments: PaymentService,
        documents: DocumentStore,
        *,
        page_limit: int = 100,
        refund_concurrency: int = 8,
        timeout: float = 10.0,
    ):
        self.payments = payments
        self.documents = documents
        self.page_limit = page_limit
        self.refund_concurrency = refund_concurrency
        self.timeout = timeout

    async def _payments(self, window: MetricWindow) -> List[PaymentRecord]:
        return await call_upstream(
            self.payments.list_payments, window.start, window.end, limit=self.page_limit, timeout=self.timeout
        )

    async def _refunds(self, records: Iterable[PaymentRecord]) -> Dict[str, int]:
        charge_ids = list(dict.fromkeys(reducers.refundable_charges(records)))
        amounts = await gather_bounded(
            (call_upstream(self.payments.get_refunded_amount, cid, timeout=self.timeout) for cid in charge_ids),
            limit=self.refund_concurrency,
        )
        return dict(zip(charge_ids, amounts))

    def stream_users(self) -> List[Tuple[str, Dict[str, Any]]]:
        return list(self.documents.stream(USERS))

    async def _users(self):
        return await call_upstream(self.stream_users, timeout=self.timeout)

    async def _none(self):
        return None

    async def aggregate(self, window: MetricWindow, groups: Iterable[str] = ALL_GROUPS) -> Dict[str, object]:
        """
        Compute the requested metric groups for a window.

        Returns:
            Mapping of group name to its model (historical -> list of points)

        Raises:
            ValueError: If an unknown group is requested
        """
        wanted = frozenset(groups)
        unknown = wanted - ALL_GROUPS
        if unknown:
            raise ValueError(f"Unknown metric groups: {', '.join(sorted(unknown))}")

        current, previous, users = await asyncio.gather(
            self._payments(window) if wanted & _NEEDS_CURRENT else self._none(),
            self._payments(window.previous()) if wanted & _NEEDS_PREVIOUS else self._none(),
            self._users() if CUSTOMERS in wanted else self._none(),
        )
        current = current or []
        previous = previous or []

        result: Dict[str, object] = {}
        if REVENUE in wanted:
            refunds = await self._refunds(current)
            result[REVENUE] = reducers.reduce_revenue(current, previous, refunds)
        if SALES in wanted:
            result[SALES] = reducers.reduce_sales(current, previous)
        if TRANSACTIONS in wanted:
            result[TRANSACTIONS] = reducers.reduce_transactions(current)
        if CUSTOMERS in wanted:
            result[CUSTOMERS] = reducers.reduce_customers(users or [], window)
        if HISTORICAL in wanted:
            result[HISTORICAL] = reducers.reduce_historical(current, window)

        logger.info(
            "metrics.aggregate",
            extra={"groups": ",".join(sorted(wanted)), "payments": len(current), "previous_payments": len(previous)},
        )
        return result

    async def dashboard(self, window: MetricWindow) -> DashboardMetrics:
        metrics = await self.aggregate(window, ALL_GROUPS)
        return DashboardMetrics(
            period=MetricsPeriod(start_date=to_iso(window.start), end_date=to_iso(window.end)),
            **metrics,
        )

    async def single(self, window: MetricWindow, group: str):
        metrics = await self.aggregate(window, {group})
        return metrics[group]
