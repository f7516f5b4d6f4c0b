"""
Admin dashboard metrics API.

All endpoints take optional startDate/endDate (ISO date or datetime);
the default window is the 30 days ending now.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from coachpay.api.deps import get_metrics_service, upstream_errors
from coachpay.core.errors import ValidationError
from coachpay.features.metrics import service as metrics
from coachpay.features.metrics.models import (
    DashboardMetrics,
    RevenueMetrics,
    SalesMetrics,
    TransactionMetrics,
)
from coachpay.features.metrics.service import MetricsService
from coachpay.features.metrics.windows import MetricWindow, window_from_query

router = APIRouter(tags=["metrics"])


def get_window(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
) -> MetricWindow:
    try:
        return window_from_query(start_date, end_date)
    except ValueError as e:
        raise ValidationError(str(e)) from e


@router.get("/getRevenueMetrics", response_model=RevenueMetrics)
async def get_revenue_metrics(
    window: MetricWindow = Depends(get_window),
    service: MetricsService = Depends(get_metrics_service),
):
    with upstream_errors("fetching revenue metrics"):
        return await service.single(window, metrics.REVENUE)


@router.get("/getSalesMetrics", response_model=SalesMetrics)
async def get_sales_metrics(
    window: MetricWindow = Depends(get_window),
    service: MetricsService = Depends(get_metrics_service),
):
    with upstream_errors("fetching sales metrics"):
        return await service.single(window, metrics.SALES)


@router.get("/getTransactionMetrics", response_model=TransactionMetrics)
async def get_transaction_metrics(
    window: MetricWindow = Depends(get_window),
    service: MetricsService = Depends(get_metrics_service),
):
    with upstream_errors("fetching transaction metrics"):
        return await service.single(window, metrics.TRANSACTIONS)


@router.get("/getDashboardMetrics", response_model=DashboardMetrics)
async def get_dashboard_metrics(
    window: MetricWindow = Depends(get_window),
    service: MetricsService = Depends(get_metrics_service),
):
    """
    Revenue, sales, transactions, customers and the daily revenue series
    for one window, computed from a single set of reads.
    """
    with upstream_errors("fetching dashboard metrics"):
        return await service.dashboard(window)
