"""
Metrics response models.

Field names are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List


class _MetricsModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class RevenueMetrics(_MetricsModel):
    """Succeeded-payment revenue in major currency units"""
    total_revenue: float = Field(ge=0)
    net_revenue: float = Field(description="Total minus refunds")
    refunded_amount: float = Field(ge=0)
    average_transaction_value: float = Field(ge=0)
    transaction_count: int = Field(ge=0, description="Succeeded payments in window")
    previous_revenue: float = Field(ge=0)
    growth_percentage: float


class SalesMetrics(_MetricsModel):
    total_sales: int = Field(ge=0)
    total_sales_value: float = Field(ge=0)
    sales_by_plan: Dict[str, int] = Field(description="Succeeded payments per plan display name")
    previous_sales: int = Field(ge=0)
    growth_percentage: float


class TransactionMetrics(_MetricsModel):
    total_transactions: int = Field(ge=0, description="Payments of any status")
    successful_transactions: int = Field(ge=0)
    failed_transactions: int = Field(ge=0, description="requires_payment_method or canceled")
    success_rate: float = Field(ge=0, le=100)


class CustomerMetrics(_MetricsModel):
    active_customers: int = Field(ge=0)
    new_customers: int = Field(ge=0)


class HistoricalPoint(_MetricsModel):
    date: str = Field(description="UTC calendar date, YYYY-MM-DD")
    revenue: float = Field(ge=0)


class MetricsPeriod(_MetricsModel):
    start_date: str
    end_date: str


class DashboardMetrics(_MetricsModel):
    period: MetricsPeriod
    revenue: RevenueMetrics
    sales: SalesMetrics
    transactions: TransactionMetrics
    customers: CustomerMetrics
    historical: List[HistoricalPoint]
