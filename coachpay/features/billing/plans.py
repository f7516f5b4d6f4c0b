"""
Plan classification: Stripe price id -> training program.

Both lookups are pure and total. Unknown (or missing) price ids classify
as "none" for user status and "Unknown Product" for reporting.
"""
from dataclasses import dataclass
from typing import Dict, Optional

NO_PLAN = "none"
UNKNOWN_PRODUCT = "Unknown Product"


@dataclass(frozen=True)
class Plan:
    status: str  # value written to users.trainingProgramStatus
    name: str  # display name used in sales reporting


PRICE_PLANS: Dict[str, Plan] = {
    "price_1SGzgzBa6NGVc5lJvVOssWsG": Plan(status="winter", name="Winter Plan"),
    "price_1SGzfcBa6NGVc5lJwmTNs2xk": Plan(status="summer", name="Summer Plan"),
    "price_1SHG5NBa6NGVc5lJdOEVEhZv": Plan(status="bodybuilding", name="Body Building"),
}


def classify(price_id: Optional[str]) -> str:
    """Program status for a price id ("none" when unmapped)."""
    plan = PRICE_PLANS.get(price_id) if price_id else None
    return plan.status if plan else NO_PLAN


def product_name(price_id: Optional[str]) -> str:
    """Display name for a price id ("Unknown Product" when unmapped)."""
    plan = PRICE_PLANS.get(price_id) if price_id else None
    return plan.name if plan else UNKNOWN_PRODUCT
