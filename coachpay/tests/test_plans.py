"""Tests for price id -> plan classification."""
import pytest

from coachpay.features.billing.plans import PRICE_PLANS, classify, product_name


@pytest.mark.parametrize(
    "price_id,status,name",
    [
        ("price_1SGzgzBa6NGVc5lJvVOssWsG", "winter", "Winter Plan"),
        ("price_1SGzfcBa6NGVc5lJwmTNs2xk", "summer", "Summer Plan"),
        ("price_1SHG5NBa6NGVc5lJdOEVEhZv", "bodybuilding", "Body Building"),
    ],
)
def test_known_prices_map_to_stable_plans(price_id, status, name):
    assert classify(price_id) == status
    assert product_name(price_id) == name


@pytest.mark.parametrize("price_id", [None, "", "price_unknown", "PRICE_1SGZGZBA6NGVC5LJVVOSSWSG"])
def test_unknown_prices_fall_back(price_id):
    assert classify(price_id) == "none"
    assert product_name(price_id) == "Unknown Product"


def test_table_has_three_programs():
    assert len(PRICE_PLANS) == 3
    assert len({plan.status for plan in PRICE_PLANS.values()}) == 3
