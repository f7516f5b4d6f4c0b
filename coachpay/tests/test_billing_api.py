"""
Billing endpoint contracts (status codes and response shapes the mobile
client relies on).
"""
from fastapi.testclient import TestClient

from coachpay.features.billing.documents import USERS
from coachpay.features.billing.provider import BillingProviderError
from coachpay.main import create_app

WINTER = "price_1SGzgzBa6NGVc5lJvVOssWsG"


def seed_price(payments):
    payments.prices[WINTER] = {"id": WINTER, "unit_amount": 7900, "currency": "usd"}


def test_checkout_creates_intent_and_customer(client, payments, store):
    seed_price(payments)
    store.set(USERS, "user_alice", {})

    resp = client.post(
        "/createCheckoutSession",
        json={"priceId": WINTER, "userId": "user_alice", "customerEmail": "alice@example.com"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"clientSecret": "pi_123_secret_abc", "paymentIntentId": "pi_123", "customerId": "cus_1"}
    intent_call = [c for c in payments.calls if c[0] == "create_payment_intent"][0]
    assert intent_call[1:] == (7900, "usd", "cus_1", "alice@example.com", {"userId": "user_alice", "priceId": WINTER})
    assert store.get(USERS, "user_alice")["stripeCustomerId"] == "cus_1"


def test_checkout_reuses_existing_customer(client, payments, store):
    seed_price(payments)
    payments.customers.append({"id": "cus_existing", "email": "alice@example.com"})
    store.set(USERS, "user_alice", {})

    resp = client.post(
        "/createCheckoutSession",
        json={"priceId": WINTER, "userId": "user_alice", "customerEmail": "alice@example.com"},
    )
    assert resp.json()["customerId"] == "cus_existing"
    assert "create_customer" not in payments.call_names()


def test_checkout_without_email_has_no_customer(client, payments, store):
    seed_price(payments)
    resp = client.post("/createCheckoutSession", json={"priceId": WINTER, "userId": "user_alice"})
    assert resp.status_code == 200
    assert resp.json()["customerId"] is None
    assert store.writes == []


def test_checkout_missing_fields_is_400(client, payments):
    resp = client.post("/createCheckoutSession", json={"priceId": WINTER})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing required fields"
    assert payments.calls == []


def test_checkout_non_json_body_is_400(client):
    resp = client.post("/createCheckoutSession", content=b"priceId=x", headers={"content-type": "text/plain"})
    assert resp.status_code == 400


def test_checkout_get_is_405(client):
    resp = client.get("/createCheckoutSession")
    assert resp.status_code == 405
    assert resp.json()["error"] == "Method not allowed"


def test_checkout_stripe_failure_is_500(client, payments):
    resp = client.post("/createCheckoutSession", json={"priceId": "price_missing", "userId": "user_alice"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "upstream_error"
    assert "price_missing" in body["error"]


def test_portal_session_uses_default_return_url(client, payments):
    resp = client.post("/createPortalSession", json={"customerId": "cus_1"})
    assert resp.status_code == 200
    assert resp.json() == {"url": "https://billing.stripe.com/p/session/cus_1"}
    assert ("create_portal_session", "cus_1", "moctarnutrition://settings") in payments.calls


def test_portal_session_honours_return_url(client, payments):
    client.post("/createPortalSession", json={"customerId": "cus_1", "returnUrl": "https://app.example/back"})
    assert ("create_portal_session", "cus_1", "https://app.example/back") in payments.calls


def test_portal_session_missing_customer_is_400(client):
    resp = client.post("/createPortalSession", json={})
    assert resp.status_code == 400


def test_status_missing_user_id_is_400(client):
    resp = client.get("/getSubscriptionStatus")
    assert resp.status_code == 400


def test_status_unknown_user_is_404(client):
    resp = client.get("/getSubscriptionStatus", params={"userId": "ghost"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "User not found"


def test_status_defaults_to_free_without_customer(client, store, payments):
    store.set(USERS, "user_alice", {})
    resp = client.get("/getSubscriptionStatus", params={"userId": "user_alice"})
    assert resp.status_code == 200
    assert resp.json() == {
        "subscriptionId": None,
        "customerId": None,
        "status": "free",
        "currentPeriodEnd": None,
        "cancelAtPeriodEnd": None,
        "canceledAt": None,
    }
    assert "list_subscriptions" not in payments.call_names()


def test_status_defaults_to_free_without_subscription(client, store):
    store.set(USERS, "user_alice", {"stripeCustomerId": "cus_1"})
    body = client.get("/getSubscriptionStatus", params={"userId": "user_alice"}).json()
    assert body["status"] == "free"
    assert body["customerId"] == "cus_1"


def test_status_reports_latest_subscription(client, store, payments):
    store.set(USERS, "user_alice", {"stripeCustomerId": "cus_1"})
    payments.subscriptions["cus_1"] = [
        {
            "id": "sub_1",
            "status": "active",
            "current_period_end": 1711929600,
            "cancel_at_period_end": True,
            "canceled_at": None,
            "metadata": {"plan": "winter"},
        }
    ]
    body = client.get("/getSubscriptionStatus", params={"userId": "user_alice"}).json()
    assert body == {
        "subscriptionId": "sub_1",
        "customerId": "cus_1",
        "status": "active",
        "currentPeriodEnd": "2024-04-01T00:00:00.000Z",
        "cancelAtPeriodEnd": True,
        "canceledAt": None,
        "metadata": {"plan": "winter"},
    }
    assert ("list_subscriptions", "cus_1", "all", 1) in payments.calls


def test_cancel_at_period_end_by_default(client, payments):
    resp = client.post("/cancelSubscription", json={"subscriptionId": "sub_1"})
    assert resp.status_code == 200
    assert resp.json() == {"cancelledAt": None}
    assert ("update_subscription", "sub_1", {"cancel_at_period_end": True}) in payments.calls


def test_cancel_immediately(client, payments):
    resp = client.post("/cancelSubscription", json={"subscriptionId": "sub_1", "immediately": True})
    assert resp.json() == {"cancelledAt": "2024-01-01T00:00:00.000Z"}
    assert ("cancel_subscription", "sub_1") in payments.calls


def test_cancel_missing_subscription_is_400(client):
    assert client.post("/cancelSubscription", json={}).status_code == 400


def test_cancel_provider_error_is_500(client, payments):
    payments.fail_on["update_subscription"] = BillingProviderError("No such subscription: 'sub_x'")
    resp = client.post("/cancelSubscription", json={"subscriptionId": "sub_x"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "No such subscription: 'sub_x'"


def test_billing_disabled_without_stripe_key(settings, store):
    cfg = settings.model_copy(update={"STRIPE_SECRET_KEY": None})
    client = TestClient(create_app(settings=cfg, documents=store))
    resp = client.post("/createPortalSession", json={"customerId": "cus_1"})
    assert resp.status_code == 503
    assert resp.json()["code"] == "billing_disabled"
