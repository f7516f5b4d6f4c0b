"""
Stripe payment provider implementation.

Implements PaymentService using the Stripe SDK. The API key is passed on
every call instead of being assigned to the module-global stripe.api_key,
so several providers (or a fake) can coexist in one process.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe

from coachpay.core.timestamps import from_epoch
from coachpay.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    PaymentRecord,
    WebhookEvent,
)


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Convert a StripeObject (or plain mapping) to a plain dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _charge_id(intent: Dict[str, Any]) -> Optional[str]:
    latest = intent.get("latest_charge")
    if isinstance(latest, dict):
        return latest.get("id")
    if latest:
        return latest
    # Pre-2022-11-15 API versions expand charges on the intent
    charges = (intent.get("charges") or {}).get("data") or []
    return charges[0].get("id") if charges else None


def payment_record_from_intent(intent: Dict[str, Any]) -> PaymentRecord:
    metadata = intent.get("metadata") or {}
    return PaymentRecord(
        id=intent["id"],
        amount=int(intent.get("amount") or 0),
        currency=intent.get("currency") or "usd",
        status=intent.get("status") or "unknown",
        created=from_epoch(intent.get("created") or 0),
        price_id=metadata.get("priceId"),
        charge_id=_charge_id(intent),
        customer_id=intent.get("customer"),
        metadata=dict(metadata),
    )


class StripeProvider:
    """Stripe implementation of the PaymentService protocol."""

    def __init__(self, secret_key: Optional[str]):
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")
        self.secret_key = secret_key

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        try:
            return _as_dict(stripe.Price.retrieve(price_id, api_key=self.secret_key))
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe price retrieval failed: {e}")

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            customers = stripe.Customer.list(email=email, limit=1, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer lookup failed: {e}")
        if customers.data:
            return _as_dict(customers.data[0])
        return None

    def create_customer(self, email: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            customer = stripe.Customer.create(email=email, metadata=metadata or {}, api_key=self.secret_key)
            return _as_dict(customer)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: Optional[str] = None,
        receipt_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        if receipt_email:
            params["receipt_email"] = receipt_email
        try:
            return _as_dict(stripe.PaymentIntent.create(api_key=self.secret_key, **params))
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe payment intent creation failed: {e}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=self.secret_key,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")

    def list_subscriptions(self, customer_id: str, status: str = "all", limit: int = 1) -> List[Dict[str, Any]]:
        try:
            subs = stripe.Subscription.list(customer=customer_id, status=status, limit=limit, api_key=self.secret_key)
            return [_as_dict(s) for s in subs.data]
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            return _as_dict(stripe.Subscription.cancel(subscription_id, api_key=self.secret_key))
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription cancellation failed: {e}")

    def update_subscription(self, subscription_id: str, **fields: Any) -> Dict[str, Any]:
        try:
            return _as_dict(stripe.Subscription.modify(subscription_id, api_key=self.secret_key, **fields))
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription update failed: {e}")

    def list_payments(self, start: datetime, end: datetime, limit: int = 100) -> List[PaymentRecord]:
        try:
            intents = stripe.PaymentIntent.list(
                created={"gte": int(start.timestamp()), "lt": int(end.timestamp())},
                limit=limit,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe payment listing failed: {e}")
        return [payment_record_from_intent(_as_dict(pi)) for pi in intents.data]

    def get_refunded_amount(self, charge_id: str) -> int:
        try:
            charge = stripe.Charge.retrieve(charge_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe charge retrieval failed: {e}")
        return int(_as_dict(charge).get("amount_refunded") or 0)

    def construct_event(self, body: bytes, signature: Optional[str], secret: Optional[str]) -> WebhookEvent:
        if not secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature:
            raise BillingWebhookError("Missing stripe-signature header")
        try:
            event = stripe.Webhook.construct_event(body, signature, secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        raw = _as_dict(event)
        return WebhookEvent(
            id=raw.get("id"),
            type=raw.get("type") or "",
            data_object=(raw.get("data") or {}).get("object") or {},
            verified=True,
            raw=raw,
        )
