"""
Billing API routes.

Paths match what the mobile client already calls:
- POST /createCheckoutSession: Create a payment intent for a program
- POST /createPortalSession: Create a Stripe billing portal session
- GET  /getSubscriptionStatus: Current subscription for a user
- POST /cancelSubscription: Cancel now or at period end
- POST /stripeWebhook: Handle Stripe webhooks
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from coachpay.api.deps import get_billing_service, get_settings, upstream_errors
from coachpay.core.config import Settings
from coachpay.core.logging import log_event
from coachpay.core.upstream import call_upstream
from coachpay.features.billing.service import BillingService

router = APIRouter(tags=["billing"])


class _CamelBody(BaseModel):
    # Required fields are checked by the service so a missing one answers
    # with the client's message instead of a schema error
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CheckoutRequest(_CamelBody):
    price_id: Optional[str] = None
    user_id: Optional[str] = None
    customer_email: Optional[str] = None
    success_url: Optional[str] = None  # accepted, unused (payment sheet flow)
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    clientSecret: Optional[str]
    paymentIntentId: Optional[str]
    customerId: Optional[str]


class PortalRequest(_CamelBody):
    customer_id: Optional[str] = None
    return_url: Optional[str] = None


class PortalResponse(BaseModel):
    url: str


class CancelRequest(_CamelBody):
    subscription_id: Optional[str] = None
    immediately: bool = False


class CancelResponse(BaseModel):
    cancelledAt: Optional[str]


@router.post("/createCheckoutSession", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    service: BillingService = Depends(get_billing_service),
    cfg: Settings = Depends(get_settings),
):
    """
    Create a payment intent for a one-time program purchase.

    Returns:
        {"clientSecret", "paymentIntentId", "customerId"}

    Errors:
        400: priceId or userId missing
        500: Stripe or document store error
        503: Billing disabled (STRIPE_SECRET_KEY not set)
    """
    with upstream_errors("creating checkout session"):
        return await call_upstream(
            service.create_checkout_session,
            body.price_id,
            body.user_id,
            body.customer_email,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )


@router.post("/createPortalSession", response_model=PortalResponse)
async def create_portal_session(
    body: PortalRequest,
    service: BillingService = Depends(get_billing_service),
    cfg: Settings = Depends(get_settings),
):
    with upstream_errors("creating portal session"):
        return await call_upstream(
            service.create_portal_session,
            body.customer_id,
            body.return_url,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )


@router.get("/getSubscriptionStatus")
async def get_subscription_status(
    user_id: Optional[str] = Query(None, alias="userId"),
    service: BillingService = Depends(get_billing_service),
    cfg: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """
    Subscription status for a user.

    Returns:
        {subscriptionId, customerId, status, currentPeriodEnd,
         cancelAtPeriodEnd, canceledAt[, metadata]}; status is "free"
        when the user has no customer or no subscription.

    Errors:
        400: userId missing
        404: User record does not exist
    """
    with upstream_errors("getting subscription status"):
        return await call_upstream(
            service.get_subscription_status,
            user_id,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )


@router.post("/cancelSubscription", response_model=CancelResponse)
async def cancel_subscription(
    body: CancelRequest,
    service: BillingService = Depends(get_billing_service),
    cfg: Settings = Depends(get_settings),
):
    with upstream_errors("cancelling subscription"):
        return await call_upstream(
            service.cancel_subscription,
            body.subscription_id,
            body.immediately,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )


@router.post("/stripeWebhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    service: BillingService = Depends(get_billing_service),
    cfg: Settings = Depends(get_settings),
):
    """
    Handle Stripe webhook events.

    Verifies the signature, skips events already processed, routes the
    event to its handler. Unknown event types are acknowledged.

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature (strict verification mode)
        409: An earlier delivery of the event is still running; Stripe will redeliver
        500: Handler failed; Stripe will redeliver
        504: Processing outlived the timeout; the claim lapses after WEBHOOK_CLAIM_LEASE_SECONDS
    """
    # Raw body is required for signature verification
    body = await request.body()

    with upstream_errors("processing webhook"):
        outcome = await call_upstream(
            service.process_webhook,
            body,
            stripe_signature,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )

    log_event(
        "info",
        "webhook.received",
        event_type=outcome.event_type,
        extra={
            "event_id": outcome.event_id,
            "handled": outcome.handled,
            "duplicate": outcome.duplicate,
            "verified": outcome.verified,
        },
    )
    return {"received": True}
