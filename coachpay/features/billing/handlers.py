"""
Reconciliation handlers: one per webhook event type.

Each handler maps the event's data object onto document store writes.
Missing references (no userId, unknown customer) are logged no-ops; store
failures propagate so the webhook answers 5xx and Stripe retries.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from coachpay.core.timestamps import from_epoch
from coachpay.features.billing.documents import (
    SERVER_TIMESTAMP,
    TRAINING_PROGRAMS,
    USERS,
    DocumentStore,
)
from coachpay.features.billing.plans import classify

logger = logging.getLogger("coachpay")

ONE_TIME = "one_time"
SUBSCRIPTION = "subscription"

PREMIUM = "premium"
FREE = "free"
ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileContext:
    """Collaborators and policy shared by all handlers."""
    documents: DocumentStore
    billing_mode: str = ONE_TIME
    subscription_period_days: int = 30
    clock: Callable[[], datetime] = field(default=_utc_now)

    @property
    def subscription_mode(self) -> bool:
        return self.billing_mode == SUBSCRIPTION


def _find_user_by_customer(ctx: ReconcileContext, customer_id: Optional[str]) -> Optional[str]:
    if not customer_id:
        return None
    matches = ctx.documents.query(USERS, "stripeCustomerId", customer_id, limit=1)
    return matches[0][0] if matches else None


def _subscription_period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    period_end = subscription.get("current_period_end")
    if period_end is None:
        # Newer API versions moved the period onto subscription items
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            period_end = items[0].get("current_period_end")
    return from_epoch(period_end)


def _invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period_end = (lines[0].get("period") or {}).get("end")
        if period_end:
            return from_epoch(period_end)
    return from_epoch(invoice.get("period_end"))


def handle_checkout_completed(session: Dict[str, Any], ctx: ReconcileContext) -> None:
    """Store the Stripe customer on the user; in subscription mode also grant premium."""
    user_id = session.get("client_reference_id") or (session.get("metadata") or {}).get("userId")
    customer_id = session.get("customer")

    logger.info(f"Checkout completed for user: {user_id}, customer: {customer_id}")

    if not user_id:
        logger.error("No userId found in checkout session")
        return

    update: Dict[str, Any] = {"updatedAt": SERVER_TIMESTAMP}
    if customer_id:
        update["stripeCustomerId"] = customer_id
    if ctx.subscription_mode:
        update["subscriptionStatus"] = PREMIUM
        update["subscriptionExpiry"] = ctx.clock() + timedelta(days=ctx.subscription_period_days)

    ctx.documents.update(USERS, user_id, update)
    logger.info(f"Updated user {user_id} with customer ID: {customer_id}")


def handle_payment_intent_succeeded(intent: Dict[str, Any], ctx: ReconcileContext) -> None:
    """Record the program purchase and point the user at it."""
    metadata = intent.get("metadata") or {}
    user_id = metadata.get("userId")
    price_id = metadata.get("priceId")
    intent_id = intent.get("id")

    logger.info(f"Payment succeeded for payment intent: {intent_id} (userId={user_id}, priceId={price_id})")

    if not user_id:
        logger.error("No userId found in payment intent metadata")
        return

    program = classify(price_id)
    if program == "none":
        logger.warning(f"No program matches priceId: {price_id}")

    existing = ctx.documents.query(TRAINING_PROGRAMS, "stripePaymentIntentId", intent_id, limit=1) if intent_id else []
    if existing:
        program_id = existing[0][0]
        logger.info(f"Training program {program_id} already recorded for payment intent {intent_id}")
    else:
        program_id = ctx.documents.add(TRAINING_PROGRAMS, {
            "userId": user_id,
            "program": program,
            "price": (intent.get("amount") or 0) / 100,
            "currency": intent.get("currency"),
            "purchaseDate": SERVER_TIMESTAMP,
            "isActive": True,
            "stripePaymentIntentId": intent_id,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.info(f"Created training program with ID: {program_id}")

    ctx.documents.update(USERS, user_id, {
        "trainingProgramStatus": program,
        "currentProgramId": program_id,
        "programPurchaseDate": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    })
    logger.info(f"Updated user {user_id} with trainingProgramStatus: {program}")


def _apply_subscription(subscription: Dict[str, Any], ctx: ReconcileContext, *, deleted: bool) -> None:
    customer_id = subscription.get("customer")
    user_id = _find_user_by_customer(ctx, customer_id)
    if not user_id:
        logger.info(f"No user found for customer: {customer_id}")
        return

    if deleted:
        status, expiry = FREE, None
    else:
        status = PREMIUM if subscription.get("status") in ACTIVE_SUBSCRIPTION_STATUSES else FREE
        expiry = _subscription_period_end(subscription)

    ctx.documents.update(USERS, user_id, {
        "subscriptionStatus": status,
        "subscriptionExpiry": expiry,
        "updatedAt": SERVER_TIMESTAMP,
    })
    logger.info(f"Updated user {user_id} subscriptionStatus: {status}")


def handle_subscription_created(subscription: Dict[str, Any], ctx: ReconcileContext) -> None:
    _apply_subscription(subscription, ctx, deleted=False)


def handle_subscription_updated(subscription: Dict[str, Any], ctx: ReconcileContext) -> None:
    _apply_subscription(subscription, ctx, deleted=False)


def handle_subscription_deleted(subscription: Dict[str, Any], ctx: ReconcileContext) -> None:
    _apply_subscription(subscription, ctx, deleted=True)


def handle_invoice_payment_succeeded(invoice: Dict[str, Any], ctx: ReconcileContext) -> None:
    """Subscription mode: extend expiry. One-time mode: payment_intent.succeeded already did the work."""
    customer_id = invoice.get("customer")
    logger.info(f"Invoice payment succeeded for customer: {customer_id}")

    if not ctx.subscription_mode:
        return

    user_id = _find_user_by_customer(ctx, customer_id)
    if not user_id:
        logger.info(f"No user found for customer: {customer_id}")
        return

    ctx.documents.update(USERS, user_id, {
        "subscriptionStatus": PREMIUM,
        "subscriptionExpiry": _invoice_period_end(invoice),
        "updatedAt": SERVER_TIMESTAMP,
    })


def handle_invoice_payment_failed(invoice: Dict[str, Any], ctx: ReconcileContext) -> None:
    # TODO: notify the user once push delivery is wired to the billing flow
    logger.warning(f"Payment failed for customer: {invoice.get('customer')}")
