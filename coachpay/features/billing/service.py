"""
Billing service orchestrator.

Coordinates:
- Checkout (payment intent) creation and customer management
- Billing portal sessions
- Subscription status and cancellation
- Webhook processing: verify -> deduplicate -> route -> record

All Stripe-specific code is in stripe_provider.py; all document writes
made in response to events are in handlers.py.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from coachpay.core.errors import NotFoundError, ValidationError, WebhookInFlightError, WebhookProcessingError
from coachpay.core.timestamps import from_epoch, to_iso
from coachpay.features.billing.documents import SERVER_TIMESTAMP, USERS, DocumentStore
from coachpay.features.billing.handlers import ReconcileContext
from coachpay.features.billing.ledger import EventLedger
from coachpay.features.billing.provider import PaymentService
from coachpay.features.billing.webhooks import VerificationMode, dispatch_event, verify_event

logger = logging.getLogger("coachpay")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WebhookOutcome:
    """What happened to one webhook delivery."""
    event_id: str
    event_type: str
    handled: bool
    duplicate: bool = False
    verified: bool = True


class BillingService:
    """
    Billing business logic with injected collaborators.

    Args:
        payments: Payment provider (Stripe or a fake)
        documents: Document store holding users and training programs
        ledger: Processed webhook event ledger
        webhook_secret: Stripe signing secret
        verification_mode: strict (reject bad signatures) or permissive
        billing_mode: one_time or subscription
        claim_lease: Age after which an unfinished claim may be taken over
    """

    def __init__(
        self,
        payments: PaymentService,
        documents: DocumentStore,
        ledger: EventLedger,
        *,
        webhook_secret: Optional[str] = None,
        verification_mode: VerificationMode = VerificationMode.STRICT,
        billing_mode: str = "one_time",
        subscription_period_days: int = 30,
        event_retention: timedelta = timedelta(days=30),
        claim_lease: Optional[timedelta] = timedelta(seconds=60),
        portal_return_url: str = "moctarnutrition://settings",
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.payments = payments
        self.documents = documents
        self.ledger = ledger
        self.webhook_secret = webhook_secret
        self.verification_mode = VerificationMode(verification_mode)
        self.event_retention = event_retention
        self.claim_lease = claim_lease
        self.portal_return_url = portal_return_url
        self.clock = clock
        self.reconcile_ctx = ReconcileContext(
            documents=documents,
            billing_mode=billing_mode,
            subscription_period_days=subscription_period_days,
            clock=clock,
        )

    def create_checkout_session(
        self,
        price_id: Optional[str],
        user_id: Optional[str],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a payment intent for a one-time program purchase.

        Returns:
            {"clientSecret", "paymentIntentId", "customerId"}

        Raises:
            ValidationError: If priceId or userId is missing
            BillingProviderError: If a Stripe call fails
        """
        if not price_id or not user_id:
            raise ValidationError("Missing required fields")

        price = self.payments.retrieve_price(price_id)

        customer = None
        if customer_email:
            customer = self.payments.find_customer_by_email(customer_email)
            if customer is None:
                customer = self.payments.create_customer(customer_email, metadata={"userId": user_id})
        customer_id = customer.get("id") if customer else None

        intent = self.payments.create_payment_intent(
            amount=price.get("unit_amount"),
            currency=price.get("currency"),
            customer_id=customer_id,
            receipt_email=customer_email,
            metadata={"userId": user_id, "priceId": price_id},
        )

        if customer_id:
            self.documents.update(USERS, user_id, {
                "stripeCustomerId": customer_id,
                "updatedAt": SERVER_TIMESTAMP,
            })
            logger.info(f"Stored Stripe customer ID {customer_id} for user {user_id}")

        return {
            "clientSecret": intent.get("client_secret"),
            "paymentIntentId": intent.get("id"),
            "customerId": customer_id,
        }

    def create_portal_session(self, customer_id: Optional[str], return_url: Optional[str] = None) -> Dict[str, str]:
        if not customer_id:
            raise ValidationError("Missing customerId")
        url = self.payments.create_portal_session(customer_id, return_url or self.portal_return_url)
        return {"url": url}

    def get_subscription_status(self, user_id: Optional[str]) -> Dict[str, Any]:
        """
        Current subscription for a user; status defaults to "free".

        Raises:
            ValidationError: If userId is missing
            NotFoundError: If the user record does not exist
        """
        if not user_id:
            raise ValidationError("Missing userId")

        user = self.documents.get(USERS, user_id)
        if user is None:
            raise NotFoundError("User not found")

        customer_id = user.get("stripeCustomerId")
        free = {
            "subscriptionId": None,
            "customerId": customer_id or None,
            "status": "free",
            "currentPeriodEnd": None,
            "cancelAtPeriodEnd": None,
            "canceledAt": None,
        }
        if not customer_id:
            return free

        subscriptions = self.payments.list_subscriptions(customer_id, status="all", limit=1)
        if not subscriptions:
            return free

        sub = subscriptions[0]
        return {
            "subscriptionId": sub.get("id"),
            "customerId": customer_id,
            "status": sub.get("status"),
            "currentPeriodEnd": to_iso(from_epoch(sub.get("current_period_end"))),
            "cancelAtPeriodEnd": sub.get("cancel_at_period_end"),
            "canceledAt": to_iso(from_epoch(sub.get("canceled_at"))),
            "metadata": sub.get("metadata") or {},
        }

    def cancel_subscription(self, subscription_id: Optional[str], immediately: bool = False) -> Dict[str, Optional[str]]:
        if not subscription_id:
            raise ValidationError("Missing subscriptionId")

        if immediately:
            sub = self.payments.cancel_subscription(subscription_id)
        else:
            sub = self.payments.update_subscription(subscription_id, cancel_at_period_end=True)

        return {"cancelledAt": to_iso(from_epoch(sub.get("canceled_at")))}

    def process_webhook(self, body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Process one webhook delivery (idempotent per event id).

        1. Verify signature (or parse, in permissive mode)
        2. Claim the event id; skip if already processed
        3. Route to the event's handler
        4. Mark as processed, or release the claim on failure

        Raises:
            BillingWebhookError: If verification fails in strict mode
            WebhookProcessingError: If the handler failed (caller answers 5xx)
            WebhookInFlightError: If another delivery still holds the claim
        """
        event = verify_event(body, signature, self.webhook_secret, self.payments, self.verification_mode)

        payload_hash = hashlib.sha256(body).hexdigest()
        event_key = event.id or f"sha256:{payload_hash}"
        now = self.clock()

        if not self.ledger.claim(event_key, event.type, payload_hash, now, lease=self.claim_lease):
            if not self.ledger.is_processed(event_key):
                logger.warning(f"Webhook event {event_key} is still being processed", extra={"event_type": event.type})
                raise WebhookInFlightError(f"Event {event_key} is already being processed")
            logger.info(f"Skipping duplicate webhook event {event_key}", extra={"event_type": event.type})
            return WebhookOutcome(event_key, event.type, handled=False, duplicate=True, verified=event.verified)

        try:
            handled = dispatch_event(event, self.reconcile_ctx)
        except WebhookProcessingError as e:
            self.ledger.release(event_key, e.message)
            raise

        self.ledger.mark_processed(event_key, self.clock())
        self._purge_ledger(now)
        return WebhookOutcome(event_key, event.type, handled=handled, verified=event.verified)

    def _purge_ledger(self, now: datetime) -> None:
        try:
            removed = self.ledger.purge_expired(now, self.event_retention)
        except Exception as e:
            # The event itself was processed; a failed purge is retried next delivery
            logger.warning(f"Failed to purge webhook ledger: {e}")
            return
        if removed:
            logger.info(f"Purged {removed} expired webhook events")
