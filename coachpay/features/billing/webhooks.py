"""
Webhook verification and event routing.

verify_event() authenticates the raw body against the signing secret.
In strict mode (the default) a bad signature is rejected; permissive mode
logs the failure and trusts the parsed body, which is only meant for
local testing against unsigned payloads.

dispatch_event() routes a verified event to exactly one handler from
HANDLERS. Unknown types are acknowledged without any writes.
"""
import json
import logging
from enum import Enum
from typing import Callable, Dict, Optional

from coachpay.core.errors import WebhookProcessingError
from coachpay.features.billing import handlers
from coachpay.features.billing.handlers import ReconcileContext
from coachpay.features.billing.provider import BillingWebhookError, PaymentService, WebhookEvent

logger = logging.getLogger("coachpay")


class VerificationMode(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


Handler = Callable[[dict, ReconcileContext], None]

HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": handlers.handle_checkout_completed,
    "customer.subscription.created": handlers.handle_subscription_created,
    "customer.subscription.updated": handlers.handle_subscription_updated,
    "customer.subscription.deleted": handlers.handle_subscription_deleted,
    "invoice.payment_succeeded": handlers.handle_invoice_payment_succeeded,
    "invoice.payment_failed": handlers.handle_invoice_payment_failed,
    "payment_intent.succeeded": handlers.handle_payment_intent_succeeded,
}


def _event_from_body(body: bytes) -> WebhookEvent:
    try:
        raw = json.loads(body or b"")
    except (ValueError, UnicodeDecodeError) as e:
        raise BillingWebhookError(f"Invalid payload: {e}")
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise BillingWebhookError("Invalid payload: missing event type")
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    return WebhookEvent(
        id=raw.get("id"),
        type=raw["type"],
        data_object=data.get("object") or {},
        verified=False,
        raw=raw,
    )


def verify_event(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    provider: PaymentService,
    mode: VerificationMode = VerificationMode.STRICT,
) -> WebhookEvent:
    """
    Authenticate a webhook delivery.

    Raises:
        BillingWebhookError: Signature invalid in strict mode, or body unparseable
    """
    try:
        return provider.construct_event(body, signature, secret)
    except BillingWebhookError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        if VerificationMode(mode) is VerificationMode.STRICT:
            raise

    event = _event_from_body(body)
    logger.warning(
        "Accepting unverified webhook event (permissive verification mode)",
        extra={"event_type": event.type, "event_id": event.id},
    )
    return event


def dispatch_event(event: WebhookEvent, ctx: ReconcileContext) -> bool:
    """
    Run the handler registered for the event type.

    Returns:
        True if a handler ran, False for unhandled event types

    Raises:
        WebhookProcessingError: If the handler failed
    """
    handler = HANDLERS.get(event.type)
    if handler is None:
        logger.info(f"Unhandled event type: {event.type}")
        return False

    logger.info(f"Received webhook event: {event.type}", extra={"event_id": event.id, "event_type": event.type})
    try:
        handler(event.data_object, ctx)
    except Exception as e:
        logger.error(f"Error handling webhook {event.type}: {e}", exc_info=True, extra={"event_id": event.id})
        raise WebhookProcessingError(f"Failed to process {event.type}: {e}") from e
    return True
