"""
Payment provider protocol.

Defines the contract the billing and metrics code needs from the payment
service (Stripe). Business logic only talks to this interface, so the
provider can be swapped for a fake in tests.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class PaymentRecord:
    """A payment intent, normalized for metric reduction."""
    id: str
    amount: int  # minor units (cents)
    currency: str
    status: str
    created: datetime
    price_id: Optional[str] = None
    charge_id: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    """A webhook event after verification (or permissive parsing)."""
    id: Optional[str]
    type: str
    data_object: Dict[str, Any]
    verified: bool = True
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentService(Protocol):
    """
    Protocol for payment providers.

    All amounts are in minor units. All methods are blocking; async callers
    go through coachpay.core.upstream.call_upstream.
    """

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        """Return the price object (must include unit_amount and currency)."""
        ...

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Return the first customer with this email, or None."""
        ...

    def create_customer(self, email: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        ...

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: Optional[str] = None,
        receipt_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a payment intent; result includes id and client_secret."""
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        ...

    def list_subscriptions(self, customer_id: str, status: str = "all", limit: int = 1) -> List[Dict[str, Any]]:
        ...

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Cancel immediately."""
        ...

    def update_subscription(self, subscription_id: str, **fields: Any) -> Dict[str, Any]:
        ...

    def list_payments(self, start: datetime, end: datetime, limit: int = 100) -> List[PaymentRecord]:
        """Payment intents created in [start, end), at most `limit`."""
        ...

    def get_refunded_amount(self, charge_id: str) -> int:
        """Total refunded amount for a charge, in minor units."""
        ...

    def construct_event(self, body: bytes, signature: Optional[str], secret: Optional[str]) -> WebhookEvent:
        """
        Verify webhook signature and parse the event.

        Raises:
            BillingWebhookError: If the signature or payload is invalid
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
