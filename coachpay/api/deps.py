"""
Request dependencies.

Collaborators live on app.state. Anything not injected through
create_app() is built from settings on first use, so importing the app
never needs cloud credentials.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import timedelta

from fastapi import Request

from coachpay.core.config import Settings
from coachpay.core.database import create_engine_for
from coachpay.core.errors import AppError, UpstreamError, WebhookVerificationError
from coachpay.features.billing.documents import FirestoreDocumentStore, InMemoryDocumentStore
from coachpay.features.billing.ledger import InMemoryEventLedger, SqlEventLedger
from coachpay.features.billing.provider import BillingWebhookError
from coachpay.features.billing.service import BillingService
from coachpay.features.billing.stripe_provider import StripeProvider
from coachpay.features.metrics.service import MetricsService

logger = logging.getLogger("coachpay")

_build_lock = threading.Lock()


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _payments(request: Request):
    state = request.app.state
    with _build_lock:
        if state.payments is None:
            key = state.settings.STRIPE_SECRET_KEY
            if not key:
                raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
            state.payments = StripeProvider(key)
        return state.payments


def _documents(request: Request):
    state = request.app.state
    with _build_lock:
        if state.documents is None:
            if state.settings.DOCUMENT_STORE.lower() == "memory":
                state.documents = InMemoryDocumentStore()
            else:
                state.documents = FirestoreDocumentStore(project=state.settings.FIRESTORE_PROJECT)
        return state.documents


def _ledger(request: Request):
    state = request.app.state
    with _build_lock:
        if state.ledger is None:
            url = state.settings.DATABASE_URL
            state.ledger = SqlEventLedger(create_engine_for(url)) if url else InMemoryEventLedger()
        return state.ledger


def get_billing_service(request: Request) -> BillingService:
    cfg = get_settings(request)
    return BillingService(
        _payments(request),
        _documents(request),
        _ledger(request),
        webhook_secret=cfg.STRIPE_WEBHOOK_SECRET,
        verification_mode=cfg.WEBHOOK_VERIFICATION_MODE.lower(),
        billing_mode=cfg.BILLING_MODE.lower(),
        subscription_period_days=cfg.SUBSCRIPTION_PERIOD_DAYS,
        event_retention=timedelta(days=cfg.WEBHOOK_EVENT_RETENTION_DAYS),
        claim_lease=timedelta(seconds=cfg.WEBHOOK_CLAIM_LEASE_SECONDS),
        portal_return_url=cfg.PORTAL_RETURN_URL,
    )


def get_metrics_service(request: Request) -> MetricsService:
    cfg = get_settings(request)
    return MetricsService(
        _payments(request),
        _documents(request),
        page_limit=cfg.page_limit,
        refund_concurrency=cfg.REFUND_LOOKUP_CONCURRENCY,
        timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
    )


@contextmanager
def upstream_errors(operation: str):
    """Translate collaborator failures into the service's error taxonomy."""
    try:
        yield
    except AppError:
        raise
    except BillingWebhookError as e:
        raise WebhookVerificationError(str(e)) from e
    except Exception as e:
        logger.error(f"Error {operation}: {e}", exc_info=True)
        raise UpstreamError(str(e)) from e
