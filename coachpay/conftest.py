# coachpay/conftest.py
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from coachpay.core.config import Settings
from coachpay.core.database import create_engine_for
from coachpay.features.billing.documents import InMemoryDocumentStore
from coachpay.features.billing.ledger import InMemoryEventLedger, SqlEventLedger
from coachpay.tests.fakes import FakePaymentService

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Settings for tests; never reads a local .env file."""
    return Settings(
        _env_file=None,
        ENV="test",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_test123",
        DOCUMENT_STORE="memory",
        WEBHOOK_VERIFICATION_MODE="strict",
        BILLING_MODE="one_time",
    )


@pytest.fixture
def payments():
    return FakePaymentService()


@pytest.fixture
def store():
    return InMemoryDocumentStore(clock=lambda: FIXED_NOW)


@pytest.fixture
def ledger():
    return InMemoryEventLedger()


@pytest.fixture
def sql_ledger():
    """Ledger on a private in-memory SQLite database."""
    engine = create_engine_for("sqlite://")
    yield SqlEventLedger(engine)
    engine.dispose()


@pytest.fixture
def app(settings, payments, store, ledger):
    from coachpay.main import create_app

    return create_app(settings=settings, payments=payments, documents=store, ledger=ledger)


@pytest.fixture
def client(app):
    return TestClient(app)
