import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from coachpay.api import billing, health, metrics
from coachpay.core.config import Settings, settings as default_settings, validate_config
from coachpay.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from coachpay.core.logging import configure_logging
from coachpay.core.middleware.request_id import RequestIdMiddleware
from coachpay.features.billing.documents import DocumentStore
from coachpay.features.billing.ledger import EventLedger
from coachpay.features.billing.provider import PaymentService


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = app.state.settings
    configure_logging(cfg.ENV)
    logger = logging.getLogger("coachpay")
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg, logger=logger)
    logger.info(
        "Starting coachpay",
        extra={"env": cfg.ENV, "billing_mode": cfg.BILLING_MODE, "verification_mode": cfg.WEBHOOK_VERIFICATION_MODE},
    )
    try:
        yield
    finally:
        logging.getLogger("coachpay").info("Stopping coachpay")


def create_app(
    settings: Optional[Settings] = None,
    payments: Optional[PaymentService] = None,
    documents: Optional[DocumentStore] = None,
    ledger: Optional[EventLedger] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators passed here are used as-is; any left as None is built
    from settings on first request (see coachpay.api.deps).
    """
    cfg = settings or default_settings

    app = FastAPI(title="coachpay", lifespan=lifespan)
    app.state.settings = cfg
    app.state.payments = payments
    app.state.documents = documents
    app.state.ledger = ledger

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    origins = cfg.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers reject credentials with a wildcard origin
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(billing.router)
    app.include_router(metrics.router)
    return app


app = create_app()
