import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

# Stripe never returns more than this many objects per list call
MAX_PAGE_LIMIT = 100


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Webhooks
    WEBHOOK_VERIFICATION_MODE: str = "strict"  # strict | permissive
    WEBHOOK_EVENT_RETENTION_DAYS: int = 30
    WEBHOOK_CLAIM_LEASE_SECONDS: float = 60.0  # unfinished claims older than this can be retaken

    # Billing variant
    BILLING_MODE: str = "one_time"  # one_time | subscription
    SUBSCRIPTION_PERIOD_DAYS: int = 30

    # Processed-event ledger (unset = in-memory)
    DATABASE_URL: Optional[str] = None

    # Document store
    DOCUMENT_STORE: str = "firestore"  # firestore | memory
    FIRESTORE_PROJECT: Optional[str] = None

    # Client integration
    PORTAL_RETURN_URL: str = "moctarnutrition://settings"
    CORS_ALLOW_ORIGINS: str = "*"  # comma-separated

    # Upstream calls
    UPSTREAM_TIMEOUT_SECONDS: float = 10.0
    REFUND_LOOKUP_CONCURRENCY: int = 8
    METRICS_PAGE_LIMIT: int = MAX_PAGE_LIMIT

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ALLOW_ORIGINS.split(",") if origin.strip()]

    @property
    def page_limit(self) -> int:
        return max(1, min(self.METRICS_PAGE_LIMIT, MAX_PAGE_LIMIT))


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("coachpay")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    problems = []
    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")

    mode = (getattr(cfg, "WEBHOOK_VERIFICATION_MODE", "strict") or "strict").lower()
    if mode not in ("strict", "permissive"):
        problems.append(f"WEBHOOK_VERIFICATION_MODE must be 'strict' or 'permissive', got '{mode}'")
    elif mode == "permissive" and (getattr(cfg, "ENV", "") or "").lower() == "production":
        problems.append("WEBHOOK_VERIFICATION_MODE=permissive accepts unsigned webhooks in production")

    billing_mode = (getattr(cfg, "BILLING_MODE", "one_time") or "one_time").lower()
    if billing_mode not in ("one_time", "subscription"):
        problems.append(f"BILLING_MODE must be 'one_time' or 'subscription', got '{billing_mode}'")

    for message in problems:
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
