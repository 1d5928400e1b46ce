import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    DATABASE_ECHO: bool = False

    # Admin access (X-Admin-Key)
    ADMIN_KEY: Optional[str] = None

    # Subscriptions
    FREE_PERIOD_MONTHS: int = 12  # auto-provisioned free tier = 1 year
    AUTO_SEED_CATALOG: bool = False

    # Plan-selected notifications (best effort)
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    # Billing period job
    BILLING_CRON_ENABLED: bool = False
    BILLING_CRON_LOOP_SECONDS: int = 86400

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("quotagate")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.FREE_PERIOD_MONTHS <= 0:
        message = "FREE_PERIOD_MONTHS must be positive"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
