import logging
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

# Keys without which checkout and webhook reconciliation cannot work
REQUIRED_KEYS = ("DATABASE_URL", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")


class Settings(BaseSettings):
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Storage
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe checkout + webhooks
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_WEBHOOK_TOLERANCE: int = Field(300, ge=1)  # max age of a signed delivery, seconds

    # Storefront
    SITE_URL: str = "http://localhost:3000"
    DEFAULT_CURRENCY: str = "usd"
    MAX_QUANTITY: int = Field(100, ge=1)  # dataset units per checkout

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("SITE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.strip().lower()


settings = Settings()


def missing_keys(cfg) -> List[str]:
    return [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Check required keys at start-up.

    Strict mode raises RuntimeError; otherwise a warning names the missing
    keys (never their values) and payments stay disabled until they are set.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("sovrn")
    if strict is None:
        strict = bool(getattr(cfg, "CONFIG_STRICT", False))

    missing = missing_keys(cfg)
    if not missing:
        return True

    message = f"Missing required configuration: {', '.join(missing)}"
    if strict:
        raise RuntimeError(message)
    log.warning(message)
    return True
