"""
Application configuration

All values come from the environment (or a .env file). Component configs
(PlannerConfig, CustomsConfig, ...) are built from these settings through
their from_settings() constructors so services stay testable without env.

SECURITY: UPS and i-Parcel credentials have no defaults.
"""
import json
import logging
from typing import List, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMS_RETRY_DELAYS = [300, 900, 3600]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # App - defaults are PRODUCTION safe
    APP_NAME: str = "WWE Shipping Engine"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Storage collaborator (optional - in-memory store when empty)
    DATABASE_URL: str = ""

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v):
        """Convert postgres:// URLs to the asyncpg driver format."""
        if not v:
            return v
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Redis (token cache) and job queue (ARQ) - ARQ falls back to REDIS_URL
    REDIS_URL: str = ""
    ARQ_REDIS_URL: str = ""

    # Per-order lock shared across processes through REDIS_URL
    ORDER_LOCK_TIMEOUT_SECONDS: int = 600
    ORDER_LOCK_WAIT_SECONDS: float = 60.0
    ORDER_LOCK_RETRY_SECONDS: int = 30

    # UPS API
    UPS_CLIENT_ID: str = ""
    UPS_CLIENT_SECRET: str = ""
    UPS_ACCOUNT_NUMBER: str = ""
    UPS_USE_SANDBOX: bool = False
    UPS_API_TIMEOUT_SECONDS: float = 45.0
    UPS_TRANSACTION_SOURCE: str = "wwe-shipping"
    UPS_DEBUG_LOGGING: bool = False

    # Packaging rules (weights in KGS)
    SHIPPING_MAX_PACKAGE_WEIGHT: float = 15.0
    SHIPPING_MIN_PACKAGE_WEIGHT: float = 0.1
    SHIPPING_MAX_PACKAGES: int = 10
    SHIPPING_SERVICE_CODE: str = "17"  # UPS Worldwide Economy DDU
    SHIPPING_LABEL_FORMAT: str = "GIF"
    SHIPPING_HANDLING_FEE: float = 1.0
    SHIPPING_COMPENSATE_PARTIAL_LABELS: bool = False

    # Shipper identity (printed on labels and commercial invoices)
    SHIPPER_NAME: str = ""
    SHIPPER_ATTENTION_NAME: str = ""
    SHIPPER_PHONE: str = ""
    SHIPPER_EMAIL: str = ""
    SHIPPER_ADDRESS_LINE1: str = ""
    SHIPPER_ADDRESS_LINE2: str = ""
    SHIPPER_CITY: str = ""
    SHIPPER_STATE: str = ""
    SHIPPER_POSTAL_CODE: str = ""
    SHIPPER_COUNTRY: str = "FR"
    SHIPPER_TAX_ID: str = ""

    # Paperless customs submission
    CUSTOMS_AUTO_SUBMIT: bool = True
    CUSTOMS_DELAY_SECONDS: int = 300
    CUSTOMS_MAX_RETRIES: int = 3
    # Accepts JSON array or comma-separated string
    CUSTOMS_RETRY_DELAYS: Union[str, List[int]] = DEFAULT_CUSTOMS_RETRY_DELAYS
    CUSTOMS_DEFAULT_COUNTRY_OF_ORIGIN: str = "FR"

    @field_validator("CUSTOMS_RETRY_DELAYS", mode="before")
    @classmethod
    def parse_retry_delays(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return DEFAULT_CUSTOMS_RETRY_DELAYS
            if v.strip().startswith("["):
                try:
                    v = json.loads(v)
                except json.JSONDecodeError:
                    raise ValueError(f"CUSTOMS_RETRY_DELAYS is not valid JSON: {v!r}")
            else:
                v = [part.strip() for part in v.split(",") if part.strip()]
        delays = [int(d) for d in v]
        if not delays or any(d <= 0 for d in delays):
            raise ValueError("CUSTOMS_RETRY_DELAYS must be a non-empty list of positive seconds")
        if delays != sorted(delays):
            raise ValueError("CUSTOMS_RETRY_DELAYS must be ascending")
        return delays

    # i-Parcel parcel content pre-registration
    IPARCEL_ENABLED: bool = False
    IPARCEL_BASE_URL: str = "https://webservices.i-parcel.com/api"
    IPARCEL_PRIVATE_KEY: str = ""
    IPARCEL_PUBLIC_KEY: str = ""
    IPARCEL_COMPANY_ID: str = ""

    @property
    def ups_configured(self) -> bool:
        return bool(self.UPS_CLIENT_ID and self.UPS_CLIENT_SECRET and self.UPS_ACCOUNT_NUMBER)

    @model_validator(mode="after")
    def validate_production_config(self):
        """Runtime validation of shipping configuration."""
        if self.SHIPPING_MIN_PACKAGE_WEIGHT <= 0:
            raise ValueError("SHIPPING_MIN_PACKAGE_WEIGHT must be positive")
        if self.SHIPPING_MIN_PACKAGE_WEIGHT >= self.SHIPPING_MAX_PACKAGE_WEIGHT:
            raise ValueError("SHIPPING_MIN_PACKAGE_WEIGHT must be below SHIPPING_MAX_PACKAGE_WEIGHT")
        if self.SHIPPING_MAX_PACKAGES < 1:
            raise ValueError("SHIPPING_MAX_PACKAGES must be at least 1")

        if self.ENVIRONMENT == "production":
            if self.DEBUG:
                raise ValueError(
                    "DEBUG=True is forbidden in production. "
                    "Set DEBUG=false or ENVIRONMENT=development"
                )
            if not self.ups_configured:
                logger.warning(
                    "UPS credentials are not configured - carrier calls will fail "
                    "with MISSING_CREDENTIALS"
                )
            if self.IPARCEL_ENABLED and not self.IPARCEL_PRIVATE_KEY:
                logger.warning("IPARCEL_ENABLED is set but IPARCEL_PRIVATE_KEY is empty")

        return self


settings = Settings()
