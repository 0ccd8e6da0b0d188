"""
Application Settings for Policy Manager Billing

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup; a missing gateway or
record-store credential aborts the process before it serves traffic.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The instance returned by get_settings() is handed to every component
    constructor; components never read os.environ themselves.
    """

    # Supabase Configuration (record store + auth)
    supabase_url: str
    supabase_service_role_key: str
    supabase_jwt_secret: Optional[str] = None

    # Razorpay Configuration
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: str
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = 15.0

    # Billing rules
    trial_days: int = 15
    billing_cycle_days: int = 30
    default_currency: str = "INR"
    receipt_prefix: str = "rcpt"
    origin_tag: str = "policy_manager_saas"

    # Re-create a missing user_subscriptions row from webhook notes
    webhook_recover_missing_records: bool = False

    # Admin routes (lock/unlock)
    admin_api_key: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Supabase store client timeout (seconds)
    store_timeout_seconds: int = 10

    # Migrations only (alembic)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_credentials(self) -> "Settings":
        """Reject blank credentials; an empty secret is as bad as a missing one."""
        required = {
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_SERVICE_ROLE_KEY": self.supabase_service_role_key,
            "RAZORPAY_KEY_ID": self.razorpay_key_id,
            "RAZORPAY_KEY_SECRET": self.razorpay_key_secret,
            "RAZORPAY_WEBHOOK_SECRET": self.razorpay_webhook_secret,
        }
        missing = [name for name, value in required.items() if not value or not value.strip()]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        if self.gateway_timeout_seconds <= 0:
            raise ValueError("GATEWAY_TIMEOUT_SECONDS must be positive")

        if self.billing_cycle_days <= 0:
            raise ValueError("BILLING_CYCLE_DAYS must be positive")

        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
