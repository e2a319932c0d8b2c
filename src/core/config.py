"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="linkist-orders", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Stripe secret API key")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")
    stripe_publishable_key: str = Field(default="", description="Stripe publishable key (for frontend)")
    currency: str = Field(default="usd", description="Currency for payment intents")

    # Email (Resend)
    resend_api_key: str = Field(default="", description="Resend API key for sending emails")
    email_from_address: str = Field(
        default="Linkist <noreply@linkist.ai>",
        description="From address for transactional emails",
    )
    email_reply_to: str = Field(default="support@linkist.ai", description="Reply-To address")
    frontend_url: str = Field(default="http://localhost:3000", description="Storefront URL used in email links")

    # SMS (Twilio)
    twilio_account_sid: str = Field(default="", description="Twilio account SID")
    twilio_auth_token: str = Field(default="", description="Twilio auth token")
    twilio_from_number: str = Field(default="", description="Sender number for verification SMS")

    # One-time codes
    otp_email_ttl_seconds: int = Field(default=600, description="Email code lifetime (10 minutes)")
    otp_mobile_ttl_seconds: int = Field(default=300, description="Mobile code lifetime (5 minutes)")
    otp_resend_cooldown_seconds: int = Field(default=60, description="Minimum age of a code before it can be replaced")
    otp_max_attempts: int = Field(default=5, description="Failed attempts before a code is purged")
    otp_expired_retention_seconds: int = Field(
        default=600,
        description="How long an expired code is kept so it can be reported as expired",
    )

    # Session
    session_cookie_name: str = Field(default="session", description="Session cookie name")
    session_cookie_secure: bool = Field(default=True, description="Use secure cookies (HTTPS only)")
    session_expiry_days: int = Field(default=30, description="Days until session expires")
    store_cleanup_interval_seconds: int = Field(default=300, description="Sweep interval for in-memory stores")

    # Admin
    admin_pin: str = Field(default="", description="PIN granting an admin session")

    # Pricing
    unit_price: Decimal = Field(default=Decimal("29.99"), description="Price per card")
    shipping_fee: Decimal = Field(default=Decimal("5.00"), description="Flat shipping fee")
    tax_rate: Decimal = Field(default=Decimal("0.0575"), description="Tax rate applied to the subtotal")
    delivery_lead_days: int = Field(default=7, description="Days until estimated delivery")
    order_number_prefix: str = Field(default="LFND", description="Prefix for human-readable order numbers")

    # Notifications
    email_max_attempts: int = Field(default=3, description="Send attempts per lifecycle email")
    email_retry_base_seconds: float = Field(default=1.0, description="Initial backoff between send attempts")
    email_retry_max_seconds: float = Field(default=8.0, description="Upper bound on backoff")

    # Rate limiting
    rate_limit_otp_requests: int = Field(default=10, description="OTP requests per client per window")
    rate_limit_window_seconds: int = Field(default=60, description="Rate limit window in seconds")
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy addresses whose X-Forwarded-For header is honoured",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def trusted_proxies_list(self) -> list[str]:
        return [proxy.strip() for proxy in self.trusted_proxies.split(",") if proxy.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def expose_dev_codes(self) -> bool:
        """Whether generated codes may be echoed back for local testing."""
        return self.debug and not self.is_production

    @property
    def is_email_configured(self) -> bool:
        return self.resend_api_key.startswith("re_")

    @property
    def is_sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
