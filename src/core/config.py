"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Platform credentials default to empty so the service can boot
    unconfigured; checkout endpoints refuse to run until they are set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Commerce platform (Admin API)
    shopify_store_domain: str = Field(default="", description="Store domain, e.g. my-shop.myshopify.com")
    shopify_admin_token: str = Field(default="", description="Admin API access token")
    shopify_api_version: str = Field(default="2024-10", description="Admin API version path segment")
    shopify_webhook_secret: str = Field(default="", description="Webhook HMAC signing secret")

    # Admin gateway
    gateway_timeout_seconds: float = Field(default=10.0, description="Per-request HTTP timeout")
    gateway_max_retries: int = Field(default=5, description="Maximum retries on HTTP 429")

    # Currency
    default_currency: str = Field(default="EUR", description="Hard fallback currency code")
    currency_cache_ttl_seconds: int = Field(default=3600, description="Shop currency cache duration")
    enable_multi_currency: bool = Field(default=True, description="Validate against enabled currencies")
    enable_currency_auto_detection: bool = Field(
        default=True,
        description="Use geolocation and browser locale when resolving currency",
    )
    currency_preference_cookie: str = Field(default="user_currency", description="Preference cookie name")
    currency_preference_max_age: int = Field(
        default=31536000,
        description="Preference cookie max age in seconds (1 year)",
    )

    # Payment rails
    native_wallet_reset_seconds: float = Field(default=5.0, description="Native wallet error cooldown")
    redirect_wallet_reset_seconds: float = Field(default=10.0, description="Redirect wallet error cooldown")

    # Shipping
    standard_shipping_cost: float = Field(default=4.90, description="Standard shipping price")
    express_shipping_cost: float = Field(default=9.90, description="Express shipping price")
    free_shipping_threshold: float = Field(default=60.0, description="Subtotal above which standard shipping is free")
    default_country: str = Field(default="France", description="Country used when the form leaves it empty")
    delivery_days_domestic: str = Field(default="3-5 business days", description="Standard delivery delay within the default country")
    delivery_days_international: str = Field(
        default="7-14 business days", description="Standard delivery delay elsewhere"
    )
    express_delivery_days: str = Field(default="1-2 business days", description="Express delivery delay")

    @field_validator("default_currency")
    @classmethod
    def normalize_default_currency(cls, value: str) -> str:
        """Upper-case the fallback currency and require a 3-letter code."""
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("default_currency must be a 3-letter ISO 4217 code")
        return code

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_admin_configured(self) -> bool:
        """Check if the Admin API credentials look usable."""
        return bool(self.shopify_store_domain) and len(self.shopify_admin_token) >= 20

    @property
    def admin_api_base_url(self) -> str:
        """Versioned Admin REST base URL."""
        return f"https://{self.shopify_store_domain}/admin/api/{self.shopify_api_version}"


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
