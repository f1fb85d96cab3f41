"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.core.config import Settings, get_settings


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            "APP_NAME": "test-app",
            "APP_ENV": "testing",
            "DEBUG": "true",
            "HOST": "127.0.0.1",
            "PORT": "9000",
            "SHOPIFY_STORE_DOMAIN": "other-shop.myshopify.com",
            "SHOPIFY_API_VERSION": "2025-01",
            "GATEWAY_MAX_RETRIES": "3",
            "CURRENCY_CACHE_TTL_SECONDS": "600",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.app_env == "testing"
            assert settings.debug is True
            assert settings.host == "127.0.0.1"
            assert settings.port == 9000
            assert settings.shopify_store_domain == "other-shop.myshopify.com"
            assert settings.gateway_max_retries == 3
            assert settings.currency_cache_ttl_seconds == 600
            assert settings.admin_api_base_url == "https://other-shop.myshopify.com/admin/api/2025-01"

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        env_vars = {"CORS_ORIGINS": "http://localhost:3000, http://example.com , http://test.com"}

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()
            origins = settings.cors_origins_list

            assert len(origins) == 3
            assert "http://localhost:3000" in origins
            assert "http://example.com" in origins
            assert "http://test.com" in origins

    def test_settings_is_production_property(self) -> None:
        """Test the is_production property."""
        with patch.dict(os.environ, {"APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

        with patch.dict(os.environ, {"APP_ENV": "development"}, clear=False):
            assert Settings().is_production is False

    def test_settings_default_values(self) -> None:
        """Test that default values are applied correctly."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.app_name == "storefront-checkout"
            assert settings.app_env == "development"
            assert settings.debug is False
            assert settings.port == 8080
            assert settings.shopify_api_version == "2024-10"
            assert settings.gateway_max_retries == 5
            assert settings.currency_cache_ttl_seconds == 3600
            assert settings.default_currency == "EUR"
            assert settings.native_wallet_reset_seconds == 5.0
            assert settings.redirect_wallet_reset_seconds == 10.0
            assert settings.free_shipping_threshold == 60.0
            assert settings.delivery_days_domestic == "3-5 business days"
            assert settings.express_delivery_days == "1-2 business days"

    def test_settings_boot_without_credentials(self) -> None:
        """Test that missing platform credentials do not prevent startup."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.is_admin_configured is False

    def test_admin_configured_requires_plausible_token(self) -> None:
        """Test that a short token is not considered configured."""
        env_vars = {"SHOPIFY_STORE_DOMAIN": "shop.myshopify.com", "SHOPIFY_ADMIN_TOKEN": "short"}

        with patch.dict(os.environ, env_vars, clear=False):
            assert Settings().is_admin_configured is False

        env_vars["SHOPIFY_ADMIN_TOKEN"] = "shpat_" + "a" * 32
        with patch.dict(os.environ, env_vars, clear=False):
            assert Settings().is_admin_configured is True

    def test_default_currency_is_upper_cased(self) -> None:
        """Test that the fallback currency is normalized."""
        with patch.dict(os.environ, {"DEFAULT_CURRENCY": "usd"}, clear=False):
            assert Settings().default_currency == "USD"

    def test_default_currency_must_be_iso_code(self) -> None:
        """Test that a malformed fallback currency is rejected."""
        with patch.dict(os.environ, {"DEFAULT_CURRENCY": "EURO"}, clear=False):
            with pytest.raises(ValidationError) as exc_info:
                Settings()

            error_fields = [e["loc"][0] for e in exc_info.value.errors()]
            assert "default_currency" in error_fields


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """Test that get_settings returns a Settings instance."""
        # Clear cache before test
        get_settings.cache_clear()

        settings = get_settings()
        assert isinstance(settings, Settings)

        # Clean up
        get_settings.cache_clear()

    def test_get_settings_returns_cached_singleton(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        get_settings.cache_clear()

    def test_get_settings_cache_can_be_cleared(self) -> None:
        """Test that cache can be cleared to reload settings."""
        get_settings.cache_clear()

        settings1 = get_settings()
        get_settings.cache_clear()
        settings2 = get_settings()

        # After clearing cache, a new instance should be created
        assert settings1 is not settings2

        get_settings.cache_clear()
