"""Integration tests for currency API endpoints."""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from src.models.result import GatewayResult
from src.services.currency_service import CurrencyService
from tests.conftest import set_enabled_currencies


class TestGetCurrency:
    """Tests for GET /api/v1/currency endpoint."""

    def test_defaults_to_shop_currency(self, client: TestClient) -> None:
        """Test that a request without hints resolves to the shop currency."""
        response = client.get("/api/v1/currency")

        assert response.status_code == 200
        data = response.json()
        assert data["current"]["code"] == "EUR"
        assert data["current"]["source"] == "shop-default"
        assert data["shop_currency"] == "EUR"
        assert data["is_multi_currency"] is False
        assert data["formatted_example"]

    def test_platform_currency_wins(self, client: TestClient) -> None:
        """Test that a currency from a platform response has top priority."""
        response = client.get(
            "/api/v1/currency",
            params={"platform_currency": "JPY"},
            headers={"Cookie": "user_currency=USD", "CF-IPCountry": "CH"},
        )

        current = response.json()["current"]
        assert current["code"] == "JPY"
        assert current["source"] == "platform-response"
        assert current["confidence"] == 1.0

    def test_preference_cookie(self, client: TestClient) -> None:
        """Test that the saved preference cookie is honoured."""
        response = client.get("/api/v1/currency", headers={"Cookie": "user_currency=USD"})

        current = response.json()["current"]
        assert current["code"] == "USD"
        assert current["source"] == "user-preference"

    def test_country_header(self, client: TestClient) -> None:
        """Test that the edge country header maps to a currency."""
        response = client.get("/api/v1/currency", headers={"CF-IPCountry": "CH"})

        current = response.json()["current"]
        assert current["code"] == "CHF"
        assert current["source"] == "geolocation"
        assert current["metadata"]["country"] == "CH"

    def test_accept_language_region(self, client: TestClient) -> None:
        """Test that the browser locale region is used when no country is known."""
        response = client.get("/api/v1/currency", headers={"Accept-Language": "en-GB,en;q=0.8"})

        current = response.json()["current"]
        assert current["code"] == "GBP"
        assert current["source"] == "geolocation"

    def test_unknown_country_is_ignored(self, client: TestClient) -> None:
        """Test that the edge's unknown-country marker does not drive resolution."""
        response = client.get("/api/v1/currency", headers={"CF-IPCountry": "XX"})

        assert response.json()["current"]["source"] == "shop-default"

    def test_skips_currencies_not_enabled(self, client: TestClient, mock_gateway: MagicMock) -> None:
        """Test that a detected currency outside the enabled set is skipped."""
        set_enabled_currencies(mock_gateway, ["EUR", "USD"])

        response = client.get("/api/v1/currency", headers={"CF-IPCountry": "CH"})

        data = response.json()
        assert data["current"]["code"] == "EUR"
        assert data["enabled_currencies"] == ["EUR", "USD"]
        assert data["is_multi_currency"] is True

    def test_platform_failure_falls_back(self, client: TestClient, mock_gateway: MagicMock) -> None:
        """Test that an unreachable platform still yields the configured default."""
        mock_gateway.get_shop_currency.return_value = GatewayResult.failure("Network error: unreachable")

        response = client.get("/api/v1/currency")

        assert response.status_code == 200
        current = response.json()["current"]
        assert current["code"] == "EUR"
        assert current["source"] == "fallback"


class TestSaveCurrencyPreference:
    """Tests for POST /api/v1/currency endpoint."""

    def test_sets_cookie(self, client: TestClient) -> None:
        """Test that a valid currency is stored in the preference cookie."""
        response = client.post("/api/v1/currency", json={"currency": "usd"})

        assert response.status_code == 200
        assert response.json() == {"currency": "USD", "saved": True}
        cookie = response.headers["set-cookie"]
        assert "user_currency=USD" in cookie
        assert "Max-Age=31536000" in cookie

    def test_rejects_disabled_currency(self, client: TestClient, mock_gateway: MagicMock) -> None:
        """Test that a currency not enabled on the shop is refused."""
        set_enabled_currencies(mock_gateway, ["EUR", "USD"])

        response = client.post("/api/v1/currency", json={"currency": "GBP"})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["details"][0]["loc"] == ["currency"]
        assert "set-cookie" not in response.headers

    def test_rejects_malformed_code(self, client: TestClient) -> None:
        """Test that a code that is not three letters fails validation."""
        response = client.post("/api/v1/currency", json={"currency": "US"})

        assert response.status_code == 422


class TestInvalidateCurrencyCache:
    """Tests for DELETE /api/v1/currency/cache endpoint."""

    def test_drops_cached_snapshots(self, client: TestClient, currency_service: CurrencyService) -> None:
        """Test that cached shop data is dropped."""
        currency_service.cache.set("shop_currency", "GBP")

        response = client.delete("/api/v1/currency/cache")

        assert response.status_code == 204
        assert currency_service.cache.get("shop_currency") is None
