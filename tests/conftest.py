"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SHOPIFY_STORE_DOMAIN", "test-shop.myshopify.com")
os.environ.setdefault("SHOPIFY_ADMIN_TOKEN", "shpat_test_admin_token_0123456789")
os.environ.setdefault("SHOPIFY_API_VERSION", "2024-10")
os.environ.setdefault("SHOPIFY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("DEFAULT_CURRENCY", "EUR")

from src.core.admin_gateway import AdminGatewayClient  # noqa: E402
from src.core.currency_cache import CurrencyCache, CurrencyCacheConfig  # noqa: E402
from src.models.result import GatewayResult  # noqa: E402
from src.services.currency_service import CurrencyService  # noqa: E402

INVOICE_URL = "https://test-shop.myshopify.com/12345/invoices/abc123"

DRAFT_ORDER: dict[str, Any] = {
    "id": 1001,
    "name": "#D1",
    "status": "open",
    "invoice_url": INVOICE_URL,
    "currency": "EUR",
    "subtotal_price": "50.00",
    "total_price": "54.90",
    "shipping_line": {"title": "Standard shipping", "price": "4.90", "code": "standard"},
    "line_items": [{"variant_id": 42, "title": "Pineapple tee", "quantity": 2, "price": "25.00"}],
}


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNativeHandle:
    """In-memory native payment session."""

    def __init__(self) -> None:
        self.listeners: dict[str, list[Any]] = {}
        self.requested = 0
        self.destroyed = False
        self.fail_destroy = False

    def add_listener(self, event: str, listener: Any) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Any) -> None:
        self.listeners[event].remove(listener)

    async def request(self) -> None:
        self.requested += 1

    def destroy(self) -> None:
        if self.fail_destroy:
            raise RuntimeError("already released")
        self.destroyed = True

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self.listeners.get(event, [])):
            await listener(payload)


class FakeCapability:
    """Native wallet capability that can be switched off."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.descriptions: list[dict[str, Any]] = []
        self.handles: list[FakeNativeHandle] = []

    def probe(self) -> bool:
        return self.available

    def build(self, description: dict[str, Any]) -> dict[str, Any]:
        self.descriptions.append(description)
        return description

    def create_session(self, request: Any) -> FakeNativeHandle:
        handle = FakeNativeHandle()
        self.handles.append(handle)
        return handle


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_gateway() -> MagicMock:
    """Provide an Admin gateway whose calls succeed by default.

    Returns:
        MagicMock: Gateway with AsyncMock domain methods.
    """
    gateway = MagicMock(spec=AdminGatewayClient)
    gateway.get_shop_currency = AsyncMock(return_value=GatewayResult.success({"currencyCode": "EUR"}))
    gateway.get_enabled_currencies = AsyncMock(
        return_value=GatewayResult.success({"currencies": [], "available": False})
    )
    gateway.find_customer_by_email = AsyncMock(return_value=GatewayResult.success({"customer": {"id": 555}}))
    gateway.create_customer = AsyncMock(return_value=GatewayResult.success({"customer": {"id": 556}}))
    gateway.create_quote = AsyncMock(return_value=GatewayResult.success({"draft_order": dict(DRAFT_ORDER)}))
    gateway.get_quote = AsyncMock(return_value=GatewayResult.success({"draft_order": dict(DRAFT_ORDER)}))
    gateway.update_quote = AsyncMock(return_value=GatewayResult.success({"draft_order": dict(DRAFT_ORDER)}))
    gateway.delete_quote = AsyncMock(return_value=GatewayResult.success({}))
    gateway.complete_quote = AsyncMock(
        return_value=GatewayResult.success(
            {"draft_order": {**DRAFT_ORDER, "status": "completed", "order_id": 9001}}
        )
    )
    gateway.get_order = AsyncMock(return_value=GatewayResult.success({"order": {"id": 9001, "name": "#1001"}}))
    gateway.get_quote_invoice_url = AsyncMock(return_value=GatewayResult.success({"invoice_url": INVOICE_URL}))
    return gateway


def set_enabled_currencies(gateway: MagicMock, codes: list[str]) -> None:
    """Make the mocked gateway report an enabled-currency list."""
    gateway.get_enabled_currencies.return_value = GatewayResult.success(
        {"currencies": [{"currency": code, "enabled": True} for code in codes], "available": True}
    )


@pytest.fixture
def currency_cache(clock: FakeClock) -> CurrencyCache:
    return CurrencyCache(CurrencyCacheConfig(ttl_seconds=3600), clock=clock)


@pytest.fixture
def currency_service(mock_gateway: MagicMock, currency_cache: CurrencyCache) -> CurrencyService:
    """Provide a currency service over the mocked gateway and a fresh cache."""
    return CurrencyService(mock_gateway, currency_cache, default_currency="EUR")


@pytest.fixture
def client(mock_gateway: MagicMock, currency_service: CurrencyService) -> Generator[TestClient, None, None]:
    """Provide a test client with the gateway and currency service mocked.

    Args:
        mock_gateway: Mocked Admin gateway fixture.
        currency_service: Currency service over the mocked gateway.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_currency_service, require_admin_gateway
    from src.main import app

    app.dependency_overrides[require_admin_gateway] = lambda: mock_gateway
    app.dependency_overrides[get_currency_service] = lambda: currency_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
