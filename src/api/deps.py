"""FastAPI dependency injection functions."""

from typing import Annotated, Callable

from fastapi import Depends, Header, Query, Request

from src.api.middleware.error_handler import ConfigurationError
from src.core.admin_gateway import AdminGatewayClient, get_admin_gateway
from src.core.config import get_settings
from src.services.checkout_service import Cart, CheckoutOrchestrator
from src.services.currency_service import CurrencyService
from src.services.payment_session_service import PaymentSessionManager

OrchestratorFactory = Callable[[Cart], CheckoutOrchestrator]


def get_currency_cookie_config() -> dict:
    """Get currency preference cookie configuration from settings."""
    settings = get_settings()
    return {
        "key": settings.currency_preference_cookie,
        "max_age": settings.currency_preference_max_age,
        "httponly": False,
        "secure": settings.is_production,
        "samesite": "lax",
        "path": "/",
    }


async def require_admin_gateway() -> AdminGatewayClient:
    """Return the Admin gateway, refusing to run when credentials are missing.

    Raises:
        ConfigurationError: 503 if the store domain or token is not set.
    """
    settings = get_settings()
    if not settings.is_admin_configured:
        raise ConfigurationError(
            "Checkout is unavailable: the Admin API is not configured "
            "(SHOPIFY_STORE_DOMAIN / SHOPIFY_ADMIN_TOKEN)."
        )
    return get_admin_gateway()


async def get_currency_service() -> CurrencyService:
    """Build the currency service over the shared gateway and cache."""
    return CurrencyService.from_settings()


AdminGateway = Annotated[AdminGatewayClient, Depends(require_admin_gateway)]
Currency = Annotated[CurrencyService, Depends(get_currency_service)]


async def get_orchestrator_factory(gateway: AdminGateway, currency: Currency) -> OrchestratorFactory:
    """Provide a factory building one orchestrator per request.

    Payment rails live in the storefront; the server-side manager holds no
    rails and is only used to validate currencies and drop stale sessions.
    """

    def build(cart: Cart) -> CheckoutOrchestrator:
        manager = PaymentSessionManager([], currency)
        return CheckoutOrchestrator(gateway, currency, manager, cart)

    return build


Orchestrators = Annotated[OrchestratorFactory, Depends(get_orchestrator_factory)]


class CurrencyContext:
    """Currency hints carried by the request."""

    def __init__(
        self,
        request: Request,
        platform_currency: Annotated[
            str | None, Query(description="Currency attached to the last platform response")
        ] = None,
        accept_language: Annotated[str | None, Header()] = None,
        cf_ipcountry: Annotated[str | None, Header(alias="CF-IPCountry")] = None,
    ) -> None:
        settings = get_settings()
        self.platform_currency = platform_currency
        self.accept_language = accept_language
        country = (cf_ipcountry or "").strip().upper()
        # XX and T1 are the edge's "unknown" and "Tor" markers
        self.country = country if len(country) == 2 and country not in ("XX", "T1") else None
        self.user_preference = request.cookies.get(settings.currency_preference_cookie)


CurrencyHints = Annotated[CurrencyContext, Depends(CurrencyContext)]
