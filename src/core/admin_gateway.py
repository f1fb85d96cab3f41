"""Admin API gateway client with rate-limit retry and payload sanitization.

Every call to the commerce platform's privileged REST/GraphQL surface goes
through ``AdminGatewayClient.request``. It never raises: transport failures,
non-2xx responses and exhausted rate-limit retries all come back as a
``GatewayResult`` carrying ``errors``.
"""

import asyncio
import json
import logging
import time
from email.utils import parsedate_to_datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt
from tenacity.wait import wait_base

from src.core.config import get_settings
from src.core.sanitize import Sanitizer, enforce_single_byte, normalize_header_value, sanitize, sanitize_payload
from src.models.result import GatewayResult

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_TIMEOUT_SECONDS = 10.0

# Scopes the checkout flow needs on the Admin API token
REQUIRED_SCOPES = ("write_draft_orders", "read_customers", "write_customers")

SHOP_CURRENCY_QUERY = "query ShopCurrency { shop { currencyCode } }"

SleepFn = Callable[[float], Awaitable[None]]


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header into seconds.

    Accepts delta-seconds (integer or decimal) or an HTTP date.

    Returns:
        Non-negative delay in seconds, or None if absent/unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, retry_at.timestamp() - time.time())


class wait_retry_after_or_exponential(wait_base):
    """Wait strategy honouring Retry-After, else 1, 2, 4, 8, 16 seconds."""

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            response = outcome.result()
            hint = parse_retry_after(response.headers.get("Retry-After"))
            if hint is not None:
                return hint
        return float(2 ** (retry_state.attempt_number - 1))


def _json_default(value: Any) -> Any:
    """Encode Decimal amounts as plain strings (`"12.50"`), as the Admin API expects."""
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


def _flatten_platform_errors(payload: Any) -> str:
    """Turn the platform's ``errors`` payload into one readable line."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        parts = []
        for item in payload:
            if isinstance(item, dict) and "message" in item:
                parts.append(str(item["message"]))
            else:
                parts.append(_flatten_platform_errors(item))
        return "; ".join(parts)
    if isinstance(payload, dict):
        parts = []
        for key, value in payload.items():
            detail = _flatten_platform_errors(value)
            parts.append(detail if key == "base" else f"{key}: {detail}")
        return "; ".join(parts)
    return str(payload)


class AdminGatewayClient:
    """Typed wrapper around the commerce platform Admin API."""

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        *,
        sanitizer: Sanitizer = sanitize,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the gateway client.

        Args:
            store_domain: Store domain, e.g. ``my-shop.myshopify.com``.
            access_token: Admin API access token.
            api_version: Versioned path segment.
            sanitizer: Text sanitizer applied to every outbound string.
            timeout_seconds: Per-request HTTP timeout.
            max_retries: Maximum retries on HTTP 429.
            transport: Optional httpx transport (tests use MockTransport).
            sleep: Coroutine used between retries.
        """
        self.store_domain = store_domain
        self.api_version = api_version
        self.base_url = f"https://{store_domain}/admin/api/{api_version}"
        self.max_retries = max_retries
        self._sanitize = sanitizer
        self._token = normalize_header_value(access_token, sanitizer)
        self._timeout = timeout_seconds
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

        if self._token != (access_token or "").strip():
            logger.warning("Admin API token contained unsafe characters and was normalized")

    @property
    def is_configured(self) -> bool:
        return bool(self.store_domain and self._token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "X-Shopify-Access-Token": self._token,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _serialize(self, body: dict[str, Any]) -> bytes:
        clean = sanitize_payload(body, self._sanitize)
        text = json.dumps(clean, ensure_ascii=False, default=_json_default)
        text, _ = enforce_single_byte(text)
        return text.encode("utf-8")

    def _log_rate_limited(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Admin API rate limited, retry %d/%d in %.1fs",
            retry_state.attempt_number,
            self.max_retries,
            delay,
        )

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> GatewayResult:
        """Send one request to the Admin API.

        Args:
            endpoint: Path relative to the versioned base URL, e.g. ``/draft_orders.json``.
            method: HTTP verb.
            body: Optional JSON body; sanitized before serialization.
            params: Optional query parameters.

        Returns:
            GatewayResult: ``data`` on 2xx, ``errors`` otherwise. Never raises.
        """
        if not self.is_configured:
            logger.error("Admin API is not configured (missing store domain or access token)")
            return GatewayResult.failure(
                "Admin API is not configured: set SHOPIFY_STORE_DOMAIN and SHOPIFY_ADMIN_TOKEN"
            )

        url = f"{self.base_url}{endpoint}"
        try:
            content = self._serialize(body) if body is not None else None
        except Exception as e:
            logger.error("Admin API %s %s payload could not be serialized: %s", method, endpoint, str(e))
            return GatewayResult.failure(f"Invalid request payload: {e}")
        client = self._get_client()

        async def send() -> httpx.Response:
            return await client.request(method, url, content=content, params=params)

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_retry_after_or_exponential(),
            retry=retry_if_result(_is_rate_limited),
            before_sleep=self._log_rate_limited,
            retry_error_callback=lambda state: state.outcome.result(),
        )

        start_time = time.perf_counter()
        try:
            response = await retrying(send)
        except httpx.TimeoutException as e:
            logger.warning("Admin API %s %s timed out: %s", method, endpoint, str(e))
            return GatewayResult.failure(f"Request timed out after {self._timeout:.0f}s")
        except httpx.HTTPError as e:
            logger.warning("Admin API %s %s transport error: %s", method, endpoint, str(e))
            return GatewayResult.failure(f"Network error: {e}")

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("Admin API %s %s - %d - %.2fms", method, endpoint, response.status_code, latency_ms)

        return self._to_result(response, endpoint)

    def _to_result(self, response: httpx.Response, endpoint: str) -> GatewayResult:
        status_code = response.status_code

        if 200 <= status_code < 300:
            if not response.content:
                return GatewayResult.success({}, status_code)
            try:
                return GatewayResult.success(response.json(), status_code)
            except ValueError:
                logger.error("Admin API returned invalid JSON for %s", endpoint)
                return GatewayResult.failure("Invalid JSON in platform response", status_code)

        if status_code == 401:
            logger.error("Admin API rejected the access token (401) for %s", endpoint)
            message = (
                "HTTP 401: Invalid or expired Admin API access token. "
                "Check SHOPIFY_ADMIN_TOKEN."
            )
        elif status_code == 403:
            logger.error(
                "Admin API denied access (403) for %s; token needs scopes: %s",
                endpoint,
                ", ".join(REQUIRED_SCOPES),
            )
            message = (
                "HTTP 403: Missing Admin API permissions. "
                f"Required scopes: {', '.join(REQUIRED_SCOPES)}."
            )
        elif status_code == 404:
            logger.warning("Admin API resource not found (404): %s", endpoint)
            message = (
                "HTTP 404: Resource not found. "
                "Check the store domain, API version and resource id."
            )
        elif status_code == 429:
            logger.error("Admin API rate limit still exceeded after %d retries", self.max_retries)
            message = f"HTTP 429: Rate limit exceeded after {self.max_retries} retries"
        else:
            try:
                payload = response.json()
                detail = _flatten_platform_errors(payload.get("errors", payload))
            except (ValueError, AttributeError):
                detail = response.text or response.reason_phrase
            logger.warning("Admin API error %d for %s: %s", status_code, endpoint, detail)
            message = f"HTTP {status_code}: {detail}"

        return GatewayResult.failure(message, status_code)

    # Draft orders (quotes)

    async def create_quote(self, payload: dict[str, Any]) -> GatewayResult:
        return await self.request("/draft_orders.json", "POST", {"draft_order": payload})

    async def get_quote(self, quote_id: int | str) -> GatewayResult:
        return await self.request(f"/draft_orders/{quote_id}.json")

    async def update_quote(self, quote_id: int | str, payload: dict[str, Any]) -> GatewayResult:
        return await self.request(f"/draft_orders/{quote_id}.json", "PUT", {"draft_order": payload})

    async def delete_quote(self, quote_id: int | str) -> GatewayResult:
        return await self.request(f"/draft_orders/{quote_id}.json", "DELETE")

    async def complete_quote(self, quote_id: int | str, payment_pending: bool = False) -> GatewayResult:
        """Convert a draft order into a committed order.

        Args:
            quote_id: Draft order id.
            payment_pending: Mark the order as awaiting payment instead of paid.
        """
        return await self.request(
            f"/draft_orders/{quote_id}/complete.json",
            "PUT",
            params={"payment_pending": "true" if payment_pending else "false"},
        )

    async def get_quote_invoice_url(self, quote_id: int | str) -> GatewayResult:
        """Fetch the hosted payment page URL of a draft order."""
        result = await self.get_quote(quote_id)
        if not result.ok:
            return result
        invoice_url = (result.data or {}).get("draft_order", {}).get("invoice_url")
        if not invoice_url:
            return GatewayResult.failure(f"Draft order {quote_id} has no invoice URL")
        return GatewayResult.success({"invoice_url": invoice_url}, result.status_code)

    # Orders

    async def get_orders(self, limit: int = 50, financial_status: str | None = None) -> GatewayResult:
        params: dict[str, Any] = {"limit": limit, "status": "any"}
        if financial_status:
            params["financial_status"] = financial_status
        return await self.request("/orders.json", params=params)

    async def get_order(self, order_id: int | str) -> GatewayResult:
        return await self.request(f"/orders/{order_id}.json")

    async def update_order(self, order_id: int | str, payload: dict[str, Any]) -> GatewayResult:
        return await self.request(f"/orders/{order_id}.json", "PUT", {"order": payload})

    # Customers

    async def get_customers(self, limit: int = 50) -> GatewayResult:
        return await self.request("/customers.json", params={"limit": limit})

    async def get_customer(self, customer_id: int | str) -> GatewayResult:
        return await self.request(f"/customers/{customer_id}.json")

    async def create_customer(self, payload: dict[str, Any]) -> GatewayResult:
        return await self.request("/customers.json", "POST", {"customer": payload})

    async def update_customer(self, customer_id: int | str, payload: dict[str, Any]) -> GatewayResult:
        return await self.request(f"/customers/{customer_id}.json", "PUT", {"customer": payload})

    async def find_customer_by_email(self, email: str) -> GatewayResult:
        """Search customers by exact email.

        Returns:
            GatewayResult whose data is ``{"customer": {...} | None}``.
        """
        result = await self.request("/customers/search.json", params={"query": f"email:{email}"})
        if not result.ok:
            return result
        customers = (result.data or {}).get("customers") or []
        return GatewayResult.success({"customer": customers[0] if customers else None}, result.status_code)

    # Fulfillment

    async def get_fulfillments(self, order_id: int | str) -> GatewayResult:
        return await self.request(f"/orders/{order_id}/fulfillments.json")

    async def create_fulfillment(self, order_id: int | str, payload: dict[str, Any]) -> GatewayResult:
        return await self.request(f"/orders/{order_id}/fulfillments.json", "POST", {"fulfillment": payload})

    # Webhooks

    async def get_webhooks(self) -> GatewayResult:
        return await self.request("/webhooks.json")

    async def create_webhook(self, payload: dict[str, Any]) -> GatewayResult:
        return await self.request("/webhooks.json", "POST", {"webhook": payload})

    async def update_webhook(self, webhook_id: int | str, payload: dict[str, Any]) -> GatewayResult:
        return await self.request(f"/webhooks/{webhook_id}.json", "PUT", {"webhook": payload})

    async def delete_webhook(self, webhook_id: int | str) -> GatewayResult:
        return await self.request(f"/webhooks/{webhook_id}.json", "DELETE")

    # Currencies

    async def get_enabled_currencies(self) -> GatewayResult:
        """List currencies enabled on the shop.

        Plans without multi-currency answer 404/403 here. Any failure
        degrades to an empty list, which callers read as "accept any".

        Returns:
            GatewayResult whose data is always ``{"currencies": [...], "available": bool}``.
        """
        result = await self.request("/currencies.json")
        if not result.ok:
            logger.info("Enabled currencies unavailable, treating all currencies as valid: %s", result.first_error)
            return GatewayResult.success({"currencies": [], "available": False}, result.status_code)
        currencies = (result.data or {}).get("currencies") or []
        return GatewayResult.success({"currencies": currencies, "available": True}, result.status_code)

    async def get_shop_currency(self) -> GatewayResult:
        """Read the shop's default currency through the GraphQL endpoint.

        Returns:
            GatewayResult whose data is ``{"currencyCode": "EUR"}``.
        """
        result = await self.request("/graphql.json", "POST", {"query": SHOP_CURRENCY_QUERY})
        if not result.ok:
            return result
        payload = result.data or {}
        if payload.get("errors"):
            return GatewayResult.failure(f"GraphQL error: {_flatten_platform_errors(payload['errors'])}")
        code = ((payload.get("data") or {}).get("shop") or {}).get("currencyCode")
        if not code:
            return GatewayResult.failure("Shop currency missing from platform response")
        return GatewayResult.success({"currencyCode": code}, result.status_code)


# Global singleton instance
_admin_gateway: AdminGatewayClient | None = None


def get_admin_gateway() -> AdminGatewayClient:
    """Get or create the global Admin gateway client from settings."""
    global _admin_gateway
    if _admin_gateway is None:
        settings = get_settings()
        _admin_gateway = AdminGatewayClient(
            settings.shopify_store_domain,
            settings.shopify_admin_token,
            settings.shopify_api_version,
            timeout_seconds=settings.gateway_timeout_seconds,
            max_retries=settings.gateway_max_retries,
        )
        if settings.shopify_admin_token:
            logger.info(
                "Admin gateway configured for %s (token %s...)",
                settings.shopify_store_domain,
                settings.shopify_admin_token[:10],
            )
        else:
            logger.warning("Admin gateway created without an access token")
    return _admin_gateway


async def close_admin_gateway() -> None:
    """Close the global gateway client. Call at app shutdown."""
    global _admin_gateway
    if _admin_gateway is not None:
        await _admin_gateway.close()
        _admin_gateway = None
