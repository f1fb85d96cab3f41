"""Currency resolution, validation and formatting."""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from babel.core import Locale, UnknownLocaleError
from babel.numbers import format_currency, get_decimal_symbol

from src.core.admin_gateway import AdminGatewayClient, get_admin_gateway
from src.core.config import get_settings
from src.core.currency_cache import CurrencyCache, get_currency_cache
from src.models.result import Result
from src.schemas.currency import CurrencyResolution, CurrencySource, CurrencyState

logger = logging.getLogger(__name__)

CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

DEFAULT_LOCALE = "fr-FR"

# Confidence per detection source
CONFIDENCE = {
    CurrencySource.PLATFORM_RESPONSE: 1.0,
    CurrencySource.USER_PREFERENCE: 0.9,
    CurrencySource.GEOLOCATION: 0.8,
    CurrencySource.BROWSER_LOCALE: 0.75,
    CurrencySource.SHOP_DEFAULT: 0.7,
    CurrencySource.FALLBACK: 0.5,
}

COUNTRY_TO_CURRENCY: dict[str, str] = {
    # Eurozone
    "FR": "EUR",
    "BE": "EUR",
    "DE": "EUR",
    "IT": "EUR",
    "ES": "EUR",
    "NL": "EUR",
    "PT": "EUR",
    "AT": "EUR",
    "IE": "EUR",
    "FI": "EUR",
    "GR": "EUR",
    "LU": "EUR",
    # Americas
    "US": "USD",
    "CA": "CAD",
    "BR": "BRL",
    # Europe outside the eurozone
    "GB": "GBP",
    "CH": "CHF",
    "NO": "NOK",
    "SE": "SEK",
    "DK": "DKK",
    "PL": "PLN",
    # Asia-Pacific
    "AU": "AUD",
    "NZ": "NZD",
    "JP": "JPY",
    "CN": "CNY",
    "KR": "KRW",
    "IN": "INR",
}

LOCALE_TO_CURRENCY: dict[str, str] = {
    "fr": "EUR",
    "fr-FR": "EUR",
    "fr-BE": "EUR",
    "fr-CH": "CHF",
    "fr-CA": "CAD",
    "en": "USD",
    "en-US": "USD",
    "en-GB": "GBP",
    "en-CA": "CAD",
    "en-AU": "AUD",
    "en-NZ": "NZD",
    "en-IE": "EUR",
    "de": "EUR",
    "de-DE": "EUR",
    "de-AT": "EUR",
    "de-CH": "CHF",
    "it": "EUR",
    "it-IT": "EUR",
    "es": "EUR",
    "es-ES": "EUR",
    "pt": "EUR",
    "pt-PT": "EUR",
    "pt-BR": "BRL",
    "nl": "EUR",
    "nl-NL": "EUR",
    "nl-BE": "EUR",
    "pl": "PLN",
    "ja": "JPY",
    "zh": "CNY",
    "ko": "KRW",
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "JPY": "¥",
    "CNY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "NZD": "NZ$",
    "CHF": "CHF",
    "SEK": "kr",
    "NOK": "kr",
    "DKK": "kr",
    "PLN": "zł",
    "BRL": "R$",
    "INR": "₹",
    "KRW": "₩",
}

# Paths inside storefront/admin payloads that carry a currency code
CURRENCY_PATHS: tuple[tuple[Any, ...], ...] = (
    ("priceRange", "minVariantPrice", "currencyCode"),
    ("priceRange", "maxVariantPrice", "currencyCode"),
    ("price", "currencyCode"),
    ("cost", "totalAmount", "currencyCode"),
    ("cost", "subtotalAmount", "currencyCode"),
    ("compareAtPrice", "currencyCode"),
    ("variants", "edges", 0, "node", "price", "currencyCode"),
    ("lines", "edges", 0, "node", "cost", "totalAmount", "currencyCode"),
)

# Wrapper keys whose contents may hold a currency
NESTED_KEYS = ("data", "shop", "product", "cart", "draft_order", "order", "paymentSettings")


def normalize_locale(tag: str | None) -> str | None:
    """Normalize a BCP 47 tag to ``ll`` or ``ll-RR``."""
    if not tag:
        return None
    parts = tag.strip().replace("_", "-").split("-")
    language = parts[0].lower()
    if not language or language == "*":
        return None
    if len(parts) > 1 and len(parts[1]) == 2:
        return f"{language}-{parts[1].upper()}"
    return language


def primary_locale(accept_language: str | None) -> str | None:
    """Pick the highest-weighted tag from an Accept-Language header."""
    if not accept_language:
        return None
    candidates: list[tuple[float, int, str]] = []
    for index, part in enumerate(accept_language.split(",")):
        tag, _, params = part.strip().partition(";")
        weight = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                weight = float(params[2:])
            except ValueError:
                weight = 0.0
        locale = normalize_locale(tag)
        if locale and weight > 0:
            candidates.append((-weight, index, locale))
    if not candidates:
        return None
    return min(candidates)[2]


def currency_for_locale(locale: str | None) -> str | None:
    """Map a locale to a currency (exact tag first, then language)."""
    if not locale:
        return None
    if locale in LOCALE_TO_CURRENCY:
        return LOCALE_TO_CURRENCY[locale]
    return LOCALE_TO_CURRENCY.get(locale.split("-")[0])


def _walk(payload: Any, path: tuple[Any, ...]) -> Any:
    node = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or len(node) <= step:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[step] if isinstance(step, int) else node.get(step)
        if node is None:
            return None
    return node


def extract_currency(payload: Any) -> str | None:
    """Find the currency code attached to a platform API response.

    Looks at a direct ``currencyCode``, the usual money fields of
    products, variants and carts, and REST ``currency`` fields.

    Args:
        payload: Decoded JSON response.

    Returns:
        Upper-cased code, or None if the payload carries no currency.
    """
    if not isinstance(payload, dict):
        return None

    direct = payload.get("currencyCode")
    if isinstance(direct, str) and direct:
        return direct.upper()

    for path in CURRENCY_PATHS:
        value = _walk(payload, path)
        if isinstance(value, str) and value:
            return value.upper()

    for key in ("presentment_currency", "currency"):
        value = payload.get(key)
        if isinstance(value, str) and len(value) == 3:
            return value.upper()

    for key in NESTED_KEYS:
        found = extract_currency(payload.get(key))
        if found:
            return found
    return None


def get_currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code.upper(), code.upper())


class CurrencyService:
    """Resolves, validates and formats the shopper's currency.

    Shop currency and enabled currencies are read through the injected
    cache; a failed live fetch falls back to an expired entry before the
    configured default.
    """

    def __init__(
        self,
        gateway: AdminGatewayClient,
        cache: CurrencyCache,
        *,
        default_currency: str = "EUR",
        enable_multi_currency: bool = True,
        enable_auto_detection: bool = True,
        default_locale: str = DEFAULT_LOCALE,
    ) -> None:
        """Initialize the currency service.

        Args:
            gateway: Admin gateway used for live currency fetches.
            cache: Shared currency cache.
            default_currency: Hard fallback code.
            enable_multi_currency: Validate codes against the enabled set.
            enable_auto_detection: Use geolocation and browser locale.
            default_locale: Locale used by ``format_price`` when none is given.
        """
        self.gateway = gateway
        self.cache = cache
        self.default_currency = default_currency.upper()
        self.enable_multi_currency = enable_multi_currency
        self.enable_auto_detection = enable_auto_detection
        self.default_locale = default_locale

    @classmethod
    def from_settings(cls) -> "CurrencyService":
        """Build the service from application settings and global singletons."""
        settings = get_settings()
        return cls(
            get_admin_gateway(),
            get_currency_cache(),
            default_currency=settings.default_currency,
            enable_multi_currency=settings.enable_multi_currency,
            enable_auto_detection=settings.enable_currency_auto_detection,
        )

    async def _lookup_shop_currency(self) -> tuple[str, str]:
        """Return (code, origin) where origin is cache, live, stale or default."""
        lookup = self.cache.get("shop_currency")
        if lookup is not None and lookup.fresh:
            return lookup.value, "cache"

        result = await self.gateway.get_shop_currency()
        if result.ok:
            code = str((result.data or {}).get("currencyCode", "")).upper()
            if CURRENCY_CODE_RE.match(code):
                self.cache.set("shop_currency", code)
                return code, "live"
            logger.warning("Platform returned an invalid shop currency: %r", code)
        else:
            logger.warning("Shop currency fetch failed: %s", result.first_error)

        if lookup is not None:
            logger.info("Using expired shop currency %s (age %.0fs)", lookup.value, lookup.age_seconds)
            return lookup.value, "stale"
        return self.default_currency, "default"

    async def get_shop_currency(self) -> str:
        """Get the shop's default currency code."""
        code, _ = await self._lookup_shop_currency()
        return code

    async def get_enabled_currencies(self) -> list[str]:
        """Get the currencies enabled on the shop.

        Returns:
            Upper-cased codes; empty when multi-currency is disabled or the
            platform cannot list them (meaning every code is accepted).
        """
        if not self.enable_multi_currency:
            return []

        lookup = self.cache.get("enabled_currencies")
        if lookup is not None and lookup.fresh:
            return list(lookup.value)

        result = await self.gateway.get_enabled_currencies()
        data = result.data or {}
        if result.ok and data.get("available", True):
            codes = []
            for item in data.get("currencies", []):
                if isinstance(item, str):
                    codes.append(item.upper())
                elif isinstance(item, dict) and item.get("enabled", True) and item.get("currency"):
                    codes.append(str(item["currency"]).upper())
            self.cache.set("enabled_currencies", codes)
            return codes

        if lookup is not None:
            logger.info("Using expired enabled-currency list (age %.0fs)", lookup.age_seconds)
            return list(lookup.value)

        # no list was ever known; keep accepting any currency for the full TTL
        logger.info("Enabled-currency list unavailable; caching an empty list")
        self.cache.set("enabled_currencies", [])
        return []

    async def is_multi_currency_enabled(self) -> bool:
        return len(await self.get_enabled_currencies()) > 1

    async def validate_currency(self, code: str | None) -> bool:
        """Check that a code is well formed and, if applicable, enabled.

        Membership is only required when multi-currency is on and the
        enabled list is non-empty.
        """
        if not code or not isinstance(code, str):
            return False
        normalized = code.strip().upper()
        if not CURRENCY_CODE_RE.match(normalized):
            return False
        if not self.enable_multi_currency:
            return True
        enabled = await self.get_enabled_currencies()
        if not enabled:
            return True
        return normalized in enabled

    def _resolution(self, code: str, source: CurrencySource, **metadata: Any) -> CurrencyResolution:
        return CurrencyResolution(
            code=code.upper(),
            source=source,
            confidence=CONFIDENCE[source],
            metadata={k: v for k, v in metadata.items() if v is not None},
        )

    async def resolve(
        self,
        platform_currency: str | None = None,
        user_preference: str | None = None,
        country: str | None = None,
        accept_language: str | None = None,
    ) -> CurrencyResolution:
        """Determine the active currency.

        Sources are tried in priority order: platform response, saved
        preference, geolocation, browser locale, shop default, fallback.

        Args:
            platform_currency: Currency attached to the latest platform response.
            user_preference: Previously saved preference.
            country: ISO country code from geolocation, if known.
            accept_language: Raw Accept-Language header.

        Returns:
            CurrencyResolution: Code, source, confidence and metadata.
        """
        if platform_currency:
            if await self.validate_currency(platform_currency):
                return self._resolution(
                    platform_currency, CurrencySource.PLATFORM_RESPONSE, reason="attached to platform response"
                )
            logger.debug("Skipping platform currency %s: not enabled", platform_currency)

        if user_preference:
            if await self.validate_currency(user_preference):
                return self._resolution(user_preference, CurrencySource.USER_PREFERENCE, reason="saved preference")
            logger.debug("Skipping saved preference %s: not enabled", user_preference)

        locale = primary_locale(accept_language)
        if self.enable_auto_detection:
            region = (country or "").strip().upper() or None
            if region is None and locale and "-" in locale:
                region = locale.split("-")[1]
            geo_currency = COUNTRY_TO_CURRENCY.get(region) if region else None
            if geo_currency and await self.validate_currency(geo_currency):
                return self._resolution(
                    geo_currency, CurrencySource.GEOLOCATION, country=region, locale=locale
                )

            browser_currency = currency_for_locale(locale)
            if browser_currency and await self.validate_currency(browser_currency):
                return self._resolution(browser_currency, CurrencySource.BROWSER_LOCALE, locale=locale)

        try:
            code, origin = await self._lookup_shop_currency()
        except Exception as e:
            logger.error("Shop currency lookup raised: %s", str(e))
            code, origin = self.default_currency, "default"

        if origin != "default":
            return self._resolution(code, CurrencySource.SHOP_DEFAULT, cache=origin)
        return self._resolution(code, CurrencySource.FALLBACK, reason="no source available")

    def format_price(
        self,
        amount: float | Decimal | str,
        currency_code: str | None = None,
        locale: str | None = None,
    ) -> str:
        """Format an amount with locale-aware grouping and symbol placement.

        Falls back to ``"12.50 €"`` style output when the locale or
        currency cannot be formatted.
        """
        code = (currency_code or self.default_currency).upper()
        locale_tag = locale or self.default_locale
        try:
            value = Decimal(str(amount))
            babel_locale = Locale.parse(locale_tag.replace("-", "_"))
            return format_currency(value, code, locale=babel_locale)
        except (UnknownLocaleError, ValueError, TypeError, InvalidOperation) as e:
            logger.debug("Price formatting fell back for %s/%s: %s", code, locale_tag, str(e))
            try:
                number = float(amount)
            except (TypeError, ValueError):
                number = 0.0
            return f"{number:.2f} {get_currency_symbol(code)}"

    def parse_price(self, text: str, locale: str | None = None) -> Decimal:
        """Read the numeric part back out of a formatted price."""
        locale_tag = (locale or self.default_locale).replace("-", "_")
        try:
            decimal_symbol = get_decimal_symbol(Locale.parse(locale_tag))
        except (UnknownLocaleError, ValueError):
            decimal_symbol = "."
        kept = "".join(ch for ch in text if ch.isdigit() or ch == decimal_symbol or ch == "-")
        return Decimal(kept.replace(decimal_symbol, ".").strip(".") or "0")

    async def save_user_preference(self, code: str) -> Result[str]:
        """Validate a preference before the caller persists it."""
        normalized = (code or "").strip().upper()
        if not await self.validate_currency(normalized):
            return Result.failure(f"Currency {normalized or code!r} is not available")
        logger.info("Saved currency preference %s", normalized)
        return Result.success(normalized)

    async def get_state(
        self,
        platform_currency: str | None = None,
        user_preference: str | None = None,
        country: str | None = None,
        accept_language: str | None = None,
    ) -> CurrencyState:
        """Resolve the current currency along with shop context."""
        resolution = await self.resolve(platform_currency, user_preference, country, accept_language)
        enabled = await self.get_enabled_currencies()
        return CurrencyState(
            current=resolution,
            shop_currency=await self.get_shop_currency(),
            enabled_currencies=enabled,
            is_multi_currency=len(enabled) > 1,
            formatted_example=self.format_price(
                Decimal("1234.56"), resolution.code, primary_locale(accept_language)
            ),
        )

    def invalidate_cache(self) -> None:
        self.cache.invalidate()
