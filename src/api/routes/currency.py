"""Currency API routes: resolution, preference and cache control."""

import logging

from fastapi import APIRouter, Response, status

from src.api.deps import Currency, CurrencyHints, get_currency_cookie_config
from src.api.middleware.error_handler import ValidationError
from src.schemas.currency import CurrencyPreferenceRequest, CurrencyPreferenceResponse, CurrencyState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/currency", tags=["currency"])


@router.get(
    "",
    response_model=CurrencyState,
    summary="Resolve currency",
    description="Resolves the shopper's currency from the platform, preference cookie, geolocation and locale.",
)
async def get_currency(currency: Currency, hints: CurrencyHints) -> CurrencyState:
    """Resolve the currency for this request.

    Args:
        currency: Currency service.
        hints: Platform currency, preference cookie, country and locale.

    Returns:
        CurrencyState: Resolved currency plus shop context.
    """
    return await currency.get_state(
        platform_currency=hints.platform_currency,
        user_preference=hints.user_preference,
        country=hints.country,
        accept_language=hints.accept_language,
    )


@router.post(
    "",
    response_model=CurrencyPreferenceResponse,
    summary="Save currency preference",
    description="Validates a currency against the shop's enabled currencies and stores it in a cookie.",
)
async def save_currency_preference(
    data: CurrencyPreferenceRequest,
    currency: Currency,
    response: Response,
) -> CurrencyPreferenceResponse:
    """Store the shopper's preferred currency.

    Raises:
        ValidationError: 422 if the currency is malformed or not enabled.
    """
    result = await currency.save_user_preference(data.currency)
    if not result.ok:
        raise ValidationError(
            result.error or "Unsupported currency",
            details=[{"loc": ["currency"], "msg": result.error, "type": "unsupported_currency"}],
        )

    response.set_cookie(value=result.value, **get_currency_cookie_config())
    return CurrencyPreferenceResponse(currency=result.value, saved=True)


@router.delete(
    "/cache",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Invalidate currency cache",
    description="Drops cached shop currency data so the next resolution fetches it live.",
)
async def invalidate_currency_cache(currency: Currency) -> None:
    """Invalidate both cached currency snapshots."""
    currency.invalidate_cache()
