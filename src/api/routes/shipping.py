"""Shipping API routes: prices and delays shown before checkout."""

from decimal import Decimal

from fastapi import APIRouter, Response

from src.core.config import get_settings
from src.schemas.checkout import ShippingInfoResponse, ShippingOption

router = APIRouter(prefix="/shipping", tags=["shipping"])

# Shipping terms only change with configuration
CACHE_CONTROL = "public, max-age=3600, stale-while-revalidate=7200"


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


@router.get(
    "",
    response_model=ShippingInfoResponse,
    summary="Get shipping terms",
    description="Returns the free-shipping threshold, shipping prices and delivery delays.",
)
async def get_shipping_info(response: Response) -> ShippingInfoResponse:
    """Expose the shipping terms the checkout applies.

    Amounts match what ``CheckoutOrchestrator.shipping_cost`` charges.
    """
    settings = get_settings()
    response.headers["Cache-Control"] = CACHE_CONTROL

    standard = _money(settings.standard_shipping_cost)
    express = _money(settings.express_shipping_cost)
    return ShippingInfoResponse(
        currency=settings.default_currency,
        free_shipping_threshold=_money(settings.free_shipping_threshold),
        standard_shipping_cost=standard,
        express_shipping_cost=express,
        default_country=settings.default_country,
        delivery_days_domestic=settings.delivery_days_domestic,
        delivery_days_international=settings.delivery_days_international,
        options=[
            ShippingOption(
                method="standard",
                label="Standard shipping",
                cost=standard,
                delivery_days=settings.delivery_days_domestic,
            ),
            ShippingOption(
                method="express",
                label="Express shipping",
                cost=express,
                delivery_days=settings.express_delivery_days,
            ),
        ],
    )
