"""Checkout API routes: quote creation, payment hand-off and finalization."""

import logging

from fastapi import APIRouter, Response, status

from src.api.deps import AdminGateway, Currency, CurrencyHints, Orchestrators
from src.api.middleware.error_handler import CheckoutError, ConfigurationError, NotFoundError, ValidationError
from src.core.config import get_settings
from src.schemas.checkout import (
    CheckoutCreate,
    CheckoutResponse,
    InvoiceUrlResponse,
    NativePaymentRequest,
    PaymentCompleteRequest,
    PaymentCompleteResponse,
    PaymentMethod,
    PaymentMethodsResponse,
)
from src.schemas.common import field_error_details
from src.services.checkout_service import CheckoutOrchestrator, CheckoutOutcome, CheckoutState, RequestCart
from src.services.currency_service import primary_locale
from src.services.error_classifier import classify_errors
from src.services.payment_session_service import PaymentProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _raise_for_outcome(outcome: CheckoutOutcome) -> None:
    """Map a failed outcome to the matching API error."""
    if outcome.field_errors:
        raise ValidationError(
            "Please correct the highlighted fields",
            details=field_error_details(outcome.field_errors),
        )
    if outcome.state == CheckoutState.ERROR:
        if outcome.non_recoverable:
            raise ConfigurationError(outcome.error or "Checkout is temporarily unavailable")
        raise CheckoutError(outcome.error or "Checkout failed")


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create checkout quote",
    description="Validates shipping data, resolves the currency and creates a draft order.",
)
async def create_checkout(
    data: CheckoutCreate,
    build: Orchestrators,
    currency: Currency,
    hints: CurrencyHints,
) -> CheckoutResponse:
    """Create a quote for the submitted cart.

    Args:
        data: Shipping form, cart lines and shipping method.
        build: Orchestrator factory.
        currency: Currency service, used to format the total.
        hints: Currency hints from the request.

    Returns:
        CheckoutResponse: Quote id, invoice URL and totals.

    Raises:
        ValidationError: 422 with field-level errors.
        CheckoutError: 400 with a user-safe message.
        ConfigurationError: 503 when the platform rejects our credentials.
    """
    orchestrator = build(RequestCart(data.lines))
    outcome = await orchestrator.submit(
        data.shipping,
        data.shipping_method,
        platform_currency=data.platform_currency or hints.platform_currency,
        user_preference=hints.user_preference,
        country=hints.country,
        accept_language=hints.accept_language,
        note=data.note,
    )
    _raise_for_outcome(outcome)

    return CheckoutResponse(
        state=outcome.state.value,
        attempt_id=outcome.attempt_id,
        quote_id=outcome.quote_id,
        invoice_url=outcome.invoice_url,
        currency=outcome.currency,
        subtotal=outcome.subtotal,
        shipping_cost=outcome.shipping_cost,
        total=outcome.total,
        formatted_total=(
            currency.format_price(outcome.total, outcome.currency, primary_locale(hints.accept_language))
            if outcome.total is not None
            else None
        ),
        payment_providers=[provider.value for provider in PaymentProvider],
    )


# Display data per rail, in priority order
PAYMENT_METHODS: dict[PaymentProvider, tuple[str, str, bool]] = {
    PaymentProvider.NATIVE_WALLET: ("Express wallet", "Pay in one step with the wallet saved on your device", True),
    PaymentProvider.REDIRECT_WALLET: ("Secure payment page", "Pay on the store's hosted payment page", False),
}


@router.get(
    "/payment/methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods",
    description="Returns the payment rails the storefront may offer, in priority order.",
)
async def list_payment_methods(response: Response) -> PaymentMethodsResponse:
    """List payment rails.

    The native wallet still needs the browser to confirm support; both
    rails are unavailable while the Admin API is not configured.
    """
    configured = get_settings().is_admin_configured
    response.headers["Cache-Control"] = "public, max-age=3600"
    return PaymentMethodsResponse(
        methods=[
            PaymentMethod(
                id=provider.value,
                name=name,
                description=description,
                available=configured,
                requires_device_capability=needs_capability,
            )
            for provider, (name, description, needs_capability) in PAYMENT_METHODS.items()
        ],
        admin_configured=configured,
    )


@router.get(
    "/{quote_id}/invoice-url",
    response_model=InvoiceUrlResponse,
    summary="Get hosted payment URL",
    description="Returns the redirect wallet URL for a quote.",
)
async def get_invoice_url(quote_id: str, gateway: AdminGateway) -> InvoiceUrlResponse:
    """Look up the hosted payment page of a quote.

    Raises:
        NotFoundError: 404 if the quote or its URL does not exist.
    """
    result = await gateway.get_quote_invoice_url(quote_id)
    if not result.ok:
        logger.warning("Invoice URL lookup failed for %s: %s", quote_id, result.first_error)
        raise NotFoundError(classify_errors(result.errors, "invoice_url"))
    return InvoiceUrlResponse(quote_id=quote_id, invoice_url=result.data["invoice_url"])


async def _load(build: Orchestrators, quote_id: str) -> CheckoutOrchestrator:
    orchestrator = build(RequestCart())
    outcome = await orchestrator.load_quote(quote_id)
    if outcome.state == CheckoutState.ERROR:
        raise NotFoundError(outcome.error or "Checkout not found")
    return orchestrator


def _completion_response(outcome: CheckoutOutcome, quote_id: str) -> PaymentCompleteResponse:
    return PaymentCompleteResponse(
        state=outcome.state.value,
        quote_id=outcome.quote_id or quote_id,
        order_id=outcome.order_id,
        order_name=outcome.order_name,
        cart_cleared=outcome.cart_cleared,
    )


@router.post(
    "/{quote_id}/payment/native",
    response_model=PaymentCompleteResponse,
    summary="Exchange native wallet token",
    description="Finalizes the quote after the native wallet reports payment completion.",
)
async def exchange_native_token(
    quote_id: str,
    data: NativePaymentRequest,
    build: Orchestrators,
) -> PaymentCompleteResponse:
    """Exchange a native wallet payment token for a committed order."""
    orchestrator = await _load(build, quote_id)
    result = await orchestrator.exchange_payment_token(quote_id, data.token)
    if not result.ok:
        _raise_for_outcome(orchestrator.outcome())
        raise CheckoutError(result.error or "Payment could not be finalized")
    return _completion_response(result.value, quote_id)


@router.post(
    "/{quote_id}/payment/complete",
    response_model=PaymentCompleteResponse,
    summary="Complete quote after payment",
    description="Converts the quote into an order once an external payment succeeded.",
)
async def complete_payment(
    quote_id: str,
    data: PaymentCompleteRequest,
    build: Orchestrators,
) -> PaymentCompleteResponse:
    """Finalize a quote after an external payment.

    On failure the quote stays open on the platform.
    """
    orchestrator = await _load(build, quote_id)
    outcome = await orchestrator.finalize(
        transaction_id=data.transaction_id,
        payment_gateway=data.payment_gateway,
        payment_pending=data.payment_pending,
        paid_amount=data.paid_amount,
    )
    _raise_for_outcome(outcome)
    return _completion_response(outcome, quote_id)
