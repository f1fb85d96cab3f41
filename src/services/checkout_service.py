"""Checkout orchestration: shipping form to committed order."""

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from src.core.admin_gateway import AdminGatewayClient
from src.core.config import Settings, get_settings
from src.models.quote import Quote, QuoteCreate, QuoteLineItem, ShippingMethod
from src.models.result import Result
from src.schemas.checkout import CartLine, ShippingInfo
from src.services.currency_service import CurrencyService, extract_currency
from src.services.error_classifier import classify_errors, classify_platform_error, is_non_recoverable
from src.services.payment_session_service import (
    PaymentProvider,
    PaymentSession,
    PaymentSessionManager,
    QuoteSnapshot,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

GID_PREFIX = "gid://shopify/"

# Shipping form fields that must be present, keyed by storefront field name
REQUIRED_FIELDS: dict[str, tuple[str, str]] = {
    "firstName": ("first_name", "First name is required"),
    "lastName": ("last_name", "Last name is required"),
    "email": ("email", "Email is required"),
    "address": ("address", "Address is required"),
    "city": ("city", "City is required"),
    "postalCode": ("postal_code", "Postal code is required"),
    "country": ("country", "Country is required"),
}

# Maximum difference tolerated between reported and expected payment amounts
AMOUNT_TOLERANCE = Decimal("0.01")

QUOTE_TAG = "storefront-checkout"


class CheckoutState(str, Enum):
    """Checkout attempt lifecycle."""

    SHIPPING_FORM = "shipping-form"
    CREATING_QUOTE = "creating-quote"
    AWAITING_PAYMENT = "awaiting-payment"
    FINALIZING = "finalizing"
    SUCCESS = "success"
    ERROR = "error"


class Cart(Protocol):
    """Cart collaborator owned by the storefront."""

    @property
    def lines(self) -> list[CartLine]: ...

    def clear(self) -> Awaitable[None] | None: ...


class RequestCart:
    """Cart built from a request body; clearing is reported back to the caller."""

    def __init__(self, lines: list[CartLine] | None = None) -> None:
        self._lines = list(lines or [])
        self.cleared = False

    @property
    def lines(self) -> list[CartLine]:
        return self._lines

    def clear(self) -> None:
        self._lines = []
        self.cleared = True


@dataclass
class CheckoutOutcome:
    """What the storefront needs to render after a checkout step."""

    state: CheckoutState
    attempt_id: str | None = None
    quote_id: str | None = None
    invoice_url: str | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    shipping_cost: Decimal | None = None
    total: Decimal | None = None
    field_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    non_recoverable: bool = False
    order_id: str | None = None
    order_name: str | None = None
    cart_cleared: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.field_errors


def variant_numeric_id(merchandise_id: str) -> str:
    """Return the trailing id of a global id (``gid://shopify/ProductVariant/42`` -> ``42``)."""
    if merchandise_id.startswith(GID_PREFIX):
        return merchandise_id.rsplit("/", 1)[-1]
    return merchandise_id


def _to_decimal(value: Any, default: Decimal) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else default
    except InvalidOperation:
        return default


class CheckoutOrchestrator:
    """Drives one shopper's checkout through quote, payment and finalization.

    An error always leads back to the shipping form with the entered data
    kept; the next submit creates a fresh quote.
    """

    def __init__(
        self,
        gateway: AdminGatewayClient,
        currency_service: CurrencyService,
        payment_manager: PaymentSessionManager,
        cart: Cart,
        *,
        settings: Settings | None = None,
        on_transition: Callable[[CheckoutState, CheckoutOutcome], None] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            gateway: Admin gateway client.
            currency_service: Currency resolution engine.
            payment_manager: Payment session manager.
            cart: Cart collaborator (lines + clear).
            settings: Optional settings override.
            on_transition: Called with each new state and the current outcome.
        """
        self.gateway = gateway
        self.currency_service = currency_service
        self.payment_manager = payment_manager
        self.cart = cart
        self.settings = settings or get_settings()
        self.on_transition = on_transition

        self.state = CheckoutState.SHIPPING_FORM
        self.shipping: ShippingInfo | None = None
        self.shipping_method: ShippingMethod = "standard"
        self.field_errors: dict[str, str] = {}
        self.quote: QuoteSnapshot | None = None
        self.attempt_id: str | None = None
        self.error: str | None = None
        self.non_recoverable = False
        self.order_id: str | None = None
        self.order_name: str | None = None
        self.cart_cleared = False
        self._busy = asyncio.Lock()

    # State

    def outcome(self) -> CheckoutOutcome:
        quote = self.quote
        return CheckoutOutcome(
            state=self.state,
            attempt_id=self.attempt_id,
            quote_id=quote.quote_id if quote else None,
            invoice_url=quote.invoice_url if quote else None,
            currency=quote.currency_code if quote else None,
            subtotal=quote.subtotal if quote else None,
            shipping_cost=quote.shipping_cost if quote else None,
            total=quote.total if quote else None,
            field_errors=dict(self.field_errors),
            error=self.error,
            non_recoverable=self.non_recoverable,
            order_id=self.order_id,
            order_name=self.order_name,
            cart_cleared=self.cart_cleared,
        )

    def _transition(self, state: CheckoutState) -> None:
        logger.info("Checkout %s: %s -> %s", self.attempt_id or "-", self.state.value, state.value)
        self.state = state
        if self.on_transition is not None:
            try:
                self.on_transition(state, self.outcome())
            except Exception as e:
                logger.error("Checkout transition callback failed: %s", str(e))

    def _fail(self, message: str, non_recoverable: bool = False) -> CheckoutOutcome:
        self.error = message
        self.non_recoverable = non_recoverable
        self._transition(CheckoutState.ERROR)
        return self.outcome()

    def reset_to_form(self) -> None:
        """Return to the shipping form, keeping the entered shipping data.

        The previous quote is dropped (not deleted on the platform) and its
        payment sessions are destroyed.
        """
        if self.attempt_id:
            self.payment_manager.destroy_attempt(self.attempt_id)
        self.quote = None
        self.attempt_id = None
        self.error = None
        self.non_recoverable = False
        self.field_errors = {}
        if self.state != CheckoutState.SHIPPING_FORM:
            self._transition(CheckoutState.SHIPPING_FORM)

    # Step 1: local validation

    @staticmethod
    def validate_shipping(shipping: ShippingInfo) -> dict[str, str]:
        """Check required fields and email shape.

        Returns:
            Field name -> message; empty when the form is valid.
        """
        errors: dict[str, str] = {}
        for form_field, (attr, message) in REQUIRED_FIELDS.items():
            if not str(getattr(shipping, attr, "") or "").strip():
                errors[form_field] = message
        if "email" not in errors and not EMAIL_RE.match(shipping.email.strip()):
            errors["email"] = "Email address is invalid"
        return errors

    # Steps 2-4: quote creation

    def shipping_cost(self, subtotal: Decimal, method: ShippingMethod) -> Decimal:
        """Shipping price for a subtotal; standard shipping is free above the threshold."""
        if method == "standard" and subtotal >= Decimal(str(self.settings.free_shipping_threshold)):
            return Decimal("0.00")
        cost = self.settings.express_shipping_cost if method == "express" else self.settings.standard_shipping_cost
        return Decimal(str(cost)).quantize(Decimal("0.01"))

    async def _find_or_create_customer(self, shipping: ShippingInfo) -> str | None:
        """Look up the customer by email, creating one if needed.

        Failures are logged and ignored; the quote then carries inline
        customer details instead.
        """
        found = await self.gateway.find_customer_by_email(shipping.email)
        if found.ok and (found.data or {}).get("customer"):
            customer_id = str(found.data["customer"]["id"])
            logger.info("Found existing customer %s", customer_id)
            return customer_id
        if not found.ok:
            logger.warning("Customer lookup failed: %s", found.first_error)

        created = await self.gateway.create_customer(
            {
                "email": shipping.email,
                "first_name": shipping.first_name,
                "last_name": shipping.last_name,
                "phone": shipping.phone or None,
                "addresses": [self._address(shipping)],
            }
        )
        if created.ok and (created.data or {}).get("customer"):
            customer_id = str(created.data["customer"]["id"])
            logger.info("Created customer %s", customer_id)
            return customer_id
        logger.warning("Customer creation failed, continuing without: %s", created.first_error)
        return None

    def _address(self, shipping: ShippingInfo) -> dict[str, Any]:
        address = {
            "first_name": shipping.first_name,
            "last_name": shipping.last_name,
            "address1": shipping.address,
            "address2": shipping.address2 or None,
            "city": shipping.city,
            "zip": shipping.postal_code,
            "country": shipping.country or self.settings.default_country,
            "phone": shipping.phone or None,
        }
        return {k: v for k, v in address.items() if v is not None}

    def _build_quote(
        self,
        shipping: ShippingInfo,
        lines: list[CartLine],
        method: ShippingMethod,
        currency: str,
        shipping_cost: Decimal,
        customer_id: str | None,
        note: str | None,
    ) -> QuoteCreate:
        line_items: list[QuoteLineItem] = []
        for line in lines:
            line_items.append(
                {
                    "variant_id": int(variant_numeric_id(line.merchandise_id)),
                    "quantity": line.quantity,
                }
            )

        customer: dict[str, Any]
        if customer_id:
            customer = {"id": int(customer_id) if customer_id.isdigit() else customer_id}
        else:
            customer = {
                "email": shipping.email,
                "first_name": shipping.first_name,
                "last_name": shipping.last_name,
            }

        if shipping_cost == 0 and method == "standard":
            title = "Free shipping"
        else:
            title = "Express shipping" if method == "express" else "Standard shipping"

        return {
            "line_items": line_items,
            "customer": customer,
            "email": shipping.email,
            "shipping_address": self._address(shipping),
            "billing_address": self._address(shipping),
            "shipping_line": {"title": title, "price": f"{shipping_cost:.2f}", "code": method},
            "currency": currency,
            "presentment_currency": currency,
            "note": note or f"Storefront checkout - {method}",
            "tags": QUOTE_TAG,
            "use_customer_default_address": False,
        }

    async def submit(
        self,
        shipping: ShippingInfo,
        shipping_method: ShippingMethod = "standard",
        *,
        platform_currency: str | None = None,
        user_preference: str | None = None,
        country: str | None = None,
        accept_language: str | None = None,
        note: str | None = None,
    ) -> CheckoutOutcome:
        """Validate shipping data and create a fresh quote.

        Concurrent submits are rejected while one is in flight, so a single
        submit action creates at most one quote.

        Args:
            shipping: Shipping form data.
            shipping_method: ``standard`` or ``express``.
            platform_currency: Currency attached to the last platform response.
            user_preference: Saved currency preference.
            country: Geolocated country code.
            accept_language: Browser Accept-Language header.
            note: Optional order note.

        Returns:
            CheckoutOutcome: ``awaiting-payment`` on success, ``shipping-form``
            with field errors, or ``error`` with a user-safe message.
        """
        if self._busy.locked():
            logger.warning("Ignoring duplicate checkout submit while %s", self.state.value)
            return self.outcome()

        async with self._busy:
            if self.state in (CheckoutState.FINALIZING, CheckoutState.SUCCESS):
                logger.warning("Submit ignored in state %s", self.state.value)
                return self.outcome()
            self.reset_to_form()

            self.shipping = shipping
            self.shipping_method = shipping_method
            self.field_errors = self.validate_shipping(shipping)
            if self.field_errors:
                logger.info("Shipping form invalid: %s", ", ".join(sorted(self.field_errors)))
                return self.outcome()

            lines = list(self.cart.lines)
            if not lines:
                self.field_errors = {"cart": "Your cart is empty"}
                return self.outcome()

            for line in lines:
                if not variant_numeric_id(line.merchandise_id).isdigit():
                    return self._fail(classify_platform_error(f"Invalid id: {line.merchandise_id}", "submit"))

            self.attempt_id = uuid4().hex
            self._transition(CheckoutState.CREATING_QUOTE)

            resolution = await self.currency_service.resolve(
                platform_currency=platform_currency,
                user_preference=user_preference,
                country=country,
                accept_language=accept_language,
            )
            currency = resolution.code
            logger.info("Checkout currency %s (%s)", currency, resolution.source.value)

            subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
            shipping_cost = self.shipping_cost(subtotal, shipping_method)
            customer_id = await self._find_or_create_customer(shipping)

            payload = self._build_quote(shipping, lines, shipping_method, currency, shipping_cost, customer_id, note)
            result = await self.gateway.create_quote(payload)
            if not result.ok:
                return self._fail(
                    classify_errors(result.errors, "create_quote"),
                    is_non_recoverable(result.first_error),
                )

            draft: Quote = (result.data or {}).get("draft_order") or {}
            quote_id = draft.get("id")
            if not quote_id:
                logger.error("Draft order response without id: %s", result.data)
                return self._fail(classify_platform_error(None))

            self.quote = QuoteSnapshot(
                quote_id=str(quote_id),
                currency_code=extract_currency(draft) or currency,
                subtotal=_to_decimal(draft.get("subtotal_price"), subtotal),
                total=_to_decimal(draft.get("total_price"), subtotal + shipping_cost),
                line_items=tuple(
                    {
                        "merchandise_id": line.merchandise_id,
                        "title": line.title or line.merchandise_id,
                        "quantity": line.quantity,
                        "price": f"{line.unit_price:.2f}",
                        "currency": currency,
                    }
                    for line in lines
                ),
                shipping_cost=shipping_cost,
                invoice_url=draft.get("invoice_url"),
            )
            logger.info("Created quote %s for %s %s", self.quote.quote_id, self.quote.total, self.quote.currency_code)
            self._transition(CheckoutState.AWAITING_PAYMENT)
            return self.outcome()

    # Payment hand-off

    async def start_payment(
        self,
        provider: PaymentProvider | None = None,
        redirect_url: str | None = None,
    ) -> Result[PaymentSession]:
        """Create a payment session for the current quote.

        The session's success triggers finalization through
        ``exchange_payment_token``.
        """
        if self.state != CheckoutState.AWAITING_PAYMENT or self.quote is None or self.attempt_id is None:
            return Result.failure(f"Cannot start payment in state {self.state.value}")
        result = await self.payment_manager.create_session(
            self.quote,
            self.attempt_id,
            provider=provider,
            redirect_url=redirect_url,
            token_exchanger=self.exchange_payment_token,
        )
        if not result.ok:
            logger.error("Payment session unavailable for quote %s: %s", self.quote.quote_id, result.error)
        return result

    async def exchange_payment_token(self, quote_id: str, token: str) -> Result[CheckoutOutcome]:
        """Turn a native wallet token into a committed order."""
        if self.quote is None or self.quote.quote_id != str(quote_id):
            return Result.failure("Payment token does not belong to the current checkout")
        outcome = await self.finalize(transaction_id=token, payment_gateway=PaymentProvider.NATIVE_WALLET.value)
        if outcome.state == CheckoutState.SUCCESS:
            return Result.success(outcome)
        return Result.failure(outcome.error or "Payment could not be finalized", outcome.non_recoverable)

    # Steps 5-6: finalization

    async def load_quote(self, quote_id: str) -> CheckoutOutcome:
        """Rebuild state for a quote created by an earlier request."""
        result = await self.gateway.get_quote(quote_id)
        if not result.ok:
            return self._fail(classify_errors(result.errors, "load_quote"), is_non_recoverable(result.first_error))

        draft: Quote = (result.data or {}).get("draft_order") or {}
        shipping_line = draft.get("shipping_line") or {}
        total = _to_decimal(draft.get("total_price"), Decimal("0"))
        self.quote = QuoteSnapshot(
            quote_id=str(draft.get("id", quote_id)),
            currency_code=extract_currency(draft) or self.currency_service.default_currency,
            subtotal=_to_decimal(draft.get("subtotal_price"), total),
            total=total,
            line_items=tuple(draft.get("line_items") or ()),
            shipping_cost=_to_decimal(shipping_line.get("price"), Decimal("0")),
            invoice_url=draft.get("invoice_url"),
        )
        self.attempt_id = self.attempt_id or uuid4().hex

        status = draft.get("status", "open")
        if status == "completed":
            self.order_id = str(draft["order_id"]) if draft.get("order_id") else None
            self._transition(CheckoutState.SUCCESS)
        elif status in ("open", "invoice_sent"):
            self._transition(CheckoutState.AWAITING_PAYMENT)
        else:
            return self._fail(classify_platform_error(f"Draft order {status}", "load_quote"))
        return self.outcome()

    async def finalize(
        self,
        transaction_id: str | None = None,
        payment_gateway: str | None = None,
        payment_pending: bool = False,
        paid_amount: Decimal | None = None,
    ) -> CheckoutOutcome:
        """Commit the quote after payment and clear the cart.

        On failure the quote stays open on the platform so it can be
        recovered manually.

        Args:
            transaction_id: Provider transaction reference.
            payment_gateway: Provider name recorded on the quote.
            payment_pending: Complete as awaiting capture.
            paid_amount: Amount reported by the provider.

        Returns:
            CheckoutOutcome: ``success`` with order details or ``error``.
        """
        if self.state == CheckoutState.SUCCESS:
            return self.outcome()
        if self.state != CheckoutState.AWAITING_PAYMENT or self.quote is None:
            return self._fail(f"Cannot finalize in state {self.state.value}")

        quote = self.quote
        if paid_amount is not None and abs(Decimal(paid_amount) - quote.total) > AMOUNT_TOLERANCE:
            logger.error(
                "Paid amount %s does not match quote %s total %s",
                paid_amount,
                quote.quote_id,
                quote.total,
            )
            return self._fail("The payment amount does not match your order. Please contact support.")

        self._transition(CheckoutState.FINALIZING)

        if transaction_id or payment_gateway:
            attributes = [
                {"name": name, "value": value}
                for name, value in (("payment_gateway", payment_gateway), ("transaction_id", transaction_id))
                if value
            ]
            tagged = await self.gateway.update_quote(quote.quote_id, {"note_attributes": attributes})
            if not tagged.ok:
                logger.warning("Could not record payment reference on quote %s: %s", quote.quote_id, tagged.first_error)

        result = await self.gateway.complete_quote(quote.quote_id, payment_pending=payment_pending)
        if not result.ok:
            logger.error("Finalizing quote %s failed, leaving it open: %s", quote.quote_id, result.first_error)
            return self._fail(
                classify_errors(result.errors, "complete_quote"),
                is_non_recoverable(result.first_error),
            )

        draft: Quote = (result.data or {}).get("draft_order") or {}
        order_id = draft.get("order_id")
        self.order_id = str(order_id) if order_id else None
        if self.order_id:
            order = await self.gateway.get_order(self.order_id)
            if order.ok:
                self.order_name = ((order.data or {}).get("order") or {}).get("name")

        try:
            cleared = self.cart.clear()
            if inspect.isawaitable(cleared):
                await cleared
            self.cart_cleared = True
        except Exception as e:
            logger.warning("Cart clear failed after order %s: %s", self.order_id, str(e))

        logger.info("Quote %s finalized as order %s", quote.quote_id, self.order_id)
        self._transition(CheckoutState.SUCCESS)
        return self.outcome()
