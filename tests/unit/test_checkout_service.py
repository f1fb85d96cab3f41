"""Unit tests for CheckoutOrchestrator."""

import asyncio
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.core.config import Settings
from src.models.result import GatewayResult
from src.schemas.checkout import CartLine, ShippingInfo
from src.services.checkout_service import CheckoutOrchestrator, CheckoutState, RequestCart, variant_numeric_id
from src.services.currency_service import CurrencyService
from src.services.payment_session_service import (
    NativeWalletRail,
    NativeWalletSession,
    PaymentSessionManager,
    RedirectWalletRail,
    RedirectWalletSession,
    SessionStatus,
)
from tests.conftest import DRAFT_ORDER, INVOICE_URL, FakeCapability

VARIANT_MESSAGE = "The selected variant is no longer available. Please refresh the page and try again."


@pytest.fixture
def shipping() -> ShippingInfo:
    """Create a complete shipping form."""
    return ShippingInfo(
        firstName="Marie",
        lastName="Curie",
        email="marie@example.com",
        address="1 rue de la Paix",
        city="Paris",
        postalCode="75002",
        country="France",
    )


@pytest.fixture
def cart() -> RequestCart:
    """Create a cart with one line of two items."""
    return RequestCart(
        [
            CartLine(
                merchandiseId="gid://shopify/ProductVariant/42",
                quantity=2,
                unitPrice=Decimal("25.00"),
                title="Pineapple tee",
            )
        ]
    )


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability(available=False)


@pytest.fixture
def navigator() -> MagicMock:
    return MagicMock(return_value=None)


@pytest.fixture
def transitions() -> list[CheckoutState]:
    return []


@pytest.fixture
def orchestrator(
    mock_gateway: MagicMock,
    currency_service: CurrencyService,
    cart: RequestCart,
    capability: FakeCapability,
    navigator: MagicMock,
    test_settings: Settings,
    transitions: list[CheckoutState],
) -> CheckoutOrchestrator:
    """Create an orchestrator over mocked platform calls."""
    manager = PaymentSessionManager(
        [NativeWalletRail(capability), RedirectWalletRail(mock_gateway, navigator)],
        currency_service,
    )
    return CheckoutOrchestrator(
        mock_gateway,
        currency_service,
        manager,
        cart,
        settings=test_settings,
        on_transition=lambda state, outcome: transitions.append(state),
    )


def created_payload(mock_gateway: MagicMock) -> dict[str, Any]:
    return mock_gateway.create_quote.await_args.args[0]


class TestVariantNumericId:
    """Tests for variant_numeric_id."""

    def test_strips_global_id_prefix(self) -> None:
        """Test that the numeric tail of a global id is returned."""
        assert variant_numeric_id("gid://shopify/ProductVariant/42") == "42"
        assert variant_numeric_id("42") == "42"


class TestValidation:
    """Tests for local shipping validation."""

    @pytest.mark.asyncio
    async def test_missing_postal_code_blocks_network(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that an empty postal code stays on the form without any platform call."""
        outcome = await orchestrator.submit(shipping.model_copy(update={"postal_code": ""}))

        assert outcome.state == CheckoutState.SHIPPING_FORM
        assert "postalCode" in outcome.field_errors
        mock_gateway.create_quote.assert_not_awaited()
        mock_gateway.find_customer_by_email.assert_not_awaited()
        mock_gateway.get_shop_currency.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_email(self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo) -> None:
        """Test that a malformed email is a field error."""
        outcome = await orchestrator.submit(shipping.model_copy(update={"email": "not-an-email"}))

        assert outcome.state == CheckoutState.SHIPPING_FORM
        assert outcome.field_errors == {"email": "Email address is invalid"}

    def test_all_required_fields(self) -> None:
        """Test that an empty form reports every required field."""
        errors = CheckoutOrchestrator.validate_shipping(ShippingInfo())

        assert set(errors) == {"firstName", "lastName", "email", "address", "city", "postalCode", "country"}

    @pytest.mark.asyncio
    async def test_empty_cart(
        self,
        mock_gateway: MagicMock,
        currency_service: CurrencyService,
        shipping: ShippingInfo,
        test_settings: Settings,
    ) -> None:
        """Test that an empty cart never reaches the platform."""
        orchestrator = CheckoutOrchestrator(
            mock_gateway, currency_service, PaymentSessionManager([]), RequestCart(), settings=test_settings
        )

        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.SHIPPING_FORM
        assert "cart" in outcome.field_errors
        mock_gateway.create_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_numeric_variant_fails_locally(
        self,
        mock_gateway: MagicMock,
        currency_service: CurrencyService,
        shipping: ShippingInfo,
        test_settings: Settings,
    ) -> None:
        """Test that a variant id without a numeric tail maps to the variant message."""
        cart = RequestCart(
            [CartLine(merchandiseId="gid://shopify/ProductVariant/abc", quantity=1, unitPrice=Decimal("10"))]
        )
        orchestrator = CheckoutOrchestrator(
            mock_gateway, currency_service, PaymentSessionManager([]), cart, settings=test_settings
        )

        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.ERROR
        assert outcome.error == VARIANT_MESSAGE
        mock_gateway.create_quote.assert_not_awaited()


class TestSubmit:
    """Tests for quote creation."""

    @pytest.mark.asyncio
    async def test_creates_quote(
        self,
        orchestrator: CheckoutOrchestrator,
        shipping: ShippingInfo,
        mock_gateway: MagicMock,
        transitions: list[CheckoutState],
    ) -> None:
        """Test that a valid submit creates a quote and awaits payment."""
        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.AWAITING_PAYMENT
        assert outcome.quote_id == "1001"
        assert outcome.invoice_url == INVOICE_URL
        assert outcome.currency == "EUR"
        assert outcome.total == Decimal("54.90")
        assert outcome.attempt_id is not None
        assert transitions == [CheckoutState.CREATING_QUOTE, CheckoutState.AWAITING_PAYMENT]

        payload = created_payload(mock_gateway)
        assert payload["line_items"] == [{"variant_id": 42, "quantity": 2}]
        assert payload["customer"] == {"id": 555}
        assert payload["shipping_line"] == {"title": "Standard shipping", "price": "4.90", "code": "standard"}
        assert payload["currency"] == "EUR"
        assert payload["presentment_currency"] == "EUR"
        assert payload["shipping_address"]["zip"] == "75002"
        assert payload["shipping_address"]["country"] == "France"

    @pytest.mark.asyncio
    async def test_stamps_resolved_currency(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that the resolved currency is written on the quote."""
        mock_gateway.create_quote.return_value = GatewayResult.success(
            {"draft_order": {**DRAFT_ORDER, "currency": "GBP"}}
        )

        outcome = await orchestrator.submit(shipping, accept_language="en-GB")

        assert created_payload(mock_gateway)["currency"] == "GBP"
        assert outcome.currency == "GBP"

    @pytest.mark.asyncio
    async def test_creates_customer_when_not_found(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that an unknown email creates a customer."""
        mock_gateway.find_customer_by_email.return_value = GatewayResult.success({"customer": None})

        await orchestrator.submit(shipping)

        mock_gateway.create_customer.assert_awaited_once()
        assert created_payload(mock_gateway)["customer"] == {"id": 556}

    @pytest.mark.asyncio
    async def test_customer_failure_uses_inline_details(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that customer lookup failures do not block the quote."""
        mock_gateway.find_customer_by_email.return_value = GatewayResult.failure("HTTP 500: boom")
        mock_gateway.create_customer.return_value = GatewayResult.failure("HTTP 422: email: has already been taken")

        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.AWAITING_PAYMENT
        assert created_payload(mock_gateway)["customer"] == {
            "email": "marie@example.com",
            "first_name": "Marie",
            "last_name": "Curie",
        }

    @pytest.mark.asyncio
    async def test_platform_error_is_classified(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that a raw variant error becomes the fixed message."""
        mock_gateway.create_quote.return_value = GatewayResult.failure(
            "HTTP 422: Invalid id: gid://shopify/ProductVariant/42"
        )

        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.ERROR
        assert outcome.error == VARIANT_MESSAGE
        assert "gid://" not in outcome.error
        assert outcome.non_recoverable is False

    @pytest.mark.asyncio
    async def test_credential_error_is_non_recoverable(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that a 401 from the platform is flagged non-recoverable."""
        mock_gateway.create_quote.return_value = GatewayResult.failure(
            "HTTP 401: Invalid or expired Admin API access token. Check SHOPIFY_ADMIN_TOKEN."
        )

        outcome = await orchestrator.submit(shipping)

        assert outcome.state == CheckoutState.ERROR
        assert outcome.non_recoverable is True
        assert "SHOPIFY_ADMIN_TOKEN" not in outcome.error

    @pytest.mark.asyncio
    async def test_concurrent_submits_create_one_quote(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that a second submit while one is in flight is ignored."""

        async def slow_create(payload: dict[str, Any]) -> GatewayResult:
            await asyncio.sleep(0)
            return GatewayResult.success({"draft_order": dict(DRAFT_ORDER)})

        mock_gateway.create_quote.side_effect = slow_create

        first, second = await asyncio.gather(orchestrator.submit(shipping), orchestrator.submit(shipping))

        assert mock_gateway.create_quote.await_count == 1
        assert first.state == CheckoutState.AWAITING_PAYMENT
        assert second.state == CheckoutState.CREATING_QUOTE

    @pytest.mark.asyncio
    async def test_error_keeps_shipping_data(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that returning to the form after an error keeps what was entered."""
        mock_gateway.create_quote.return_value = GatewayResult.failure("Cart not found")

        await orchestrator.submit(shipping, "express")
        orchestrator.reset_to_form()

        assert orchestrator.state == CheckoutState.SHIPPING_FORM
        assert orchestrator.shipping == shipping
        assert orchestrator.shipping_method == "express"
        assert orchestrator.quote is None
        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_retry_creates_fresh_quote(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that resubmitting after an error creates a new quote."""
        mock_gateway.create_quote.side_effect = [
            GatewayResult.failure("Network error: connection reset"),
            GatewayResult.success({"draft_order": dict(DRAFT_ORDER)}),
        ]

        failed = await orchestrator.submit(shipping)
        retried = await orchestrator.submit(shipping)

        assert failed.state == CheckoutState.ERROR
        assert retried.state == CheckoutState.AWAITING_PAYMENT
        assert failed.attempt_id != retried.attempt_id
        assert mock_gateway.create_quote.await_count == 2
        mock_gateway.delete_quote.assert_not_awaited()


class TestShippingCost:
    """Tests for shipping pricing."""

    def test_standard_below_threshold(self, orchestrator: CheckoutOrchestrator) -> None:
        """Test that standard shipping is charged below the threshold."""
        assert orchestrator.shipping_cost(Decimal("59.99"), "standard") == Decimal("4.90")

    def test_standard_free_at_threshold(self, orchestrator: CheckoutOrchestrator) -> None:
        """Test that standard shipping is free from the threshold on."""
        assert orchestrator.shipping_cost(Decimal("60.00"), "standard") == Decimal("0.00")

    def test_express_always_charged(self, orchestrator: CheckoutOrchestrator) -> None:
        """Test that express shipping ignores the threshold."""
        assert orchestrator.shipping_cost(Decimal("500"), "express") == Decimal("9.90")

    @pytest.mark.asyncio
    async def test_free_shipping_line(
        self,
        mock_gateway: MagicMock,
        currency_service: CurrencyService,
        shipping: ShippingInfo,
        test_settings: Settings,
    ) -> None:
        """Test that a free standard shipping line is labelled as such."""
        cart = RequestCart(
            [CartLine(merchandiseId="gid://shopify/ProductVariant/42", quantity=2, unitPrice=Decimal("30.00"))]
        )
        orchestrator = CheckoutOrchestrator(
            mock_gateway, currency_service, PaymentSessionManager([]), cart, settings=test_settings
        )

        await orchestrator.submit(shipping)

        assert created_payload(mock_gateway)["shipping_line"] == {
            "title": "Free shipping",
            "price": "0.00",
            "code": "standard",
        }


class TestPayment:
    """Tests for the payment hand-off."""

    @pytest.mark.asyncio
    async def test_start_payment_requires_quote(self, orchestrator: CheckoutOrchestrator) -> None:
        """Test that no session can start before a quote exists."""
        result = await orchestrator.start_payment()

        assert not result.ok

    @pytest.mark.asyncio
    async def test_redirect_flow(
        self,
        orchestrator: CheckoutOrchestrator,
        shipping: ShippingInfo,
        mock_gateway: MagicMock,
        navigator: MagicMock,
    ) -> None:
        """Test that without native capability the shopper is sent to the invoice URL."""
        await orchestrator.submit(shipping)

        result = await orchestrator.start_payment()
        await result.value.request()

        assert isinstance(result.value, RedirectWalletSession)
        navigator.assert_called_once_with(INVOICE_URL)
        mock_gateway.get_quote_invoice_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_native_flow_finalizes_order(
        self,
        orchestrator: CheckoutOrchestrator,
        shipping: ShippingInfo,
        mock_gateway: MagicMock,
        capability: FakeCapability,
        cart: RequestCart,
    ) -> None:
        """Test that a native payment token completes the quote and clears the cart."""
        capability.available = True
        await orchestrator.submit(shipping)

        result = await orchestrator.start_payment()
        session = result.value
        await session.request()
        await capability.handles[0].emit("payment-complete", {"token": "tok_native"})

        assert isinstance(session, NativeWalletSession)
        assert session.status == SessionStatus.SUCCESS
        assert orchestrator.state == CheckoutState.SUCCESS
        assert cart.cleared is True
        mock_gateway.complete_quote.assert_awaited_once_with("1001", payment_pending=False)

    @pytest.mark.asyncio
    async def test_resubmit_destroys_previous_sessions(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo
    ) -> None:
        """Test that a new submit releases the sessions of the previous attempt."""
        await orchestrator.submit(shipping)
        session = (await orchestrator.start_payment()).value

        await orchestrator.submit(shipping)

        assert session.destroyed is True

    @pytest.mark.asyncio
    async def test_token_for_other_quote_rejected(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that a token for another quote is refused."""
        await orchestrator.submit(shipping)

        result = await orchestrator.exchange_payment_token("999", "tok")

        assert not result.ok
        mock_gateway.complete_quote.assert_not_awaited()


class TestFinalize:
    """Tests for finalization."""

    @pytest.mark.asyncio
    async def test_success_clears_cart(
        self,
        orchestrator: CheckoutOrchestrator,
        shipping: ShippingInfo,
        mock_gateway: MagicMock,
        cart: RequestCart,
    ) -> None:
        """Test that completion records the payment, fetches the order and clears the cart."""
        await orchestrator.submit(shipping)

        outcome = await orchestrator.finalize(transaction_id="tx_1", payment_gateway="paypal")

        assert outcome.state == CheckoutState.SUCCESS
        assert outcome.order_id == "9001"
        assert outcome.order_name == "#1001"
        assert outcome.cart_cleared is True
        assert cart.cleared is True
        mock_gateway.update_quote.assert_awaited_once_with(
            "1001",
            {
                "note_attributes": [
                    {"name": "payment_gateway", "value": "paypal"},
                    {"name": "transaction_id", "value": "tx_1"},
                ]
            },
        )
        mock_gateway.complete_quote.assert_awaited_once_with("1001", payment_pending=False)
        mock_gateway.get_order.assert_awaited_once_with("9001")

    @pytest.mark.asyncio
    async def test_finalize_is_idempotent(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that finalizing twice completes the quote once."""
        await orchestrator.submit(shipping)

        await orchestrator.finalize()
        outcome = await orchestrator.finalize()

        assert outcome.state == CheckoutState.SUCCESS
        assert mock_gateway.complete_quote.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_leaves_quote_open(
        self,
        orchestrator: CheckoutOrchestrator,
        shipping: ShippingInfo,
        mock_gateway: MagicMock,
        cart: RequestCart,
    ) -> None:
        """Test that a failed completion never deletes the quote or clears the cart."""
        mock_gateway.complete_quote.return_value = GatewayResult.failure(
            "HTTP 422: This draft order has already been completed"
        )
        await orchestrator.submit(shipping)

        outcome = await orchestrator.finalize(transaction_id="tx_1")

        assert outcome.state == CheckoutState.ERROR
        assert outcome.error == "This checkout has expired. Please start a new checkout."
        assert cart.cleared is False
        mock_gateway.delete_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_mismatch(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo, mock_gateway: MagicMock
    ) -> None:
        """Test that a paid amount off by more than a cent is refused."""
        await orchestrator.submit(shipping)

        outcome = await orchestrator.finalize(paid_amount=Decimal("50.00"))

        assert outcome.state == CheckoutState.ERROR
        mock_gateway.complete_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_within_tolerance(
        self, orchestrator: CheckoutOrchestrator, shipping: ShippingInfo
    ) -> None:
        """Test that a one-cent difference is accepted."""
        await orchestrator.submit(shipping)

        outcome = await orchestrator.finalize(paid_amount=Decimal("54.91"))

        assert outcome.state == CheckoutState.SUCCESS

    @pytest.mark.asyncio
    async def test_finalize_without_quote(self, orchestrator: CheckoutOrchestrator) -> None:
        """Test that finalizing before a quote exists is an error."""
        outcome = await orchestrator.finalize()

        assert outcome.state == CheckoutState.ERROR


class TestLoadQuote:
    """Tests for rebuilding state from an existing quote."""

    @pytest.mark.asyncio
    async def test_open_quote_awaits_payment(
        self, orchestrator: CheckoutOrchestrator, mock_gateway: MagicMock
    ) -> None:
        """Test that an open draft order resumes at awaiting-payment."""
        outcome = await orchestrator.load_quote("1001")

        assert outcome.state == CheckoutState.AWAITING_PAYMENT
        assert outcome.total == Decimal("54.90")
        assert outcome.shipping_cost == Decimal("4.90")
        mock_gateway.get_quote.assert_awaited_once_with("1001")

    @pytest.mark.asyncio
    async def test_completed_quote_is_success(
        self, orchestrator: CheckoutOrchestrator, mock_gateway: MagicMock
    ) -> None:
        """Test that a completed draft order is reported as success."""
        mock_gateway.get_quote.return_value = GatewayResult.success(
            {"draft_order": {**DRAFT_ORDER, "status": "completed", "order_id": 9001}}
        )

        outcome = await orchestrator.load_quote("1001")

        assert outcome.state == CheckoutState.SUCCESS
        assert outcome.order_id == "9001"

    @pytest.mark.asyncio
    async def test_missing_quote_is_error(
        self, orchestrator: CheckoutOrchestrator, mock_gateway: MagicMock
    ) -> None:
        """Test that a 404 leaves the orchestrator in error."""
        mock_gateway.get_quote.return_value = GatewayResult.failure("HTTP 404: Resource not found.")

        outcome = await orchestrator.load_quote("404")

        assert outcome.state == CheckoutState.ERROR
