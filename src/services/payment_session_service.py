"""Payment sessions over the native wallet and redirect wallet rails.

Both rails expose the same ``request()`` / ``destroy()`` contract. The
native rail is capability-gated and ends in ``success`` only once its
payment token has been exchanged for a finalized order; the redirect rail
navigates to a hosted payment page and has no observable state after that.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from src.core.admin_gateway import AdminGatewayClient
from src.models.result import Result
from src.services.currency_service import CurrencyService
from src.services.error_classifier import is_non_recoverable

logger = logging.getLogger(__name__)

# Cooldowns before an errored session may go back to idle
NATIVE_RESET_SECONDS = 5.0
REDIRECT_RESET_SECONDS = 10.0

PAYMENT_COMPLETE_EVENT = "payment-complete"
ERROR_EVENT = "error"

NativeListener = Callable[[dict[str, Any]], Awaitable[None]]
Navigator = Callable[[str], Awaitable[None] | None]
TokenExchanger = Callable[[str, str], Awaitable[Result]]
SessionCallback = Callable[["PaymentSession"], None]


class PaymentProvider(str, Enum):
    """Payment rails, in default priority order."""

    NATIVE_WALLET = "native-wallet"
    REDIRECT_WALLET = "redirect-wallet"


class SessionStatus(str, Enum):
    """Lifecycle of one payment session."""

    IDLE = "idle"
    COLLECTING = "collecting"
    SUCCESS = "success"
    ERROR = "error"


class NativeWalletHandle(Protocol):
    """An open native payment session.

    Listeners are coroutine functions; the handle awaits them when the
    corresponding event fires.
    """

    def add_listener(self, event: str, listener: NativeListener) -> None: ...

    def remove_listener(self, event: str, listener: NativeListener) -> None: ...

    async def request(self) -> None: ...

    def destroy(self) -> None: ...


class NativeWalletCapability(Protocol):
    """Detects and opens the in-page payment capability."""

    def probe(self) -> bool: ...

    def build(self, description: dict[str, Any]) -> Any: ...

    def create_session(self, request: Any) -> NativeWalletHandle: ...


@dataclass(frozen=True)
class QuoteSnapshot:
    """Immutable view of a quote taken when a session is created.

    Frozen so the currency of a quote cannot change under a live session.
    """

    quote_id: str
    currency_code: str
    subtotal: Decimal
    total: Decimal
    line_items: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    shipping_cost: Decimal = Decimal("0")
    invoice_url: str | None = None


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def build_payment_description(quote: QuoteSnapshot) -> dict[str, Any]:
    """Build the ``{lineItems, subtotal, total, currencyCode}`` request shape."""
    line_items = [
        {
            "label": str(item.get("title") or item.get("label") or "Item"),
            "quantity": int(item.get("quantity", 1)),
            "amount": _money(Decimal(str(item.get("price", "0"))) * int(item.get("quantity", 1))),
        }
        for item in quote.line_items
    ]
    if quote.shipping_cost:
        line_items.append({"label": "Shipping", "quantity": 1, "amount": _money(quote.shipping_cost)})
    return {
        "lineItems": line_items,
        "subtotal": _money(quote.subtotal),
        "total": _money(quote.total),
        "currencyCode": quote.currency_code,
    }


class PaymentSession:
    """State machine shared by both rails: idle -> collecting -> success | error."""

    provider: PaymentProvider

    def __init__(
        self,
        quote: QuoteSnapshot,
        *,
        reset_cooldown: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.quote = quote
        self.reset_cooldown = reset_cooldown
        self.status = SessionStatus.IDLE
        self.error: str | None = None
        self.non_recoverable = False
        self.destroyed = False
        self.result: Any = None
        self._clock = clock
        self._error_at: float | None = None
        self._subscribers: list[SessionCallback] = []
        self._reset_handle: asyncio.TimerHandle | None = None

    @property
    def quote_id(self) -> str:
        return self.quote.quote_id

    @property
    def amount(self) -> Decimal:
        return self.quote.total

    @property
    def currency_code(self) -> str:
        return self.quote.currency_code

    @property
    def line_items(self) -> tuple[dict[str, Any], ...]:
        return self.quote.line_items

    def subscribe(self, callback: SessionCallback) -> Callable[[], None]:
        """Register a state-change callback.

        Returns:
            A function that removes the callback.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception as e:
                logger.error("Payment session subscriber failed: %s", str(e))

    def _transition(self, status: SessionStatus, error: str | None = None, non_recoverable: bool = False) -> None:
        if self.destroyed:
            return
        logger.info(
            "Payment session %s/%s: %s -> %s",
            self.provider.value,
            self.quote_id,
            self.status.value,
            status.value,
        )
        self.status = status
        if status == SessionStatus.ERROR:
            self.error = error or "Payment failed"
            self.non_recoverable = non_recoverable or is_non_recoverable(self.error)
            self._error_at = self._clock()
            if self.non_recoverable:
                logger.error("Non-recoverable payment error on %s: %s", self.provider.value, self.error)
            else:
                self._schedule_auto_reset()
        else:
            self.error = None
        self._notify()

    def _schedule_auto_reset(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_auto_reset()
        self._reset_handle = loop.call_later(self.reset_cooldown, self._auto_reset)

    def _cancel_auto_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _auto_reset(self) -> None:
        self._reset_handle = None
        self.reset()

    def can_reset(self) -> bool:
        if self.destroyed or self.status != SessionStatus.ERROR or self.non_recoverable:
            return False
        if self._error_at is None:
            return False
        return self._clock() - self._error_at >= self.reset_cooldown

    def reset(self) -> bool:
        """Return an errored session to idle once its cooldown has passed.

        Returns:
            True if the session was reset.
        """
        if not self.can_reset():
            return False
        self._cancel_auto_reset()
        self._error_at = None
        self.non_recoverable = False
        self._transition(SessionStatus.IDLE)
        return True

    async def request(self) -> None:
        raise NotImplementedError

    def destroy(self) -> None:
        """Release the session. Safe to call more than once."""
        if self.destroyed:
            return
        self._cancel_auto_reset()
        self._teardown()
        self.destroyed = True
        self._subscribers.clear()
        logger.debug("Payment session %s/%s destroyed", self.provider.value, self.quote_id)

    def _teardown(self) -> None:
        pass


class NativeWalletSession(PaymentSession):
    """Session backed by the in-page payment capability."""

    provider = PaymentProvider.NATIVE_WALLET

    def __init__(
        self,
        quote: QuoteSnapshot,
        handle: NativeWalletHandle,
        token_exchanger: TokenExchanger,
        *,
        reset_cooldown: float = NATIVE_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(quote, reset_cooldown=reset_cooldown, clock=clock)
        self._handle = handle
        self._exchange_token = token_exchanger
        self._listeners: list[tuple[str, NativeListener]] = [
            (PAYMENT_COMPLETE_EVENT, self._on_payment_complete),
            (ERROR_EVENT, self._on_error),
        ]
        for event, listener in self._listeners:
            handle.add_listener(event, listener)

    async def request(self) -> None:
        """Open the native payment sheet."""
        if self.destroyed:
            logger.warning("request() called on destroyed native session %s", self.quote_id)
            return
        if self.status != SessionStatus.IDLE:
            logger.debug("Native session %s already %s", self.quote_id, self.status.value)
            return
        self._transition(SessionStatus.COLLECTING)
        try:
            await self._handle.request()
        except Exception as e:
            logger.warning("Native payment request failed for %s: %s", self.quote_id, str(e))
            if self.status == SessionStatus.COLLECTING:
                self._transition(SessionStatus.ERROR, str(e))

    async def _on_payment_complete(self, event: dict[str, Any]) -> None:
        if self.destroyed or self.status != SessionStatus.COLLECTING:
            logger.warning("Ignoring payment-complete for inactive session %s", self.quote_id)
            return
        token = (event or {}).get("token")
        if not token:
            self._transition(SessionStatus.ERROR, "Payment token missing from wallet response")
            return

        result = await self._exchange_token(self.quote_id, token)
        if result.ok:
            self.result = result.value
            self._transition(SessionStatus.SUCCESS)
        else:
            self._transition(SessionStatus.ERROR, result.error, result.non_recoverable)

    async def _on_error(self, event: dict[str, Any]) -> None:
        # success is terminal; late wallet errors must not reopen a paid quote
        if self.destroyed or self.status != SessionStatus.COLLECTING:
            logger.warning("Ignoring wallet error for session %s in state %s", self.quote_id, self.status.value)
            return
        message = (event or {}).get("message") or "Payment was not completed"
        self._transition(SessionStatus.ERROR, str(message))

    def _teardown(self) -> None:
        for event, listener in self._listeners:
            try:
                self._handle.remove_listener(event, listener)
            except Exception as e:
                logger.warning("Failed to detach %s listener: %s", event, str(e))
        self._listeners = []
        try:
            self._handle.destroy()
        except Exception as e:
            logger.warning("Failed to release native payment session: %s", str(e))


class RedirectWalletSession(PaymentSession):
    """Session that sends the shopper to a hosted payment page."""

    provider = PaymentProvider.REDIRECT_WALLET

    def __init__(
        self,
        quote: QuoteSnapshot,
        gateway: AdminGatewayClient,
        navigator: Navigator,
        redirect_url: str | None = None,
        *,
        reset_cooldown: float = REDIRECT_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(quote, reset_cooldown=reset_cooldown, clock=clock)
        self.gateway = gateway
        self.redirect_url = redirect_url or quote.invoice_url
        self.navigated = False
        self._navigate = navigator

    async def resolve_url(self) -> Result[str]:
        """Return the redirect URL, fetching it by quote id if needed."""
        if self.redirect_url:
            return Result.success(self.redirect_url)
        gateway_result = await self.gateway.get_quote_invoice_url(self.quote_id)
        if not gateway_result.ok:
            return Result.failure(gateway_result.first_error or "Invoice URL unavailable")
        self.redirect_url = (gateway_result.data or {}).get("invoice_url")
        return Result.success(self.redirect_url)

    async def request(self) -> None:
        """Navigate to the payment page. Not cancellable once navigated."""
        if self.destroyed or self.navigated:
            return
        if self.status != SessionStatus.IDLE:
            return
        self._transition(SessionStatus.COLLECTING)

        url_result = await self.resolve_url()
        if not url_result.ok:
            self._transition(SessionStatus.ERROR, url_result.error)
            return

        try:
            outcome = self._navigate(url_result.value)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Navigation to payment page failed: %s", str(e))
            self._transition(SessionStatus.ERROR, str(e))
            return
        self.navigated = True
        logger.info("Redirected shopper to hosted payment page for quote %s", self.quote_id)


class NativeWalletRail:
    """Capability-gated rail; yields no session when the capability is absent."""

    provider = PaymentProvider.NATIVE_WALLET

    def __init__(
        self,
        capability: NativeWalletCapability | None,
        reset_cooldown: float = NATIVE_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capability = capability
        self.reset_cooldown = reset_cooldown
        self._clock = clock

    def probe(self) -> bool:
        if self.capability is None:
            return False
        try:
            return bool(self.capability.probe())
        except Exception as e:
            logger.warning("Native wallet probe failed: %s", str(e))
            return False

    def create_session(
        self,
        quote: QuoteSnapshot,
        *,
        token_exchanger: TokenExchanger | None = None,
        redirect_url: str | None = None,
    ) -> NativeWalletSession | None:
        if not self.probe():
            return None
        if token_exchanger is None:
            logger.error("Native wallet available but no token exchanger configured")
            return None
        request = self.capability.build(build_payment_description(quote))
        handle = self.capability.create_session(request)
        return NativeWalletSession(
            quote,
            handle,
            token_exchanger,
            reset_cooldown=self.reset_cooldown,
            clock=self._clock,
        )


class RedirectWalletRail:
    """Fallback rail, always available."""

    provider = PaymentProvider.REDIRECT_WALLET

    def __init__(
        self,
        gateway: AdminGatewayClient,
        navigator: Navigator,
        reset_cooldown: float = REDIRECT_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.gateway = gateway
        self.navigator = navigator
        self.reset_cooldown = reset_cooldown
        self._clock = clock

    def probe(self) -> bool:
        return True

    def create_session(
        self,
        quote: QuoteSnapshot,
        *,
        token_exchanger: TokenExchanger | None = None,
        redirect_url: str | None = None,
    ) -> RedirectWalletSession:
        return RedirectWalletSession(
            quote,
            self.gateway,
            self.navigator,
            redirect_url,
            reset_cooldown=self.reset_cooldown,
            clock=self._clock,
        )


PaymentRail = NativeWalletRail | RedirectWalletRail


class PaymentSessionManager:
    """Creates and tracks payment sessions per checkout attempt and rail."""

    def __init__(
        self,
        rails: Sequence[PaymentRail],
        currency_service: CurrencyService | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            rails: Rails in priority order.
            currency_service: Validates quote currencies before any session is built.
        """
        self.rails = list(rails)
        self.currency_service = currency_service
        self._sessions: dict[tuple[str, PaymentProvider], PaymentSession] = {}

    async def create_session(
        self,
        quote: QuoteSnapshot,
        attempt_id: str,
        *,
        provider: PaymentProvider | None = None,
        redirect_url: str | None = None,
        token_exchanger: TokenExchanger | None = None,
    ) -> Result[PaymentSession]:
        """Create a session on the first rail that can serve the quote.

        Any existing session for the same attempt and rail is destroyed first.

        Args:
            quote: Quote snapshot to collect payment for.
            attempt_id: Checkout attempt identifier.
            provider: Restrict to one rail.
            redirect_url: Directly supplied hosted payment URL.
            token_exchanger: Finalizes the quote from a native wallet token.

        Returns:
            Result carrying the session, or an error when no rail applies.
        """
        if self.currency_service is not None:
            if not await self.currency_service.validate_currency(quote.currency_code):
                logger.warning("Refusing payment session: currency %s not enabled", quote.currency_code)
                return Result.failure(f"Currency {quote.currency_code} is not accepted by this shop")

        last_error: str | None = None
        for rail in self.rails:
            if provider is not None and rail.provider != provider:
                continue
            self.destroy_session(attempt_id, rail.provider)
            try:
                session = rail.create_session(quote, token_exchanger=token_exchanger, redirect_url=redirect_url)
            except Exception as e:
                logger.error("Failed to create %s session: %s", rail.provider.value, str(e))
                last_error = str(e)
                continue
            if session is None:
                logger.debug("Rail %s unavailable for quote %s", rail.provider.value, quote.quote_id)
                continue
            self._sessions[(attempt_id, rail.provider)] = session
            logger.info("Created %s session for quote %s", rail.provider.value, quote.quote_id)
            return Result.success(session)

        message = last_error or "No payment method is available: payment capability missing"
        return Result.failure(message, non_recoverable=True)

    def get_session(self, attempt_id: str, provider: PaymentProvider) -> PaymentSession | None:
        return self._sessions.get((attempt_id, provider))

    def destroy_session(self, attempt_id: str, provider: PaymentProvider) -> bool:
        session = self._sessions.pop((attempt_id, provider), None)
        if session is None:
            return False
        session.destroy()
        return True

    def destroy_attempt(self, attempt_id: str) -> int:
        """Destroy every session of one checkout attempt."""
        keys = [key for key in self._sessions if key[0] == attempt_id]
        for key in keys:
            self._sessions.pop(key).destroy()
        return len(keys)

    def destroy_all(self) -> None:
        for session in self._sessions.values():
            session.destroy()
        self._sessions.clear()

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)
