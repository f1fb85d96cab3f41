"""Translate raw platform errors into fixed user-facing messages.

Raw platform strings can leak internal identifiers; they are logged here
and never returned to the shopper.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorPattern:
    """A regex paired with the message shown when it matches."""

    code: str
    pattern: re.Pattern[str]
    message: str


DEFAULT_MESSAGE = "An error occurred while processing your order. Please try again."

ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(
        "invalid_variant_id",
        re.compile(r"invalid id:\s*gid://shopify/ProductVariant/", re.IGNORECASE),
        "The selected variant is no longer available. Please refresh the page and try again.",
    ),
    ErrorPattern(
        "invalid_product_id",
        re.compile(r"invalid id:\s*gid://shopify/Product/", re.IGNORECASE),
        "This product is no longer available. Please refresh the page.",
    ),
    ErrorPattern(
        "variant_not_found",
        re.compile(r"(product ?variant|variant).*(not found|does not exist)", re.IGNORECASE),
        "The selected variant is no longer available. Please refresh the page and try again.",
    ),
    ErrorPattern(
        "product_not_found",
        re.compile(r"product.*(not found|does not exist)", re.IGNORECASE),
        "This product is no longer available. Please refresh the page.",
    ),
    ErrorPattern(
        "invalid_merchandise",
        re.compile(r"merchandise.*(invalid|does not exist|not found)|invalid merchandise", re.IGNORECASE),
        "One of the items in your cart is no longer available. Please update your cart.",
    ),
    ErrorPattern(
        "cart_not_found",
        re.compile(r"cart.*(not found|does not exist)", re.IGNORECASE),
        "Your cart has expired. Please add your items again.",
    ),
    ErrorPattern(
        "invalid_quantity",
        re.compile(r"quantity.*(invalid|must be|greater than)|invalid quantity", re.IGNORECASE),
        "The requested quantity is not valid. Please adjust it and try again.",
    ),
    ErrorPattern(
        "out_of_stock",
        re.compile(r"out of stock|not enough inventory|insufficient inventory|sold out", re.IGNORECASE),
        "Some items in your cart are out of stock. Please update your cart.",
    ),
    ErrorPattern(
        "quote_closed",
        re.compile(r"draft order.*(completed|expired|deleted)|(has already been|is already) (paid|completed)", re.IGNORECASE),
        "This checkout has expired. Please start a new checkout.",
    ),
    ErrorPattern(
        "cart_error",
        re.compile(r"\bcart\b.*error|error.*\bcart\b", re.IGNORECASE),
        "There was a problem with your cart. Please refresh the page and try again.",
    ),
    ErrorPattern(
        "rate_limited",
        re.compile(r"HTTP 429|rate limit", re.IGNORECASE),
        "The store is busy right now. Please try again in a moment.",
    ),
    ErrorPattern(
        "configuration",
        re.compile(r"not configured|HTTP 40[13]|access token|credential", re.IGNORECASE),
        "Checkout is temporarily unavailable. Please contact support.",
    ),
    ErrorPattern(
        "network",
        re.compile(r"network error|timed out|timeout", re.IGNORECASE),
        "We could not reach the store. Please check your connection and try again.",
    ),
)

USER_MESSAGES = frozenset({DEFAULT_MESSAGE} | {p.message for p in ERROR_PATTERNS})

NON_RECOVERABLE_RE = re.compile(
    r"configuration|not configured|credential|HTTP 40[13]|access token|capability|\bSDK\b",
    re.IGNORECASE,
)


def classify_platform_error(message: str | None, context: str = "") -> str:
    """Map a raw platform error to a fixed user-facing message.

    Args:
        message: Raw error string from the platform or gateway.
        context: Short label for the log line (e.g. ``create_quote``).

    Returns:
        One of the fixed messages; already-classified messages pass through.
    """
    if not message:
        return DEFAULT_MESSAGE
    if message in USER_MESSAGES:
        return message

    for entry in ERROR_PATTERNS:
        if entry.pattern.search(message):
            logger.warning("Platform error [%s] classified as %s: %s", context or "unknown", entry.code, message)
            return entry.message

    logger.warning("Unclassified platform error [%s]: %s", context or "unknown", message)
    return DEFAULT_MESSAGE


def classify_errors(errors: Iterable[dict[str, Any]] | None, context: str = "") -> str:
    """Classify the first entry of an ``errors`` list."""
    for error in errors or []:
        return classify_platform_error(str(error.get("message", "")), context)
    return DEFAULT_MESSAGE


def is_non_recoverable(message: str | None) -> bool:
    """Detect configuration and credential errors that must not auto-reset."""
    return bool(message) and bool(NON_RECOVERABLE_RE.search(message))
