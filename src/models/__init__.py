"""Platform payload and result type definitions."""

from src.models.quote import Quote, QuoteCreate, QuoteLineItem, QuoteStatus
from src.models.result import GatewayResult, Result

__all__ = [
    "Quote",
    "QuoteCreate",
    "QuoteLineItem",
    "QuoteStatus",
    "GatewayResult",
    "Result",
]
