"""Currency resolution Pydantic schemas for API request/response models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CurrencySource(str, Enum):
    """Where a resolved currency came from, in priority order."""

    PLATFORM_RESPONSE = "platform-response"
    USER_PREFERENCE = "user-preference"
    GEOLOCATION = "geolocation"
    BROWSER_LOCALE = "browser-locale"
    SHOP_DEFAULT = "shop-default"
    FALLBACK = "fallback"


class CurrencyResolution(BaseModel):
    """Outcome of one currency resolution.

    Confidence is diagnostic only; selection follows source priority.
    """

    model_config = ConfigDict(from_attributes=True)

    code: str = Field(min_length=3, max_length=3, description="ISO 4217 currency code")
    source: CurrencySource = Field(description="Detection source that produced the code")
    confidence: float = Field(ge=0, le=1, description="Heuristic trust score")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Locale, country or reason")


class CurrencyState(BaseModel):
    """Currency context returned by GET /currency."""

    model_config = ConfigDict(from_attributes=True)

    current: CurrencyResolution = Field(description="Currency resolved for this request")
    shop_currency: str = Field(description="Shop default currency")
    enabled_currencies: list[str] = Field(default_factory=list, description="Currencies enabled on the shop")
    is_multi_currency: bool = Field(description="Whether more than one currency is enabled")
    formatted_example: str | None = Field(default=None, description="Sample price in the resolved currency")


class CurrencyPreferenceRequest(BaseModel):
    """Schema for POST /currency."""

    currency: str = Field(min_length=3, max_length=3, description="Preferred ISO 4217 currency code")

    @field_validator("currency")
    @classmethod
    def upper_case(cls, value: str) -> str:
        return value.strip().upper()


class CurrencyPreferenceResponse(BaseModel):
    """Schema for POST /currency response."""

    currency: str = Field(description="Stored preference")
    saved: bool = Field(description="Whether the preference cookie was set")
