"""Checkout Pydantic schemas for API request/response models."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


ShippingMethodType = Literal["standard", "express"]


class ShippingInfo(BaseModel):
    """Shipping form data as submitted by the storefront.

    Fields default to empty strings so that incomplete forms reach the
    orchestrator's field validation instead of failing request parsing.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    first_name: str = Field(default="", alias="firstName", description="First name")
    last_name: str = Field(default="", alias="lastName", description="Last name")
    email: str = Field(default="", description="Contact email")
    phone: str = Field(default="", description="Contact phone")
    address: str = Field(default="", description="Street address")
    address2: str = Field(default="", description="Apartment, suite, etc.")
    city: str = Field(default="", description="City")
    postal_code: str = Field(default="", alias="postalCode", description="Postal code")
    country: str = Field(default="", description="Country name or code")


class CartLine(BaseModel):
    """One cart line: merchandise reference, quantity and unit price."""

    model_config = ConfigDict(populate_by_name=True)

    merchandise_id: str = Field(alias="merchandiseId", description="Variant global id")
    quantity: int = Field(ge=1, description="Quantity")
    unit_price: Decimal = Field(ge=0, alias="unitPrice", description="Unit price in the cart currency")
    title: str | None = Field(default=None, description="Display title")


class CheckoutCreate(BaseModel):
    """Schema for POST /checkout."""

    model_config = ConfigDict(populate_by_name=True)

    shipping: ShippingInfo = Field(description="Shipping form data")
    lines: list[CartLine] = Field(default_factory=list, description="Cart contents")
    shipping_method: ShippingMethodType = Field(
        default="standard", alias="shippingMethod", description="Shipping speed"
    )
    platform_currency: str | None = Field(
        default=None, alias="platformCurrency", description="Currency attached to the last platform response"
    )
    note: str | None = Field(default=None, description="Order note")


class CheckoutResponse(BaseModel):
    """Schema for checkout creation response."""

    model_config = ConfigDict(from_attributes=True)

    state: str = Field(description="Checkout state after the submit")
    attempt_id: str | None = Field(default=None, description="Checkout attempt identifier")
    quote_id: str | None = Field(default=None, description="Draft order id")
    invoice_url: str | None = Field(default=None, description="Hosted payment page URL")
    currency: str | None = Field(default=None, description="Currency stamped on the quote")
    subtotal: Decimal | None = Field(default=None, description="Items subtotal")
    shipping_cost: Decimal | None = Field(default=None, description="Shipping cost")
    total: Decimal | None = Field(default=None, description="Quote total")
    formatted_total: str | None = Field(default=None, description="Total formatted for display")
    payment_providers: list[str] = Field(default_factory=list, description="Rails the storefront may offer")


class NativePaymentRequest(BaseModel):
    """Schema for exchanging a native wallet token."""

    token: str = Field(min_length=1, description="Opaque payment token from the wallet")


class PaymentCompleteRequest(BaseModel):
    """Schema for completing a quote after an external payment."""

    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str | None = Field(default=None, alias="transactionId", description="Provider transaction id")
    payment_gateway: str | None = Field(default=None, alias="paymentGateway", description="Provider name")
    payment_pending: bool = Field(default=False, alias="paymentPending", description="Payment not yet captured")
    paid_amount: Decimal | None = Field(
        default=None, alias="paidAmount", description="Amount reported by the provider, checked against the quote"
    )


class PaymentCompleteResponse(BaseModel):
    """Schema for finalized quote response."""

    model_config = ConfigDict(from_attributes=True)

    state: str = Field(description="Checkout state")
    quote_id: str = Field(description="Draft order id")
    order_id: str | None = Field(default=None, description="Committed order id")
    order_name: str | None = Field(default=None, description="Committed order name, e.g. #1001")
    cart_cleared: bool = Field(default=False, description="Whether the storefront should empty its cart")


class InvoiceUrlResponse(BaseModel):
    """Schema for invoice URL lookup."""

    quote_id: str = Field(description="Draft order id")
    invoice_url: str = Field(description="Hosted payment page URL")


class ShippingOption(BaseModel):
    """One shipping method offered at checkout."""

    method: ShippingMethodType = Field(description="Shipping method code")
    label: str = Field(description="Display label")
    cost: Decimal = Field(description="Price before any free-shipping discount")
    delivery_days: str = Field(description="Expected delivery delay")


class ShippingInfoResponse(BaseModel):
    """Schema for GET /shipping."""

    currency: str = Field(description="Currency the amounts are expressed in")
    free_shipping_threshold: Decimal = Field(description="Subtotal from which standard shipping is free")
    standard_shipping_cost: Decimal = Field(description="Standard shipping price")
    express_shipping_cost: Decimal = Field(description="Express shipping price")
    default_country: str = Field(description="Country used when the form leaves it empty")
    delivery_days_domestic: str = Field(description="Standard delay within the default country")
    delivery_days_international: str = Field(description="Standard delay elsewhere")
    options: list[ShippingOption] = Field(default_factory=list, description="Selectable shipping methods")


class PaymentMethod(BaseModel):
    """A payment rail the storefront may offer."""

    id: str = Field(description="Provider identifier")
    name: str = Field(description="Display name")
    description: str = Field(description="Short description for the payment step")
    available: bool = Field(description="Whether the server can complete payments on this rail")
    requires_device_capability: bool = Field(
        description="Whether the browser must confirm support before the rail is shown"
    )


class PaymentMethodsResponse(BaseModel):
    """Schema for GET /checkout/payment/methods."""

    methods: list[PaymentMethod] = Field(default_factory=list, description="Rails in priority order")
    admin_configured: bool = Field(description="Whether quotes can be created at all")
