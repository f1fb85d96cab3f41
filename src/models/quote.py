"""Quote (draft order) type definitions mirroring the Admin API payloads."""

from typing import Literal, TypedDict


# Draft order lifecycle on the platform
QuoteStatus = Literal["open", "invoice_sent", "completed"]

ShippingMethod = Literal["standard", "express"]


class QuoteLineItem(TypedDict, total=False):
    """Structure for a single draft order line item.

    ``variant_id`` is the numeric variant identifier expected by the
    REST surface; ``merchandise_id`` keeps the original global id.
    """

    variant_id: int
    merchandise_id: str
    title: str
    quantity: int
    price: str
    currency: str


class QuoteShippingAddress(TypedDict, total=False):
    """Shipping address as sent to the draft order endpoint."""

    first_name: str
    last_name: str
    address1: str
    address2: str
    city: str
    zip: str
    country: str
    phone: str


class QuoteShippingLine(TypedDict):
    """Shipping line attached to a draft order."""

    title: str
    price: str
    code: str


class QuoteCreate(TypedDict, total=False):
    """Payload accepted by the draft order create endpoint."""

    line_items: list[QuoteLineItem]
    customer: dict
    email: str
    shipping_address: QuoteShippingAddress
    billing_address: QuoteShippingAddress
    shipping_line: QuoteShippingLine
    currency: str
    presentment_currency: str
    note: str
    tags: str
    use_customer_default_address: bool


class Quote(TypedDict, total=False):
    """Draft order as returned by the platform.

    Only the fields this service reads are declared.
    """

    id: int
    name: str
    status: QuoteStatus
    invoice_url: str
    currency: str
    subtotal_price: str
    total_price: str
    line_items: list[QuoteLineItem]
    shipping_address: QuoteShippingAddress
    shipping_line: QuoteShippingLine
    order_id: int | None
