"""Webhook API routes for commerce platform notifications."""

import base64
import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.api.deps import Orchestrators
from src.api.middleware.error_handler import AuthenticationError
from src.core.config import get_settings
from src.services.checkout_service import CheckoutState, RequestCart

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# Payment statuses that commit the quote
COMPLETING_STATUSES = ("paid", "pending")


def verify_webhook_hmac(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a base64 HMAC-SHA256 signature over the raw request body.

    Args:
        body: Raw request body bytes.
        signature: Value of the X-Shopify-Hmac-Sha256 header.
        secret: Shared webhook secret.

    Returns:
        True if the signature matches.
    """
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


@router.post(
    "/shopify/payments",
    status_code=status.HTTP_200_OK,
    summary="Handle payment success webhooks",
    description="Completes the referenced quote when the platform reports a successful payment.",
)
async def payment_success_webhook(request: Request, build: Orchestrators) -> dict[str, str]:
    """Handle a payment success notification.

    The signature is verified before the body is parsed. Statuses other
    than paid/pending are acknowledged and ignored.

    Args:
        request: FastAPI request object for reading raw body and headers.
        build: Orchestrator factory.

    Returns:
        dict: Acknowledgment with processing status.

    Raises:
        AuthenticationError: 401 if the signature is missing or invalid.
        HTTPException: 400 if the payload is malformed or has no quote id.
    """
    payload = await request.body()
    signature = request.headers.get("X-Shopify-Hmac-Sha256")

    if not verify_webhook_hmac(payload, signature, get_settings().shopify_webhook_secret):
        logger.error("Rejected webhook with missing or invalid HMAC signature")
        raise AuthenticationError("Invalid webhook signature")

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from e
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook payload must be a JSON object")

    draft_order = event.get("draft_order")
    quote_id = event.get("draft_order_id") or (draft_order.get("id") if isinstance(draft_order, dict) else None)
    if not quote_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing draft order id")

    payment_status = event.get("status") or event.get("financial_status") or "paid"
    topic = request.headers.get("X-Shopify-Topic", "payments/success")
    logger.info("Processing %s webhook for quote %s (status=%s)", topic, quote_id, payment_status)

    if payment_status not in COMPLETING_STATUSES:
        logger.info("Ignoring payment status %s for quote %s", payment_status, quote_id)
        return {"status": "ignored"}

    orchestrator = build(RequestCart())
    loaded = await orchestrator.load_quote(str(quote_id))
    if loaded.state == CheckoutState.SUCCESS:
        return {"status": "already_completed"}
    if loaded.state == CheckoutState.ERROR:
        logger.error("Webhook quote %s could not be loaded: %s", quote_id, loaded.error)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Draft order not found")

    outcome = await orchestrator.finalize(
        transaction_id=str(event["id"]) if event.get("id") else None,
        payment_gateway=event.get("gateway") or event.get("payment_gateway"),
        payment_pending=payment_status == "pending",
    )
    if outcome.state != CheckoutState.SUCCESS:
        logger.error("Webhook finalization failed for quote %s: %s", quote_id, outcome.error)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Order finalization failed")

    return {"status": "completed", "order_id": outcome.order_id or ""}
