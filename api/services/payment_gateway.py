"""
Razorpay client — order creation, payment lookup and signature checks.

The SDK is synchronous, so network calls run in a worker thread. Refunds
and settlements are handled in the gateway dashboard.
"""

import asyncio
import logging

import razorpay
from razorpay.errors import BadRequestError, GatewayError as RazorpayGatewayError, ServerError, SignatureVerificationError

from config import settings
from errors import DomainError

logger = logging.getLogger(__name__)

_client: razorpay.Client | None = None


class GatewayError(DomainError):
    status_code = 502


def _get_client() -> razorpay.Client:
    global _client
    if _client is None:
        _client = razorpay.Client(auth=(settings.razorpay_key_id or "", settings.razorpay_key_secret))
    return _client


async def close():
    global _client
    if _client is not None:
        _client.session.close()
        _client = None


async def create_order(amount: float, receipt: str, notes: dict | None = None, currency: str | None = None) -> dict:
    """
    Create a gateway order. Amount is in rupees; the gateway wants paise.

    Returns the gateway order payload (has "id", "amount", "currency").
    """
    client = _get_client()
    payload = {
        "amount": int(round(amount * 100)),
        "currency": currency or settings.currency,
        "receipt": receipt,
        "notes": notes or {},
        "payment_capture": 1,
    }
    try:
        return await asyncio.to_thread(client.order.create, data=payload)
    except (BadRequestError, RazorpayGatewayError, ServerError) as e:
        logger.warning("Razorpay order creation rejected: %s", e)
        raise GatewayError("Payment gateway rejected the order") from e
    except OSError as e:
        logger.warning("Razorpay order creation failed: %s", e)
        raise GatewayError("Payment gateway unreachable") from e


async def fetch_captured_payment(order_id: str) -> dict | None:
    """The captured payment for an order, if the customer paid. Used to recover stuck purchases."""
    client = _get_client()
    try:
        payments = await asyncio.to_thread(client.order.payments, order_id)
    except (BadRequestError, RazorpayGatewayError, ServerError) as e:
        raise GatewayError(f"Payment lookup failed: {e}") from e
    except OSError as e:
        logger.warning("Razorpay payment lookup failed for %s: %s", order_id, e)
        raise GatewayError("Payment gateway unreachable") from e

    for payment in payments.get("items", []):
        if payment.get("status") == "captured":
            return payment
    return None


def _signing_client(secret: str | None) -> razorpay.Client:
    if secret is None:
        return _get_client()
    return razorpay.Client(auth=(settings.razorpay_key_id or "", secret))


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str | None = None) -> bool:
    """Checkout signature: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
    key_secret = secret if secret is not None else settings.razorpay_key_secret
    if not key_secret or not signature:
        return False
    try:
        _signing_client(secret).utility.verify_payment_signature({
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
        })
    except SignatureVerificationError:
        return False
    return True


def verify_webhook_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    """Webhook signature: HMAC-SHA256 of the raw body with the webhook secret."""
    secret = secret if secret is not None else settings.razorpay_webhook_secret
    if not secret or not signature:
        return False
    try:
        _get_client().utility.verify_webhook_signature(body.decode("utf-8"), signature, secret)
    except (SignatureVerificationError, UnicodeDecodeError):
        return False
    return True
