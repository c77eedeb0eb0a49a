"""Tests for the Razorpay client (SDK calls mocked, signatures real)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import hashlib
import hmac
from unittest.mock import MagicMock, patch

import pytest
from razorpay.errors import BadRequestError

from services.payment_gateway import (
    GatewayError, create_order, fetch_captured_payment,
    verify_payment_signature, verify_webhook_signature,
)

SECRET = "test_secret"


def sign(message: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def test_valid_payment_signature():
    signature = sign(b"order_123|pay_456")
    assert verify_payment_signature("order_123", "pay_456", signature, secret=SECRET)


def test_tampered_payment_signature():
    signature = sign(b"order_123|pay_456")
    assert not verify_payment_signature("order_123", "pay_999", signature, secret=SECRET)
    assert not verify_payment_signature("order_123", "pay_456", signature, secret="other")


def test_missing_secret_or_signature_fails_closed():
    assert not verify_payment_signature("order_123", "pay_456", sign(b"order_123|pay_456"), secret="")
    assert not verify_payment_signature("order_123", "pay_456", "", secret=SECRET)


def test_webhook_signature_covers_raw_body():
    body = b'{"event":"payment.captured"}'
    assert verify_webhook_signature(body, sign(body), secret=SECRET)
    assert not verify_webhook_signature(body + b" ", sign(body), secret=SECRET)
    assert not verify_webhook_signature(body, None, secret=SECRET)


@pytest.mark.asyncio
async def test_create_order_sends_paise():
    client = MagicMock()
    client.order.create.return_value = {"id": "order_abc", "amount": 119000}
    with patch("services.payment_gateway._get_client", return_value=client):
        order = await create_order(1190.0, receipt="sub_1", notes={"plan": "weekly"})

    assert order["id"] == "order_abc"
    payload = client.order.create.call_args.kwargs["data"]
    assert payload["amount"] == 119000
    assert payload["currency"] == "INR"
    assert payload["receipt"] == "sub_1"


@pytest.mark.asyncio
async def test_create_order_rejected():
    client = MagicMock()
    client.order.create.side_effect = BadRequestError("amount too small")
    with patch("services.payment_gateway._get_client", return_value=client):
        with pytest.raises(GatewayError, match="rejected"):
            await create_order(0.5, receipt="sub_2")


@pytest.mark.asyncio
async def test_create_order_unreachable():
    client = MagicMock()
    client.order.create.side_effect = ConnectionError("boom")
    with patch("services.payment_gateway._get_client", return_value=client):
        with pytest.raises(GatewayError, match="unreachable"):
            await create_order(100.0, receipt="sub_3")


@pytest.mark.asyncio
async def test_fetch_captured_payment():
    client = MagicMock()
    client.order.payments.return_value = {"items": [
        {"id": "pay_1", "status": "failed"},
        {"id": "pay_2", "status": "captured"},
    ]}
    with patch("services.payment_gateway._get_client", return_value=client):
        payment = await fetch_captured_payment("order_abc")
    assert payment["id"] == "pay_2"
    client.order.payments.assert_called_once_with("order_abc")


@pytest.mark.asyncio
async def test_fetch_captured_payment_none_yet():
    client = MagicMock()
    client.order.payments.return_value = {"items": [{"id": "pay_1", "status": "failed"}]}
    with patch("services.payment_gateway._get_client", return_value=client):
        assert await fetch_captured_payment("order_abc") is None
