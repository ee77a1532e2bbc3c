import base64
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CheckoutRequest, LineItem
from core.settings import TabbySettings
from domain.payment.entity import NormalizedStatus
from domain.payment.exceptions import InvalidWebhookPayloadException
from infrastructure.external.payments.tabby_client import TabbyClient
from shared.codes.payment_codes import MAX_AMOUNT_EXCEEDED, MIN_AMOUNT_NOT_MET


def _client(handler=None, **overrides) -> TabbyClient:
    config = TabbySettings(secret_key="sk_test", merchant_code="halls_sa", webhook_secret="tabby_secret", **overrides)
    if handler is None:
        return TabbyClient(config)
    return TabbyClient(config, transport=httpx.MockTransport(handler))


def _request(amount: str) -> CheckoutRequest:
    return CheckoutRequest(
        booking_id=5,
        amount=Decimal(amount),
        customer_first_name="Sara",
        customer_last_name="Alharbi",
        line_items=[
            LineItem(reference_id="HALL-3", name="Grand Hall", sku="HALL-3", unit_price=Decimal(amount)),
        ],
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,code", [("50.00", MIN_AMOUNT_NOT_MET), ("5000.01", MAX_AMOUNT_EXCEEDED)])
async def test_out_of_range_amount_never_reaches_network(amount, code):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    result = await _client(handler).create_checkout(_request(amount))

    assert result.success is False
    assert result.error_code == code
    assert calls == []


@pytest.mark.asyncio
async def test_create_checkout_builds_order_with_vat():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": "created",
                "payment": {"id": "tp_1"},
                "configuration": {
                    "available_products": {"installments": [{"web_url": "https://checkout.tabby.ai/tp_1"}]}
                },
            },
        )

    result = await _client(handler).create_checkout(_request("500"))

    assert result.success is True
    assert result.checkout_id == "tp_1"
    assert result.payment_url == "https://checkout.tabby.ai/tp_1"
    assert seen["path"] == "/api/v2/checkout"
    assert seen["auth"] == "Bearer sk_test"
    payment = seen["body"]["payment"]
    assert payment["amount"] == "500.00"
    assert payment["buyer"]["name"] == "Sara Alharbi"
    assert payment["order"]["tax_amount"] == "65.22"
    assert payment["order"]["items"][0]["unit_price"] == "500.00"
    assert seen["body"]["merchant_code"] == "halls_sa"


@pytest.mark.asyncio
async def test_create_checkout_rejection_reason_becomes_error_code():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "status": "rejected",
                "configuration": {"products": {"installments": {"rejection_reason": "order_amount_too_high"}}},
            },
        )

    result = await _client(handler).create_checkout(_request("500"))

    assert result.success is False
    assert result.error_code == "order_amount_too_high"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider_status,expected",
    [
        ("AUTHORIZED", NormalizedStatus.SUCCESS),
        ("closed", NormalizedStatus.SUCCESS),
        ("CREATED", NormalizedStatus.PENDING),
        ("REJECTED", NormalizedStatus.FAILED),
        ("EXPIRED", NormalizedStatus.FAILED),
        ("something_new", NormalizedStatus.UNKNOWN),
    ],
)
async def test_get_status_maps_provider_status(provider_status, expected):
    def handler(request):
        assert request.url.path == "/api/v2/payments/tp_1"
        return httpx.Response(200, json={"id": "tp_1", "status": provider_status, "amount": "500.00", "currency": "SAR"})

    result = await _client(handler).get_status("tp_1")

    assert result.success is True
    assert result.status == expected
    assert result.amount == Decimal("500.00")


@pytest.mark.asyncio
async def test_refund_returns_last_refund_id():
    def handler(request):
        assert request.url.path == "/api/v2/payments/tp_1/refunds"
        assert json.loads(request.content)["amount"] == "200.00"
        return httpx.Response(200, json={"id": "tp_1", "refunds": [{"id": "rf_a"}, {"id": "rf_b"}]})

    result = await _client(handler).refund("tp_1", Decimal("200"), None)

    assert result.success is True
    assert result.refund_id == "rf_b"


@pytest.mark.asyncio
async def test_refund_error_carries_provider_code():
    def handler(request):
        return httpx.Response(400, json={"error": "amount too high", "error_code": "bad_data"})

    result = await _client(handler).refund("tp_1", Decimal("900"), None)

    assert result.success is False
    assert result.error_code == "bad_data"
    assert result.error_message == "amount too high"


def test_webhook_signature_is_base64_hmac():
    client = _client()
    body = b'{"id":"tp_1","status":"authorized"}'
    good = base64.b64encode(hmac.new(b"tabby_secret", body, hashlib.sha256).digest()).decode()

    assert client.validate_webhook_signature(body, good) is True
    assert client.validate_webhook_signature(body, "bm9wZQ==") is False
    assert client.validate_webhook_signature(body, "café") is False
    assert client.extract_signature({"X-Tabby-Signature": good}) == good


def test_parse_webhook_uses_payment_id_as_checkout_id():
    data = _client().parse_webhook_payload(b'{"id": "tp_1", "status": "AUTHORIZED", "amount": "500.00"}')

    assert data.checkout_id == "tp_1"
    assert data.transaction_id == "tp_1"
    assert data.status == NormalizedStatus.SUCCESS

    with pytest.raises(InvalidWebhookPayloadException):
        _client().parse_webhook_payload(b'{"status": "AUTHORIZED"}')
