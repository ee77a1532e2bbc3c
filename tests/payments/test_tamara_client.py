import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CheckoutRequest, WebhookData
from core.settings import TamaraSettings
from domain.payment.entity import NormalizedStatus
from infrastructure.external.payments.tamara_client import TamaraClient
from shared.codes.payment_codes import MIN_AMOUNT_NOT_MET


def _client(handler=None, **overrides) -> TamaraClient:
    values = dict(api_token="tm_token", notification_token="notify_me")
    values.update(overrides)
    config = TamaraSettings(**values)
    if handler is None:
        return TamaraClient(config)
    return TamaraClient(config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_checkout_returns_order_id():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"order_id": "ord_1", "checkout_url": "https://checkout.tamara.co/ord_1"})

    result = await _client(handler).create_checkout(
        CheckoutRequest(booking_id=9, amount=Decimal("1150"), webhook_url="https://halls.example/hook")
    )

    assert result.success is True
    assert result.checkout_id == "ord_1"
    assert result.payment_url == "https://checkout.tamara.co/ord_1"
    body = seen["body"]
    assert body["total_amount"] == {"amount": "1150.00", "currency": "SAR"}
    assert body["tax_amount"]["amount"] == "150.00"
    assert body["order_reference_id"] == "9"
    assert body["merchant_url"]["notification"] == "https://halls.example/hook"


@pytest.mark.asyncio
async def test_create_checkout_without_url_fails():
    def handler(request):
        return httpx.Response(200, json={"order_id": "ord_1"})

    result = await _client(handler).create_checkout(CheckoutRequest(booking_id=9, amount=Decimal("500")))

    assert result.success is False
    assert result.error_code == "NO_CHECKOUT_URL"


@pytest.mark.asyncio
async def test_create_checkout_below_minimum():
    result = await _client().create_checkout(CheckoutRequest(booking_id=9, amount=Decimal("99.99")))
    assert result.success is False
    assert result.error_code == MIN_AMOUNT_NOT_MET


@pytest.mark.asyncio
async def test_error_code_comes_from_first_error():
    def handler(request):
        return httpx.Response(
            400, json={"message": "Invalid phone", "errors": [{"error_code": "consumer_invalid_phone_number"}]}
        )

    result = await _client(handler).create_checkout(CheckoutRequest(booking_id=9, amount=Decimal("500")))

    assert result.success is False
    assert result.error_code == "consumer_invalid_phone_number"
    assert result.error_message == "Invalid phone"


@pytest.mark.asyncio
async def test_get_status_reads_total_amount_object():
    def handler(request):
        assert request.url.path == "/orders/ord_1"
        return httpx.Response(
            200,
            json={"order_id": "ord_1", "status": "fully_captured", "total_amount": {"amount": 500, "currency": "SAR"}},
        )

    result = await _client(handler).get_status("ord_1")

    assert result.status == NormalizedStatus.SUCCESS
    assert result.amount == Decimal("500")
    assert result.currency == "SAR"


@pytest.mark.asyncio
async def test_order_approved_webhook_authorises_order():
    paths = []

    def handler(request):
        paths.append((request.method, request.url.path))
        return httpx.Response(200, json={"order_id": "ord_1", "status": "authorised"})

    client = _client(handler)
    await client.acknowledge_webhook(WebhookData(checkout_id="ord_1", event_type="order_approved"))
    await client.acknowledge_webhook(WebhookData(checkout_id="ord_1", event_type="order_declined"))

    assert paths == [("POST", "/orders/ord_1/authorise")]


@pytest.mark.asyncio
async def test_authorise_failure_is_not_raised():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    assert await _client(handler).authorise_order("ord_1") is False


def test_notification_token_from_bearer_or_query_header():
    client = _client()
    assert client.extract_signature({"Authorization": "Bearer notify_me"}) == "notify_me"
    assert client.extract_signature({"tamaraToken": "notify_me"}) == "notify_me"
    assert client.validate_webhook_signature(b"{}", "notify_me") is True
    assert client.validate_webhook_signature(b"{}", "wrong") is False
    assert client.validate_webhook_signature(b"{}", None) is False
    assert client.validate_webhook_signature(b"{}", "notify_mé") is False


def test_parse_webhook_payload():
    body = json.dumps(
        {
            "order_id": "ord_1",
            "order_status": "approved",
            "event_type": "order_approved",
            "total_amount": {"amount": "500.00", "currency": "SAR"},
        }
    ).encode()

    data = _client().parse_webhook_payload(body)

    assert data.checkout_id == "ord_1"
    assert data.status == NormalizedStatus.SUCCESS
    assert data.event_type == "order_approved"
    assert data.amount == Decimal("500.00")


@pytest.mark.asyncio
async def test_refund_sends_amount_in_payment_currency():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"refund_id": "rf_9"})

    result = await _client(handler).refund("ord_1", Decimal("75"), "partial", currency="AED")

    assert result.success is True
    assert result.refund_id == "rf_9"
    assert seen["path"].endswith("/orders/ord_1/refunds")
    assert seen["body"]["total_amount"] == {"amount": "75.00", "currency": "AED"}
    assert seen["body"]["comment"] == "partial"
