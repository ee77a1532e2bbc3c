from decimal import Decimal

import pytest

from application.dtos.payments import CheckoutResult, PaymentProvider, ProviderType
from application.services.checkout_service import CheckoutService
from domain.booking.entity import BookingStatus
from domain.payment.entity import PaymentStatus
from domain.payment.exceptions import (
    AlreadyPaidException,
    BookingCancelledException,
    BookingNotFoundException,
    ProviderNotFoundException,
    ProviderRejectedException,
    ProviderTransportException,
)
from infrastructure.external.payments.registry import ProviderRegistry
from shared.codes.payment_codes import MIN_AMOUNT_NOT_MET, TRANSPORT_ERROR


@pytest.mark.asyncio
async def test_checkout_creates_pending_payment(store, uow_factory, registry, card_adapter):
    service = CheckoutService(uow_factory, registry)

    payment, result = await service.create_checkout(1, "hyperpay", payment_brand="MADA", ip_address="10.0.0.5")

    assert result.checkout_id == "chk_1"
    assert payment.id is not None
    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == Decimal("500.00")
    assert payment.checkout_id == "chk_1"
    assert payment.email == "sara@example.com"
    assert payment.ip_address == "10.0.0.5"
    assert store.payments[payment.id].checkout_payload == '{"id": "chk_1"}'

    request = card_adapter.calls[0][1]
    assert [item.sku for item in request.line_items] == ["HALL-3", "SVC-11"]
    assert request.customer_first_name == "Sara"
    assert request.webhook_url.endswith("/api/v1/payments/webhook/hyperpay")


@pytest.mark.asyncio
async def test_missing_booking(uow_factory, registry):
    with pytest.raises(BookingNotFoundException):
        await CheckoutService(uow_factory, registry).create_checkout(99, "hyperpay")


@pytest.mark.asyncio
async def test_cancelled_booking(store, uow_factory, registry, card_adapter):
    store.bookings[1].status = BookingStatus.HALL_REJECTED
    with pytest.raises(BookingCancelledException):
        await CheckoutService(uow_factory, registry).create_checkout(1, "hyperpay")
    assert card_adapter.calls == []


@pytest.mark.asyncio
async def test_already_paid_booking(store, uow_factory, registry, card_adapter, payment_factory):
    payment_factory(status=PaymentStatus.SUCCESS, checkout_id="chk_old")
    with pytest.raises(AlreadyPaidException):
        await CheckoutService(uow_factory, registry).create_checkout(1, "hyperpay")
    assert card_adapter.calls == []
    assert len(store.payments) == 1


@pytest.mark.asyncio
async def test_unknown_provider(uow_factory, registry):
    with pytest.raises(ProviderNotFoundException):
        await CheckoutService(uow_factory, registry).create_checkout(1, "paypal")


@pytest.mark.asyncio
async def test_bnpl_below_minimum_rejected_before_network(store, uow_factory, adapter_factory):
    bnpl = adapter_factory(
        provider=PaymentProvider.TABBY,
        provider_type=ProviderType.BNPL,
        min_amount=Decimal("1000"),
        max_amount=Decimal("5000"),
    )
    service = CheckoutService(uow_factory, ProviderRegistry([bnpl]))

    with pytest.raises(ProviderRejectedException) as exc:
        await service.create_checkout(1, "tabby")

    assert exc.value.provider_code == MIN_AMOUNT_NOT_MET
    assert exc.value.details["error_code"] == MIN_AMOUNT_NOT_MET
    assert bnpl.calls == []
    assert store.payments == {}


@pytest.mark.asyncio
async def test_provider_rejection_writes_nothing(store, uow_factory, registry, card_adapter):
    card_adapter.checkout_result = CheckoutResult(
        success=False,
        error_code="200.300.404",
        error_message="invalid or missing parameter",
        raw_response='{"result": {"code": "200.300.404"}}',
    )

    with pytest.raises(ProviderRejectedException) as exc:
        await CheckoutService(uow_factory, registry).create_checkout(1, "hyperpay")

    assert exc.value.details["error_code"] == "200.300.404"
    assert exc.value.message == "invalid or missing parameter"
    assert exc.value.details["raw_response"] == '{"result": {"code": "200.300.404"}}'
    assert store.payments == {}


@pytest.mark.asyncio
async def test_provider_transport_failure(store, uow_factory, registry, card_adapter):
    card_adapter.checkout_result = CheckoutResult(success=False, error_code=TRANSPORT_ERROR, error_message="down")

    with pytest.raises(ProviderTransportException):
        await CheckoutService(uow_factory, registry).create_checkout(1, "hyperpay")
    assert store.payments == {}
