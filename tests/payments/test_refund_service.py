from decimal import Decimal

import pytest

from application.dtos.payments import RefundResult
from application.services.refund_service import RefundService
from domain.booking.entity import BookingPaymentStatus
from domain.common.exceptions import ConcurrencyConflictException, DomainValidationException
from domain.payment.entity import PaymentStatus, RefundStatus
from domain.payment.exceptions import (
    AlreadyFullyRefundedException,
    NotRefundableException,
    PaymentNotFoundException,
    ProviderRejectedException,
    RefundExceedsBalanceException,
)


@pytest.fixture
def paid(payment_factory):
    return payment_factory(status=PaymentStatus.SUCCESS, transaction_id="txn_1")


@pytest.mark.asyncio
async def test_partial_then_full_refund(store, uow_factory, registry, card_adapter, paid):
    service = RefundService(uow_factory, registry)

    first = await service.refund(paid.id, Decimal("200.00"), "partial", requested_by="admin-1")
    assert first.payment_status == "success"
    assert first.total_refunded == Decimal("200.00")
    assert store.payments[paid.id].refund_amount == Decimal("200.00")

    second = await service.refund(paid.id, Decimal("300.00"), "rest")
    assert second.payment_status == "refunded"
    assert second.total_refunded == Decimal("500.00")
    assert store.bookings[1].payment_status == BookingPaymentStatus.REFUNDED

    with pytest.raises(AlreadyFullyRefundedException):
        await service.refund(paid.id, Decimal("1.00"), None)

    assert [r.refund_amount for r in store.refunds] == [Decimal("200.00"), Decimal("300.00")]
    assert all(r.status == RefundStatus.COMPLETED for r in store.refunds)
    assert store.refunds[0].requested_by == "admin-1"
    assert card_adapter.calls[0] == ("refund", "txn_1", Decimal("200.00"), "SAR")


@pytest.mark.asyncio
async def test_refund_above_balance(uow_factory, registry, card_adapter, paid):
    with pytest.raises(RefundExceedsBalanceException):
        await RefundService(uow_factory, registry).refund(paid.id, Decimal("500.01"))
    assert card_adapter.calls == []


@pytest.mark.asyncio
async def test_refund_missing_payment(uow_factory, registry):
    with pytest.raises(PaymentNotFoundException):
        await RefundService(uow_factory, registry).refund(404, Decimal("1"))


@pytest.mark.asyncio
async def test_refund_pending_payment(uow_factory, registry, payment_factory):
    payment = payment_factory()
    with pytest.raises(NotRefundableException):
        await RefundService(uow_factory, registry).refund(payment.id, Decimal("1"))


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
async def test_refund_amount_must_be_positive(uow_factory, registry, paid, amount):
    with pytest.raises(DomainValidationException):
        await RefundService(uow_factory, registry).refund(paid.id, amount)


@pytest.mark.asyncio
async def test_provider_refusal_leaves_ledger_untouched(store, uow_factory, registry, card_adapter, paid):
    card_adapter.refund_result = RefundResult(success=False, error_code="700.400.200", error_message="cannot refund")

    with pytest.raises(ProviderRejectedException) as exc:
        await RefundService(uow_factory, registry).refund(paid.id, Decimal("100"))

    assert exc.value.details["error_code"] == "700.400.200"
    assert store.payments[paid.id].refund_amount == Decimal("0")
    assert store.refunds == []


@pytest.mark.asyncio
async def test_refund_gives_up_after_repeated_total_conflicts(store, uow_factory, registry, paid):
    store.refund_conflicts = 3
    service = RefundService(uow_factory, registry)

    with pytest.raises(ConcurrencyConflictException):
        await service.refund(paid.id, Decimal("100.00"), None)

    assert store.payments[paid.id].refund_amount == Decimal("0")
    assert store.refunds == []


@pytest.mark.asyncio
async def test_refund_retries_after_single_total_conflict(store, uow_factory, registry, paid):
    store.refund_conflicts = 1
    service = RefundService(uow_factory, registry)

    result = await service.refund(paid.id, Decimal("100.00"), None)

    assert result.total_refunded == Decimal("100.00")
    assert store.payments[paid.id].refund_amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_refund_is_sent_in_the_payment_currency(store, uow_factory, registry, card_adapter, payment_factory):
    payment = payment_factory(status=PaymentStatus.SUCCESS, transaction_id="txn_aed", currency="AED")

    await RefundService(uow_factory, registry).refund(payment.id, Decimal("10.00"), None)

    assert card_adapter.calls[-1] == ("refund", "txn_aed", Decimal("10.00"), "AED")
