from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.dtos.payments import StatusResult, WebhookData
from application.services.reconciliation_service import ReconciliationService
from application.services.webhook_authenticator import WebhookAuthenticator
from domain.booking.entity import BookingPaymentStatus, BookingStatus
from domain.payment.entity import NormalizedStatus, PaymentStatus
from domain.payment.exceptions import (
    PaymentNotFoundException,
    ProviderTransportException,
    SignatureInvalidException,
)
from shared.codes.payment_codes import TRANSPORT_ERROR


@pytest.fixture
def service(uow_factory, registry):
    return ReconciliationService(uow_factory, registry, WebhookAuthenticator(ip_allowlist=[]))


def _success(**kw) -> StatusResult:
    values = dict(success=True, status=NormalizedStatus.SUCCESS, transaction_id="txn_1", card_brand="VISA", last4="1111")
    values.update(kw)
    return StatusResult(**values)


def _webhook(status=NormalizedStatus.SUCCESS, checkout_id="chk_1") -> WebhookData:
    return WebhookData(
        checkout_id=checkout_id,
        transaction_id="txn_1",
        status=status,
        amount=Decimal("500.00"),
        raw_payload='{"id": "txn_1"}',
        additional_data={"result_code": "000.000.000", "last4": "1111"},
    )


@pytest.mark.asyncio
async def test_poll_success_confirms_booking(service, store, card_adapter, payment_factory):
    payment = payment_factory()
    card_adapter.status_result = _success()

    outcome = await service.poll("chk_1")

    assert outcome.transition == "succeeded"
    assert outcome.booking_confirmed is True
    assert outcome.transaction_id == "txn_1"
    stored = store.payments[payment.id]
    assert stored.status == PaymentStatus.SUCCESS
    assert stored.last4 == "1111"
    booking = store.bookings[1]
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == BookingPaymentStatus.PAID
    assert booking.paid_at is not None


@pytest.mark.asyncio
async def test_repeated_poll_is_idempotent(service, store, card_adapter, payment_factory):
    payment_factory()
    card_adapter.status_result = _success()

    await service.poll("chk_1")
    second = await service.poll("chk_1")

    assert second.transition == "duplicate"
    assert second.booking_confirmed is False
    assert store.booking_saves == 1


@pytest.mark.asyncio
async def test_duplicate_success_webhook_confirms_once(service, store, card_adapter, payment_factory):
    payment = payment_factory()
    card_adapter.webhook_data = _webhook()

    first = await service.handle_webhook("hyperpay", b"{}", {}, "10.0.0.1", "/api/v1/payments/webhook/hyperpay")
    second = await service.handle_webhook("hyperpay", b"{}", {}, "10.0.0.1", "/api/v1/payments/webhook/hyperpay")

    assert first.booking_confirmed is True
    assert second.booking_confirmed is False
    assert store.booking_saves == 1
    assert store.payments[payment.id].webhook_payload == '{"id": "txn_1"}'
    assert card_adapter.count("acknowledge_webhook") == 2


@pytest.mark.asyncio
async def test_bad_signature_changes_nothing(service, store, card_adapter, payment_factory):
    payment = payment_factory()
    card_adapter.signature_ok = False
    card_adapter.webhook_data = _webhook()

    with pytest.raises(SignatureInvalidException):
        await service.handle_webhook("hyperpay", b"{}", {}, "10.0.0.1", "/hook")

    assert store.payments[payment.id].status == PaymentStatus.PENDING
    assert store.payments[payment.id].webhook_payload is None
    assert store.booking_saves == 0


@pytest.mark.asyncio
async def test_webhook_for_unknown_payment_is_acknowledged(service, card_adapter):
    card_adapter.webhook_data = _webhook(checkout_id="chk_missing")

    outcome = await service.handle_webhook("hyperpay", b"{}", {}, None, "/hook")

    assert outcome.processed is False
    assert card_adapter.count("acknowledge_webhook") == 0


@pytest.mark.asyncio
async def test_failure_marks_booking_failed_but_not_cancelled(service, store, card_adapter, payment_factory):
    payment = payment_factory()
    card_adapter.status_result = StatusResult(
        success=True, status=NormalizedStatus.FAILED, result_code="800.100.151", result_description="invalid card"
    )

    outcome = await service.poll("chk_1")

    assert outcome.transition == "failed"
    stored = store.payments[payment.id]
    assert stored.status == PaymentStatus.FAILED
    assert stored.failure_reason == "invalid card"
    assert store.bookings[1].payment_status == BookingPaymentStatus.FAILED
    assert store.bookings[1].status == BookingStatus.READY_FOR_PAYMENT


@pytest.mark.asyncio
async def test_late_success_overrides_local_failure(service, store, card_adapter, payment_factory):
    payment = payment_factory(status=PaymentStatus.FAILED, failure_reason="declined")
    card_adapter.status_result = _success()

    outcome = await service.poll("chk_1")

    assert outcome.transition == "succeeded"
    assert store.payments[payment.id].status == PaymentStatus.SUCCESS
    assert store.bookings[1].payment_status == BookingPaymentStatus.PAID


@pytest.mark.asyncio
async def test_expired_pending_payment_fails(service, store, card_adapter, payment_factory):
    payment = payment_factory(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    card_adapter.status_result = StatusResult(success=True, status=NormalizedStatus.PENDING)

    outcome = await service.poll("chk_1")

    assert outcome.transition == "expired"
    assert store.payments[payment.id].status == PaymentStatus.FAILED
    assert store.payments[payment.id].failure_reason == "expired"


@pytest.mark.asyncio
@pytest.mark.parametrize("error_code", ["404", TRANSPORT_ERROR])
async def test_expired_payment_fails_when_provider_cannot_answer(service, store, card_adapter, payment_factory, error_code):
    payment = payment_factory(expires_at=datetime.now(timezone.utc) - timedelta(hours=2))
    card_adapter.status_result = StatusResult(success=False, error_code=error_code, error_message="no answer")

    outcome = await service.poll("chk_1")

    assert outcome.transition == "expired"
    assert store.payments[payment.id].status == PaymentStatus.FAILED
    assert store.payments[payment.id].failure_reason == "expired"
    assert store.bookings[1].payment_status == BookingPaymentStatus.FAILED


@pytest.mark.asyncio
async def test_unanswered_query_leaves_unexpired_payment_pending(service, store, card_adapter, payment_factory):
    payment = payment_factory(expires_at=datetime.now(timezone.utc) + timedelta(minutes=20))
    card_adapter.status_result = StatusResult(success=False, error_code="404")

    outcome = await service.poll("chk_1")

    assert outcome.transition == "unmapped"
    assert store.payments[payment.id].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_unmapped_status_changes_nothing(service, store, card_adapter, payment_factory):
    payment = payment_factory()
    card_adapter.status_result = StatusResult(success=True, status=NormalizedStatus.UNKNOWN)

    outcome = await service.poll("chk_1")

    assert outcome.transition == "unmapped"
    assert store.payments[payment.id].status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_provider_reported_refund_is_ignored(service, store, card_adapter, payment_factory):
    payment = payment_factory(status=PaymentStatus.SUCCESS, transaction_id="txn_1")
    card_adapter.status_result = StatusResult(success=True, status=NormalizedStatus.REFUNDED)

    outcome = await service.poll("chk_1")

    assert outcome.transition == "ignored"
    assert store.payments[payment.id].status == PaymentStatus.SUCCESS


@pytest.mark.asyncio
async def test_second_payment_for_paid_booking_is_not_promoted(service, store, card_adapter, payment_factory):
    payment_factory(status=PaymentStatus.SUCCESS, checkout_id="chk_first")
    second = payment_factory(checkout_id="chk_second")
    card_adapter.status_result = _success()

    outcome = await service.poll("chk_second")

    assert outcome.transition == "ignored"
    assert store.payments[second.id].status == PaymentStatus.PENDING
    successes = [p for p in store.payments.values() if p.status == PaymentStatus.SUCCESS]
    assert len(successes) == 1


@pytest.mark.asyncio
async def test_poll_unknown_checkout(service):
    with pytest.raises(PaymentNotFoundException):
        await service.poll("chk_nope")


@pytest.mark.asyncio
async def test_poll_transport_failure(service, card_adapter, payment_factory):
    payment_factory()
    card_adapter.status_result = StatusResult(success=False, error_code=TRANSPORT_ERROR, error_message="down")

    with pytest.raises(ProviderTransportException):
        await service.poll("chk_1")


@pytest.mark.asyncio
async def test_reconcile_stale_polls_only_old_pending(service, store, card_adapter, payment_factory):
    old = datetime.now(timezone.utc) - timedelta(hours=1)
    payment_factory(checkout_id="chk_old_1", created_at=old)
    payment_factory(checkout_id="chk_old_2", created_at=old)
    payment_factory(checkout_id="chk_new")
    card_adapter.status_result = StatusResult(success=True, status=NormalizedStatus.PENDING)

    polled = await service.reconcile_stale(older_than_minutes=10, limit=50)

    assert polled == 2
    assert sorted(c[1] for c in card_adapter.calls if c[0] == "get_status") == ["chk_old_1", "chk_old_2"]


@pytest.mark.asyncio
async def test_reconcile_stale_expires_abandoned_checkouts_provider_cannot_find(
    service, store, card_adapter, payment_factory
):
    old = datetime.now(timezone.utc) - timedelta(hours=3)
    abandoned = payment_factory(checkout_id="chk_gone", created_at=old, expires_at=old + timedelta(minutes=30))
    card_adapter.status_result = StatusResult(success=False, error_code="404", error_message="session not found")

    polled = await service.reconcile_stale(older_than_minutes=10, limit=50)

    assert polled == 1
    assert store.payments[abandoned.id].status == PaymentStatus.FAILED
    assert store.payments[abandoned.id].failure_reason == "expired"
