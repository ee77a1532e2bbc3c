"""In-memory fakes for the payment services.

The fake unit of work snapshots the store on enter and restores it on
rollback, so tests observe the same all-or-nothing behaviour as the
SQLAlchemy implementation.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from application.dtos.payments import (
    CheckoutResult,
    PaymentProvider,
    ProviderType,
    RefundResult,
    StatusResult,
    WebhookData,
)
from domain.booking.entity import Booking, BookingServiceLine, BookingStatus, CustomerProfile
from domain.booking.repository import BookingRepository, CustomerRepository
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import NormalizedStatus, Payment, PaymentStatus
from domain.payment.repository import PaymentRepository, RefundRepository
from infrastructure.external.payments.registry import ProviderRegistry


@dataclass
class FakeStore:
    payments: dict = field(default_factory=dict)
    refunds: list = field(default_factory=list)
    bookings: dict = field(default_factory=dict)
    customers: dict = field(default_factory=dict)
    booking_saves: int = 0
    next_id: int = 1
    # 模拟并发写入：接下来 N 次 CAS 返回 False
    refund_conflicts: int = 0

    def snapshot(self):
        return copy.deepcopy((self.payments, self.refunds, self.bookings, self.booking_saves, self.next_id))

    def restore(self, snap):
        self.payments, self.refunds, self.bookings, self.booking_saves, self.next_id = snap


class FakePaymentRepository(PaymentRepository):
    def __init__(self, store: FakeStore):
        self.store = store

    async def create(self, payment):
        payment = copy.deepcopy(payment)
        payment.id = self.store.next_id
        self.store.next_id += 1
        self.store.payments[payment.id] = payment
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id, *, for_update=False):
        p = self.store.payments.get(payment_id)
        return copy.deepcopy(p) if p else None

    async def get_by_checkout_id(self, checkout_id, *, for_update=False):
        for p in self.store.payments.values():
            if p.checkout_id == checkout_id:
                return copy.deepcopy(p)
        return None

    async def has_successful_payment(self, booking_id, *, exclude_id=None):
        return any(
            p.booking_id == booking_id and p.status == PaymentStatus.SUCCESS and p.id != exclude_id
            for p in self.store.payments.values()
        )

    async def apply_transition(self, payment, expected_status):
        stored = self.store.payments[payment.id]
        if stored.status != expected_status:
            return False
        updated = copy.deepcopy(payment)
        updated.webhook_payload = stored.webhook_payload
        updated.refund_amount = stored.refund_amount
        self.store.payments[payment.id] = updated
        return True

    async def apply_refund_amount(self, payment, expected_refund_amount):
        if self.store.refund_conflicts:
            self.store.refund_conflicts -= 1
            return False
        stored = self.store.payments[payment.id]
        if stored.refund_amount != expected_refund_amount:
            return False
        stored.refund_amount = payment.refund_amount
        stored.status = payment.status
        return True

    async def save_webhook_payload(self, payment_id, payload):
        self.store.payments[payment_id].webhook_payload = payload

    async def list_stale_pending(self, created_before, limit=100):
        rows = [
            p for p in self.store.payments.values()
            if p.status == PaymentStatus.PENDING and p.created_at < created_before
        ]
        return copy.deepcopy(rows[:limit])

    async def list_by_booking(self, booking_id):
        return copy.deepcopy([p for p in self.store.payments.values() if p.booking_id == booking_id])


class FakeRefundRepository(RefundRepository):
    def __init__(self, store: FakeStore):
        self.store = store

    async def create(self, refund):
        refund = copy.deepcopy(refund)
        refund.id = len(self.store.refunds) + 1
        self.store.refunds.append(refund)
        return copy.deepcopy(refund)

    async def list_by_payment(self, payment_id):
        return [copy.deepcopy(r) for r in self.store.refunds if r.payment_id == payment_id]

    async def get_completed_total(self, payment_id):
        return sum((r.refund_amount for r in self.store.refunds if r.payment_id == payment_id), Decimal("0"))


class FakeBookingRepository(BookingRepository):
    def __init__(self, store: FakeStore):
        self.store = store

    async def get_by_id(self, booking_id, *, for_update=False):
        b = self.store.bookings.get(booking_id)
        return copy.deepcopy(b) if b else None

    async def save(self, booking):
        self.store.bookings[booking.id] = copy.deepcopy(booking)
        self.store.booking_saves += 1
        return booking


class FakeCustomerRepository(CustomerRepository):
    def __init__(self, store: FakeStore):
        self.store = store

    async def get_profile(self, customer_id):
        return self.store.customers.get(customer_id)


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: FakeStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = self.store.snapshot()
        self.payment_repository = FakePaymentRepository(self.store)
        self.refund_repository = FakeRefundRepository(self.store)
        self.booking_repository = FakeBookingRepository(self.store)
        self.customer_repository = FakeCustomerRepository(self.store)
        return self

    async def commit(self):
        self._committed = True

    async def rollback(self):
        if self._snapshot is not None:
            self.store.restore(self._snapshot)


class FakeAdapter:
    """Scriptable adapter that records every call."""

    display_name = "Fake"
    enabled = True
    supported_brands = ["VISA"]

    def __init__(
        self,
        provider: PaymentProvider = PaymentProvider.HYPERPAY,
        provider_type: ProviderType = ProviderType.CARD,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
    ):
        self.provider = provider
        self.provider_type = provider_type
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.checkout_result = CheckoutResult(
            success=True,
            checkout_id="chk_1",
            payment_url="https://pay.example/chk_1",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
            raw_response='{"id": "chk_1"}',
        )
        self.status_result = StatusResult(success=True, status=NormalizedStatus.PENDING)
        self.refund_result = RefundResult(success=True, refund_id="rf_1")
        self.signature_ok = True
        self.webhook_data: Optional[WebhookData] = None
        self.calls: list[tuple] = []

    async def create_checkout(self, request):
        self.calls.append(("create_checkout", request))
        return self.checkout_result

    async def get_status(self, checkout_id):
        self.calls.append(("get_status", checkout_id))
        return self.status_result

    async def refund(self, transaction_id, amount, reason, currency=None):
        self.calls.append(("refund", transaction_id, amount, currency))
        return self.refund_result

    def extract_signature(self, headers):
        return headers.get("x-signature")

    def validate_webhook_signature(self, raw_body, signature):
        return self.signature_ok

    def parse_webhook_payload(self, raw_body):
        return self.webhook_data

    async def acknowledge_webhook(self, data):
        self.calls.append(("acknowledge_webhook", data.checkout_id))

    async def aclose(self):
        return None

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


@pytest.fixture
def store() -> FakeStore:
    s = FakeStore()
    s.customers[7] = CustomerProfile(id=7, email="sara@example.com", phone="+966500000000",
                                     first_name="Sara", last_name="Alharbi")
    s.bookings[1] = Booking(
        id=1,
        customer_id=7,
        hall_id=3,
        hall_name="Grand Hall",
        hall_cost=Decimal("400.00"),
        total_amount=Decimal("500.00"),
        status=BookingStatus.READY_FOR_PAYMENT,
        services=[BookingServiceLine(id=11, name="Catering", price=Decimal("100.00"))],
    )
    return s


@pytest.fixture
def uow_factory(store):
    def factory(*, readonly: bool = False):
        return FakeUnitOfWork(store, readonly=readonly)
    return factory


@pytest.fixture
def card_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def registry(card_adapter) -> ProviderRegistry:
    return ProviderRegistry([card_adapter])


def make_payment(store: FakeStore, **overrides) -> Payment:
    values = dict(
        id=store.next_id,
        booking_id=1,
        checkout_id="chk_1",
        payment_gateway="hyperpay",
        amount=Decimal("500.00"),
        currency="SAR",
        status=PaymentStatus.PENDING,
        created_at=datetime.now(timezone.utc),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
    )
    values.update(overrides)
    payment = Payment(**values)
    store.payments[payment.id] = payment
    store.next_id = payment.id + 1
    return copy.deepcopy(payment)


@pytest.fixture
def payment_factory(store):
    def factory(**overrides) -> Payment:
        return make_payment(store, **overrides)
    return factory


@pytest.fixture
def adapter_factory():
    return FakeAdapter
