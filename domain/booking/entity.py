"""
Booking aggregate as seen by the payment subsystem.

Bookings are owned by the booking workflow; payments only confirm them or
update their payment signal.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    HALL_APPROVED = "hall_approved"
    VENDORS_APPROVING = "vendors_approving"
    READY_FOR_PAYMENT = "ready_for_payment"
    PAID = "paid"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    HALL_REJECTED = "hall_rejected"
    VENDOR_REJECTED = "vendor_rejected"


CANCELLED_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.HALL_REJECTED, BookingStatus.VENDOR_REJECTED}
)


class BookingPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


@dataclass
class BookingServiceLine:
    id: int
    name: str
    price: Decimal
    quantity: int = 1


@dataclass
class Booking:
    id: int
    customer_id: int
    hall_id: int
    hall_name: str
    hall_cost: Decimal
    total_amount: Decimal
    currency: str = "SAR"
    status: BookingStatus = BookingStatus.PENDING
    payment_status: BookingPaymentStatus = BookingPaymentStatus.PENDING
    paid_at: Optional[datetime] = None
    event_date: Optional[date] = None
    updated_at: Optional[datetime] = None
    services: list[BookingServiceLine] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.status in CANCELLED_STATUSES

    def confirm_payment(self, at: Optional[datetime] = None) -> None:
        now = at or datetime.now(timezone.utc)
        self.status = BookingStatus.CONFIRMED
        self.payment_status = BookingPaymentStatus.PAID
        self.paid_at = now
        self.updated_at = now

    def mark_payment_failed(self) -> None:
        # A failed attempt never downgrades a booking another payment already settled
        if self.payment_status == BookingPaymentStatus.PAID:
            return
        self.payment_status = BookingPaymentStatus.FAILED
        self.updated_at = datetime.now(timezone.utc)

    def mark_refunded(self) -> None:
        self.payment_status = BookingPaymentStatus.REFUNDED
        self.updated_at = datetime.now(timezone.utc)


@dataclass
class CustomerProfile:
    id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    city: str = "Riyadh"
    country: str = "SA"

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or "Customer"
