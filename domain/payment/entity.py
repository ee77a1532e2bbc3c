"""
支付领域实体 - 支付聚合根

One Payment row exists per checkout attempt. Payments are never deleted; the
table is an append-mostly audit ledger of every attempt against a booking.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import (
    AlreadyFullyRefundedException,
    NotRefundableException,
    RefundExceedsBalanceException,
)


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class NormalizedStatus(str, Enum):
    """Provider-neutral outcome every adapter maps its native statuses into."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


class RefundStatus(str, Enum):
    """退款状态枚举"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根 - 管理支付生命周期

    业务规则：
    1. checkout_id 由支付渠道分配且唯一
    2. 金额必须大于0，退款累计不能超过支付金额
    3. 状态转换: pending -> success | failed, success -> refunded
    4. 只有成功的支付才能退款
    """

    id: Optional[int]
    booking_id: int
    checkout_id: str
    payment_gateway: str  # hyperpay, tabby, tamara
    amount: Decimal
    currency: str  # ISO-4217
    status: PaymentStatus = PaymentStatus.PENDING

    transaction_id: Optional[str] = None
    payment_brand: Optional[str] = None
    status_description: Optional[str] = None
    result_code: Optional[str] = None

    # Masked card metadata only, never a full PAN
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    card_expiry: Optional[str] = None
    card_holder: Optional[str] = None

    customer_id: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    ip_address: Optional[str] = None

    refund_amount: Decimal = field(default_factory=lambda: Decimal("0"))

    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    failure_reason: Optional[str] = None
    checkout_payload: Optional[str] = None
    webhook_payload: Optional[str] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount"
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency"
            )
        self.currency = self.currency.upper()
        if self.refund_amount is None:
            self.refund_amount = Decimal("0")
        self.created_at = _ensure_utc(self.created_at)
        self.expires_at = _ensure_utc(self.expires_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.failed_at = _ensure_utc(self.failed_at)

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refund_amount

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def mark_succeeded(
        self,
        transaction_id: Optional[str],
        *,
        at: Optional[datetime] = None,
        result_code: Optional[str] = None,
        status_description: Optional[str] = None,
        card_brand: Optional[str] = None,
        last4: Optional[str] = None,
        card_expiry: Optional[str] = None,
        card_holder: Optional[str] = None,
    ) -> None:
        """
        标记支付成功

        A provider-confirmed capture also overrides a local failure, since the
        money has moved. Refunded payments cannot go back to success.
        """
        if self.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise DomainValidationException(
                f"Cannot transition payment from {self.status.value} to success",
                field="status"
            )
        self.status = PaymentStatus.SUCCESS
        if transaction_id:
            self.transaction_id = transaction_id
        self.completed_at = at or datetime.now(timezone.utc)
        self.failed_at = None
        self.failure_reason = None
        self.result_code = result_code or self.result_code
        self.status_description = status_description or self.status_description
        self.card_brand = card_brand or self.card_brand
        self.last4 = last4 or self.last4
        self.card_expiry = card_expiry or self.card_expiry
        self.card_holder = card_holder or self.card_holder

    def mark_failed(
        self,
        reason: Optional[str],
        *,
        at: Optional[datetime] = None,
        result_code: Optional[str] = None,
    ) -> None:
        """标记支付失败，只允许从 pending 转换"""
        if self.status != PaymentStatus.PENDING:
            raise DomainValidationException(
                f"Cannot transition payment from {self.status.value} to failed",
                field="status"
            )
        self.status = PaymentStatus.FAILED
        self.failed_at = at or datetime.now(timezone.utc)
        self.failure_reason = reason
        self.result_code = result_code or self.result_code

    def ensure_refundable(self, amount: Decimal) -> None:
        """Raise the first refund rule the requested amount violates."""
        if self.status != PaymentStatus.SUCCESS:
            raise NotRefundableException(self.id, self.status.value)
        if self.refund_amount >= self.amount:
            raise AlreadyFullyRefundedException(self.id)
        if amount > self.refundable_amount:
            raise RefundExceedsBalanceException(self.id, amount, self.refundable_amount)

    def apply_refund(self, amount: Decimal) -> None:
        self.ensure_refundable(amount)
        self.refund_amount += amount
        if self.refund_amount >= self.amount:
            self.status = PaymentStatus.REFUNDED

    @property
    def is_fully_refunded(self) -> bool:
        return self.refund_amount >= self.amount


@dataclass
class PaymentRefund:
    """退款实体 - Payment 聚合的一部分，每次退款调用一行"""

    id: Optional[int]
    payment_id: int
    refund_amount: Decimal
    status: RefundStatus
    reason: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    requested_by: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    response_payload: Optional[str] = None

    def __post_init__(self):
        if self.refund_amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be positive: {self.refund_amount}",
                field="amount"
            )
        self.created_at = _ensure_utc(self.created_at)
        self.processed_at = _ensure_utc(self.processed_at)
