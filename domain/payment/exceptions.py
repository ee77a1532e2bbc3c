"""
Payment error taxonomy. Every entry maps to one PaymentCode and carries the
machine-readable ``error_code`` in ``details``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentDomainException(BusinessException):
    error_code: str = "PAYMENT_ERROR"

    def __init__(self, code: int, message: str, details: Optional[dict] = None, *, field: Optional[str] = None):
        full_details = {"error_code": self.error_code}
        if details:
            full_details.update({k: v for k, v in details.items() if v is not None})
        super().__init__(
            code=code,
            message=message,
            error_type=type(self).__name__.removesuffix("Exception"),
            details=full_details,
            field=field,
        )


class ProviderNotFoundException(PaymentDomainException):
    error_code = "PROVIDER_NOT_FOUND"

    def __init__(self, provider: str):
        super().__init__(
            PaymentCode.PROVIDER_NOT_FOUND,
            f"Payment provider '{provider}' is not configured",
            {"provider": provider},
        )


class ProviderDisabledException(PaymentDomainException):
    error_code = "PROVIDER_DISABLED"

    def __init__(self, provider: str):
        super().__init__(
            PaymentCode.PROVIDER_DISABLED,
            f"Payment provider '{provider}' is currently disabled",
            {"provider": provider},
        )


class BookingNotFoundException(PaymentDomainException):
    error_code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: int):
        super().__init__(PaymentCode.BOOKING_NOT_FOUND, "Booking not found", {"booking_id": booking_id})


class BookingCancelledException(PaymentDomainException):
    error_code = "BOOKING_CANCELLED"

    def __init__(self, booking_id: int, status: str):
        super().__init__(
            PaymentCode.BOOKING_CANCELLED,
            "Cannot pay for a cancelled booking",
            {"booking_id": booking_id, "booking_status": status},
        )


class AlreadyPaidException(PaymentDomainException):
    error_code = "ALREADY_PAID"

    def __init__(self, booking_id: int):
        super().__init__(PaymentCode.ALREADY_PAID, "Booking is already paid", {"booking_id": booking_id})


class PaymentNotFoundException(PaymentDomainException):
    error_code = "PAYMENT_NOT_FOUND"

    def __init__(self, *, payment_id: Optional[int] = None, checkout_id: Optional[str] = None):
        super().__init__(
            PaymentCode.PAYMENT_NOT_FOUND,
            "Payment not found",
            {"payment_id": payment_id, "checkout_id": checkout_id},
        )


class NotRefundableException(PaymentDomainException):
    error_code = "NOT_REFUNDABLE"

    def __init__(self, payment_id: Optional[int], status: str):
        super().__init__(
            PaymentCode.NOT_REFUNDABLE,
            "Only successful payments can be refunded",
            {"payment_id": payment_id, "status": status},
        )


class AlreadyFullyRefundedException(PaymentDomainException):
    error_code = "ALREADY_FULLY_REFUNDED"

    def __init__(self, payment_id: Optional[int]):
        super().__init__(
            PaymentCode.ALREADY_FULLY_REFUNDED,
            "Payment is already fully refunded",
            {"payment_id": payment_id},
        )


class RefundExceedsBalanceException(PaymentDomainException):
    error_code = "REFUND_EXCEEDS_BALANCE"

    def __init__(self, payment_id: Optional[int], requested: Decimal, available: Decimal):
        super().__init__(
            PaymentCode.REFUND_EXCEEDS_BALANCE,
            f"Refund amount exceeds refundable balance of {available:.2f}",
            {"payment_id": payment_id, "requested": str(requested), "available": str(available)},
            field="amount",
        )


class SignatureInvalidException(PaymentDomainException):
    error_code = "SIGNATURE_INVALID"

    def __init__(self, provider: str, reason: str = "Invalid webhook signature"):
        super().__init__(PaymentCode.SIGNATURE_INVALID, reason, {"provider": provider})


class InvalidWebhookPayloadException(PaymentDomainException):
    error_code = "INVALID_WEBHOOK_PAYLOAD"

    def __init__(self, provider: str, reason: str):
        super().__init__(
            PaymentCode.INVALID_WEBHOOK_PAYLOAD,
            "Webhook payload could not be parsed",
            {"provider": provider, "reason": reason},
        )


class ProviderRejectedException(PaymentDomainException):
    """The gateway answered with a structured decline or error code."""

    error_code = "PROVIDER_REJECTED"

    def __init__(
        self,
        provider: str,
        message: Optional[str],
        *,
        provider_code: Optional[str] = None,
        raw_response: Any = None,
    ):
        super().__init__(
            PaymentCode.PROVIDER_REJECTED,
            message or "Payment provider rejected the request",
            {"provider": provider, "error_code": provider_code, "raw_response": raw_response},
        )
        self.provider_code = provider_code


class ProviderTransportException(PaymentDomainException):
    """Network failure or timeout talking to the gateway."""

    error_code = "PROVIDER_TRANSPORT_ERROR"

    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(
            PaymentCode.PROVIDER_TRANSPORT_ERROR,
            message or "Payment provider is unreachable",
            {"provider": provider},
        )
