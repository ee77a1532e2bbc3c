"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Lookup errors (21xxx)
    PROVIDER_NOT_FOUND = 21001
    BOOKING_NOT_FOUND = 21002
    PAYMENT_NOT_FOUND = 21003

    # State conflicts (22xxx)
    PROVIDER_DISABLED = 22001
    BOOKING_CANCELLED = 22002
    ALREADY_PAID = 22003
    NOT_REFUNDABLE = 22004
    ALREADY_FULLY_REFUNDED = 22005
    REFUND_EXCEEDS_BALANCE = 22006

    # Webhook errors (23xxx)
    SIGNATURE_INVALID = 23001
    INVALID_WEBHOOK_PAYLOAD = 23002

    # Provider/Network errors (6xxxx)
    PROVIDER_REJECTED = 60000
    PROVIDER_TRANSPORT_ERROR = 60001


# Adapter-level error codes carried in CheckoutResult/RefundResult.error_code
TRANSPORT_ERROR = "TRANSPORT_ERROR"
INVALID_RESPONSE = "INVALID_RESPONSE"
MIN_AMOUNT_NOT_MET = "MIN_AMOUNT_NOT_MET"
MAX_AMOUNT_EXCEEDED = "MAX_AMOUNT_EXCEEDED"


# HyperPay result codes, checked in order; first matching prefix wins.
# Anything unmatched is a failure.
HYPERPAY_RESULT_CODE_RULES: tuple[tuple[str, str], ...] = (
    ("000.000.", "success"),      # processed transactions
    ("000.100.1", "success"),     # processed, review manually later
    ("000.3", "success"),         # processed with external risk check passed
    ("000.6", "success"),         # processed with external risk check passed
    ("000.200", "pending"),       # transaction pending / checkout created
    ("800.400.5", "pending"),     # waiting for confirmation (non-instant)
    ("100.400.500", "pending"),   # waiting for external risk
)


# Provider→internal status mapping (keys are lower-cased provider statuses)
PROVIDER_STATUS_TO_INTERNAL = {
    "tabby": {
        "authorized": "success",
        "closed": "success",
        "created": "pending",
        "approved": "pending",
        "rejected": "failed",
        "expired": "failed",
        "refunded": "refunded",
    },
    "tamara": {
        "approved": "success",
        "captured": "success",
        "fully_captured": "success",
        "new": "pending",
        "pending": "pending",
        "authorised": "pending",
        "declined": "failed",
        "expired": "failed",
        "canceled": "failed",
        "refunded": "refunded",
        "partially_refunded": "refunded",
        "fully_refunded": "refunded",
    },
}
