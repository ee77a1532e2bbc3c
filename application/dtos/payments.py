"""
Payment DTOs (Pydantic v2) used at application boundaries.

The four result shapes (CheckoutResult, StatusResult, RefundResult,
WebhookData) are the whole public contract of a provider adapter; provider
wire formats never leave the adapter modules.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import NormalizedStatus


class PaymentProvider(str, Enum):
    HYPERPAY = "hyperpay"
    TABBY = "tabby"
    TAMARA = "tamara"

    @classmethod
    def parse(cls, value: str) -> Optional["PaymentProvider"]:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


class ProviderType(str, Enum):
    CARD = "card"
    BNPL = "bnpl"


def _upper_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


class Address(BaseModel):
    line1: str = "N/A"
    city: str = "Riyadh"
    country: str = "SA"
    zip: str = "00000"


class LineItem(BaseModel):
    reference_id: str
    name: str
    sku: str
    quantity: int = 1
    unit_price: Decimal
    category: str = "Events"

    @property
    def total_amount(self) -> Decimal:
        return self.unit_price * self.quantity


class CheckoutRequest(BaseModel):
    booking_id: int
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str = Field(default="SAR")
    description: str = ""
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    payment_brand: Optional[str] = None
    line_items: list[LineItem] = Field(default_factory=list)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    failure_url: Optional[str] = None
    webhook_url: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _upper_currency(v)

    @property
    def customer_name(self) -> str:
        return " ".join(p for p in (self.customer_first_name, self.customer_last_name) if p) or "Customer"


class CheckoutResult(BaseModel):
    success: bool
    checkout_id: Optional[str] = None
    payment_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[str] = None


class StatusResult(BaseModel):
    success: bool
    status: NormalizedStatus = NormalizedStatus.UNKNOWN
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    result_code: Optional[str] = None
    result_description: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    card_expiry: Optional[str] = None
    card_holder: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[str] = None


class WebhookData(BaseModel):
    checkout_id: Optional[str] = None
    transaction_id: Optional[str] = None
    status: NormalizedStatus = NormalizedStatus.UNKNOWN
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    event_type: Optional[str] = None
    raw_payload: str = ""
    additional_data: dict[str, Any] = Field(default_factory=dict)


class ReconciliationOutcome(BaseModel):
    """What a poll or webhook did to the local ledger."""
    checkout_id: str
    payment_id: Optional[int] = None
    status: Optional[str] = None
    reported_status: NormalizedStatus = NormalizedStatus.UNKNOWN
    transition: str
    booking_confirmed: bool = False
    processed: bool = True
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None


# API boundary models

class CheckoutCreateDTO(BaseModel):
    booking_id: int = Field(..., gt=0)
    provider: str = Field(..., min_length=1)
    payment_brand: Optional[str] = None
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponseDTO(BaseModel):
    payment_id: int
    checkout_id: str
    payment_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    provider: str


class RefundCreateDTO(BaseModel):
    amount: condecimal(gt=0, max_digits=15, decimal_places=2)  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundResponseDTO(BaseModel):
    refund_id: int
    payment_id: int
    refund_transaction_id: Optional[str] = None
    refund_amount: Decimal
    total_refunded: Decimal
    payment_status: str


class ProviderInfoDTO(BaseModel):
    id: str
    display_name: str
    type: ProviderType
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    supported_brands: list[str] = Field(default_factory=list)


class ProvidersResponseDTO(BaseModel):
    providers: list[ProviderInfoDTO]
    default_currency: str
    test_mode: bool
