"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

from application.dtos.payments import (
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    ProviderType,
    RefundResult,
    StatusResult,
    WebhookData,
)


@runtime_checkable
class PaymentProviderAdapter(Protocol):
    """Uniform interface over one payment gateway.

    Implementations are async for IO and never raise for provider or network
    failures: those come back as results with ``success=False``.
    """

    provider: PaymentProvider
    display_name: str
    provider_type: ProviderType
    enabled: bool
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    supported_brands: Sequence[str]

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult: ...

    async def get_status(self, checkout_id: str) -> StatusResult: ...

    async def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: Optional[str],
        currency: Optional[str] = None,
    ) -> RefundResult: ...

    def extract_signature(self, headers: Mapping[str, str]) -> Optional[str]: ...

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool: ...

    def parse_webhook_payload(self, raw_body: bytes) -> WebhookData: ...

    async def acknowledge_webhook(self, data: WebhookData) -> None: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class ProviderLookup(Protocol):
    """Registry seen from the application layer."""

    def get(self, provider_id: str) -> PaymentProviderAdapter: ...

    def is_enabled(self, provider_id: str) -> bool: ...

    def enabled(self) -> list[PaymentProviderAdapter]: ...
