"""
Provider registry: a lookup table of adapters keyed by PaymentProvider.
"""
from __future__ import annotations

from typing import Iterable

from application.dtos.payments import PaymentProvider
from application.ports.payment_gateway import PaymentProviderAdapter
from core.logging_config import get_logger
from domain.payment.exceptions import ProviderDisabledException, ProviderNotFoundException


logger = get_logger(__name__)


class ProviderRegistry:
    def __init__(self, adapters: Iterable[PaymentProviderAdapter]) -> None:
        self._adapters: dict[PaymentProvider, PaymentProviderAdapter] = {}
        for adapter in adapters:
            self._adapters[adapter.provider] = adapter

    def _lookup(self, provider_id: str) -> PaymentProviderAdapter:
        provider = PaymentProvider.parse(provider_id)
        adapter = self._adapters.get(provider) if provider else None
        if adapter is None:
            logger.warning("payment_provider_not_found", provider=provider_id)
            raise ProviderNotFoundException(provider_id)
        return adapter

    def get(self, provider_id: str) -> PaymentProviderAdapter:
        adapter = self._lookup(provider_id)
        if not adapter.enabled:
            logger.warning("payment_provider_disabled", provider=adapter.provider.value)
            raise ProviderDisabledException(adapter.provider.value)
        return adapter

    def is_enabled(self, provider_id: str) -> bool:
        provider = PaymentProvider.parse(provider_id)
        adapter = self._adapters.get(provider) if provider else None
        return bool(adapter and adapter.enabled)

    def enabled(self) -> list[PaymentProviderAdapter]:
        return [a for a in self._adapters.values() if a.enabled]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
