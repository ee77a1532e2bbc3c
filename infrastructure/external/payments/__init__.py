"""
Factory for payment provider adapters.
"""
from __future__ import annotations

from functools import lru_cache

from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.registry import ProviderRegistry


def build_registry(settings: PaymentSettings | None = None, **client_kwargs) -> ProviderRegistry:
    from .hyperpay_client import HyperPayClient
    from .tabby_client import TabbyClient
    from .tamara_client import TamaraClient

    cfg = settings or payment_settings
    return ProviderRegistry(
        [
            HyperPayClient(cfg.hyperpay, **client_kwargs),
            TabbyClient(cfg.tabby, **client_kwargs),
            TamaraClient(cfg.tamara, **client_kwargs),
        ]
    )


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    return build_registry()
