import pytest

from core.settings import PaymentSettings, TabbySettings
from domain.payment.exceptions import ProviderDisabledException, ProviderNotFoundException
from infrastructure.external.payments import build_registry
from infrastructure.external.payments.hyperpay_client import HyperPayClient


def _registry():
    return build_registry(PaymentSettings(tabby=TabbySettings(enabled=False)))


def test_lookup_is_case_insensitive():
    registry = _registry()
    assert isinstance(registry.get("HyperPay"), HyperPayClient)
    assert registry.get(" tamara ").provider.value == "tamara"


def test_unknown_provider():
    with pytest.raises(ProviderNotFoundException) as exc:
        _registry().get("stripe")
    assert exc.value.details["error_code"] == "PROVIDER_NOT_FOUND"


def test_disabled_provider():
    registry = _registry()
    with pytest.raises(ProviderDisabledException):
        registry.get("tabby")
    assert registry.is_enabled("tabby") is False
    assert registry.is_enabled("hyperpay") is True
    assert registry.is_enabled("nope") is False


def test_enabled_lists_only_enabled_adapters():
    names = [a.provider.value for a in _registry().enabled()]
    assert names == ["hyperpay", "tamara"]
