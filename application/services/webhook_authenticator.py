"""
Webhook authenticator - 在解析 JSON 之前校验原始请求体
"""
from __future__ import annotations

import ipaddress
from typing import Mapping, Optional, Sequence

from application.ports.payment_gateway import PaymentProviderAdapter
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.exceptions import SignatureInvalidException


logger = get_logger(__name__)


class WebhookAuthenticator:
    def __init__(self, ip_allowlist: Optional[Sequence[str]] = None):
        entries = payment_settings.webhook.ip_allowlist if ip_allowlist is None else ip_allowlist
        self._networks = [ipaddress.ip_network(e.strip(), strict=False) for e in (entries or []) if e.strip()]

    def _ip_allowed(self, client_ip: Optional[str]) -> bool:
        if not self._networks:
            return True
        if not client_ip:
            return False
        try:
            addr = ipaddress.ip_address(client_ip)
        except ValueError:
            return False
        return any(addr in net for net in self._networks)

    def authenticate(
        self,
        adapter: PaymentProviderAdapter,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        provider = adapter.provider.value
        if not self._ip_allowed(client_ip):
            logger.warning(
                "webhook_signature_invalid",
                provider=provider,
                client_ip=client_ip,
                path=path,
                reason="ip_not_allowed",
            )
            raise SignatureInvalidException(provider, "Webhook source is not allowed")

        signature = adapter.extract_signature(headers)
        if not adapter.validate_webhook_signature(raw_body, signature):
            logger.warning(
                "webhook_signature_invalid",
                provider=provider,
                client_ip=client_ip,
                path=path,
                signature_present=bool(signature),
            )
            raise SignatureInvalidException(provider)
