"""
Base payment client implementing shared concerns: http, retry, logging,
amount formatting and webhook signature helpers.

Concrete providers subclass and implement provider-specific wire formats.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import payment_settings
from application.dtos.payments import (
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    ProviderType,
    RefundResult,
    StatusResult,
    WebhookData,
)
from domain.payment.entity import NormalizedStatus
from domain.payment.exceptions import InvalidWebhookPayloadException
from shared.codes.payment_codes import (
    INVALID_RESPONSE,
    MAX_AMOUNT_EXCEEDED,
    MIN_AMOUNT_NOT_MET,
    PROVIDER_STATUS_TO_INTERNAL,
    TRANSPORT_ERROR,
)


logger = get_logger(__name__)

_CENTS = Decimal("0.01")
VAT_RATE = Decimal("0.15")


def format_amount(amount: Decimal) -> str:
    """Two fraction digits, e.g. Decimal("500") -> "500.00"."""
    return str(Decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP))


def vat_from_gross(amount: Decimal) -> Decimal:
    """Extract 15% VAT from a tax-inclusive total: round(amount * 0.15 / 1.15, 2)."""
    return (Decimal(amount) * VAT_RATE / (1 + VAT_RATE)).quantize(_CENTS, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return None


def hmac_sha256(secret: str, body: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac_sha256(secret, body).hex()


def hmac_sha256_base64(secret: str, body: bytes) -> str:
    return base64.b64encode(hmac_sha256(secret, body)).decode("ascii")


class BasePaymentClient:
    provider: PaymentProvider
    display_name: str = ""
    provider_type: ProviderType = ProviderType.CARD
    signature_header: str = ""

    def __init__(
        self,
        *,
        base_url: str,
        enabled: bool = True,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        supported_brands: Sequence[str] = (),
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        allow_unsigned: Optional[bool] = None,
        timeout_minutes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.enabled = enabled
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.supported_brands = list(supported_brands)
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._retry_cfg = retry or {"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff}
        self._allow_unsigned = payment_settings.webhook.allow_unsigned if allow_unsigned is None else allow_unsigned
        self._timeout_minutes = timeout_minutes or payment_settings.timeout_minutes
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeouts,
                transport=self._transport,
                headers=self._default_headers(),
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _retry(self, fn: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        # Only failures to connect are retried: the request never reached the provider
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        retry: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; raises httpx.HTTPError on transport failures."""
        self._log("provider_request", method=method, path=path)

        async def _send() -> httpx.Response:
            async with self.client() as http:
                return await http.request(method, path, **kwargs)

        response = await (self._retry(_send) if retry else _send())
        self._log("provider_response", method=method, path=path, status_code=response.status_code)
        return response

    # Adapter contract; concrete providers override all of these
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        raise NotImplementedError

    async def get_status(self, checkout_id: str) -> StatusResult:
        raise NotImplementedError

    async def refund(self, transaction_id: str, amount: Decimal, reason: Optional[str]) -> RefundResult:
        raise NotImplementedError

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        raise NotImplementedError

    def parse_webhook_payload(self, raw_body: bytes) -> WebhookData:
        raise NotImplementedError

    async def acknowledge_webhook(self, data: WebhookData) -> None:
        return None

    def extract_signature(self, headers: Mapping[str, str]) -> Optional[str]:
        return header_value(headers, self.signature_header)

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> NormalizedStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider.value, {})
        mapped = mapping.get((provider_status or "").strip().lower())
        if mapped is None:
            self._log("payment_status_unmapped", provider_status=provider_status, level="warning")
            return NormalizedStatus.UNKNOWN
        return NormalizedStatus(mapped)

    def _check_amount_limits(self, amount: Decimal) -> Optional[CheckoutResult]:
        """Reject out-of-range BNPL orders before any network call."""
        if self.min_amount is not None and amount < self.min_amount:
            return CheckoutResult(
                success=False,
                error_code=MIN_AMOUNT_NOT_MET,
                error_message=f"Minimum order amount for {self.display_name} is {format_amount(self.min_amount)}",
            )
        if self.max_amount is not None and amount > self.max_amount:
            return CheckoutResult(
                success=False,
                error_code=MAX_AMOUNT_EXCEEDED,
                error_message=f"Maximum order amount for {self.display_name} is {format_amount(self.max_amount)}",
            )
        return None

    def _unsigned_webhook_allowed(self) -> bool:
        if self._allow_unsigned:
            self._log("webhook_signature_skipped", reason="no secret configured", level="warning")
            return True
        self._log("webhook_secret_missing", level="warning")
        return False

    def _expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(minutes=self._timeout_minutes)

    def _load_webhook_json(self, raw_body: bytes) -> dict[str, Any]:
        try:
            data = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidWebhookPayloadException(self.provider.value, str(exc)) from exc
        if not isinstance(data, dict):
            raise InvalidWebhookPayloadException(self.provider.value, "payload is not a JSON object")
        return data

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Optional[dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def _transport_failure(self, operation: str, exc: httpx.HTTPError) -> tuple[str, str]:
        logger.warning(
            "provider_transport_error",
            provider=self.provider.value,
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return TRANSPORT_ERROR, f"{self.display_name} is unreachable: {type(exc).__name__}"

    def _invalid_response(self, operation: str, response: httpx.Response) -> tuple[str, str]:
        logger.warning(
            "provider_invalid_response",
            provider=self.provider.value,
            operation=operation,
            status_code=response.status_code,
        )
        return INVALID_RESPONSE, f"{self.display_name} returned an unreadable response"

    def _log(self, event: str, level: str = "info", **kwargs) -> None:
        getattr(logger, level)(
            event,
            provider=self.provider.value,
            **kwargs,
        )


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    if not name:
        return None
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return value.strip() if isinstance(value, str) and value.strip() else None
