"""
Tabby BNPL adapter (Checkout API v2).

The Tabby payment id doubles as our checkout id: it is what status queries,
refunds and webhooks refer to.
"""
from __future__ import annotations

import hmac
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    Address,
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    ProviderType,
    RefundResult,
    StatusResult,
    WebhookData,
)
from core.settings import TabbySettings, payment_settings
from domain.payment.entity import NormalizedStatus
from domain.payment.exceptions import InvalidWebhookPayloadException
from infrastructure.external.payments.base import (
    BasePaymentClient,
    format_amount,
    hmac_sha256_base64,
    to_decimal,
    vat_from_gross,
)


class TabbyClient(BasePaymentClient):
    provider = PaymentProvider.TABBY
    display_name = "Tabby"
    provider_type = ProviderType.BNPL
    signature_header = "X-Tabby-Signature"

    def __init__(self, config: Optional[TabbySettings] = None, **kwargs):
        self.config = config or payment_settings.tabby
        super().__init__(
            base_url=self.config.base_url,
            enabled=self.config.enabled,
            min_amount=self.config.min_amount,
            max_amount=self.config.max_amount,
            **kwargs,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = f"Bearer {self.config.secret_key}"
        return headers

    def _checkout_body(self, req: CheckoutRequest) -> dict[str, Any]:
        shipping = req.shipping_address or Address()
        items = [
            {
                "reference_id": item.reference_id,
                "title": item.name,
                "quantity": item.quantity,
                "unit_price": format_amount(item.unit_price),
                "discount_amount": "0.00",
                "category": item.category,
            }
            for item in req.line_items
        ]
        return {
            "payment": {
                "amount": format_amount(req.amount),
                "currency": req.currency,
                "description": req.description or f"Booking #{req.booking_id}",
                "buyer": {
                    "name": req.customer_name,
                    "email": req.customer_email or "",
                    "phone": req.customer_phone or "",
                },
                "shipping_address": {
                    "city": shipping.city,
                    "address": shipping.line1,
                    "zip": shipping.zip,
                },
                "order": {
                    "reference_id": str(req.booking_id),
                    "tax_amount": format_amount(vat_from_gross(req.amount)),
                    "shipping_amount": "0.00",
                    "discount_amount": "0.00",
                    "items": items,
                },
                "buyer_history": {
                    "registered_since": datetime.now(timezone.utc).isoformat(),
                    "loyalty_level": 0,
                },
            },
            "lang": "ar",
            "merchant_code": self.config.merchant_code,
            "merchant_urls": {
                "success": req.success_url,
                "cancel": req.cancel_url,
                "failure": req.failure_url or req.cancel_url,
            },
        }

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        rejected = self._check_amount_limits(request.amount)
        if rejected is not None:
            self._log("checkout_amount_out_of_range", booking_id=request.booking_id, error_code=rejected.error_code)
            return rejected

        try:
            response = await self._request("POST", "/checkout", json=self._checkout_body(request))
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("create_checkout", exc)
            return CheckoutResult(success=False, error_code=code, error_message=message)

        raw = response.text
        data = self._json_or_none(response)
        if data is None:
            code, message = self._invalid_response("create_checkout", response)
            return CheckoutResult(success=False, error_code=code, error_message=message, raw_response=raw)
        if response.is_error:
            return CheckoutResult(
                success=False,
                error_code=str(data.get("error_code") or response.status_code),
                error_message=data.get("error") or "Tabby checkout failed",
                raw_response=raw,
            )

        status = str(data.get("status") or "").lower()
        payment_id = (data.get("payment") or {}).get("id")
        web_url = _installments_url(data)
        if status == "created" and payment_id and web_url:
            self._log("checkout_session_created", checkout_id=payment_id, booking_id=request.booking_id)
            return CheckoutResult(
                success=True,
                checkout_id=payment_id,
                payment_url=web_url,
                expires_at=self._expires_at(),
                raw_response=raw,
            )

        reason_code = _rejection_reason(data) or "REJECTED"
        self._log("checkout_rejected", booking_id=request.booking_id, reason=reason_code, level="warning")
        return CheckoutResult(
            success=False,
            error_code=reason_code,
            error_message="Tabby declined this purchase",
            raw_response=raw,
        )

    async def get_status(self, checkout_id: str) -> StatusResult:
        try:
            response = await self._request("GET", f"/payments/{checkout_id}", retry=True)
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("get_status", exc)
            return StatusResult(success=False, error_code=code, error_message=message)

        raw = response.text
        data = self._json_or_none(response)
        if data is None:
            code, message = self._invalid_response("get_status", response)
            return StatusResult(success=False, error_code=code, error_message=message, raw_response=raw)
        if response.is_error:
            return StatusResult(
                success=False,
                error_code=str(data.get("error_code") or response.status_code),
                error_message=data.get("error") or "Tabby status query failed",
                raw_response=raw,
            )

        provider_status = data.get("status")
        return StatusResult(
            success=True,
            status=self._map_status(provider_status),
            transaction_id=data.get("id") or checkout_id,
            amount=to_decimal(data.get("amount")),
            currency=data.get("currency"),
            payment_method="tabby",
            result_code=provider_status,
            raw_response=raw,
        )

    async def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: Optional[str],
        currency: Optional[str] = None,
    ) -> RefundResult:
        body = {"amount": format_amount(amount), "reason": reason or "Customer refund"}
        try:
            response = await self._request("POST", f"/payments/{transaction_id}/refunds", json=body)
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("refund", exc)
            return RefundResult(success=False, error_code=code, error_message=message)

        raw = response.text
        data = self._json_or_none(response)
        if data is None:
            code, message = self._invalid_response("refund", response)
            return RefundResult(success=False, error_code=code, error_message=message, raw_response=raw)
        if response.is_error:
            return RefundResult(
                success=False,
                error_code=str(data.get("error_code") or response.status_code),
                error_message=data.get("error") or "Tabby refund failed",
                raw_response=raw,
            )

        refunds = data.get("refunds") or []
        refund_id = refunds[-1].get("id") if refunds and isinstance(refunds[-1], dict) else data.get("id")
        return RefundResult(success=True, refund_id=refund_id, refunded_amount=amount, raw_response=raw)

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        secret = self.config.webhook_secret
        if not secret:
            return self._unsigned_webhook_allowed()
        if not signature:
            return False
        expected = hmac_sha256_base64(secret, raw_body)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))

    def parse_webhook_payload(self, raw_body: bytes) -> WebhookData:
        data = self._load_webhook_json(raw_body)
        payment_id = data.get("id")
        if not payment_id:
            raise InvalidWebhookPayloadException(self.provider.value, "missing payment id")
        provider_status = data.get("status")
        status = self._map_status(provider_status)
        return WebhookData(
            checkout_id=payment_id,
            transaction_id=payment_id if status == NormalizedStatus.SUCCESS else None,
            status=status,
            amount=to_decimal(data.get("amount")),
            currency=data.get("currency"),
            event_type=provider_status,
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            additional_data={
                "result_code": provider_status,
                "reference_id": (data.get("order") or {}).get("reference_id"),
            },
        )


def _installments_url(data: dict[str, Any]) -> Optional[str]:
    installments = ((data.get("configuration") or {}).get("available_products") or {}).get("installments") or []
    if installments and isinstance(installments[0], dict):
        return installments[0].get("web_url")
    return None


def _rejection_reason(data: dict[str, Any]) -> Optional[str]:
    products = (data.get("configuration") or {}).get("products") or {}
    installments = products.get("installments") or {}
    if isinstance(installments, dict):
        return installments.get("rejection_reason")
    return None
