"""
Tamara BNPL adapter.

Tamara order ids are used as checkout ids. After the customer approves an
order Tamara sends an ``order_approved`` notification, which the merchant must
answer by authorising the order.
"""
from __future__ import annotations

import hmac
from decimal import Decimal
from typing import Any, Mapping, Optional

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
from core.settings import TamaraSettings, payment_settings
from domain.payment.entity import NormalizedStatus
from domain.payment.exceptions import InvalidWebhookPayloadException
from infrastructure.external.payments.base import (
    BasePaymentClient,
    header_value,
    format_amount,
    to_decimal,
    vat_from_gross,
)


ORDER_APPROVED = "order_approved"


class TamaraClient(BasePaymentClient):
    provider = PaymentProvider.TAMARA
    display_name = "Tamara"
    provider_type = ProviderType.BNPL
    signature_header = "Authorization"

    def __init__(self, config: Optional[TamaraSettings] = None, **kwargs):
        self.config = config or payment_settings.tamara
        super().__init__(
            base_url=self.config.base_url,
            enabled=self.config.enabled,
            min_amount=self.config.min_amount,
            max_amount=self.config.max_amount,
            **kwargs,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = f"Bearer {self.config.api_token}"
        return headers

    @staticmethod
    def _money(amount: Decimal, currency: str) -> dict[str, str]:
        return {"amount": format_amount(amount), "currency": currency}

    def _address(self, req: CheckoutRequest, address: Optional[Address]) -> dict[str, str]:
        address = address or Address()
        return {
            "first_name": req.customer_first_name or "Customer",
            "last_name": req.customer_last_name or "",
            "line1": address.line1,
            "city": address.city,
            "country_code": address.country or self.config.country_code,
            "phone_number": req.customer_phone or "",
        }

    def _checkout_body(self, req: CheckoutRequest) -> dict[str, Any]:
        currency = req.currency
        items = [
            {
                "reference_id": item.reference_id,
                "type": "Digital",
                "name": item.name,
                "sku": item.sku,
                "quantity": item.quantity,
                "unit_price": self._money(item.unit_price, currency),
                "total_amount": self._money(item.total_amount, currency),
            }
            for item in req.line_items
        ]
        return {
            "order_reference_id": str(req.booking_id),
            "order_number": f"BOOKING-{req.booking_id}",
            "total_amount": self._money(req.amount, currency),
            "description": req.description or f"Booking #{req.booking_id}",
            "country_code": self.config.country_code,
            "payment_type": self.config.payment_types[0] if self.config.payment_types else "PAY_BY_INSTALMENTS",
            "instalments": None,
            "locale": "ar_SA",
            "items": items,
            "consumer": {
                "first_name": req.customer_first_name or "Customer",
                "last_name": req.customer_last_name or "",
                "phone_number": req.customer_phone or "",
                "email": req.customer_email or "",
            },
            "shipping_address": self._address(req, req.shipping_address),
            "billing_address": self._address(req, req.billing_address),
            "tax_amount": self._money(vat_from_gross(req.amount), currency),
            "shipping_amount": self._money(Decimal("0"), currency),
            "merchant_url": {
                "success": req.success_url,
                "failure": req.failure_url or req.cancel_url,
                "cancel": req.cancel_url,
                "notification": req.webhook_url,
            },
            "platform": "Hall Booking Platform",
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
            code, message = _error_details(data, response.status_code)
            self._log("checkout_rejected", booking_id=request.booking_id, error_code=code, level="warning")
            return CheckoutResult(success=False, error_code=code, error_message=message, raw_response=raw)

        order_id = data.get("order_id")
        checkout_url = data.get("checkout_url")
        if not order_id or not checkout_url:
            return CheckoutResult(
                success=False,
                error_code="NO_CHECKOUT_URL",
                error_message="Tamara did not return a checkout URL",
                raw_response=raw,
            )

        self._log("checkout_session_created", checkout_id=order_id, booking_id=request.booking_id)
        return CheckoutResult(
            success=True,
            checkout_id=order_id,
            payment_url=checkout_url,
            expires_at=self._expires_at(),
            raw_response=raw,
        )

    async def get_status(self, checkout_id: str) -> StatusResult:
        try:
            response = await self._request("GET", f"/orders/{checkout_id}", retry=True)
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("get_status", exc)
            return StatusResult(success=False, error_code=code, error_message=message)

        raw = response.text
        data = self._json_or_none(response)
        if data is None:
            code, message = self._invalid_response("get_status", response)
            return StatusResult(success=False, error_code=code, error_message=message, raw_response=raw)
        if response.is_error:
            code, message = _error_details(data, response.status_code)
            return StatusResult(success=False, error_code=code, error_message=message, raw_response=raw)

        provider_status = data.get("status")
        total = data.get("total_amount") or {}
        return StatusResult(
            success=True,
            status=self._map_status(provider_status),
            transaction_id=data.get("order_id") or checkout_id,
            amount=to_decimal(total.get("amount")),
            currency=total.get("currency"),
            payment_method=data.get("payment_type") or "tamara",
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
        body = {
            "total_amount": self._money(amount, currency or payment_settings.default_currency),
            "comment": reason or "Customer refund",
        }
        try:
            response = await self._request("POST", f"/orders/{transaction_id}/refunds", json=body)
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("refund", exc)
            return RefundResult(success=False, error_code=code, error_message=message)

        raw = response.text
        data = self._json_or_none(response)
        if data is None:
            code, message = self._invalid_response("refund", response)
            return RefundResult(success=False, error_code=code, error_message=message, raw_response=raw)
        if response.is_error:
            code, message = _error_details(data, response.status_code)
            return RefundResult(success=False, error_code=code, error_message=message, raw_response=raw)

        return RefundResult(success=True, refund_id=data.get("refund_id"), refunded_amount=amount, raw_response=raw)

    async def authorise_order(self, order_id: str) -> bool:
        """Confirm an approved order so Tamara can settle it."""
        try:
            response = await self._request("POST", f"/orders/{order_id}/authorise")
        except httpx.HTTPError as exc:
            self._transport_failure("authorise_order", exc)
            return False
        if response.is_error:
            self._log("order_authorise_failed", order_id=order_id, status_code=response.status_code, level="warning")
            return False
        self._log("order_authorised", order_id=order_id)
        return True

    async def acknowledge_webhook(self, data: WebhookData) -> None:
        if data.event_type == ORDER_APPROVED and data.checkout_id:
            await self.authorise_order(data.checkout_id)

    def extract_signature(self, headers: Mapping[str, str]) -> Optional[str]:
        token = header_value(headers, "Authorization")
        if token and token.lower().startswith("bearer "):
            return token[7:].strip() or None
        return token or header_value(headers, "tamaraToken")

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        expected = self.config.notification_token
        if not expected:
            return self._unsigned_webhook_allowed()
        if not signature:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    def parse_webhook_payload(self, raw_body: bytes) -> WebhookData:
        data = self._load_webhook_json(raw_body)
        order_id = data.get("order_id")
        if not order_id:
            raise InvalidWebhookPayloadException(self.provider.value, "missing order_id")
        provider_status = data.get("order_status")
        status = self._map_status(provider_status)
        total = data.get("total_amount") if isinstance(data.get("total_amount"), dict) else {}
        return WebhookData(
            checkout_id=order_id,
            transaction_id=order_id if status == NormalizedStatus.SUCCESS else None,
            status=status,
            amount=to_decimal(total.get("amount")),
            currency=total.get("currency"),
            event_type=data.get("event_type"),
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            additional_data={
                "result_code": provider_status,
                "order_reference_id": data.get("order_reference_id"),
            },
        )


def _error_details(data: dict[str, Any], status_code: int) -> tuple[str, str]:
    errors = data.get("errors") or []
    code = None
    if errors and isinstance(errors[0], dict):
        code = errors[0].get("error_code")
    return str(code or data.get("error_code") or status_code), data.get("message") or "Tamara request failed"
