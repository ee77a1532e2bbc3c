"""
HyperPay (OPPWA) COPYandPAY adapter.

Wire format notes:
- Requests are form encoded with dotted keys (``customer.email``) and an
  ``entityId`` on every call; auth is a bearer access token.
- Amounts are strings with exactly two fraction digits.
- Outcomes are result codes like ``000.100.110``; they are classified by the
  ordered prefix rules in ``HYPERPAY_RESULT_CODE_RULES``.
"""
from __future__ import annotations

import hmac
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

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
from core.settings import HyperPaySettings, payment_settings
from domain.payment.entity import NormalizedStatus
from domain.payment.exceptions import InvalidWebhookPayloadException
from infrastructure.external.payments.base import (
    BasePaymentClient,
    format_amount,
    hmac_sha256_hex,
    to_decimal,
)
from shared.codes.payment_codes import HYPERPAY_RESULT_CODE_RULES


def classify_result_code(code: Optional[str]) -> NormalizedStatus:
    """First matching prefix wins; unmatched codes are failures."""
    if not code:
        return NormalizedStatus.UNKNOWN
    for prefix, outcome in HYPERPAY_RESULT_CODE_RULES:
        if code.startswith(prefix):
            return NormalizedStatus(outcome)
    return NormalizedStatus.FAILED


class _Result(BaseModel):
    code: str = ""
    description: str = ""


class _Card(BaseModel):
    bin: Optional[str] = None
    last4Digits: Optional[str] = None
    holder: Optional[str] = None
    expiryMonth: Optional[str] = None
    expiryYear: Optional[str] = None


class _PaymentResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    ndc: Optional[str] = None
    checkout_id: Optional[str] = Field(default=None, alias="checkoutId")
    payment_type: Optional[str] = Field(default=None, alias="paymentType")
    payment_brand: Optional[str] = Field(default=None, alias="paymentBrand")
    amount: Optional[str] = None
    currency: Optional[str] = None
    result: _Result = Field(default_factory=_Result)
    card: Optional[_Card] = None


class HyperPayClient(BasePaymentClient):
    provider = PaymentProvider.HYPERPAY
    display_name = "HyperPay"
    provider_type = ProviderType.CARD
    signature_header = "X-HyperPay-Signature"

    def __init__(self, config: Optional[HyperPaySettings] = None, **kwargs):
        self.config = config or payment_settings.hyperpay
        super().__init__(
            base_url=self.config.base_url,
            enabled=self.config.enabled,
            supported_brands=self.config.supported_brands,
            **kwargs,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = f"Bearer {self.config.access_token}"
        return headers

    def _checkout_form(self, req: CheckoutRequest) -> dict[str, str]:
        now = datetime.now(timezone.utc)
        billing = req.billing_address or Address()
        form = {
            "entityId": self.config.entity_id,
            "amount": format_amount(req.amount),
            "currency": req.currency,
            "paymentType": "DB",
            "merchantTransactionId": f"BOOKING-{req.booking_id}-{now:%Y%m%d%H%M%S}",
            "customParameters[bookingId]": str(req.booking_id),
            "billing.street1": billing.line1,
            "billing.city": billing.city,
            "billing.country": billing.country,
        }
        optional = {
            "customer.email": req.customer_email,
            "customer.givenName": req.customer_first_name,
            "customer.surname": req.customer_last_name,
            "customer.mobile": req.customer_phone,
            "notificationUrl": req.webhook_url,
            "shopperResultUrl": req.success_url,
        }
        form.update({k: v for k, v in optional.items() if v})
        if self.config.enable_3d_secure:
            form["threeDSecure.eci"] = "internet"
        return form

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        try:
            response = await self._request("POST", "/v1/checkouts", data=self._checkout_form(request))
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("create_checkout", exc)
            return CheckoutResult(success=False, error_code=code, error_message=message)

        raw = response.text
        parsed = self._parse(response)
        if parsed is None:
            code, message = self._invalid_response("create_checkout", response)
            return CheckoutResult(success=False, error_code=code, error_message=message, raw_response=raw)

        outcome = classify_result_code(parsed.result.code)
        if parsed.id and outcome in (NormalizedStatus.PENDING, NormalizedStatus.SUCCESS):
            self._log("checkout_session_created", checkout_id=parsed.id, booking_id=request.booking_id)
            return CheckoutResult(
                success=True,
                checkout_id=parsed.id,
                payment_url=f"{self.base_url}/v1/paymentWidgets.js?checkoutId={parsed.id}",
                expires_at=self._expires_at(),
                raw_response=raw,
            )

        self._log(
            "checkout_rejected",
            booking_id=request.booking_id,
            result_code=parsed.result.code,
            level="warning",
        )
        return CheckoutResult(
            success=False,
            error_code=parsed.result.code or str(response.status_code),
            error_message=parsed.result.description or "Checkout creation failed",
            raw_response=raw,
        )

    async def get_status(self, checkout_id: str) -> StatusResult:
        try:
            response = await self._request(
                "GET",
                f"/v1/checkouts/{checkout_id}/payment",
                params={"entityId": self.config.entity_id},
                retry=True,
            )
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("get_status", exc)
            return StatusResult(success=False, error_code=code, error_message=message)

        raw = response.text
        parsed = self._parse(response)
        if parsed is None:
            code, message = self._invalid_response("get_status", response)
            return StatusResult(success=False, error_code=code, error_message=message, raw_response=raw)

        status = classify_result_code(parsed.result.code)
        card = parsed.card or _Card()
        return StatusResult(
            success=True,
            status=status,
            transaction_id=parsed.id if status == NormalizedStatus.SUCCESS else None,
            amount=to_decimal(parsed.amount),
            currency=parsed.currency,
            payment_method=parsed.payment_brand,
            result_code=parsed.result.code,
            result_description=parsed.result.description,
            card_brand=parsed.payment_brand,
            last4=card.last4Digits,
            card_expiry=_expiry(card),
            card_holder=card.holder,
            raw_response=raw,
        )

    async def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: Optional[str],
        currency: Optional[str] = None,
    ) -> RefundResult:
        form = {
            "entityId": self.config.entity_id,
            "amount": format_amount(amount),
            "currency": currency or payment_settings.default_currency,
            "paymentType": "RF",
        }
        try:
            response = await self._request("POST", f"/v1/payments/{transaction_id}", data=form)
        except httpx.HTTPError as exc:
            code, message = self._transport_failure("refund", exc)
            return RefundResult(success=False, error_code=code, error_message=message)

        raw = response.text
        parsed = self._parse(response)
        if parsed is None:
            code, message = self._invalid_response("refund", response)
            return RefundResult(success=False, error_code=code, error_message=message, raw_response=raw)

        if classify_result_code(parsed.result.code) == NormalizedStatus.SUCCESS:
            return RefundResult(
                success=True,
                refund_id=parsed.id,
                refunded_amount=to_decimal(parsed.amount) or amount,
                raw_response=raw,
            )
        return RefundResult(
            success=False,
            error_code=parsed.result.code or str(response.status_code),
            error_message=parsed.result.description or "Refund failed",
            raw_response=raw,
        )

    def validate_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        secret = self.config.webhook_secret
        if not secret:
            return self._unsigned_webhook_allowed()
        if not signature:
            return False
        expected = hmac_sha256_hex(secret, raw_body)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))

    def parse_webhook_payload(self, raw_body: bytes) -> WebhookData:
        data = self._load_webhook_json(raw_body)
        # Notifications may wrap the payment as {"type": "PAYMENT", "payload": {...}}
        body = data.get("payload") if isinstance(data.get("payload"), dict) else data
        try:
            parsed = _PaymentResponse.model_validate(body)
        except ValidationError as exc:
            raise InvalidWebhookPayloadException(self.provider.value, str(exc)) from exc

        checkout_id = parsed.ndc or parsed.checkout_id
        if not checkout_id:
            raise InvalidWebhookPayloadException(self.provider.value, "missing checkout id")
        status = classify_result_code(parsed.result.code)
        return WebhookData(
            checkout_id=checkout_id,
            transaction_id=parsed.id,
            status=status,
            amount=to_decimal(parsed.amount),
            currency=parsed.currency,
            event_type=data.get("type"),
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            additional_data={
                "payment_brand": parsed.payment_brand,
                "card_brand": parsed.payment_brand,
                "last4": parsed.card.last4Digits if parsed.card else None,
                "result_code": parsed.result.code,
                "result_description": parsed.result.description,
            },
        )

    @staticmethod
    def _parse(response: httpx.Response) -> Optional[_PaymentResponse]:
        data = BasePaymentClient._json_or_none(response)
        if data is None:
            return None
        try:
            return _PaymentResponse.model_validate(data)
        except ValidationError:
            return None


def _expiry(card: _Card) -> Optional[str]:
    if card.expiryMonth and card.expiryYear:
        return f"{card.expiryMonth}/{card.expiryYear}"
    return None
