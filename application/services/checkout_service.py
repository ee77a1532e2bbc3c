"""
Checkout application service - 为预订创建支付会话

The booking is validated inside a read-only unit of work, the provider is
called outside any transaction, and the pending payment row is written in a
second short transaction once the provider has assigned a checkout id.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Union

from application.dtos.payments import (
    Address,
    CheckoutRequest,
    CheckoutResult,
    LineItem,
    ProviderType,
    RefundResult,
)
from application.ports.payment_gateway import PaymentProviderAdapter, ProviderLookup
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.booking.entity import Booking, CustomerProfile
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.exceptions import (
    AlreadyPaidException,
    BookingCancelledException,
    BookingNotFoundException,
    ProviderRejectedException,
    ProviderTransportException,
)
from shared.codes.payment_codes import MAX_AMOUNT_EXCEEDED, MIN_AMOUNT_NOT_MET, TRANSPORT_ERROR


logger = get_logger(__name__)


def provider_failure(
    adapter: PaymentProviderAdapter,
    result: Union[CheckoutResult, RefundResult],
) -> Exception:
    """Turn a failed adapter result into the matching business exception."""
    provider = adapter.provider.value
    if result.error_code == TRANSPORT_ERROR:
        return ProviderTransportException(provider, result.error_message)
    return ProviderRejectedException(
        provider,
        result.error_message,
        provider_code=result.error_code,
        raw_response=result.raw_response,
    )


class CheckoutService:
    """Checkout orchestrator"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], registry: ProviderLookup):
        self._uow_factory = uow_factory
        self._registry = registry

    async def create_checkout(
        self,
        booking_id: int,
        provider_id: str,
        *,
        payment_brand: Optional[str] = None,
        ip_address: Optional[str] = None,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> tuple[Payment, CheckoutResult]:
        async with self._uow_factory(readonly=True) as uow:
            booking = await uow.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundException(booking_id)
            if booking.is_cancelled:
                raise BookingCancelledException(booking_id, booking.status.value)
            if await uow.payment_repository.has_successful_payment(booking_id):
                raise AlreadyPaidException(booking_id)
            profile = await uow.customer_repository.get_profile(booking.customer_id)

        adapter = self._registry.get(provider_id)
        amount = booking.total_amount
        if adapter.provider_type == ProviderType.BNPL:
            self._check_bnpl_limits(adapter, amount)

        request = self._build_request(
            booking,
            profile,
            adapter,
            payment_brand=payment_brand,
            return_url=return_url,
            cancel_url=cancel_url,
        )
        logger.info(
            "checkout_requested",
            booking_id=booking_id,
            provider=adapter.provider.value,
            amount=str(amount),
        )
        result = await adapter.create_checkout(request)
        if not result.success or not result.checkout_id:
            logger.warning(
                "checkout_failed",
                booking_id=booking_id,
                provider=adapter.provider.value,
                error_code=result.error_code,
            )
            raise provider_failure(adapter, result)

        payment = Payment(
            id=None,
            booking_id=booking_id,
            checkout_id=result.checkout_id,
            payment_gateway=adapter.provider.value,
            amount=amount,
            currency=request.currency,
            status=PaymentStatus.PENDING,
            payment_brand=payment_brand,
            customer_id=booking.customer_id,
            email=request.customer_email,
            phone=request.customer_phone,
            ip_address=ip_address,
            created_at=datetime.now(timezone.utc),
            expires_at=result.expires_at,
            checkout_payload=result.raw_response,
        )
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.create(payment)

        logger.info(
            "checkout_created",
            payment_id=payment.id,
            booking_id=booking_id,
            checkout_id=payment.checkout_id,
            provider=adapter.provider.value,
        )
        return payment, result

    @staticmethod
    def _check_bnpl_limits(adapter: PaymentProviderAdapter, amount: Decimal) -> None:
        if adapter.min_amount is not None and amount < adapter.min_amount:
            raise ProviderRejectedException(
                adapter.provider.value,
                f"Minimum order amount for {adapter.display_name} is {adapter.min_amount}",
                provider_code=MIN_AMOUNT_NOT_MET,
            )
        if adapter.max_amount is not None and amount > adapter.max_amount:
            raise ProviderRejectedException(
                adapter.provider.value,
                f"Maximum order amount for {adapter.display_name} is {adapter.max_amount}",
                provider_code=MAX_AMOUNT_EXCEEDED,
            )

    @staticmethod
    def _line_items(booking: Booking) -> list[LineItem]:
        items = [
            LineItem(
                reference_id=f"HALL-{booking.hall_id}",
                name=booking.hall_name,
                sku=f"HALL-{booking.hall_id}",
                quantity=1,
                unit_price=booking.hall_cost,
            )
        ]
        for service in booking.services:
            items.append(
                LineItem(
                    reference_id=f"SVC-{service.id}",
                    name=service.name,
                    sku=f"SVC-{service.id}",
                    quantity=service.quantity,
                    unit_price=service.price,
                )
            )
        return items

    def _build_request(
        self,
        booking: Booking,
        profile: Optional[CustomerProfile],
        adapter: PaymentProviderAdapter,
        *,
        payment_brand: Optional[str],
        return_url: Optional[str],
        cancel_url: Optional[str],
    ) -> CheckoutRequest:
        base = payment_settings.callback_base_url.rstrip("/")
        provider = adapter.provider.value
        profile = profile or CustomerProfile(id=booking.customer_id)
        address = Address(city=profile.city, country=profile.country)
        return CheckoutRequest(
            booking_id=booking.id,
            amount=booking.total_amount,
            currency=booking.currency or payment_settings.default_currency,
            description=f"Booking #{booking.id} - {booking.hall_name}",
            customer_email=profile.email,
            customer_phone=profile.phone,
            customer_first_name=profile.first_name,
            customer_last_name=profile.last_name,
            payment_brand=payment_brand,
            line_items=self._line_items(booking),
            shipping_address=address,
            billing_address=address,
            success_url=return_url or f"{base}/payments/return?booking_id={booking.id}&provider={provider}",
            cancel_url=cancel_url or f"{base}/payments/cancel?booking_id={booking.id}&provider={provider}",
            failure_url=cancel_url or f"{base}/payments/failure?booking_id={booking.id}&provider={provider}",
            webhook_url=f"{base}/api/v1/payments/webhook/{provider}",
        )
