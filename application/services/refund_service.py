"""
Refund orchestrator - 部分/全额退款

The payment row stays locked while the provider is called, so concurrent
refunds for the same payment serialize and the cumulative total can never
exceed the captured amount.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import RefundResponseDTO
from application.ports.payment_gateway import ProviderLookup
from application.services.checkout_service import provider_failure
from core.logging_config import get_logger
from domain.common.exceptions import ConcurrencyConflictException, DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentRefund, RefundStatus
from domain.payment.exceptions import PaymentNotFoundException


logger = get_logger(__name__)

# CAS retries when the refund total moved underneath us (SQLite has no row locks)
_MAX_CAS_ATTEMPTS = 3


class RefundService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], registry: ProviderLookup):
        self._uow_factory = uow_factory
        self._registry = registry

    async def refund(
        self,
        payment_id: int,
        amount: Decimal,
        reason: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> RefundResponseDTO:
        if amount is None or amount <= 0:
            raise DomainValidationException("Refund amount must be positive", field="amount")

        async with self._uow_factory() as uow:
            payments = uow.payment_repository
            payment = await payments.get_by_id(payment_id, for_update=True)
            if payment is None:
                raise PaymentNotFoundException(payment_id=payment_id)
            payment.ensure_refundable(amount)

            adapter = self._registry.get(payment.payment_gateway)
            logger.info(
                "refund_requested",
                payment_id=payment_id,
                provider=payment.payment_gateway,
                amount=str(amount),
                requested_by=requested_by,
            )
            result = await adapter.refund(
                payment.transaction_id or payment.checkout_id, amount, reason, currency=payment.currency
            )
            if not result.success:
                logger.warning(
                    "refund_failed",
                    payment_id=payment_id,
                    provider=payment.payment_gateway,
                    error_code=result.error_code,
                )
                raise provider_failure(adapter, result)

            now = datetime.now(timezone.utc)
            refund = await uow.refund_repository.create(
                PaymentRefund(
                    id=None,
                    payment_id=payment_id,
                    refund_amount=amount,
                    status=RefundStatus.COMPLETED,
                    reason=reason,
                    refund_transaction_id=result.refund_id,
                    requested_by=requested_by,
                    created_at=now,
                    processed_at=now,
                    response_payload=result.raw_response,
                )
            )

            for attempt in range(_MAX_CAS_ATTEMPTS):
                previous_total = payment.refund_amount
                payment.apply_refund(amount)
                if await payments.apply_refund_amount(payment, previous_total):
                    break
                logger.warning("refund_total_conflict", payment_id=payment_id, attempt=attempt + 1)
                payment = await payments.get_by_id(payment_id, for_update=True)
                if payment is None:
                    raise PaymentNotFoundException(payment_id=payment_id)
            else:
                raise ConcurrencyConflictException(
                    "Refund total changed concurrently, please retry",
                    details={"payment_id": payment_id},
                )

            if payment.is_fully_refunded:
                booking = await uow.booking_repository.get_by_id(payment.booking_id, for_update=True)
                if booking is not None:
                    booking.mark_refunded()
                    await uow.booking_repository.save(booking)

        logger.info(
            "refund_completed",
            payment_id=payment_id,
            refund_id=refund.id,
            amount=str(amount),
            total_refunded=str(payment.refund_amount),
            payment_status=payment.status.value,
        )
        return RefundResponseDTO(
            refund_id=refund.id,
            payment_id=payment_id,
            refund_transaction_id=refund.refund_transaction_id,
            refund_amount=amount,
            total_refunded=payment.refund_amount,
            payment_status=payment.status.value,
        )
