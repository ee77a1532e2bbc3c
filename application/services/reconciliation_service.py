"""
Status reconciliation - 将渠道上报的状态落到本地账本

Polls and webhooks share one code path: the payment row is locked, the
transition is planned by ``plan_transition`` and written with a conditional
update, and the booking side effect runs only when that update won.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from application.dtos.payments import ReconciliationOutcome, StatusResult, WebhookData
from application.ports.payment_gateway import ProviderLookup
from application.services.webhook_authenticator import WebhookAuthenticator
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import NormalizedStatus, Payment, PaymentStatus
from domain.payment.exceptions import PaymentNotFoundException, ProviderTransportException
from domain.payment.service import TransitionKind, plan_transition
from shared.codes.payment_codes import TRANSPORT_ERROR


logger = get_logger(__name__)

EXPIRED_REASON = "expired"


def _status_from_webhook(data: WebhookData) -> StatusResult:
    extra = data.additional_data or {}
    return StatusResult(
        success=True,
        status=data.status,
        transaction_id=data.transaction_id,
        amount=data.amount,
        currency=data.currency,
        result_code=extra.get("result_code"),
        result_description=extra.get("result_description"),
        card_brand=extra.get("card_brand"),
        last4=extra.get("last4"),
    )


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        registry: ProviderLookup,
        authenticator: Optional[WebhookAuthenticator] = None,
    ):
        self._uow_factory = uow_factory
        self._registry = registry
        self._authenticator = authenticator or WebhookAuthenticator()

    async def poll(self, checkout_id: str) -> ReconciliationOutcome:
        """Ask the provider for the current status and apply it."""
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_checkout_id(checkout_id)
        if payment is None:
            raise PaymentNotFoundException(checkout_id=checkout_id)

        adapter = self._registry.get(payment.payment_gateway)
        result = await adapter.get_status(checkout_id)
        if not result.success:
            logger.warning(
                "payment_status_query_failed",
                checkout_id=checkout_id,
                provider=payment.payment_gateway,
                error_code=result.error_code,
            )
            if payment.status == PaymentStatus.PENDING and payment.is_expired():
                # 渠道无法应答时，过期的待支付单按 unknown 处理并走过期流程
                expired = await self._apply(
                    checkout_id, result.model_copy(update={"status": NormalizedStatus.UNKNOWN})
                )
                if expired is not None:
                    return expired
            if result.error_code == TRANSPORT_ERROR:
                raise ProviderTransportException(payment.payment_gateway, result.error_message)
            # Provider could not answer; the stored state stands
            return self._outcome(payment, result, TransitionKind.UNMAPPED)

        outcome = await self._apply(checkout_id, result)
        # Row vanished between the two transactions
        if outcome is None:
            raise PaymentNotFoundException(checkout_id=checkout_id)
        return outcome

    async def handle_webhook(
        self,
        provider_id: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: Optional[str] = None,
        path: Optional[str] = None,
    ) -> ReconciliationOutcome:
        adapter = self._registry.get(provider_id)
        self._authenticator.authenticate(adapter, raw_body, headers, client_ip, path)
        data = adapter.parse_webhook_payload(raw_body)
        logger.info(
            "webhook_received",
            provider=adapter.provider.value,
            checkout_id=data.checkout_id,
            event_type=data.event_type,
            status=data.status.value,
        )

        outcome = await self._apply(data.checkout_id, _status_from_webhook(data), raw_webhook=data.raw_payload)
        if outcome is None:
            logger.warning(
                "webhook_payment_not_found",
                provider=adapter.provider.value,
                checkout_id=data.checkout_id,
            )
            return ReconciliationOutcome(
                checkout_id=data.checkout_id or "",
                reported_status=data.status,
                transition=TransitionKind.IGNORED.value,
                processed=False,
            )

        await adapter.acknowledge_webhook(data)
        return outcome

    async def reconcile_stale(self, older_than_minutes: int = 10, limit: int = 100) -> int:
        """Poll pending payments older than the cutoff; returns how many were polled."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_repository.list_stale_pending(cutoff, limit)

        polled = 0
        for payment in stale:
            try:
                outcome = await self.poll(payment.checkout_id)
            except BusinessException as exc:
                logger.warning(
                    "payment_reconcile_skipped",
                    payment_id=payment.id,
                    checkout_id=payment.checkout_id,
                    error=exc.message,
                    error_context=exc.log_context(),
                )
                continue
            polled += 1
            logger.info(
                "payment_reconciled",
                payment_id=payment.id,
                checkout_id=payment.checkout_id,
                transition=outcome.transition,
            )
        logger.info("payment_reconcile_sweep_done", candidates=len(stale), polled=polled)
        return polled

    async def _apply(
        self,
        checkout_id: Optional[str],
        reported: StatusResult,
        *,
        raw_webhook: Optional[str] = None,
    ) -> Optional[ReconciliationOutcome]:
        if not checkout_id:
            return None
        now = datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            payments = uow.payment_repository
            payment = await payments.get_by_checkout_id(checkout_id, for_update=True)
            if payment is None:
                return None
            if raw_webhook is not None:
                await payments.save_webhook_payload(payment.id, raw_webhook)
            if reported.amount is not None and reported.amount != payment.amount:
                logger.warning(
                    "payment_amount_mismatch",
                    payment_id=payment.id,
                    expected=str(payment.amount),
                    reported=str(reported.amount),
                )

            previous = payment.status
            kind = plan_transition(payment, reported.status, now=now)
            booking_confirmed = False

            if kind == TransitionKind.SUCCEED:
                if await payments.has_successful_payment(payment.booking_id, exclude_id=payment.id):
                    logger.warning(
                        "payment_duplicate_success",
                        payment_id=payment.id,
                        booking_id=payment.booking_id,
                        checkout_id=checkout_id,
                    )
                    kind = TransitionKind.IGNORED
                else:
                    payment.mark_succeeded(
                        reported.transaction_id,
                        at=now,
                        result_code=reported.result_code,
                        status_description=reported.result_description,
                        card_brand=reported.card_brand,
                        last4=reported.last4,
                        card_expiry=reported.card_expiry,
                        card_holder=reported.card_holder,
                    )
                    if await payments.apply_transition(payment, previous):
                        booking = await uow.booking_repository.get_by_id(payment.booking_id, for_update=True)
                        if booking is not None:
                            booking.confirm_payment(now)
                            await uow.booking_repository.save(booking)
                            booking_confirmed = True
                            logger.info("booking_confirmed", booking_id=booking.id, payment_id=payment.id)
                    else:
                        kind = TransitionKind.NO_CHANGE

            elif kind in (TransitionKind.FAIL, TransitionKind.EXPIRE):
                reason = (
                    EXPIRED_REASON
                    if kind == TransitionKind.EXPIRE
                    else reported.result_description or reported.result_code or "failed"
                )
                payment.mark_failed(reason, at=now, result_code=reported.result_code)
                if await payments.apply_transition(payment, previous):
                    booking = await uow.booking_repository.get_by_id(payment.booking_id, for_update=True)
                    if booking is not None:
                        booking.mark_payment_failed()
                        await uow.booking_repository.save(booking)
                else:
                    kind = TransitionKind.NO_CHANGE

            elif kind == TransitionKind.UNMAPPED:
                logger.warning(
                    "payment_status_unmapped",
                    payment_id=payment.id,
                    checkout_id=checkout_id,
                    result_code=reported.result_code,
                )
            elif kind == TransitionKind.IGNORED:
                logger.info(
                    "payment_status_ignored",
                    payment_id=payment.id,
                    current=previous.value,
                    reported=reported.status.value,
                )

            logger.info(
                "payment_status_transition",
                payment_id=payment.id,
                checkout_id=checkout_id,
                from_status=previous.value,
                to_status=payment.status.value,
                reported=reported.status.value,
                transition=kind.value,
            )
            outcome = self._outcome(payment, reported, kind, booking_confirmed=booking_confirmed)
        return outcome

    @staticmethod
    def _outcome(
        payment: Payment,
        reported: StatusResult,
        kind: TransitionKind,
        *,
        booking_confirmed: bool = False,
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            checkout_id=payment.checkout_id,
            payment_id=payment.id,
            status=payment.status.value,
            reported_status=reported.status if reported.success else NormalizedStatus.UNKNOWN,
            transition=kind.value,
            booking_confirmed=booking_confirmed,
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            currency=payment.currency,
            card_brand=payment.card_brand,
            last4=payment.last4,
        )
