"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update

from domain.payment.entity import Payment, PaymentRefund, PaymentStatus, RefundStatus
from domain.payment.repository import PaymentRepository, RefundRepository
from infrastructure.models.payment import PaymentModel, PaymentRefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            booking_id=model.booking_id,
            checkout_id=model.checkout_id,
            payment_gateway=model.payment_gateway,
            amount=_dec(model.amount),
            currency=model.currency,
            status=PaymentStatus(model.status),
            transaction_id=model.transaction_id,
            payment_brand=model.payment_brand,
            status_description=model.status_description,
            result_code=model.result_code,
            card_brand=model.card_brand,
            last4=model.last4,
            card_expiry=model.card_expiry,
            card_holder=model.card_holder,
            customer_id=model.customer_id,
            email=model.email,
            phone=model.phone,
            ip_address=model.ip_address,
            refund_amount=_dec(model.refund_amount),
            created_at=model.created_at,
            expires_at=model.expires_at,
            completed_at=model.completed_at,
            failed_at=model.failed_at,
            failure_reason=model.failure_reason,
            checkout_payload=model.checkout_payload,
            webhook_payload=model.webhook_payload,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            booking_id=entity.booking_id,
            checkout_id=entity.checkout_id,
            transaction_id=entity.transaction_id,
            payment_gateway=entity.payment_gateway,
            payment_brand=entity.payment_brand,
            amount=entity.amount,
            currency=entity.currency,
            refund_amount=entity.refund_amount,
            status=entity.status.value,
            status_description=entity.status_description,
            result_code=entity.result_code,
            card_brand=entity.card_brand,
            last4=entity.last4,
            card_expiry=entity.card_expiry,
            card_holder=entity.card_holder,
            customer_id=entity.customer_id,
            email=entity.email,
            phone=entity.phone,
            ip_address=entity.ip_address,
            created_at=entity.created_at or datetime.now(timezone.utc),
            expires_at=entity.expires_at,
            completed_at=entity.completed_at,
            failed_at=entity.failed_at,
            failure_reason=entity.failure_reason,
            checkout_payload=entity.checkout_payload,
            webhook_payload=entity.webhook_payload,
        )

    def _select(self, *criteria, for_update: bool = False):
        query = select(PaymentModel).where(*criteria).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        return query

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            booking_id=db_payment.booking_id,
            checkout_id=db_payment.checkout_id,
            gateway=db_payment.payment_gateway,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        result = await self.session.execute(self._select(PaymentModel.id == payment_id, for_update=for_update))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_checkout_id(self, checkout_id: str, *, for_update: bool = False) -> Optional[Payment]:
        result = await self.session.execute(
            self._select(PaymentModel.checkout_id == checkout_id, for_update=for_update)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def has_successful_payment(self, booking_id: int, *, exclude_id: Optional[int] = None) -> bool:
        query = select(func.count(PaymentModel.id)).where(
            PaymentModel.booking_id == booking_id,
            PaymentModel.status == PaymentStatus.SUCCESS.value,
        )
        if exclude_id is not None:
            query = query.where(PaymentModel.id != exclude_id)
        result = await self.session.execute(query)
        return int(result.scalar_one()) > 0

    async def apply_transition(self, payment: Payment, expected_status: PaymentStatus) -> bool:
        """条件更新：仅当库中状态仍为 expected_status 时写入"""
        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment.id, PaymentModel.status == expected_status.value)
            .values(
                status=payment.status.value,
                transaction_id=payment.transaction_id,
                result_code=payment.result_code,
                status_description=payment.status_description,
                card_brand=payment.card_brand,
                last4=payment.last4,
                card_expiry=payment.card_expiry,
                card_holder=payment.card_holder,
                completed_at=payment.completed_at,
                failed_at=payment.failed_at,
                failure_reason=payment.failure_reason,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        applied = result.rowcount == 1
        logger.info(
            "payment_transition_persisted" if applied else "payment_transition_lost_race",
            payment_id=payment.id,
            from_status=expected_status.value,
            to_status=payment.status.value,
        )
        return applied

    async def apply_refund_amount(self, payment: Payment, expected_refund_amount: Decimal) -> bool:
        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment.id, PaymentModel.refund_amount == expected_refund_amount)
            .values(
                refund_amount=payment.refund_amount,
                status=payment.status.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def save_webhook_payload(self, payment_id: int, payload: str) -> None:
        await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .values(webhook_payload=payload, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.created_at < created_before,
            )
            .order_by(PaymentModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_booking(self, booking_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.booking_id == booking_id)
            .order_by(PaymentModel.created_at.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRefundModel) -> PaymentRefund:
        return PaymentRefund(
            id=model.id,
            payment_id=model.payment_id,
            refund_amount=_dec(model.refund_amount),
            status=RefundStatus(model.status),
            reason=model.reason,
            refund_transaction_id=model.refund_transaction_id,
            requested_by=model.requested_by,
            created_at=model.created_at,
            processed_at=model.processed_at,
            response_payload=model.response_payload,
        )

    async def create(self, refund: PaymentRefund) -> PaymentRefund:
        db_refund = PaymentRefundModel(
            payment_id=refund.payment_id,
            refund_amount=refund.refund_amount,
            reason=refund.reason,
            status=refund.status.value,
            refund_transaction_id=refund.refund_transaction_id,
            requested_by=refund.requested_by,
            created_at=refund.created_at or datetime.now(timezone.utc),
            processed_at=refund.processed_at,
            response_payload=refund.response_payload,
        )
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info(
            "refund_created",
            refund_id=db_refund.id,
            payment_id=db_refund.payment_id,
            amount=str(refund.refund_amount),
        )
        return self._to_entity(db_refund)

    async def list_by_payment(self, payment_id: int) -> List[PaymentRefund]:
        result = await self.session.execute(
            select(PaymentRefundModel)
            .where(PaymentRefundModel.payment_id == payment_id)
            .order_by(PaymentRefundModel.created_at.asc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def get_completed_total(self, payment_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PaymentRefundModel.refund_amount), 0)).where(
                PaymentRefundModel.payment_id == payment_id,
                PaymentRefundModel.status == RefundStatus.COMPLETED.value,
            )
        )
        return _dec(result.scalar_one())
