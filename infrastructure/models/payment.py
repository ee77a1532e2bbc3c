"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey, text
)
from sqlalchemy.orm import relationship


from .base import Base, utcnow


_SUCCESS_ONLY = text("status = 'success'")


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True, comment="预订ID")

    # 渠道标识
    checkout_id = Column(String(200), unique=True, nullable=False, comment="渠道 checkout/session ID")
    transaction_id = Column(String(200), nullable=True, index=True, comment="渠道结算交易ID")
    payment_gateway = Column(String(50), nullable=False, index=True, comment="hyperpay/tabby/tamara")
    payment_brand = Column(String(50), nullable=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="SAR", comment="货币代码 ISO-4217")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="已退款金额")

    status = Column(String(20), nullable=False, default="pending", index=True, comment="pending/success/failed/refunded")
    status_description = Column(String(500), nullable=True)
    result_code = Column(String(100), nullable=True)

    # 卡信息（仅脱敏）
    card_brand = Column(String(50), nullable=True)
    last4 = Column(String(4), nullable=True)
    card_expiry = Column(String(10), nullable=True)
    card_holder = Column(String(200), nullable=True)

    customer_id = Column(Integer, nullable=True, index=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间"
    )
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="checkout 过期时间")
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    failed_at = Column(DateTime(timezone=True), nullable=True, comment="支付失败时间")

    failure_reason = Column(Text, nullable=True, comment="失败原因")
    # 原始报文，用于对账
    checkout_payload = Column(Text, nullable=True)
    webhook_payload = Column(Text, nullable=True)

    refunds = relationship("PaymentRefundModel", back_populates="payment", lazy="select")

    __table_args__ = (
        Index("ix_payments_booking_status", "booking_id", "status"),
        Index("ix_payments_status_created", "status", "created_at"),
        # At most one successful payment per booking
        Index(
            "uq_payments_booking_success",
            "booking_id",
            unique=True,
            postgresql_where=_SUCCESS_ONLY,
            sqlite_where=_SUCCESS_ONLY,
        ),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, checkout_id='{self.checkout_id}', "
            f"gateway='{self.payment_gateway}', amount={self.amount}, status='{self.status}')>"
        )


class PaymentRefundModel(Base):
    """
    退款数据库模型

    退款作为支付聚合的一部分，每次退款调用一行
    """
    __tablename__ = "payment_refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(
        Integer,
        ForeignKey("payments.id"),
        nullable=False,
        index=True,
        comment="关联的支付ID"
    )

    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="退款金额")
    reason = Column(Text, nullable=True, comment="退款原因")
    status = Column(String(20), nullable=False, default="pending", index=True, comment="pending/completed/failed")
    refund_transaction_id = Column(String(200), nullable=True, index=True, comment="渠道退款ID")
    requested_by = Column(String(100), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="处理完成时间")
    response_payload = Column(Text, nullable=True)

    payment = relationship("PaymentModel", back_populates="refunds")

    __table_args__ = (
        Index("ix_payment_refunds_payment_status", "payment_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentRefundModel(id={self.id}, payment_id={self.payment_id}, "
            f"amount={self.refund_amount}, status='{self.status}')>"
        )
