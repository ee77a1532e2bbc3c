"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from .entity import Payment, PaymentRefund, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""

    @abstractmethod
    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付；for_update 时加行锁"""

    @abstractmethod
    async def get_by_checkout_id(self, checkout_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据渠道 checkout_id 获取支付"""

    @abstractmethod
    async def has_successful_payment(self, booking_id: int, *, exclude_id: Optional[int] = None) -> bool:
        """预订是否已有成功支付"""

    @abstractmethod
    async def apply_transition(self, payment: Payment, expected_status: PaymentStatus) -> bool:
        """
        Persist the status fields of ``payment`` only if the stored status is
        still ``expected_status``. Returns True when exactly one row changed.
        """

    @abstractmethod
    async def apply_refund_amount(self, payment: Payment, expected_refund_amount: Decimal) -> bool:
        """Persist refund_amount/status only if refund_amount is unchanged."""

    @abstractmethod
    async def save_webhook_payload(self, payment_id: int, payload: str) -> None:
        """保存原始 webhook 报文用于对账"""

    @abstractmethod
    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Payment]:
        """获取创建时间早于 created_before 的待支付记录"""

    @abstractmethod
    async def list_by_booking(self, booking_id: int) -> List[Payment]:
        """获取预订的全部支付尝试"""


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: PaymentRefund) -> PaymentRefund:
        """创建退款记录"""

    @abstractmethod
    async def list_by_payment(self, payment_id: int) -> List[PaymentRefund]:
        """获取支付的退款列表"""

    @abstractmethod
    async def get_completed_total(self, payment_id: int) -> Decimal:
        """已完成退款总额"""
