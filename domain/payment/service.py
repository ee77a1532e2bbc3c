"""
支付领域服务 - 状态机规则

Decides what a provider-reported status means for a stored payment. The
decision is the same whether the report came from a poll or a webhook, so
both paths converge on the same end state regardless of arrival order.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from .entity import NormalizedStatus, Payment, PaymentStatus


class TransitionKind(str, Enum):
    SUCCEED = "succeeded"
    FAIL = "failed"
    EXPIRE = "expired"
    NO_CHANGE = "duplicate"
    UNMAPPED = "unmapped"
    IGNORED = "ignored"


def plan_transition(
    payment: Payment,
    reported: NormalizedStatus,
    *,
    now: Optional[datetime] = None,
) -> TransitionKind:
    """
    Map (stored status, reported status) to the transition to apply.

    - success: applied unless already success or refunded
    - failed: applied only from pending
    - pending/unknown on an expired pending payment: expire it
    - refunded: refunds only move through the refund flow
    """
    current = payment.status

    if reported == NormalizedStatus.SUCCESS:
        if current == PaymentStatus.SUCCESS:
            return TransitionKind.NO_CHANGE
        if current == PaymentStatus.REFUNDED:
            return TransitionKind.IGNORED
        return TransitionKind.SUCCEED

    if reported == NormalizedStatus.FAILED:
        if current == PaymentStatus.FAILED:
            return TransitionKind.NO_CHANGE
        if current == PaymentStatus.PENDING:
            return TransitionKind.FAIL
        return TransitionKind.IGNORED

    if reported in (NormalizedStatus.PENDING, NormalizedStatus.UNKNOWN):
        if current == PaymentStatus.PENDING and payment.is_expired(now):
            return TransitionKind.EXPIRE
        if reported == NormalizedStatus.UNKNOWN:
            return TransitionKind.UNMAPPED
        return TransitionKind.NO_CHANGE if current == PaymentStatus.PENDING else TransitionKind.IGNORED

    # NormalizedStatus.REFUNDED
    if current == PaymentStatus.REFUNDED:
        return TransitionKind.NO_CHANGE
    return TransitionKind.IGNORED
