"""
Business codes shared by the domain, core and API layers.

Generic codes live here; payment lookups, conflicts and provider failures
use the 2xxxx/6xxxx ranges in ``payment_codes``.
"""
from enum import IntEnum

from .payment_codes import PaymentCode


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 参数错误
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # 业务错误
    BUSINESS_ERROR = 20000
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006
    CONFLICT = 20007

    # 鉴权
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 系统错误
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


AUTH_FAILURE_CODES = frozenset(
    {BusinessCode.UNAUTHORIZED, BusinessCode.TOKEN_INVALID, BusinessCode.TOKEN_EXPIRED}
)


__all__ = ["AUTH_FAILURE_CODES", "BusinessCode", "PaymentCode"]
