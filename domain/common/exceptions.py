"""领域层业务异常基类，供领域、应用与基础设施层共用。

HTTP 状态码映射在 core.exceptions 中完成，领域层不依赖 core。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)

    def log_context(self) -> dict:
        context = {"code": int(self.code), "error_type": self.error_type}
        if self.details:
            context.update(self.details)
        return context


class DomainValidationException(BusinessException):
    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class ConcurrencyConflictException(BusinessException):
    """Optimistic update kept losing to concurrent writers; the caller may retry."""

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=message,
            error_type="ConcurrencyConflict",
            details=details,
        )
