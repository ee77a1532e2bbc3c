"""
API依赖项 - 认证、授权与服务装配
"""
from dataclasses import dataclass, field
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.services.checkout_service import CheckoutService
from application.services.reconciliation_service import ReconciliationService
from application.services.refund_service import RefundService
from core.config import settings
from core.exceptions import UnauthorizedException, TokenExpiredException, ForbiddenException
from core.logging_config import get_logger
from infrastructure.external.payments import get_provider_registry
from infrastructure.external.payments.registry import ProviderRegistry
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


@dataclass
class Principal:
    """已认证调用方，由 JWT 声明构造"""
    subject: str
    roles: list[str] = field(default_factory=list)
    is_superuser: bool = False

    @property
    def is_admin(self) -> bool:
        if self.is_superuser:
            return True
        admin_roles = {r.lower() for r in settings.ADMIN_ROLES}
        return any(r.lower() in admin_roles for r in self.roles)


def decode_principal(token: str) -> Principal:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.PyJWTError as e:
        logger.warning("invalid_access_token", error=str(e))
        raise UnauthorizedException("无效的认证凭据")

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedException("无效的认证凭据")

    roles = payload.get("roles")
    if roles is None:
        role = payload.get("role")
        roles = [role] if role else []
    elif isinstance(roles, str):
        roles = [roles]
    return Principal(
        subject=str(subject),
        roles=[str(r) for r in roles],
        is_superuser=bool(payload.get("is_superuser", False)),
    )


async def get_current_principal(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Principal:
    """获取当前调用方"""
    if bearer_token is None or not bearer_token.credentials:
        raise UnauthorizedException("未提供认证凭据")
    return decode_principal(bearer_token.credentials)


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """要求管理员角色"""
    if not principal.is_admin:
        raise ForbiddenException("需要管理员权限")
    return principal


def get_registry() -> ProviderRegistry:
    return get_provider_registry()


async def get_checkout_service(registry: ProviderRegistry = Depends(get_registry)) -> CheckoutService:
    return CheckoutService(uow_factory=SQLAlchemyUnitOfWork, registry=registry)


async def get_reconciliation_service(
    registry: ProviderRegistry = Depends(get_registry),
) -> ReconciliationService:
    return ReconciliationService(uow_factory=SQLAlchemyUnitOfWork, registry=registry)


async def get_refund_service(registry: ProviderRegistry = Depends(get_registry)) -> RefundService:
    return RefundService(uow_factory=SQLAlchemyUnitOfWork, registry=registry)
