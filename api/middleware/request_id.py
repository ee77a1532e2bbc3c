"""
Request ID 中间件
生成或透传追踪ID，并绑定到 structlog 上下文
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.settings import payment_settings


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    The resolved client IP is stored on ``request.state.client_ip``; the
    webhook IP allowlist reads it from there.
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app, trust_forwarded_for: bool | None = None):
        super().__init__(app)
        if trust_forwarded_for is None:
            trust_forwarded_for = payment_settings.webhook.trust_forwarded_for
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()
            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()
        return request.client.host if request.client else "unknown"
