"""
请求/响应日志中间件
"""
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)

_WEBHOOK_MARKER = "/payments/webhook/"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    Bodies are never read here: webhook bodies carry customer data and must
    reach the route byte-for-byte for signature checks.
    """

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = {"method": request.method, "path": path}
        if _WEBHOOK_MARKER in path:
            request_info["webhook_provider"] = path.rsplit("/", 1)[-1]
        elif request.query_params:
            request_info["query_params"] = dict(request.query_params)

        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=self._elapsed_ms(start_time),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **request_info,
            )
            raise

        duration_ms = self._elapsed_ms(start_time)
        self._log_response(response, duration_ms, request_info)
        response.headers["X-Process-Time"] = f"{duration_ms / 1000:.3f}"
        return response

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    def _log_response(self, response: Response, duration_ms: float, request_info: dict):
        log_data = {"status_code": response.status_code, "duration_ms": duration_ms, **request_info}
        if response.status_code < 400:
            logger.info("request_completed", **log_data)
        elif response.status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
