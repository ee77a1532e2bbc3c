"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from fastapi.middleware.cors import CORSMiddleware

from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import error_response, success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, ping_database
from infrastructure.external.payments import get_provider_registry
from shared.codes import BusinessCode


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）；生产环境由预订系统负责迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    registry = get_provider_registry()
    logger.info(
        "payment_providers_loaded",
        enabled=[a.provider.value for a in registry.enabled()],
    )

    yield

    await registry.aclose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Hall booking payment service: checkout, reconciliation, refunds and webhooks",
)

# 添加中间件（注意顺序：从下往上执行）
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(payments_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查：数据库连通性 + 已启用的支付渠道"""
    providers = [a.provider.value for a in get_provider_registry().enabled()]
    try:
        await ping_database()
    except SQLAlchemyError as exc:
        logger.error("health_check_database_unavailable", error=str(exc))
        body = error_response(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Database unavailable",
            error_type="ServiceUnavailable",
            details={"providers": providers},
        )
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return success_response(data={"status": "healthy", "database": "ok", "providers": providers})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
