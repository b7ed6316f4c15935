"""
streamhub.main
~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from streamhub.api import access_links, chat, live_ws, streams, system, tokens
from streamhub.core.config import settings
from streamhub.core.errors import AppError
from streamhub.core.logging import get_logger, request_id_ctx_var, setup_logging
from streamhub.core.rate_limit import limiter
from streamhub.core.tasks import run_periodically
from streamhub.schemas.api_response import ApiResponse
from streamhub.services.live_system import AppServices

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。

    测试中可预先设置 ``app.state.services`` 注入替身，此时不再创建新的服务容器。
    """
    # ── 启动 ──
    services: AppServices | None = getattr(app.state, "services", None)
    owns_services = services is None
    if services is None:
        services = await AppServices.build(settings)
        app.state.services = services

    sweeper = asyncio.create_task(
        run_periodically(
            settings.RATE_LIMIT_SWEEP_INTERVAL,
            services.rate_limiter.sweep,
            name="rate-limit-sweeper",
        ),
        name="rate-limit-sweeper",
    )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s | cms=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
        settings.CMS_BACKEND,
    )
    yield
    # ── 关闭 ──
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    if owns_services:
        await services.aclose()
        del app.state.services
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="私人直播后台 API：直播管理、令牌观看与实时聊天",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)
app.state.limiter = limiter

# ── CORS 中间件 ──────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.PUBLIC_BASE_URL],
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    """为每个 HTTP 请求分配短 request id，写入日志上下文与响应头。"""
    req_id = f"req-{uuid.uuid4().hex[:8]}"
    ctx_token = request_id_ctx_var.set(req_id)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx_var.reset(ctx_token)
    response.headers["X-Request-ID"] = req_id
    return response


# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(streams.router, prefix="/api", tags=["Streams"])
app.include_router(access_links.router, prefix="/api", tags=["Access Links"])
app.include_router(tokens.router, prefix="/api", tags=["Access Links"])
app.include_router(chat.router, prefix="/api", tags=["Chat"])
app.include_router(system.router, prefix="/api", tags=["System"])
app.include_router(live_ws.router, tags=["WebSocket Live"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.code >= 500:
        logger.error("请求失败: %s %s -> %s", request.method, request.url.path, exc.msg)
    else:
        logger.info("请求被拒绝: %s %s -> %d %s", request.method, request.url.path, exc.code, exc.msg)
    return ApiResponse.fail(exc.msg, exc.code).to_response()


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    msg = f"请求参数不合法: {field} {first.get('msg', '')}".strip()
    return ApiResponse.fail(msg, 400).to_response()


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return ApiResponse.fail("请求过于频繁，请稍后再试", 429).to_response()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return ApiResponse.fail(detail).to_response()


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    services: AppServices | None = getattr(request.app.state, "services", None)
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug,
            "cms_backend": settings.CMS_BACKEND,
            "live_streams": len(services.hub.stream_ids()) if services else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "streamhub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.debug,
        log_level=settings.effective_log_level.lower(),
    )
