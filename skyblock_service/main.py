"""
Skyblock 数据解析服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn skyblock_service.main:app --host 0.0.0.0 --port 8002
    python -m skyblock_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from skyblock_service import __version__
from skyblock_service.config import settings
from skyblock_service.db import init_mongodb, close_connections
from skyblock_service.db.entry_store import get_entry_store
from skyblock_service.errors import ErrorKind, ResolutionError, StoreError
from skyblock_service.layers.acquisition import close_upstreams
from skyblock_service.layers.cache import all_caches
from skyblock_service.models.response import ApiResponse
from skyblock_service.routers import health, player, profiles, cache

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# 错误类别 → HTTP 状态码
_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.MEMBERSHIP: 404,
    ErrorKind.VALIDATION: 502,
    ErrorKind.TRANSPORT: 502,
    ErrorKind.STORE: 500,
}


def status_for(exc: ResolutionError) -> int:
    if exc.kind is ErrorKind.TRANSPORT and getattr(exc, "status", None) is None:
        return 503
    return _STATUS_BY_KIND.get(exc.kind, 500)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Skyblock 数据解析服务 v{__version__} 启动中")
    logger.info(f"   Store     : {settings.ENTRY_STORE_BACKEND}")
    logger.info(f"   Identity  : {settings.IDENTITY_API_URL}")
    logger.info(f"   Profile   : {settings.PROFILE_API_URL}")
    logger.info("=" * 60)

    if settings.ENTRY_STORE_BACKEND == "mongodb":
        if not await init_mongodb():
            logger.warning("⚠️ MongoDB 不可用，玩家存储读写将失败")
    if not settings.PROFILE_API_KEY:
        logger.warning("⚠️ 未配置 PROFILE_API_KEY，档案上游请求将被拒绝")

    store = get_entry_store()
    try:
        await store.open()
    except StoreError as exc:
        logger.error(f"❌ 玩家存储打开失败，服务以降级模式运行: {exc}")
    for c in all_caches().values():
        c.start_sweeper()

    yield

    logger.info("🔄 数据解析服务正在关闭...")
    for c in all_caches().values():
        await c.stop_sweeper()
    await close_upstreams()
    await store.close()
    await close_connections()
    logger.info("✅ 数据解析服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Skyblock 数据解析服务",
    description=(
        "读穿式数据解析服务：\n"
        "- 👤 玩家身份解析（本地存储 → 缓存 → 身份查询上游）\n"
        "- 📁 档案列表 / 档案详情（带负缓存）\n"
        "- ⛏️ 成员派生指标（等级 / 令牌预算 / 资源）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 上游 HTTP 数据源\n"
        "Cache Layer        ← 内存 TTL 缓存（成功 / 失败双命名空间）\n"
        "Processing Layer   ← 响应结构校验\n"
        "Analysis Layer     ← 派生指标计算\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(ResolutionError)
async def resolution_exception_handler(request: Request, exc: ResolutionError):
    code = status_for(exc)
    if code >= 500:
        logger.error(f"解析失败 [{exc.kind.value}]: {exc}")
    return JSONResponse(
        status_code=code,
        content=ApiResponse.fail(
            error=exc.kind.value,
            message=exc.message,
            data=exc.to_dict(),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ApiResponse.fail(error="内部服务错误", message=str(exc)).model_dump(),
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(player.router)
app.include_router(profiles.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Skyblock Resolution Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "skyblock_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
