"""FastAPI应用主模块。

本模块负责创建和配置FastAPI应用实例，包括中间件、路由、静态文件和全局异常处理。
"""

from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import get_settings
from .logger import configure_logging, get_logger
from .routes import NO_STORE_HEADERS, router

settings = get_settings()
configure_logging(settings.log_level, use_colors=settings.verbose_logging, verbose=settings.verbose_logging)
logger = get_logger(__name__)


def create_app() -> FastAPI:
    """创建并配置FastAPI应用实例。

    配置包括GZip压缩、CORS中间件、API路由、可选的静态前端和全局异常处理。

    :return: 配置完成的FastAPI应用实例

    .. note::
       当 ``VERBOSE_LOGGING`` 开启时会启用API文档（/docs和/redoc）。
       生命周期管理器需要在asgi.py中单独配置。
    """
    app = FastAPI(
        title="ALND AI Proxy",
        description="Chat proxy for the OpenAI Chat Completions API",
        version="0",
        docs_url="/docs" if settings.verbose_logging else None,
        redoc_url="/redoc" if settings.verbose_logging else None,
        lifespan=None,  # 生命周期管理器将在asgi.py中配置
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """全局异常处理器。

        内部错误细节只写入日志，不返回给客户端。

        :param request: FastAPI请求对象
        :param exc: 捕获的异常
        :return: 通用的500错误响应
        """
        logger.opt(exception=exc).error(
            "Unhandled exception: path={}, method={}, error_type={}",
            request.url.path,
            request.method,
            type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Server error"},
            headers=NO_STORE_HEADERS,
        )

    # 静态前端必须最后挂载，避免覆盖 /api 路由
    if settings.static_dir:
        static_path = Path(settings.static_dir)
        if static_path.is_dir():
            app.mount("/", StaticFiles(directory=static_path, html=True), name="static")
            logger.info("Static frontend mounted: directory={}", static_path.resolve())
        else:
            logger.warning("Static directory not found, skipping: directory={}", static_path)

    logger.info(
        "Application created: log_level={}, verbose_logging={}, candidates={}",
        settings.log_level,
        settings.verbose_logging,
        settings.candidate_models,
    )

    return app


app = create_app()
