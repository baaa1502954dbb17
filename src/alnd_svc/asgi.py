"""ASGI应用入口模块。

本模块导出带生命周期管理的FastAPI应用实例，供ASGI服务器（如Granian、Uvicorn等）使用。

Example::

    # 使用Granian运行
    granian --interface asgi alnd_svc.asgi:app --host 0.0.0.0 --port 3000

    # 使用Uvicorn运行
    uvicorn alnd_svc.asgi:app --host 0.0.0.0 --port 3000
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from .app import create_app
from .config import get_settings
from .logger import get_logger

logger = get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI应用生命周期管理器。

    启动时检查上游密钥并输出运行配置，关闭时记录日志。
    服务本身不持有跨请求的资源，无需额外清理。

    :param app: FastAPI应用实例
    :yield: None
    """
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set. Set it in .env or environment variables.")

    logger.info(
        "Application started: env={}, host={}, port={}, candidates={}",
        settings.app_env,
        settings.host,
        settings.port,
        settings.candidate_models,
    )

    yield

    logger.info("Application shut down")


def create_app_with_lifespan() -> FastAPI:
    """创建带有生命周期管理的 FastAPI 应用实例。

    :return: 配置完成的 FastAPI 应用实例
    """
    app = create_app()
    app.router.lifespan_context = lifespan
    return app


app = create_app_with_lifespan()

__all__ = ["app"]
