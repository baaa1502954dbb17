"""API路由模块。

本模块定义所有HTTP端点：聊天代理、已停用的图片生成接口和健康检查。
"""

from datetime import datetime, timezone
from typing import Any, Callable

import orjson
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from .config import AppConfig, get_settings
from .exceptions import ConfigurationError, UpstreamAPIError, ValidationError
from .logger import get_logger, json_str
from .models import ChatReply, DispatcherConfig, ErrorResponse, HealthResponse
from .services.chat.attachments import merge_attachments
from .services.chat.dispatcher import ModelDispatcher
from .services.chat.normalizer import normalize_chat_request
from .services.image.generator import IMAGE_DISABLED_MESSAGE
from .utils.uuid_helper import generate_request_id

logger = get_logger(__name__)
router = APIRouter()

NO_STORE_HEADERS = {"Cache-Control": "no-store"}

# 客户端可据此调整请求的上游状态码，其余上游错误统一返回 502
PROPAGATED_UPSTREAM_STATUSES = frozenset({400, 413, 422, 429})

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def json_response(status_code: int, content: Any, headers: dict[str, str] | None = None) -> JSONResponse:
    """构建不缓存的 JSON 响应。"""
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={**NO_STORE_HEADERS, **(headers or {})},
    )


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    """构建 ``{"error": message}`` 错误响应。"""
    return json_response(status_code, ErrorResponse(error=message).model_dump(), headers)


def boundary_status(error: UpstreamAPIError) -> int:
    """将调度失败映射为返回给客户端的状态码。

    :param error: 调度器抛出的最后一次上游错误
    :return: 客户端可处理的上游状态码，其余情况为 502
    """
    if error.status_code in PROPAGATED_UPSTREAM_STATUSES:
        return error.status_code
    return 502


def get_dispatcher_factory() -> Callable[[DispatcherConfig], ModelDispatcher]:
    """提供调度器工厂（测试时可通过 ``dependency_overrides`` 替换）。"""
    return ModelDispatcher


@router.api_route(
    "/chat",
    methods=[method for method in ALL_METHODS if method != "POST"],
    include_in_schema=False,
)
async def chat_method_not_allowed(request: Request) -> JSONResponse:
    """拒绝非 POST 请求。"""
    logger.warning("Method not allowed: path={}, method={}", request.url.path, request.method)
    return error_response(405, "Method Not Allowed", {"Allow": "POST"})


@router.post("/chat", response_model=None)
async def chat(
    request: Request,
    settings: AppConfig = Depends(get_settings),
    dispatcher_factory: Callable[[DispatcherConfig], ModelDispatcher] = Depends(get_dispatcher_factory),
) -> JSONResponse:
    """处理聊天代理请求。

    请求体::

        {"messages": [{"role": "user", "content": "你好"}],
         "system": "...", "attachments": [...], "max_tokens": 400}

    :param request: FastAPI 请求对象
    :param settings: 应用配置
    :param dispatcher_factory: 根据调度配置创建调度器的工厂
    :return: 成功时为 ``{"reply", "model"}``，失败时为 ``{"error"}``

    **检查顺序:**

    1. ``Content-Type`` 必须为 ``application/json``（400）
    2. 请求体必须是合法 JSON（400）
    3. 请求规范化校验（400）
    4. 必须配置 ``OPENAI_API_KEY``（500）
    5. 调度失败时，可处理的上游状态码原样返回，其余返回 502
    """
    request_id = generate_request_id()

    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        logger.warning("Rejected chat request: reason=content_type, content_type={}, request_id={}", content_type, request_id)
        return error_response(400, "Content-Type must be application/json")

    try:
        payload = orjson.loads(await request.body() or b"{}")
    except orjson.JSONDecodeError:
        logger.warning("Rejected chat request: reason=invalid_json, request_id={}", request_id)
        return error_response(400, "Invalid JSON body")

    limits = settings.chat_limits()
    try:
        normalized = normalize_chat_request(payload, limits)
    except ValidationError as e:
        logger.warning("Rejected chat request: reason=validation, error={}, request_id={}", e.message, request_id)
        return error_response(e.status_code, e.message)

    try:
        dispatcher_config = settings.dispatcher_config()
    except ConfigurationError as e:
        logger.error("Chat request cannot be served: error={}, request_id={}", e.message, request_id)
        return error_response(e.status_code, e.message)

    merged = merge_attachments(normalized.turns, normalized.attachments, limits)
    if merged.rejected:
        logger.warning(
            "Attachments dropped: dropped={}, request_id={}",
            json_str([outcome.model_dump(exclude={"accepted"}) for outcome in merged.rejected]),
            request_id,
        )

    logger.info(
        "Chat request received: turns={}, attachments={}, max_tokens={}, candidates={}, request_id={}",
        len(merged.turns),
        len(merged.outcomes),
        normalized.max_tokens,
        settings.candidate_models,
        request_id,
    )

    dispatcher = dispatcher_factory(dispatcher_config)
    try:
        result = await dispatcher.dispatch(
            merged.turns,
            settings.candidate_models,
            normalized.max_tokens,
            request_id=request_id,
        )
    except UpstreamAPIError as e:
        status_code = boundary_status(e)
        logger.error(
            "Chat dispatch failed: upstream_status={}, response_status={}, error={}, request_id={}",
            e.status_code,
            status_code,
            e.message,
            request_id,
        )
        return error_response(status_code, e.message)

    return json_response(200, ChatReply(reply=result.reply, model=result.model).model_dump())


@router.api_route("/image", methods=ALL_METHODS, response_model=None)
async def image(request: Request) -> JSONResponse:
    """图片生成接口（已永久停用）。

    无论请求方法和请求体如何，始终返回 410。

    .. note::
       带 ``Origin`` 和 ``Access-Control-Request-Method`` 的 CORS 预检请求
       由 ``CORSMiddleware`` 直接应答，不会到达本路由。
    """
    logger.debug("Image generation request rejected: method={}", request.method)
    return error_response(410, IMAGE_DISABLED_MESSAGE)


@router.get("/health")
async def health() -> dict:
    """健康检查端点。

    :return: ``{"ok": true, "model": "openai", "time": <ISO8601>}``
    """
    return HealthResponse(time=datetime.now(timezone.utc).isoformat()).model_dump()
