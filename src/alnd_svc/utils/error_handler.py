"""错误处理工具模块。

提供统一的上游 API 错误分类逻辑：根据状态码区分可重试错误和不可重试错误，
并从响应体中提取可读的错误信息。
"""

import httpx
import orjson

from ..exceptions import (
    PermanentUpstreamError,
    TransientUpstreamError,
    UpstreamAPIError,
    is_transient_status,
)
from ..logger import get_logger

logger = get_logger(__name__)

MAX_ERROR_TEXT_LENGTH = 300


def extract_error_message(response: httpx.Response) -> str:
    """从上游错误响应中提取错误信息。

    优先使用 JSON 响应体中的 ``error.message``（OpenAI 错误格式），
    其次使用响应文本的前 300 个字符，最后退化为 ``Upstream HTTP <status>``。

    :param response: 上游 HTTP 响应
    :return: 错误信息
    """
    try:
        data = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"][:MAX_ERROR_TEXT_LENGTH]
        if isinstance(error, str) and error:
            return error[:MAX_ERROR_TEXT_LENGTH]

    text = response.text.strip()
    if text:
        return text[:MAX_ERROR_TEXT_LENGTH]
    return f"Upstream HTTP {response.status_code}"


def classify_upstream_error(response: httpx.Response, model: str, request_id: str) -> UpstreamAPIError:
    """将上游非成功响应转换为对应的异常。

    - 429、5xx: :class:`TransientUpstreamError`
    - 其他: :class:`PermanentUpstreamError`

    :param response: 上游 HTTP 响应
    :param model: 本次请求使用的模型
    :param request_id: 请求 ID
    :return: 对应的异常实例（由调用方抛出）
    """
    message = extract_error_message(response)

    logger.warning(
        "Upstream HTTP error: status_code={}, model={}, request_id={}, response_text={}",
        response.status_code,
        model,
        request_id,
        message[:200],
    )

    if is_transient_status(response.status_code):
        return TransientUpstreamError(response.status_code, message, model=model)
    return PermanentUpstreamError(response.status_code, message, model=model)


def classify_transport_error(exc: httpx.HTTPError, model: str, request_id: str) -> TransientUpstreamError:
    """将网络层异常转换为可重试错误。

    超时映射为 504，其他请求错误映射为 502。
    """
    logger.warning(
        "Upstream request error: error_type={}, error={}, model={}, request_id={}",
        type(exc).__name__,
        str(exc),
        model,
        request_id,
    )
    if isinstance(exc, httpx.TimeoutException):
        return TransientUpstreamError(504, "Upstream request timed out", "upstream_timeout", model=model)
    return TransientUpstreamError(502, f"Upstream request error: {type(exc).__name__}", "request_error", model=model)
