"""图片生成模块。

保留图片生成的完整流程（请求规范化、服务提供方选择、带重试的上游调用），
供运维脚本和测试使用。

.. warning::
   ``/api/image`` 接口已永久停用，始终返回 410，路由层不会调用本模块。
"""

import base64
from typing import Any, Protocol

import httpx
import orjson
import stamina

from ...config import AppConfig
from ...exceptions import (
    ConfigurationError,
    PermanentUpstreamError,
    TransientUpstreamError,
    ValidationError,
)
from ...logger import get_logger
from ...models import ImageRequest
from ...utils.error_handler import classify_transport_error, classify_upstream_error
from ...utils.uuid_helper import generate_request_id

logger = get_logger(__name__)

IMAGE_DISABLED_MESSAGE = "Image generation has been disabled."

ALLOWED_SIZES = ("1024x1024", "1024x1536", "1536x1024", "auto")
ALLOWED_QUALITIES = ("low", "medium", "high", "auto")
DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "high"

SIZE_DIMENSIONS = {
    "1024x1536": (1024, 1536),
    "1536x1024": (1536, 1024),
}

RETRY_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 0.5
IMAGE_TIMEOUT = 120.0


def _load_json(content: bytes, provider: str) -> Any:
    try:
        return orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise PermanentUpstreamError(502, "Malformed upstream response", model=provider) from e


def normalize_image_request(payload: Any) -> ImageRequest:
    """校验并规范化图片生成请求。

    :param payload: 已解析的 JSON 请求体
    :return: 规范化后的请求；``size`` 和 ``quality`` 不在允许范围内时使用默认值
    :raises ValidationError: ``prompt`` 缺失或为空时
    """
    if not isinstance(payload, dict):
        raise ValidationError("prompt is required")

    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("prompt is required")

    size = str(payload.get("size") or "").lower()
    quality = str(payload.get("quality") or "").lower()

    return ImageRequest(
        prompt=prompt.strip(),
        size=size if size in ALLOWED_SIZES else DEFAULT_SIZE,
        quality=quality if quality in ALLOWED_QUALITIES else DEFAULT_QUALITY,
    )


class ImageProvider(Protocol):
    """图片生成服务提供方。"""

    name: str

    async def generate(self, request: ImageRequest) -> str:
        """生成图片并返回 data URL。"""
        ...


class OpenAIImageProvider:
    """OpenAI Images API 提供方。

    429 / 5xx 时退避重试，其他错误直接抛出。
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-image-1",
        base_url: str = "https://api.openai.com/v1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.name = model
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def generate(self, request: ImageRequest) -> str:
        request_id = generate_request_id()
        logger.info(
            "Image generation requested: provider={}, size={}, quality={}, request_id={}",
            self.name,
            request.size,
            request.quality,
            request_id,
        )
        body = {
            "model": self.name,
            "prompt": request.prompt,
            "size": request.size,
            "quality": request.quality,
            "n": 1,
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
            timeout=IMAGE_TIMEOUT,
        ) as client:
            data: Any = None
            async for attempt in stamina.retry_context(
                on=TransientUpstreamError,
                attempts=RETRY_ATTEMPTS,
                wait_initial=RETRY_INITIAL_DELAY,
                wait_jitter=0.0,
                wait_exp_base=2.0,
            ):
                with attempt:
                    try:
                        response = await client.post("/images/generations", json=body)
                    except httpx.HTTPError as e:
                        raise classify_transport_error(e, self.name, request_id) from e
                    if not response.is_success:
                        raise classify_upstream_error(response, self.name, request_id)
                    data = _load_json(response.content, self.name)

        items = data.get("data") if isinstance(data, dict) else None
        item = items[0] if isinstance(items, list) and items else None
        if not isinstance(item, dict):
            raise PermanentUpstreamError(502, "No image data", model=self.name)
        if item.get("b64_json"):
            return f"data:image/png;base64,{item['b64_json']}"
        if item.get("url"):
            return await self._fetch_as_data_url(item["url"])
        raise PermanentUpstreamError(502, "Unsupported image response", model=self.name)

    async def _fetch_as_data_url(self, url: str) -> str:
        async with httpx.AsyncClient(transport=self._transport, timeout=IMAGE_TIMEOUT) as client:
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                raise classify_transport_error(e, self.name, generate_request_id()) from e
        if not response.is_success:
            raise PermanentUpstreamError(502, "Failed to fetch image", model=self.name)
        content_type = response.headers.get("content-type", "image/png")
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"


class Auto1111ImageProvider:
    """AUTOMATIC1111 WebUI（自托管）提供方。

    任何非成功状态都会退避重试。
    """

    name = "auto1111"

    def __init__(self, base_url: str, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def generate(self, request: ImageRequest) -> str:
        request_id = generate_request_id()
        logger.info(
            "Image generation requested: provider={}, size={}, quality={}, request_id={}",
            self.name,
            request.size,
            request.quality,
            request_id,
        )
        width, height = SIZE_DIMENSIONS.get(request.size, (1024, 1024))
        body = {
            "prompt": request.prompt,
            "width": width,
            "height": height,
            "steps": 20,
            "cfg_scale": 7,
            "sampler_name": "Euler a",
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=IMAGE_TIMEOUT) as client:
            data: Any = None
            async for attempt in stamina.retry_context(
                on=TransientUpstreamError,
                attempts=RETRY_ATTEMPTS,
                wait_initial=RETRY_INITIAL_DELAY,
                wait_jitter=0.0,
                wait_exp_base=2.0,
            ):
                with attempt:
                    try:
                        response = await client.post(f"{self.base_url}/sdapi/v1/txt2img", json=body)
                    except httpx.HTTPError as e:
                        raise classify_transport_error(e, self.name, request_id) from e
                    if not response.is_success:
                        error = classify_upstream_error(response, self.name, request_id)
                        raise TransientUpstreamError(error.status_code, error.message, model=self.name)
                    data = _load_json(response.content, self.name)

        images = data.get("images") if isinstance(data, dict) else None
        if not isinstance(images, list) or not images or not isinstance(images[0], str):
            raise PermanentUpstreamError(502, "No image data", model=self.name)
        return f"data:image/png;base64,{images[0]}"


def build_image_provider(
    settings: AppConfig, transport: httpx.AsyncBaseTransport | None = None
) -> ImageProvider:
    """根据配置选择图片生成服务提供方。

    :param settings: 应用配置
    :param transport: 可选的 httpx 传输层
    :raises ConfigurationError: 所选提供方缺少必要配置时
    """
    if settings.image_provider == "auto1111":
        if not settings.auto1111_url:
            raise ConfigurationError("AUTO1111_URL is required for IMAGE_PROVIDER=auto1111")
        return Auto1111ImageProvider(settings.auto1111_url, transport=transport)

    if not settings.openai_api_key:
        raise ConfigurationError("Server is missing OPENAI_API_KEY")
    return OpenAIImageProvider(
        settings.openai_api_key,
        model=settings.openai_image_model,
        base_url=settings.openai_base_url,
        transport=transport,
    )
