"""图片生成模块单元测试。

``/api/image`` 接口已停用，这里只测试保留的生成流程。
"""

import base64
import json

import httpx
import pytest

from alnd_svc.config import AppConfig
from alnd_svc.exceptions import (
    ConfigurationError,
    PermanentUpstreamError,
    TransientUpstreamError,
    ValidationError,
)
from alnd_svc.models import ImageRequest
from alnd_svc.services.image.generator import (
    Auto1111ImageProvider,
    OpenAIImageProvider,
    build_image_provider,
    normalize_image_request,
)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """去掉重试等待。"""
    monkeypatch.setattr("alnd_svc.services.image.generator.RETRY_INITIAL_DELAY", 0.001)


@pytest.mark.unit
class TestNormalizeImageRequest:
    """normalize_image_request 函数测试。"""

    def test_defaults(self):
        request = normalize_image_request({"prompt": "  a red fox  "})

        assert request == ImageRequest(prompt="a red fox", size="1024x1024", quality="high")

    def test_allowed_values_kept(self):
        request = normalize_image_request({"prompt": "x", "size": "1536x1024", "quality": "LOW"})

        assert request.size == "1536x1024"
        assert request.quality == "low"

    def test_unknown_values_fall_back(self):
        request = normalize_image_request({"prompt": "x", "size": "4096x4096", "quality": 5})

        assert request.size == "1024x1024"
        assert request.quality == "high"

    @pytest.mark.parametrize("payload", [{}, {"prompt": ""}, {"prompt": "   "}, {"prompt": 3}, None])
    def test_prompt_required(self, payload):
        with pytest.raises(ValidationError) as exc_info:
            normalize_image_request(payload)

        assert exc_info.value.message == "prompt is required"


@pytest.mark.unit
class TestOpenAIImageProvider:
    """OpenAIImageProvider 测试。"""

    @pytest.mark.asyncio
    async def test_b64_json(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": [{"b64_json": "QUJD"}]})

        provider = OpenAIImageProvider("sk-test", transport=httpx.MockTransport(handler))

        result = await provider.generate(ImageRequest(prompt="fox"))

        assert result == "data:image/png;base64,QUJD"
        assert bodies[0]["model"] == "gpt-image-1"
        assert bodies[0]["prompt"] == "fox"

    @pytest.mark.asyncio
    async def test_url_result_fetched(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/images/generations"):
                return httpx.Response(200, json={"data": [{"url": "https://cdn.test/fox.jpg"}]})
            return httpx.Response(200, content=b"JPEG", headers={"content-type": "image/jpeg"})

        provider = OpenAIImageProvider("sk-test", transport=httpx.MockTransport(handler))

        result = await provider.generate(ImageRequest(prompt="fox"))

        assert result == "data:image/jpeg;base64," + base64.b64encode(b"JPEG").decode("ascii")

    @pytest.mark.asyncio
    async def test_transient_retried(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"data": [{"b64_json": "QUJD"}]})]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        provider = OpenAIImageProvider("sk-test", transport=httpx.MockTransport(handler))

        assert await provider.generate(ImageRequest(prompt="fox")) == "data:image/png;base64,QUJD"
        assert responses == []

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "content policy"}})

        provider = OpenAIImageProvider("sk-test", transport=httpx.MockTransport(handler))

        with pytest.raises(PermanentUpstreamError) as exc_info:
            await provider.generate(ImageRequest(prompt="fox"))

        assert exc_info.value.message == "content policy"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_empty_data(self):
        provider = OpenAIImageProvider(
            "sk-test", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": []}))
        )

        with pytest.raises(PermanentUpstreamError):
            await provider.generate(ImageRequest(prompt="fox"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"data": {"b64_json": "QUJD"}}, {"data": "QUJD"}, {"data": [None]}, []])
    async def test_malformed_data(self, payload):
        """上游返回结构不符时报 502，而不是抛出 KeyError。"""
        provider = OpenAIImageProvider(
            "sk-test", transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
        )

        with pytest.raises(PermanentUpstreamError) as exc_info:
            await provider.generate(ImageRequest(prompt="fox"))

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_url_fetch_transport_error(self):
        """下载图片时的网络错误转换为上游错误。"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/images/generations"):
                return httpx.Response(200, json={"data": [{"url": "https://cdn.test/fox.jpg"}]})
            raise httpx.ConnectError("refused")

        provider = OpenAIImageProvider("sk-test", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientUpstreamError) as exc_info:
            await provider.generate(ImageRequest(prompt="fox"))

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Upstream request error: ConnectError"


@pytest.mark.unit
class TestAuto1111ImageProvider:
    """Auto1111ImageProvider 测试。"""

    @pytest.mark.asyncio
    async def test_generate(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "http://sd.local:7860/sdapi/v1/txt2img"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"images": ["UE5H"]})

        provider = Auto1111ImageProvider("http://sd.local:7860/", transport=httpx.MockTransport(handler))

        result = await provider.generate(ImageRequest(prompt="fox", size="1024x1536"))

        assert result == "data:image/png;base64,UE5H"
        assert (bodies[0]["width"], bodies[0]["height"]) == (1024, 1536)

    @pytest.mark.asyncio
    async def test_any_failure_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, text="not found")

        provider = Auto1111ImageProvider("http://sd.local:7860", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientUpstreamError):
            await provider.generate(ImageRequest(prompt="fox"))

        assert len(calls) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"images": "UE5H"}, {"images": []}, {"images": [None]}, {}])
    async def test_malformed_images(self, payload):
        """images 不是非空字符串列表时报 502。"""
        provider = Auto1111ImageProvider(
            "http://sd.local:7860", transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
        )

        with pytest.raises(PermanentUpstreamError) as exc_info:
            await provider.generate(ImageRequest(prompt="fox"))

        assert exc_info.value.status_code == 502


@pytest.mark.unit
class TestBuildImageProvider:
    """build_image_provider 函数测试。"""

    def test_openai(self):
        provider = build_image_provider(AppConfig(image_provider="openai", openai_api_key="sk-x"))
        assert isinstance(provider, OpenAIImageProvider)

    def test_openai_requires_key(self):
        with pytest.raises(ConfigurationError):
            build_image_provider(AppConfig(image_provider="openai", openai_api_key=""))

    def test_auto1111(self):
        provider = build_image_provider(AppConfig(image_provider="auto1111", auto1111_url="http://sd.local"))
        assert isinstance(provider, Auto1111ImageProvider)

    def test_auto1111_requires_url(self):
        with pytest.raises(ConfigurationError):
            build_image_provider(AppConfig(image_provider="auto1111", auto1111_url=""))
