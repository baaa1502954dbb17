"""模型调度模块。

按顺序尝试候选模型，对每个模型使用 stamina 进行有界的指数退避重试，
直到某个模型成功或全部失败。

**调度策略:**

- 429 / 5xx / 网络错误：等待后重试当前模型（默认 0.5 秒、1 秒，共 3 次尝试）
- 其他非成功状态：不重试，立即切换到下一个候选模型
- 成功：返回去除首尾空白的回复文本和所用模型，不再尝试后续模型
- 全部失败：抛出最后一次观察到的上游错误

整次调度受 ``dispatch_timeout`` 总时长约束：单次请求超时不超过剩余时间，
剩余时间耗尽后不再启动新的候选模型。
"""

import time
from typing import Any, Sequence

import httpx
import orjson
import stamina

from ...exceptions import PermanentUpstreamError, TransientUpstreamError, UpstreamAPIError
from ...logger import get_logger
from ...models import ChatTurn, DispatchResult, DispatcherConfig
from ...utils.error_handler import classify_transport_error, classify_upstream_error
from ...utils.uuid_helper import generate_request_id

logger = get_logger(__name__)

COMPLETIONS_PATH = "/chat/completions"


def extract_reply(data: Any) -> str:
    """从 Chat Completions 响应中提取回复文本。

    缺少 ``choices[0].message.content`` 时返回空字符串。
    """
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


class ModelDispatcher:
    """候选模型调度器。

    :param config: 调度器配置
    :param transport: 可选的 httpx 传输层（测试时注入 ``httpx.MockTransport``）

    Example::

        dispatcher = ModelDispatcher(settings.dispatcher_config())
        result = await dispatcher.dispatch(turns, ["gpt-4o-mini", "gpt-4o"], 400)
        print(result.model, result.reply)
    """

    def __init__(self, config: DispatcherConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    async def dispatch(
        self,
        turns: Sequence[ChatTurn],
        candidates: Sequence[str],
        max_tokens: int,
        request_id: str | None = None,
    ) -> DispatchResult:
        """依次尝试候选模型，返回第一个成功的结果。

        :param turns: 规范化后的消息列表
        :param candidates: 候选模型列表（非空，按顺序尝试）
        :param max_tokens: 最大输出 token 数
        :param request_id: 请求 ID，用于日志
        :return: 回复文本和所用模型
        :raises ValueError: 候选模型列表为空时
        :raises UpstreamAPIError: 所有候选模型均失败时，抛出最后一次错误
        """
        if not candidates:
            raise ValueError("candidates must not be empty")

        request_id = request_id or generate_request_id()
        messages = [turn.to_upstream() for turn in turns]
        deadline = time.monotonic() + self.config.dispatch_timeout
        last_error: UpstreamAPIError | None = None

        async with httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            for index, model in enumerate(candidates):
                if deadline - time.monotonic() <= 0:
                    logger.warning(
                        "Dispatch deadline exceeded, skipping remaining candidates: request_id={}, skipped={}",
                        request_id,
                        list(candidates[index:]),
                    )
                    break

                try:
                    reply = await self._call_with_retry(client, model, messages, max_tokens, deadline, request_id)
                except UpstreamAPIError as e:
                    last_error = e
                    logger.warning(
                        "Candidate model failed: model={}, status_code={}, error_type={}, request_id={}, remaining_candidates={}",
                        model,
                        e.status_code,
                        e.error_type,
                        request_id,
                        len(candidates) - index - 1,
                    )
                    continue

                logger.info(
                    "Dispatch succeeded: model={}, candidate_index={}, reply_length={}, request_id={}",
                    model,
                    index,
                    len(reply),
                    request_id,
                )
                return DispatchResult(reply=reply, model=model)

        if last_error is None:
            last_error = TransientUpstreamError(504, "Dispatch deadline exceeded", "upstream_timeout")

        logger.error(
            "All candidate models failed: candidates={}, status_code={}, error={}, request_id={}",
            list(candidates),
            last_error.status_code,
            last_error.message,
            request_id,
        )
        raise last_error

    async def _call_with_retry(
        self,
        client: httpx.AsyncClient,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        deadline: float,
        request_id: str,
    ) -> str:
        """对单个模型进行有界重试。

        仅 :class:`TransientUpstreamError` 触发重试；
        :class:`PermanentUpstreamError` 直接向上抛出。
        """
        reply = ""
        async for attempt in stamina.retry_context(
            on=TransientUpstreamError,
            attempts=self.config.retry_attempts,
            timeout=max(deadline - time.monotonic(), 0.0),
            wait_initial=self.config.retry_initial_delay,
            wait_max=self.config.retry_max_delay,
            wait_jitter=0.0,
            wait_exp_base=2.0,
        ):
            with attempt:
                logger.debug(
                    "Upstream attempt: model={}, attempt={}/{}, request_id={}",
                    model,
                    attempt.num,
                    self.config.retry_attempts,
                    request_id,
                )
                reply = await self._attempt(client, model, messages, max_tokens, deadline, request_id)
        return reply

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        deadline: float,
        request_id: str,
    ) -> str:
        body = {
            "model": model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": max_tokens,
        }
        timeout = min(self.config.request_timeout, max(deadline - time.monotonic(), 0.001))

        try:
            response = await client.post(COMPLETIONS_PATH, json=body, timeout=timeout)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, model, request_id) from e

        if not response.is_success:
            raise classify_upstream_error(response, model, request_id)

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise PermanentUpstreamError(502, "Malformed upstream response", model=model) from e

        return extract_reply(data)
