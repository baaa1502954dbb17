"""请求规范化模块。

负责将浏览器客户端提交的原始聊天请求校验并转换为
有序的 :class:`~alnd_svc.models.ChatTurn` 列表。
"""

import math
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ...exceptions import ValidationError
from ...models import ChatLimits, ChatPayload, ChatTurn, NormalizedChat

MESSAGES_ERROR = "messages must be a non-empty array"
ATTACHMENTS_ERROR = "attachments must be an array"


def coerce_text(value: Any) -> str:
    """将任意消息内容转换为文本。

    - ``str``: 原样返回
    - ``None``: 空字符串
    - 内容片段列表：拼接其中 ``type``/``kind`` 为 ``text`` 的片段
    - 其他：``str(value)``
    """
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, list):
        texts = []
        for part in value:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and (part.get("type") or part.get("kind")) == "text":
                text = part.get("text")
                if isinstance(text, str):
                    texts.append(text)
        return "\n".join(texts)
    return str(value)


def clamp_output_tokens(value: Any, limits: ChatLimits) -> int:
    """将输出 token 上限限制在配置范围内。

    非数值（包括布尔值、NaN、无穷）使用默认值。

    :param value: 客户端提供的值
    :param limits: 限制参数
    :return: 限制后的整数
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return limits.default_output_tokens
    if isinstance(value, float) and not math.isfinite(value):
        return limits.default_output_tokens
    return max(limits.min_output_tokens, min(limits.max_output_tokens, int(value)))


def _payload_error(exc: PydanticValidationError) -> ValidationError:
    fields = {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
    if "attachments" in fields and "messages" not in fields:
        return ValidationError(ATTACHMENTS_ERROR)
    return ValidationError(MESSAGES_ERROR)


def normalize_chat_request(payload: Any, limits: ChatLimits) -> NormalizedChat:
    """校验并规范化聊天请求。

    处理步骤：

    1. 校验 ``messages`` 为非空列表
    2. 仅保留最近 ``limits.max_history_items`` 条消息
    3. ``system`` 为非空字符串时，在最前面插入一条系统消息
    4. 每条消息：``role`` 仅在明确为 ``assistant`` 时保留，其余一律为 ``user``；
       ``content`` 转为文本并截断
    5. 限制 ``max_tokens``（兼容 ``maxOutputTokens``）

    :param payload: 已解析的 JSON 请求体
    :param limits: 限制参数
    :return: 规范化结果，``attachments`` 保留原始附件列表供合并使用
    :raises ValidationError: ``messages`` 缺失、为空或不是列表，或 ``attachments`` 不是列表时

    .. code-block:: python

       normalized = normalize_chat_request(
           {"messages": [{"role": "user", "content": "你好"}], "system": "简洁回答"},
           ChatLimits(),
       )
       # normalized.turns[0].role == "system"
       # normalized.max_tokens == 400
    """
    if not isinstance(payload, dict):
        raise ValidationError(MESSAGES_ERROR)

    try:
        chat_payload = ChatPayload.model_validate(payload)
    except PydanticValidationError as e:
        raise _payload_error(e) from e

    if not chat_payload.messages:
        raise ValidationError(MESSAGES_ERROR)

    turns: list[ChatTurn] = []

    system = chat_payload.system
    if isinstance(system, str) and system:
        turns.append(ChatTurn(role="system", content=system[: limits.max_system_length]))

    for message in chat_payload.messages[-limits.max_history_items:]:
        if not isinstance(message, dict):
            message = {}
        role = "assistant" if message.get("role") == "assistant" else "user"
        content = coerce_text(message.get("content"))[: limits.max_content_length]
        turns.append(ChatTurn(role=role, content=content))

    return NormalizedChat(
        turns=turns,
        max_tokens=clamp_output_tokens(chat_payload.max_tokens, limits),
        attachments=chat_payload.attachments or [],
    )
