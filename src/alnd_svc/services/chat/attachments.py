"""附件合并模块。

将客户端提交的附件（内联图片、内联文本）合并到最后一条用户消息中，
生成多片段内容。无效附件会被跳过，并在合并结果中逐条记录原因。
"""

import re
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ...models import (
    AttachmentOutcome,
    AttachmentSpec,
    ChatLimits,
    ChatTurn,
    ContentPart,
    ImageAttachment,
    ImagePart,
    MergeResult,
    TextPart,
)

_attachment_adapter: TypeAdapter = TypeAdapter(AttachmentSpec)

IMAGE_DATA_URL_PATTERN = re.compile(r"data:image/[A-Za-z0-9.+-]+;base64,[A-Za-z0-9+/]+={0,2}")


def is_valid_image_data_url(data_url: str) -> bool:
    """检查图片 data URL 的格式。

    长度限制由 :func:`merge_attachments` 单独检查，以便给出不同的拒绝原因。

    :param data_url: ``data:image/<subtype>;base64,<data>`` 格式的字符串
    """
    return IMAGE_DATA_URL_PATTERN.fullmatch(data_url) is not None


def _parse_attachment(raw: Any) -> AttachmentSpec:
    if not isinstance(raw, dict):
        raise ValueError("attachment must be an object")
    data = dict(raw)
    if "kind" not in data and "type" in data:
        data["kind"] = data["type"]
    return _attachment_adapter.validate_python(data)


def _last_user_index(turns: list[ChatTurn]) -> int:
    for i in range(len(turns) - 1, -1, -1):
        if turns[i].role == "user":
            return i
    return -1


def _text_of(turn: ChatTurn) -> str:
    if isinstance(turn.content, str):
        return turn.content
    return "\n".join(part.text for part in turn.content if isinstance(part, TextPart))


def merge_attachments(
    turns: list[ChatTurn], attachments: list[Any], limits: ChatLimits
) -> MergeResult:
    """将附件合并到最后一条用户消息。

    合并后的内容为：原始文本片段（可能为空），随后按输入顺序
    每个有效附件对应一个片段：

    - 图片：``data:image/...;base64,...`` 且不超过 ``limits.max_image_data_url_length``
    - 文本：截断到 ``limits.max_attachment_text_length``，提供 ``name`` 时加上文件名前缀

    输入的 ``turns`` 不会被修改。

    :param turns: 规范化后的消息列表
    :param attachments: 原始附件列表
    :param limits: 限制参数
    :return: 合并后的消息列表及每个附件的处理结果

    .. note::
       没有用户消息时不做任何合并，所有附件记为拒绝。
    """
    if not attachments:
        return MergeResult(turns=list(turns))

    target = _last_user_index(turns)
    if target < 0:
        return MergeResult(
            turns=list(turns),
            outcomes=[
                AttachmentOutcome(index=i, kind=None, accepted=False, reason="no user turn")
                for i in range(len(attachments))
            ],
        )

    parts: list[ContentPart] = [TextPart(text=_text_of(turns[target]))]
    outcomes: list[AttachmentOutcome] = []

    for index, raw in enumerate(attachments):
        try:
            attachment = _parse_attachment(raw)
        except (ValueError, PydanticValidationError):
            kind = raw.get("kind", raw.get("type")) if isinstance(raw, dict) else None
            outcomes.append(
                AttachmentOutcome(
                    index=index,
                    kind=kind if isinstance(kind, str) else None,
                    accepted=False,
                    reason="invalid attachment",
                )
            )
            continue

        if isinstance(attachment, ImageAttachment):
            if len(attachment.data_url) > limits.max_image_data_url_length:
                outcomes.append(
                    AttachmentOutcome(index=index, kind="image", accepted=False, reason="image too large")
                )
                continue
            if not is_valid_image_data_url(attachment.data_url):
                outcomes.append(
                    AttachmentOutcome(index=index, kind="image", accepted=False, reason="malformed data URL")
                )
                continue
            parts.append(ImagePart(url=attachment.data_url))
        else:
            text = attachment.text[: limits.max_attachment_text_length]
            if attachment.name:
                text = f"[Attachment: {attachment.name}]\n{text}"
            parts.append(TextPart(text=text))

        outcomes.append(AttachmentOutcome(index=index, kind=attachment.kind, accepted=True))

    merged = list(turns)
    merged[target] = ChatTurn(role="user", content=parts)
    return MergeResult(turns=merged, outcomes=outcomes)
