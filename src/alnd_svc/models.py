"""数据模型定义模块。

本模块定义API请求和响应的Pydantic模型，用于数据验证和序列化，
以及核心逻辑使用的不可变配置值。
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# --- 不可变配置值 ---

class ChatLimits(BaseModel):
    """请求规范化与附件合并的限制参数（不可变）。"""

    model_config = ConfigDict(frozen=True)

    max_history_items: int = Field(default=20, ge=1, description="保留的最大历史消息数")
    max_content_length: int = Field(default=8000, ge=1, description="单条消息最大字符数")
    max_system_length: int = Field(default=8000, ge=1, description="系统提示词最大字符数")
    max_attachment_text_length: int = Field(default=100_000, ge=1, description="文本附件最大字符数")
    max_image_data_url_length: int = Field(default=7_000_000, ge=1, description="图片 data URL 最大字符数")
    min_output_tokens: int = Field(default=50, ge=1, description="输出 token 下限")
    max_output_tokens: int = Field(default=2000, ge=1, description="输出 token 上限")
    default_output_tokens: int = Field(default=400, ge=1, description="默认输出 token 数")


class DispatcherConfig(BaseModel):
    """模型调度器配置（不可变）。

    :param api_key: 上游 API 密钥
    :param base_url: 上游 API 基础 URL（不含结尾斜杠）
    :param temperature: 采样温度
    :param retry_attempts: 每个候选模型的最大尝试次数
    :param retry_initial_delay: 首次重试前的等待时间（秒），之后每次翻倍
    :param retry_max_delay: 单次等待的上限（秒）
    :param request_timeout: 单次上游请求超时（秒）
    :param dispatch_timeout: 整次调度（所有模型、所有尝试）的总超时（秒）
    """

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., min_length=1, repr=False)
    base_url: str = Field(default="https://api.openai.com/v1")
    temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_initial_delay: float = Field(default=0.5, gt=0)
    retry_max_delay: float = Field(default=8.0, gt=0)
    request_timeout: float = Field(default=60.0, gt=0)
    dispatch_timeout: float = Field(default=120.0, gt=0)


# --- 对话内容 ---

class TextPart(BaseModel):
    """文本内容片段。"""

    kind: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """图片内容片段（data URL）。"""

    kind: Literal["image"] = "image"
    url: str


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="kind")]


class ChatTurn(BaseModel):
    """规范化后的单条对话消息。

    :param role: 消息角色（system/user/assistant）
    :param content: 纯文本，或合并附件后的内容片段列表
    """

    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    def to_upstream(self) -> dict[str, Any]:
        """转换为上游 Chat Completions API 的消息格式。

        .. code-block:: python

           {"role": "user", "content": [
               {"type": "text", "text": "看这张图"},
               {"type": "image_url", "image_url": {"url": "data:image/png;base64,..."}}
           ]}
        """
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}

        parts: list[dict[str, Any]] = []
        for part in self.content:
            if isinstance(part, ImagePart):
                parts.append({"type": "image_url", "image_url": {"url": part.url}})
            else:
                parts.append({"type": "text", "text": part.text})
        return {"role": self.role, "content": parts}


# --- 附件 ---

class ImageAttachment(BaseModel):
    """图片附件，``dataUrl`` 为 base64 编码的 data URL。"""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["image"]
    data_url: str = Field(..., validation_alias=AliasChoices("dataUrl", "data_url"))


class TextAttachment(BaseModel):
    """文本附件，可选文件名。"""

    kind: Literal["text"]
    text: str
    name: Optional[str] = None


AttachmentSpec = Annotated[Union[ImageAttachment, TextAttachment], Field(discriminator="kind")]


class AttachmentOutcome(BaseModel):
    """单个附件的合并结果。

    :param index: 附件在请求中的位置
    :param kind: 附件类型（无法识别时为 None）
    :param accepted: 是否已合并到消息中
    :param reason: 被拒绝的原因
    """

    index: int
    kind: Optional[str] = None
    accepted: bool
    reason: Optional[str] = None


class MergeResult(BaseModel):
    """附件合并结果。"""

    turns: List[ChatTurn]
    outcomes: List[AttachmentOutcome] = Field(default_factory=list)

    @property
    def rejected(self) -> List[AttachmentOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.accepted]


# --- 请求 ---

class ChatPayload(BaseModel):
    """聊天请求体。

    仅校验容器结构，各字段的强制转换和截断由
    :func:`alnd_svc.services.chat.normalizer.normalize_chat_request` 完成。

    :param messages: 对话消息列表（必填）
    :param system: 系统提示词，仅接受非空字符串
    :param attachments: 附件列表
    :param max_tokens: 最大输出 token 数，兼容 ``maxOutputTokens``
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    messages: List[Any] = Field(..., description="消息列表")
    system: Any = Field(default=None, description="系统提示词")
    attachments: Optional[List[Any]] = Field(default=None, description="附件列表")
    max_tokens: Any = Field(
        default=None,
        validation_alias=AliasChoices("max_tokens", "maxOutputTokens"),
        description="最大输出 token 数",
    )


class NormalizedChat(BaseModel):
    """规范化后的聊天请求。"""

    turns: List[ChatTurn]
    max_tokens: int
    attachments: List[Any] = Field(default_factory=list)


class ImageRequest(BaseModel):
    """规范化后的图片生成请求。"""

    prompt: str
    size: Literal["1024x1024", "1024x1536", "1536x1024", "auto"] = "1024x1024"
    quality: Literal["low", "medium", "high", "auto"] = "high"


# --- 响应 ---

class DispatchResult(BaseModel):
    """模型调度成功结果。"""

    reply: str
    model: str


class ChatReply(BaseModel):
    """聊天接口成功响应体。"""

    reply: str
    model: str


class ErrorResponse(BaseModel):
    """错误响应体。"""

    error: str


class HealthResponse(BaseModel):
    """健康检查响应体。"""

    ok: bool = True
    model: str = "openai"
    time: str
