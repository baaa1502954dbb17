"""应用配置模块。

本模块使用pydantic-settings进行环境变量管理，提供应用运行所需的所有配置参数。
支持多环境配置：
- 开发环境：读取 .env.development
- 生产环境：读取 .env.production
- 默认：读取 .env

环境通过 APP_ENV 环境变量指定，默认为 development。

核心逻辑（规范化、附件合并、模型调度）不直接读取本模块，
而是在启动时通过 :meth:`AppConfig.chat_limits` 和
:meth:`AppConfig.dispatcher_config` 构建不可变配置值后显式传入。
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import ChatLimits, DispatcherConfig

DEFAULT_MODEL = "gpt-4o-mini"


def _get_env_files() -> tuple[str, ...]:
    """根据APP_ENV环境变量获取要加载的.env文件列表。

    返回的文件列表按优先级从高到低排列。

    :return: .env文件路径元组
    """
    app_env = os.getenv("APP_ENV", "development")

    env_files_map = {
        "development": (".env.development", ".env"),
        "production": (".env.production", ".env"),
    }

    return env_files_map.get(app_env, (".env",))


class AppConfig(BaseSettings):
    """应用配置类。

    使用 Pydantic BaseSettings 从环境变量加载配置。
    支持从 ``.env`` 文件读取，优先级：环境变量 > .env 文件 > 默认值。

    :param app_env: 应用运行环境（development/production）
    :param host: 服务器监听地址
    :param port: 服务器监听端口（1-65535）
    :param workers: 工作进程数（≥1）
    :param log_level: 日志级别（DEBUG/INFO/WARNING/ERROR/CRITICAL）
    :param verbose_logging: 是否启用详细日志模式
    :param openai_api_key: 上游 API 密钥，允许为空（请求时检查）
    :param openai_base_url: 上游 API 基础 URL
    :param openai_models: 候选模型列表，逗号分隔，按顺序尝试
    :type openai_models: str

    .. code-block:: bash

       # .env 文件示例
       APP_ENV=production
       OPENAI_API_KEY=sk-...
       OPENAI_MODELS=gpt-4o-mini,gpt-4o
       LOG_LEVEL=INFO

    .. seealso::
       :func:`get_settings` - 获取配置单例

    .. warning::
       ``OPENAI_API_KEY`` 缺失时服务仍可启动，但聊天接口会返回 500。
    """

    model_config = SettingsConfigDict(
        env_file=_get_env_files(),
        env_file_encoding="utf-8",
        extra="allow",
        case_sensitive=False,
    )

    app_env: Literal["development", "production"] = Field(
        default="development",
        description="应用运行环境"
    )

    host: str = Field(
        default="0.0.0.0",
        description="服务器监听地址"
    )

    port: int = Field(
        default=3000,
        description="服务器监听端口",
        gt=0,
        lt=65536
    )

    workers: int = Field(
        default=1,
        description="工作进程数",
        ge=1
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="日志级别"
    )

    verbose_logging: bool = Field(
        default=False,
        description="是否启用详细日志模式"
    )

    # 上游 API 配置
    openai_api_key: str = Field(
        default="",
        description="上游 API 密钥"
    )

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="上游 API 基础URL"
    )

    openai_models: str = Field(
        default=DEFAULT_MODEL,
        description="候选模型列表（逗号分隔）"
    )

    temperature: float = Field(
        default=0.6,
        ge=0.0,
        le=2.0,
        description="采样温度"
    )

    # 请求规范化限制
    max_history_items: int = Field(default=20, ge=1, description="保留的最大历史消息数")
    max_content_length: int = Field(default=8000, ge=1, description="单条消息最大字符数")
    max_system_length: int = Field(default=8000, ge=1, description="系统提示词最大字符数")
    max_attachment_text_length: int = Field(default=100_000, ge=1, description="文本附件最大字符数")
    max_image_data_url_length: int = Field(default=7_000_000, ge=1, description="图片 data URL 最大字符数")
    min_output_tokens: int = Field(default=50, ge=1, description="输出 token 下限")
    max_output_tokens: int = Field(default=2000, ge=1, description="输出 token 上限")
    default_output_tokens: int = Field(default=400, ge=1, description="默认输出 token 数")

    # 重试与超时配置（秒）
    retry_attempts: int = Field(default=3, ge=1, description="每个模型的最大尝试次数")
    retry_initial_delay: float = Field(default=0.5, gt=0, description="首次重试等待时间(秒)")
    retry_max_delay: float = Field(default=8.0, gt=0, description="单次重试最大等待时间(秒)")
    request_timeout: float = Field(default=60.0, gt=0, description="单次上游请求超时(秒)")
    dispatch_timeout: float = Field(default=120.0, gt=0, description="整次调度总超时(秒)")

    # 图片生成配置（接口已停用，仅供图片生成模块使用）
    image_provider: Literal["openai", "auto1111"] = Field(
        default="openai",
        description="图片生成服务提供方"
    )
    openai_image_model: str = Field(
        default="gpt-image-1",
        description="图片生成模型"
    )
    auto1111_url: str = Field(
        default="",
        description="AUTOMATIC1111 WebUI 地址"
    )

    # 前端与中间件
    static_dir: str = Field(
        default="",
        description="静态前端目录，为空时不提供静态文件"
    )
    cors_origins: str = Field(
        default="*",
        description="允许的跨域来源（逗号分隔）"
    )

    @field_validator("verbose_logging", mode="before")
    @classmethod
    def auto_enable_verbose_for_debug(cls, v: bool, info) -> bool:
        """如果日志级别为DEBUG，自动启用详细日志（除非明确设置为False）。"""
        if v is not None and isinstance(v, bool):
            return v
        if isinstance(v, str) and v.strip():
            return v.strip().lower() in ("1", "true", "yes", "on")
        log_level = info.data.get("log_level", "INFO")
        if log_level and log_level.upper() == "DEBUG":
            return True
        return False

    @field_validator("openai_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """验证上游 URL 格式"""
        if not v.startswith(("http://", "https://")):
            raise ValueError("openai_base_url 必须以 http:// 或 https:// 开头")
        return v.rstrip("/")

    @property
    def candidate_models(self) -> list[str]:
        """按顺序排列的候选模型列表。

        解析 ``openai_models``，去除空白项；解析结果为空时
        回退到 :data:`DEFAULT_MODEL`，保证列表非空。
        """
        candidates = [item.strip() for item in self.openai_models.split(",") if item.strip()]
        return candidates or [DEFAULT_MODEL]

    @property
    def cors_origin_list(self) -> list[str]:
        """跨域来源列表。"""
        return [item.strip() for item in self.cors_origins.split(",") if item.strip()] or ["*"]

    def chat_limits(self) -> ChatLimits:
        """构建请求规范化与附件合并使用的不可变限制值。

        :return: ChatLimits 实例
        """
        return ChatLimits(
            max_history_items=self.max_history_items,
            max_content_length=self.max_content_length,
            max_system_length=self.max_system_length,
            max_attachment_text_length=self.max_attachment_text_length,
            max_image_data_url_length=self.max_image_data_url_length,
            min_output_tokens=self.min_output_tokens,
            max_output_tokens=max(self.max_output_tokens, self.min_output_tokens),
            default_output_tokens=self.default_output_tokens,
        )

    def dispatcher_config(self) -> DispatcherConfig:
        """构建模型调度器使用的不可变配置值。

        :return: DispatcherConfig 实例
        :raises ConfigurationError: 未配置 ``OPENAI_API_KEY`` 时
        """
        if not self.openai_api_key:
            raise ConfigurationError("Server is missing OPENAI_API_KEY")
        return DispatcherConfig(
            api_key=self.openai_api_key,
            base_url=self.openai_base_url,
            temperature=self.temperature,
            retry_attempts=self.retry_attempts,
            retry_initial_delay=self.retry_initial_delay,
            retry_max_delay=max(self.retry_max_delay, self.retry_initial_delay),
            request_timeout=self.request_timeout,
            dispatch_timeout=self.dispatch_timeout,
        )


@lru_cache
def get_settings() -> AppConfig:
    """获取应用配置单例。

    使用lru_cache确保配置只被加载一次。

    :return: AppConfig实例

    Example::

        >>> settings = get_settings()
        >>> print(settings.host, settings.port, settings.candidate_models)
    """
    return AppConfig()
