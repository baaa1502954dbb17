"""全局测试配置和 fixtures。

本模块提供所有测试共享的 fixtures 和配置。
"""

import os
import sys

import pytest
import stamina

# 在导入任何模块之前设置必需的环境变量
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key-for-testing-only")
os.environ.setdefault("OPENAI_MODELS", "gpt-4o-mini")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("VERBOSE_LOGGING", "false")

# 确保可以导入 src 下的 alnd_svc 包
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from alnd_svc.config import AppConfig
from alnd_svc.models import ChatLimits, DispatcherConfig


@pytest.fixture(scope="session")
def test_settings() -> AppConfig:
    """测试环境配置。"""
    return AppConfig()


@pytest.fixture
def chat_limits() -> ChatLimits:
    """默认限制参数。"""
    return ChatLimits()


@pytest.fixture
def dispatcher_config() -> DispatcherConfig:
    """默认调度配置（0.5 秒起始退避）。"""
    return DispatcherConfig(api_key="sk-test-key-for-testing-only", base_url="https://upstream.test/v1")


@pytest.fixture
def retry_waits():
    """记录 stamina 每次重试前计划等待的秒数。"""
    waits: list[float] = []
    stamina.instrumentation.set_on_retry_hooks([lambda details: waits.append(details.wait_for)])
    yield waits
    stamina.instrumentation.set_on_retry_hooks(None)


@pytest.fixture(autouse=True)
def reset_lru_cache():
    """自动重置配置缓存。

    确保每个测试都有干净的配置状态。
    """
    from alnd_svc.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def anyio_backend():
    """指定 anyio 后端为 asyncio。"""
    return "asyncio"
