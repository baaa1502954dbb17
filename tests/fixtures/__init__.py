"""测试辅助工具包。"""

from .builders import (
    PNG_BASE64,
    ChatPayloadBuilder,
    image_data_url,
)

from .mocks import (
    MockUpstream,
    completion_payload,
    fail,
    ok,
)

__all__ = [
    # Builders
    "PNG_BASE64",
    "ChatPayloadBuilder",
    "image_data_url",
    # Mocks
    "MockUpstream",
    "completion_payload",
    "fail",
    "ok",
]
