"""UUID 生成工具模块（使用 fastuuid 优化性能）"""

from fastuuid import uuid4


def generate_request_id() -> str:
    """生成请求 ID，用于串联一次聊天请求的日志

    Returns:
        str: 12 位十六进制字符串
    """
    return uuid4().hex[:12]
