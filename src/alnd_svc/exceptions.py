"""自定义异常模块。

本模块定义了应用中使用的自定义异常类型。

错误分类：

- :class:`ValidationError`: 客户端输入错误，返回 400，不重试
- :class:`ConfigurationError`: 缺少必要配置（如 API 密钥），返回 500，不重试
- :class:`TransientUpstreamError`: 上游 429/5xx 或网络错误，退避重试后切换模型
- :class:`PermanentUpstreamError`: 上游其他非成功状态，立即切换模型

其余未预期的异常由全局异常处理器统一返回 500。
"""


class ProxyError(Exception):
    """代理服务异常基类。

    :param status_code: 对应的 HTTP 状态码
    :param message: 错误信息
    :param error_type: 错误类型标识
    """

    def __init__(self, status_code: int, message: str, error_type: str = "proxy_error"):
        self.status_code = status_code
        self.message = message
        self.error_type = error_type
        super().__init__(self.message)


class ValidationError(ProxyError):
    """客户端请求校验失败。"""

    def __init__(
        self,
        message: str = "请求参数错误",
        status_code: int = 400,
        error_type: str = "validation_error",
    ):
        super().__init__(status_code, message, error_type)


class ConfigurationError(ProxyError):
    """服务端配置缺失。"""

    def __init__(
        self,
        message: str = "服务配置缺失",
        status_code: int = 500,
        error_type: str = "configuration_error",
    ):
        super().__init__(status_code, message, error_type)


class UpstreamAPIError(ProxyError):
    """上游API错误异常类。

    用于封装上游API返回的HTTP错误，包含状态码和错误信息。
    ``model`` 记录出错时使用的候选模型。
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        error_type: str = "upstream_error",
        model: str | None = None,
    ):
        super().__init__(status_code, message, error_type)
        self.model = model


class TransientUpstreamError(UpstreamAPIError):
    """可重试的上游错误（429、5xx、网络错误）。"""

    def __init__(
        self,
        status_code: int,
        message: str = "上游服务器暂时不可用",
        error_type: str = "transient_upstream_error",
        model: str | None = None,
    ):
        super().__init__(status_code, message, error_type, model)


class PermanentUpstreamError(UpstreamAPIError):
    """不可重试的上游错误。"""

    def __init__(
        self,
        status_code: int,
        message: str = "上游请求失败",
        error_type: str = "permanent_upstream_error",
        model: str | None = None,
    ):
        super().__init__(status_code, message, error_type, model)


def is_transient_status(status_code: int) -> bool:
    """判断上游状态码是否属于可重试的暂时性错误。

    :param status_code: HTTP 状态码
    :return: 429 或 5xx 时返回 True
    """
    return status_code == 429 or 500 <= status_code < 600
