"""日志配置模块。

本模块使用loguru进行结构化日志记录，提供统一的日志配置和获取接口，
支持开发和生产环境的不同配置。
"""

import sys
from typing import Any

import orjson
from loguru import logger


def configure_logging(log_level: str = "INFO", use_colors: bool = True, verbose: bool = False) -> None:
    """配置loguru日志系统。

    :param log_level: 日志级别，可选值：DEBUG, INFO, WARNING, ERROR, CRITICAL
    :param use_colors: 是否在控制台输出中使用颜色
    :param verbose: 是否启用详细日志模式（包含完整时间戳、行号、backtrace和diagnose）

    .. note::
       此函数应在应用启动时调用一次，配置全局日志行为。

       - 简洁模式（verbose=False，默认）：简短时间格式，不显示行号
       - 详细模式（verbose=True）：完整时间格式，显示行号，启用backtrace

       日志中不会输出 API 密钥和附件内容。
    """
    logger.remove()

    level = log_level.upper()

    if verbose:
        fmt = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <5} | {name}:{function}:{line} - {message}"
        if use_colors:
            fmt = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <5}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        logger.add(
            sys.stderr,
            format=fmt,
            level=level,
            colorize=use_colors,
            backtrace=True,
            diagnose=use_colors,
        )
    else:
        fmt = "{time:HH:mm:ss} | {level: <5} | {name}:{function} - {message}"
        if use_colors:
            fmt = "<green>{time:HH:mm:ss}</green> | <level>{level: <5}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
        logger.add(
            sys.stderr,
            format=fmt,
            level=level,
            colorize=use_colors,
            backtrace=False,
            diagnose=False,
        )


def get_logger(name: str | None = None):
    """获取logger实例。

    :param name: logger名称，通常使用模块的__name__。loguru使用全局logger，此参数用于兼容性
    :return: 配置好的loguru logger实例

    Example::

        >>> from alnd_svc.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Dispatch succeeded: model={}, attempts={}", "gpt-4o-mini", 1)

    .. note::
       loguru使用{}占位符进行字符串格式化。
    """
    return logger


def json_str(value: Any) -> str:
    """将任意值序列化为紧凑 JSON 字符串，用于日志输出。

    无法序列化的对象退化为 ``str()``。
    """
    return orjson.dumps(value, default=str).decode("utf-8")
