#!/usr/bin/env python3
"""ALND AI 聊天代理启动脚本（Granian）。

命令行参数优先于 ``.env`` 和环境变量；``--models`` 与 ``--static-dir``
通过环境变量传给 Granian 启动的工作进程。

Example::

    # 默认配置，读取 .env
    python main.py

    # 指定候选模型和静态前端目录
    python main.py --models gpt-4o-mini,gpt-4o --static-dir ./public

    # 开发模式
    python main.py --port 8080 --reload
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path

# 添加 src 目录到 Python 路径
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / "src"))

from alnd_svc.config import get_settings


def parse_args(settings) -> argparse.Namespace:
    """解析命令行参数，默认值取自应用配置。"""
    parser = argparse.ArgumentParser(description="使用 Granian 启动 ALND AI 聊天代理服务")
    parser.add_argument("--host", default=settings.host, help=f"监听地址 (默认: {settings.host})")
    parser.add_argument("--port", type=int, default=settings.port, help=f"监听端口 (默认: {settings.port})")
    parser.add_argument("--workers", type=int, default=settings.workers, help=f"工作进程数 (默认: {settings.workers})")
    parser.add_argument(
        "--log-level",
        default=settings.log_level.lower(),
        choices=["critical", "error", "warning", "info", "debug"],
        help=f"日志级别 (默认: {settings.log_level.lower()})",
    )
    parser.add_argument("--models", default=None, help="候选模型，逗号分隔，覆盖 OPENAI_MODELS")
    parser.add_argument("--static-dir", default=None, help="静态前端目录，覆盖 STATIC_DIR")
    parser.add_argument("--reload", action="store_true", help="启用热重载（开发模式）")
    return parser.parse_args()


def build_command(args: argparse.Namespace) -> list[str]:
    """构建 Granian 命令行。"""
    cmd = [
        "granian",
        "--interface", "asgi",
        "--host", args.host,
        "--port", str(args.port),
        "--workers", str(args.workers),
        "--log-level", args.log_level,
    ]
    if args.reload:
        cmd.append("--reload")
    cmd.append("alnd_svc.asgi:app")
    return cmd


def build_env(args: argparse.Namespace) -> dict[str, str]:
    """构建工作进程的环境变量。"""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(project_root / "src"), env.get("PYTHONPATH")]))
    if args.models:
        env["OPENAI_MODELS"] = args.models
    if args.static_dir:
        env["STATIC_DIR"] = str(Path(args.static_dir).resolve())
    return env


def main():
    settings = get_settings()
    args = parse_args(settings)
    cmd = build_command(args)

    if not settings.openai_api_key:
        print("警告: 未设置 OPENAI_API_KEY，/api/chat 将返回 500")

    models = args.models or ",".join(settings.candidate_models)
    print(f"服务地址: http://{args.host}:{args.port}")
    print(f"候选模型: {models}")
    print(f"启动命令: {' '.join(cmd)}")

    try:
        subprocess.run(cmd, check=True, env=build_env(args))
    except KeyboardInterrupt:
        print("\n服务已停止")
    except subprocess.CalledProcessError as e:
        print(f"启动失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
