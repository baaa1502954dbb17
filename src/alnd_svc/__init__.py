"""ALND Service - OpenAI 聊天代理服务。

本包提供了一个FastAPI应用，将浏览器客户端的聊天请求转发到
OpenAI Chat Completions API，负责输入规范化、附件合并以及
多模型回退与指数退避重试。

主要模块：
    - app: FastAPI应用实例和配置
    - routes: API路由定义
    - services.chat: 请求规范化、附件合并与模型调度
    - services.image: 图片生成（已停用）
    - config: 应用配置管理
    - logger: 结构化日志配置
    - models: 数据模型定义
"""

__version__ = "0"
