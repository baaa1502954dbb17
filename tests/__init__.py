"""ALND AI Proxy 测试套件。

测试分层：
- unit/: 单元测试 - 规范化、附件合并、模型调度、错误分类、配置
- test_http_errors.py: HTTP 边界测试（TestClient + dependency_overrides）
- test_e2e.py: 应用装配测试（健康检查、静态前端、生命周期）

使用方法：
    pytest                          # 运行所有测试
    pytest tests/unit/ -m unit      # 仅单元测试
"""

__version__ = "0"
