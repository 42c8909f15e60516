"""
CLI 模块。

说明：
- 对外入口为 `agent-devkit ...`（由 `pyproject.toml` 的 `[project.scripts]` 注册）；
- CLI 仅做“配置加载 + 调用 conformance 能力 + 输出结果”，不复制核心逻辑。
"""
