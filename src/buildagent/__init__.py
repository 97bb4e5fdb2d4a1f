"""BuildAgent - LLM 驱动的项目构建 Agent"""

__version__ = "0.1.0"
