"""BuildAgent 配置管理

使用 Pydantic Settings 管理配置，支持环境变量和 .env 文件。
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BuildAgentSettings(BaseSettings):
    """BuildAgent 全局配置"""

    model_config = SettingsConfigDict(
        env_prefix="BUILDAGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # LLM 配置
    llm_provider: str = Field(
        default="openai",
        description="模型提供商: openai（任意 OpenAI 兼容端点）, anthropic, scripted",
    )
    llm_model_name: str = Field(
        default="llama-3.3-70b-versatile",
        description="模型名称",
    )
    llm_api_key: str | None = Field(
        default=None,
        description="LLM API Key",
        validation_alias=AliasChoices(
            "BUILDAGENT_LLM_API_KEY",
            "OPENAI_API_KEY",
            "ANTHROPIC_API_KEY",
        ),
    )
    llm_base_url: str | None = Field(
        default=None,
        description="LLM API 地址（OpenAI 兼容端点，如 https://api.groq.com/openai/v1）",
    )
    llm_temperature: float = Field(default=0.2, description="采样温度")
    llm_max_tokens: int = Field(default=16000, description="单次响应最大 token 数")
    llm_timeout: float = Field(default=120.0, description="单次模型调用超时（秒）")
    llm_streaming: bool = Field(default=False, description="是否使用流式调用")

    # 编排循环配置
    max_iterations: int = Field(default=100, description="单次运行最大迭代次数")
    max_rate_limit_retries: int = Field(
        default=3,
        description="同一迭代内限流重试上限",
    )
    rate_limit_backoff: float = Field(
        default=2.0,
        description="限流退避基准时长（秒），按重试次数指数增长",
    )
    history_window: int = Field(
        default=50,
        description="发送给模型的最近历史消息条数",
    )
    parallel_tool_calls: bool = Field(
        default=False,
        description="同一轮中连续的领域工具调用是否并发执行（结果仍按顺序追加）",
    )
    strict_task_updates: bool = Field(
        default=False,
        description="update_task 遇到未知任务 ID 时是否返回失败",
    )

    # 审查配置
    review_max_files: int = Field(default=5, description="审查时最多读取的文件数")
    review_file_chars: int = Field(default=5000, description="审查时单个文件截断长度")

    # 工作区配置
    workspace_root: Path = Field(
        default=Path("./data/projects"),
        description="项目工作区根目录",
    )
    command_timeout: float = Field(default=60.0, description="run_command 默认超时（秒）")

    # 事件持久化
    events_dir: Path = Field(
        default=Path("./data/events"),
        description="事件日志目录",
    )
    persist_events: bool = Field(default=False, description="是否将事件写入 JSONL 文件")

    # 会话注册表
    max_sessions: int = Field(default=256, description="进程内保留的最大会话数")
    session_idle_ttl: float = Field(
        default=3600.0,
        description="会话空闲淘汰时间（秒），<=0 表示不按时间淘汰",
    )

    def project_dir(self, project_id: str) -> Path:
        """项目工作区目录"""
        return self.workspace_root / project_id

    def events_path(self, session_id: str) -> Path:
        """会话事件日志文件路径"""
        return self.events_dir / f"{session_id}.jsonl"


# 全局配置实例（延迟初始化）
_settings: BuildAgentSettings | None = None


def get_settings() -> BuildAgentSettings:
    """获取全局配置实例"""
    global _settings
    if _settings is None:
        _settings = BuildAgentSettings()
    return _settings


def reset_settings():
    """重置全局配置（主要用于测试）"""
    global _settings
    _settings = None
