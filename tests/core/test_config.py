"""测试配置与异常"""

from pathlib import Path

import pytest

from buildagent.core import (
    BuildAgentError,
    BuildAgentSettings,
    ProviderError,
    ProviderFailureError,
    ProviderRateLimitedError,
    get_settings,
    reset_settings,
)
from buildagent.core.exceptions import DuplicateToolError, SessionNotFoundError, ToolValidationError


class TestSettings:
    """BuildAgentSettings 测试"""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for key in ("BUILDAGENT_MAX_ITERATIONS", "BUILDAGENT_LLM_PROVIDER", "OPENAI_API_KEY",
                    "ANTHROPIC_API_KEY", "BUILDAGENT_LLM_API_KEY"):
            monkeypatch.delenv(key, raising=False)
        reset_settings()
        yield
        reset_settings()

    def test_defaults(self) -> None:
        """测试默认值"""
        settings = BuildAgentSettings(_env_file=None)
        assert settings.llm_provider == "openai"
        assert settings.max_iterations == 100
        assert settings.max_rate_limit_retries == 3
        assert settings.history_window == 50
        assert settings.review_max_files == 5
        assert settings.review_file_chars == 5000
        assert settings.strict_task_updates is False
        assert settings.parallel_tool_calls is False

    def test_env_override(self, monkeypatch) -> None:
        """测试环境变量覆盖"""
        monkeypatch.setenv("BUILDAGENT_MAX_ITERATIONS", "7")
        monkeypatch.setenv("BUILDAGENT_LLM_PROVIDER", "anthropic")
        settings = BuildAgentSettings(_env_file=None)
        assert settings.max_iterations == 7
        assert settings.llm_provider == "anthropic"

    def test_api_key_alias(self, monkeypatch) -> None:
        """测试 API Key 别名"""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        settings = BuildAgentSettings(_env_file=None)
        assert settings.llm_api_key == "sk-test"

    def test_derived_paths(self, tmp_path: Path) -> None:
        """测试派生路径"""
        settings = BuildAgentSettings(
            _env_file=None, workspace_root=tmp_path / "projects", events_dir=tmp_path / "events"
        )
        assert settings.project_dir("demo") == tmp_path / "projects" / "demo"
        assert settings.events_path("s1") == tmp_path / "events" / "s1.jsonl"

    def test_global_instance(self) -> None:
        """测试全局实例缓存与重置"""
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first


class TestExceptions:
    """异常层次测试"""

    def test_hierarchy(self) -> None:
        assert issubclass(ProviderRateLimitedError, ProviderError)
        assert issubclass(ProviderFailureError, ProviderError)
        assert issubclass(ProviderError, BuildAgentError)

    def test_rate_limited_carries_retry_after(self) -> None:
        err = ProviderRateLimitedError("slow down", provider="openai", retry_after=1.5)
        assert err.provider == "openai"
        assert err.retry_after == 1.5
        assert str(err) == "slow down"

    def test_messages(self) -> None:
        assert "read_file" in str(DuplicateToolError("read_file"))
        assert "s-1" in str(SessionNotFoundError("s-1"))
        err = ToolValidationError("write_file", "content: missing")
        assert err.reason == "content: missing"
