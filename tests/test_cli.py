"""测试命令行入口"""

import tempfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from buildagent.cli import app
from buildagent.core.config import reset_settings
from buildagent.infrastructure import AgentEventType, EventBus

runner = CliRunner()


class TestCli:
    """CLI 命令测试"""

    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        reset_settings()
        yield
        reset_settings()

    def test_tools(self) -> None:
        result = runner.invoke(app, ["tools"])
        assert result.exit_code == 0
        for name in ("read_file", "execute_sql", "final_response", "create_tasks"):
            assert name in result.output

    @pytest.fixture
    def events_file(self) -> Path:
        with tempfile.TemporaryDirectory() as d:
            path = Path(d) / "s1.jsonl"
            bus = EventBus(session_id="s1", persist_path=path)
            bus.emit(AgentEventType.THINKING, {"iteration": 1, "message": "Iteration 1"})
            bus.emit(AgentEventType.TOOL_CALL, {"id": "c1", "name": "write_file", "arguments": {}})
            bus.emit(AgentEventType.COMPLETE, {"message": "done", "tasks": [], "iterations": 1})
            yield path

    def test_events_replay(self, events_file: Path) -> None:
        """测试重放事件日志"""
        result = runner.invoke(app, ["events", str(events_file)])
        assert result.exit_code == 0
        assert "write_file" in result.output
        assert "complete" in result.output
        assert "3 events" in result.output

    def test_events_type_filter(self, events_file: Path) -> None:
        result = runner.invoke(app, ["events", str(events_file), "--type", "complete"])
        assert result.exit_code == 0
        assert "write_file" not in result.output
        assert "1 events" in result.output

    def test_events_unknown_type(self, events_file: Path) -> None:
        result = runner.invoke(app, ["events", str(events_file), "-t", "bogus"])
        assert result.exit_code == 1

    def test_events_missing_file(self) -> None:
        result = runner.invoke(app, ["events", "/nonexistent/events.jsonl"])
        assert result.exit_code == 1

    def test_run_with_scripted_provider(self) -> None:
        """测试离线运行（脚本化提供商回显请求）"""
        with tempfile.TemporaryDirectory() as d:
            result = runner.invoke(
                app,
                ["run", "add table X", "-p", "demo", "--provider", "scripted"],
                env={"BUILDAGENT_WORKSPACE_ROOT": d},
            )
        assert result.exit_code == 0
        assert "add table X" in result.output
        assert "status: complete" in result.output

    def test_run_verbose_logs_events(self) -> None:
        """测试 verbose 模式同时输出终端显示与结构化日志"""
        import sys

        from loguru import logger

        try:
            with tempfile.TemporaryDirectory() as d:
                result = runner.invoke(
                    app,
                    ["run", "add table X", "-p", "demo", "--provider", "scripted", "-v"],
                    env={"BUILDAGENT_WORKSPACE_ROOT": d},
                )
        finally:
            logger.remove()
            logger.add(sys.stderr)
        assert result.exit_code == 0
        assert "[Agent] 运行完成" in result.output
        assert "status: complete" in result.output

    def test_build_callback(self) -> None:
        from buildagent.agents import CompositeCallback, ConsoleDisplay
        from buildagent.cli import _build_callback

        assert isinstance(_build_callback(verbose=False, stream=False), ConsoleDisplay)
        verbose = _build_callback(verbose=True, stream=False)
        assert isinstance(verbose, CompositeCallback)
        assert [type(c).__name__ for c in verbose._callbacks] == ["ConsoleDisplay", "LoggingCallback"]
