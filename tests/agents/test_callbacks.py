"""测试运行回调"""

import pytest
from loguru import logger

from buildagent.agents import CompositeCallback, LoggingCallback, NullCallback, StatusCallback
from buildagent.agents.callbacks import _truncate_dict
from buildagent.infrastructure import AgentEvent, AgentEventType
from buildagent.types import TokenDelta


def _event(event_type: AgentEventType, **data) -> AgentEvent:
    return AgentEvent(event_type=event_type, data=data, seq=1, session_id="s1")


class RecordingCallback:
    def __init__(self):
        self.events: list[AgentEvent] = []
        self.deltas: list[TokenDelta] = []

    async def on_event(self, event: AgentEvent) -> None:
        self.events.append(event)

    async def on_delta(self, delta: TokenDelta) -> None:
        self.deltas.append(delta)


class FailingCallback:
    async def on_event(self, event: AgentEvent) -> None:
        raise RuntimeError("display crashed")

    async def on_delta(self, delta: TokenDelta) -> None:
        raise RuntimeError("display crashed")


@pytest.fixture
def log_records():
    """收集 loguru 日志"""
    records: list[str] = []
    handler_id = logger.add(lambda msg: records.append(msg.record["message"]), level="DEBUG")
    yield records
    logger.remove(handler_id)


class TestCompositeCallback:
    """组合回调测试"""

    def test_protocol(self) -> None:
        assert isinstance(CompositeCallback(), StatusCallback)
        assert isinstance(LoggingCallback(), StatusCallback)
        assert isinstance(NullCallback(), StatusCallback)

    @pytest.mark.asyncio
    async def test_broadcast_survives_failing_callback(self, log_records: list[str]) -> None:
        """测试单个回调失败不影响其他回调"""
        first, second = RecordingCallback(), RecordingCallback()
        composite = CompositeCallback([first, FailingCallback(), second])

        event = _event(AgentEventType.THINKING, iteration=1)
        await composite.on_event(event)
        await composite.on_delta(TokenDelta(text="hi"))

        assert first.events == [event] and second.events == [event]
        assert [d.text for d in second.deltas] == ["hi"]
        assert sum("FailingCallback" in r for r in log_records) == 2

    @pytest.mark.asyncio
    async def test_add_remove_clear(self) -> None:
        recorder = RecordingCallback()
        composite = CompositeCallback()
        composite.add(recorder)
        await composite.on_event(_event(AgentEventType.THINKING))
        assert len(recorder.events) == 1

        composite.remove(recorder)
        composite.remove(recorder)
        await composite.on_event(_event(AgentEventType.THINKING))
        assert len(recorder.events) == 1

        composite.add(recorder)
        composite.clear()
        await composite.on_event(_event(AgentEventType.THINKING))
        assert len(recorder.events) == 1


class TestLoggingCallback:
    """日志回调测试"""

    @pytest.mark.asyncio
    async def test_events_logged(self, log_records: list[str]) -> None:
        callback = LoggingCallback()
        await callback.on_event(_event(AgentEventType.THINKING, iteration=3))
        await callback.on_event(
            _event(AgentEventType.TOOL_CALL, name="write_file", arguments={"content": "x" * 200})
        )
        await callback.on_event(_event(AgentEventType.TOOL_RESULT, name="write_file", success=False, error="denied"))
        await callback.on_event(_event(AgentEventType.TASK_UPDATE, task={"id": "t1", "status": "completed"}))
        await callback.on_event(_event(AgentEventType.REVIEW, verdict={"grade": "A", "approved": True}))
        await callback.on_event(_event(AgentEventType.COMPLETE, iterations=2))
        await callback.on_event(_event(AgentEventType.ERROR, error="boom"))

        assert log_records == [
            "[Agent] 第 3 轮推理",
            "[ToolCall] write_file | args: {'content': '" + "x" * 80 + "...'}",
            "[ToolCall] write_file 失败: denied",
            "[Task] t1 -> completed",
            "[Review] grade=A approved=True",
            "[Agent] 运行完成: 2 轮",
            "[Agent] 运行终止: boom",
        ]

    @pytest.mark.asyncio
    async def test_backoff_and_level(self, log_records: list[str]) -> None:
        records: list[str] = []
        handler_id = logger.add(lambda msg: records.append(msg.record["level"].name), level="DEBUG")
        try:
            await LoggingCallback(level="info").on_event(
                _event(AgentEventType.THINKING, backoff=True, attempt=2, delay=4.0)
            )
        finally:
            logger.remove(handler_id)
        assert log_records == ["[Agent] 限流退避 4.0s (第 2 次)"]
        assert records == ["INFO"]


class TestTruncateDict:
    """长参数截断测试"""

    def test_truncate(self) -> None:
        data = {
            "short": "ok",
            "long": "y" * 100,
            "nested": {"sql": "z" * 90},
            "items": list(range(10)),
            "few": [1, 2],
        }
        result = _truncate_dict(data, max_str_len=10)
        assert result == {
            "short": "ok",
            "long": "y" * 10 + "...",
            "nested": {"sql": "z" * 10 + "..."},
            "items": "[10 items]",
            "few": [1, 2],
        }
        assert data["long"] == "y" * 100
