"""运行回调系统

定义状态回调协议和基础实现。回调有两个独立通道：
- on_event: 事件总线上的每个事件（有序、完整）
- on_delta: 流式增量（即发即弃，可能丢失或乱序，不影响运行结果）
"""

from typing import Any, Protocol, runtime_checkable

from loguru import logger

from ..infrastructure.event_bus import AgentEvent, AgentEventType
from ..types import TokenDelta


@runtime_checkable
class StatusCallback(Protocol):
    """状态回调协议

    使用 Protocol 而非 ABC，支持鸭子类型。
    """

    async def on_event(self, event: AgentEvent) -> None:
        """接收事件通知"""
        ...

    async def on_delta(self, delta: TokenDelta) -> None:
        """接收流式增量"""
        ...


class NullCallback:
    """空回调实现

    当不需要状态输出时使用，避免 None 检查。
    """

    async def on_event(self, event: AgentEvent) -> None:
        pass

    async def on_delta(self, delta: TokenDelta) -> None:
        pass


class CompositeCallback:
    """组合回调

    将多个回调组合在一起，事件会广播给所有回调。
    """

    def __init__(self, callbacks: list[StatusCallback] | None = None):
        self._callbacks: list[StatusCallback] = callbacks or []

    def add(self, callback: StatusCallback) -> None:
        self._callbacks.append(callback)

    def remove(self, callback: StatusCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def clear(self) -> None:
        self._callbacks.clear()

    async def on_event(self, event: AgentEvent) -> None:
        """广播事件到所有回调"""
        for callback in self._callbacks:
            try:
                await callback.on_event(event)
            except Exception as e:
                logger.warning(f"回调执行失败: {type(callback).__name__}: {e}")

    async def on_delta(self, delta: TokenDelta) -> None:
        for callback in self._callbacks:
            try:
                await callback.on_delta(delta)
            except Exception as e:
                logger.warning(f"回调执行失败: {type(callback).__name__}: {e}")


class LoggingCallback:
    """日志回调

    将事件转换为结构化日志，便于调试和分析。
    """

    def __init__(self, level: str = "DEBUG"):
        """初始化日志回调

        Args:
            level: 日志级别（DEBUG/INFO/WARNING/ERROR）
        """
        self._level = level.upper()

    async def on_event(self, event: AgentEvent) -> None:
        log_func = getattr(logger, self._level.lower(), logger.debug)
        data = event.data

        if event.event_type == AgentEventType.THINKING:
            if data.get("backoff"):
                log_func(f"[Agent] 限流退避 {data.get('delay', 0):.1f}s (第 {data.get('attempt')} 次)")
            elif "iteration" in data:
                log_func(f"[Agent] 第 {data['iteration']} 轮推理")
            else:
                log_func(f"[Agent] {data.get('message', 'thinking')}")

        elif event.event_type == AgentEventType.TOOL_CALL:
            log_func(f"[ToolCall] {data.get('name')} | args: {_truncate_dict(data.get('arguments', {}))}")

        elif event.event_type == AgentEventType.TOOL_RESULT:
            status = "完成" if data.get("success") else f"失败: {data.get('error')}"
            log_func(f"[ToolCall] {data.get('name')} {status}")

        elif event.event_type == AgentEventType.TASK_UPDATE:
            task = data.get("task", {})
            log_func(f"[Task] {task.get('id')} -> {task.get('status')}")

        elif event.event_type == AgentEventType.REVIEW:
            verdict = data.get("verdict")
            if verdict:
                log_func(f"[Review] grade={verdict.get('grade')} approved={verdict.get('approved')}")

        elif event.event_type == AgentEventType.COMPLETE:
            log_func(f"[Agent] 运行完成: {data.get('iterations', 0)} 轮")

        elif event.event_type == AgentEventType.ERROR:
            logger.warning(f"[Agent] 运行终止: {data.get('error')}")

    async def on_delta(self, delta: TokenDelta) -> None:
        pass


def _truncate_dict(data: dict[str, Any], max_str_len: int = 80) -> dict[str, Any]:
    """截断字典中的长字符串

    Args:
        data: 原始字典
        max_str_len: 字符串最大长度

    Returns:
        截断后的字典（新对象）
    """
    result = {}
    for key, value in data.items():
        if isinstance(value, str) and len(value) > max_str_len:
            result[key] = value[:max_str_len] + "..."
        elif isinstance(value, dict):
            result[key] = _truncate_dict(value, max_str_len)
        elif isinstance(value, list) and len(value) > 5:
            result[key] = f"[{len(value)} items]"
        else:
            result[key] = value
    return result
