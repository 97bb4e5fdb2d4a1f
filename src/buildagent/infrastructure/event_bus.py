"""EventBus 事件总线

会话级只追加事件日志，是编排过程唯一的外部观测通道。
支持同步/异步订阅、JSONL 文件持久化与按发布顺序重放。
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiofiles
from loguru import logger


class AgentEventType(str, Enum):
    """事件类型"""

    THINKING = "thinking"
    """推理进度（迭代开始、限流退避、审查中）"""

    TOOL_CALL = "tool_call"
    """工具调用发起"""

    TOOL_RESULT = "tool_result"
    """工具调用结果"""

    TASK_UPDATE = "task_update"
    """任务创建或状态变化"""

    MESSAGE = "message"
    """面向用户的消息"""

    REVIEW = "review"
    """审查开始/审查结论"""

    COMPLETE = "complete"
    """运行完成"""

    ERROR = "error"
    """运行终止错误"""


@dataclass
class AgentEvent:
    """事件数据结构

    Attributes:
        event_type: 事件类型
        data: 事件负载
        timestamp: 事件时间戳（单调不减）
        seq: 会话内序号（严格递增，从 1 开始）
        session_id: 所属会话
    """

    event_type: AgentEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    seq: int = 0
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "type": self.event_type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "seq": self.seq,
            "session_id": self.session_id,
        }

    def to_json(self) -> str:
        """转换为 JSON 字符串"""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentEvent:
        """从字典创建事件"""
        return cls(
            event_type=AgentEventType(data["type"]),
            data=data.get("data") or {},
            timestamp=datetime.fromisoformat(data["timestamp"]),
            seq=int(data.get("seq", 0)),
            session_id=data.get("session_id"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> AgentEvent:
        """从 JSON 字符串创建事件"""
        return cls.from_dict(json.loads(json_str))


# 事件处理器类型
EventHandler = Callable[[AgentEvent], None]
AsyncEventHandler = Callable[[AgentEvent], Awaitable[None]]


class EventBus:
    """会话事件总线

    特点：
    1. 只追加：事件一旦发布不会被修改或删除
    2. 严格有序：seq 严格递增，timestamp 单调不减
    3. 订阅者异常只记录日志，不影响发布方
    4. 可选持久化到 JSONL 文件并从文件重放

    Attributes:
        session_id: 所属会话 ID
        persist_path: 持久化文件路径（None 表示不持久化）
    """

    def __init__(self, session_id: str | None = None, persist_path: Path | None = None):
        """初始化事件总线

        Args:
            session_id: 所属会话 ID
            persist_path: JSONL 持久化文件路径（可选）
        """
        self.session_id = session_id
        self.persist_path = persist_path

        # 订阅者映射：事件类型 -> 处理器列表
        self._subscribers: dict[AgentEventType, list[EventHandler]] = defaultdict(list)
        self._async_subscribers: dict[AgentEventType, list[AsyncEventHandler]] = defaultdict(list)

        # 通配符订阅者（接收所有事件）
        self._wildcard_subscribers: list[EventHandler] = []
        self._async_wildcard_subscribers: list[AsyncEventHandler] = []

        self._events: list[AgentEvent] = []

        if self.persist_path is not None:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)

    # ==================== 订阅 ====================

    def subscribe(self, event_type: AgentEventType | None, handler: EventHandler) -> None:
        """订阅事件（同步处理器）

        Args:
            event_type: 事件类型，None 表示订阅所有事件
            handler: 事件处理函数
        """
        if event_type is None:
            self._wildcard_subscribers.append(handler)
        else:
            self._subscribers[event_type].append(handler)

    def subscribe_async(
        self,
        event_type: AgentEventType | None,
        handler: AsyncEventHandler,
    ) -> None:
        """订阅事件（异步处理器）

        Args:
            event_type: 事件类型，None 表示订阅所有事件
            handler: 异步事件处理函数
        """
        if event_type is None:
            self._async_wildcard_subscribers.append(handler)
        else:
            self._async_subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: AgentEventType | None, handler: Callable) -> None:
        """取消订阅（同步或异步处理器）"""
        if event_type is None:
            pools = [self._wildcard_subscribers, self._async_wildcard_subscribers]
        else:
            pools = [self._subscribers[event_type], self._async_subscribers[event_type]]
        for pool in pools:
            if handler in pool:
                pool.remove(handler)

    # ==================== 发布 ====================

    def emit(self, event_type: AgentEventType, data: dict[str, Any] | None = None) -> AgentEvent:
        """创建并发布事件（同步，仅通知同步订阅者）

        Args:
            event_type: 事件类型
            data: 事件负载

        Returns:
            发布的事件
        """
        event = self._append(event_type, data or {})
        if self.persist_path is not None:
            self._persist_event(event)
        self._notify(event)
        return event

    async def emit_async(
        self,
        event_type: AgentEventType,
        data: dict[str, Any] | None = None,
    ) -> AgentEvent:
        """创建并发布事件，依次等待异步订阅者

        Args:
            event_type: 事件类型
            data: 事件负载

        Returns:
            发布的事件
        """
        event = self._append(event_type, data or {})
        if self.persist_path is not None:
            await self._persist_event_async(event)
        self._notify(event)

        handlers = [
            *self._async_wildcard_subscribers,
            *self._async_subscribers.get(event.event_type, []),
        ]
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Async event handler error: {e}")
        return event

    def _append(self, event_type: AgentEventType, data: dict[str, Any]) -> AgentEvent:
        """追加事件到日志，保证序号与时间戳有序"""
        now = datetime.now()
        if self._events and now < self._events[-1].timestamp:
            now = self._events[-1].timestamp

        event = AgentEvent(
            event_type=event_type,
            data=data,
            timestamp=now,
            seq=len(self._events) + 1,
            session_id=self.session_id,
        )
        self._events.append(event)

        logger.debug(f"[{self.session_id}] event #{event.seq}: {event_type.value}")
        return event

    def _notify(self, event: AgentEvent) -> None:
        """调用同步订阅者"""
        handlers = [
            *self._wildcard_subscribers,
            *self._subscribers.get(event.event_type, []),
        ]
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error: {e}")

    def _persist_event(self, event: AgentEvent) -> None:
        """持久化单个事件"""
        try:
            with self.persist_path.open("a", encoding="utf-8") as f:
                f.write(event.to_json() + "\n")
        except OSError as e:
            logger.warning(f"Failed to persist event #{event.seq}: {e}")

    async def _persist_event_async(self, event: AgentEvent) -> None:
        """异步持久化单个事件"""
        try:
            async with aiofiles.open(self.persist_path, "a", encoding="utf-8") as f:
                await f.write(event.to_json() + "\n")
        except OSError as e:
            logger.warning(f"Failed to persist event #{event.seq}: {e}")

    # ==================== 查询与重放 ====================

    @property
    def events(self) -> list[AgentEvent]:
        """事件日志副本（按发布顺序）"""
        return list(self._events)

    @property
    def last_event(self) -> AgentEvent | None:
        return self._events[-1] if self._events else None

    def replay(
        self,
        since_seq: int = 0,
        event_types: list[AgentEventType] | None = None,
    ) -> list[AgentEvent]:
        """按发布顺序重放内存中的事件

        Args:
            since_seq: 仅返回序号大于该值的事件
            event_types: 事件类型过滤（可选）

        Returns:
            匹配的事件列表
        """
        events = [e for e in self._events if e.seq > since_seq]
        if event_types:
            events = [e for e in events if e.event_type in event_types]
        return events

    def count(self, event_type: AgentEventType) -> int:
        """统计某类事件数量"""
        return sum(1 for e in self._events if e.event_type == event_type)

    @staticmethod
    def replay_file(
        path: Path,
        event_types: list[AgentEventType] | None = None,
    ) -> list[AgentEvent]:
        """从 JSONL 文件重放事件

        Args:
            path: 事件日志文件
            event_types: 事件类型过滤（可选）

        Returns:
            按文件顺序排列的事件列表
        """
        events: list[AgentEvent] = []
        if not path.exists():
            return events

        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue

                try:
                    event = AgentEvent.from_json(line)
                except (ValueError, KeyError) as e:
                    logger.warning(f"Failed to parse event: {e}")
                    continue

                if event_types and event.event_type not in event_types:
                    continue
                events.append(event)

        return events

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return (
            f"EventBus("
            f"session={self.session_id}, "
            f"subscribers={sum(len(s) for s in self._subscribers.values())}, "
            f"events={len(self._events)})"
        )
