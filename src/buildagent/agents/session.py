"""会话管理

ConversationSession 是一次构建对话的聚合根（历史、任务、事件、状态）；
SessionRegistry 按会话 ID 管理会话生命周期，支持 LRU 与空闲超时淘汰。
"""

import asyncio
import time
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from ..core.config import BuildAgentSettings, get_settings
from ..core.exceptions import SessionBusyError, SessionNotFoundError
from ..infrastructure.event_bus import AgentEvent, AgentEventType, EventBus
from ..providers.base import ProviderAdapter
from ..tools.registry import ToolRegistry
from ..types import Message
from .callbacks import StatusCallback
from .engine import CancellationToken, OrchestrationEngine
from .models import RunResult, SessionStatus, Task, can_transition
from .tasks import TaskTracker


class ConversationSession:
    """会话

    同一会话的运行通过会话锁串行化，任意时刻最多一个编排循环在修改会话状态。
    外部只能通过 run() 修改会话，其余均为只读查询。
    """

    def __init__(
        self,
        session_id: str,
        project_id: str,
        provider: ProviderAdapter,
        tools: ToolRegistry,
        settings: BuildAgentSettings | None = None,
        domain: str | None = None,
        callback: StatusCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.session_id = session_id
        self.project_id = project_id
        self.domain = domain
        self.provider = provider
        self.tools = tools
        self.callback = callback

        self.status = SessionStatus.IDLE
        self.history: list[Message] = []
        self.tasks = TaskTracker()
        self.events = EventBus(
            session_id=session_id,
            persist_path=self.settings.events_path(session_id) if self.settings.persist_events else None,
        )

        self.created_at = datetime.now()
        self._clock = clock
        self.last_active = clock()
        self._lock = asyncio.Lock()
        self._cancel_token: CancellationToken | None = None

    # ==================== 运行 ====================

    async def run(
        self,
        message: str,
        callback: StatusCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        """处理一条用户消息

        会话正在运行时等待上一次运行结束（会话锁）。

        Args:
            message: 用户消息
            callback: 本次运行的状态回调（默认使用会话回调）
            cancel_token: 取消令牌（可选）

        Returns:
            RunResult
        """
        async with self._lock:
            self.touch()
            self._cancel_token = cancel_token or CancellationToken()
            engine = OrchestrationEngine(
                self,
                self.provider,
                self.tools,
                settings=self.settings,
                callback=callback or self.callback,
            )
            try:
                return await engine.run(message, self._cancel_token)
            finally:
                self._cancel_token = None
                self.touch()

    def cancel(self, reason: str = "cancelled") -> bool:
        """取消正在进行的运行

        Returns:
            是否有运行被取消
        """
        if self._cancel_token is None:
            return False
        self._cancel_token.cancel(reason)
        logger.info(f"[{self.session_id}] cancel requested: {reason}")
        return True

    def set_status(self, status: SessionStatus) -> None:
        """状态转换

        Raises:
            ValueError: 非法转换
        """
        if status == self.status:
            return
        if not can_transition(self.status, status):
            raise ValueError(f"illegal status transition: {self.status.value} -> {status.value}")
        logger.debug(f"[{self.session_id}] status {self.status.value} -> {status.value}")
        self.status = status

    def touch(self) -> None:
        self.last_active = self._clock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked() or self.status in (SessionStatus.RUNNING, SessionStatus.REVIEWING)

    # ==================== 查询 ====================

    def get_tasks(self) -> list[Task]:
        return self.tasks.list_tasks()

    def get_history(self) -> list[Message]:
        return list(self.history)

    def get_events(
        self,
        since_seq: int = 0,
        event_types: list[AgentEventType] | None = None,
    ) -> list[AgentEvent]:
        return self.events.replay(since_seq, event_types)

    def snapshot(self) -> dict[str, Any]:
        """JSON 可序列化的会话快照"""
        return {
            "session_id": self.session_id,
            "project_id": self.project_id,
            "domain": self.domain,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "tasks": self.tasks.to_list(),
            "history": [m.to_dict() for m in self.history],
            "events": [e.to_dict() for e in self.events.events],
        }

    def __repr__(self) -> str:
        return (
            f"ConversationSession(id={self.session_id}, project={self.project_id}, "
            f"status={self.status.value}, messages={len(self.history)}, tasks={len(self.tasks)})"
        )


class SessionRegistry:
    """会话注册表

    进程内唯一跨会话共享的结构。会话在首次引用时创建；
    超过 max_sessions 时按最近最少使用淘汰，空闲超过 session_idle_ttl 的会话也会被淘汰。
    正在运行的会话从不淘汰。
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        tools: ToolRegistry,
        settings: BuildAgentSettings | None = None,
        callback: StatusCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.provider = provider
        self.tools = tools
        self.callback = callback
        self._clock = clock
        self._sessions: OrderedDict[str, ConversationSession] = OrderedDict()

    def get_or_create(
        self,
        project_id: str,
        session_id: str | None = None,
        domain: str | None = None,
    ) -> ConversationSession:
        """获取或创建会话

        Args:
            project_id: 项目 ID
            session_id: 会话 ID（None 时自动生成）
            domain: 项目领域（可选）

        Returns:
            会话对象
        """
        sid = session_id or f"session-{uuid.uuid4().hex[:8]}"
        session = self._sessions.get(sid)
        if session is not None:
            self._sessions.move_to_end(sid)
            session.touch()
            return session

        session = ConversationSession(
            session_id=sid,
            project_id=project_id,
            provider=self.provider,
            tools=self.tools,
            settings=self.settings,
            domain=domain,
            callback=self.callback,
            clock=self._clock,
        )
        self._sessions[sid] = session
        logger.debug(f"Session created: {sid} (project={project_id})")
        self.evict(keep=sid)
        return session

    async def run(
        self,
        project_id: str,
        message: str,
        session_id: str | None = None,
        domain: str | None = None,
        callback: StatusCallback | None = None,
    ) -> tuple[ConversationSession, RunResult]:
        """在指定会话上处理消息（会话不存在时创建）"""
        session = self.get_or_create(project_id, session_id, domain)
        result = await session.run(message, callback=callback)
        return session, result

    # ==================== 查询 ====================

    def get(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def get_session(self, session_id: str) -> ConversationSession:
        """获取会话

        Raises:
            SessionNotFoundError: 会话不存在
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_tasks(self, session_id: str) -> list[Task]:
        return self.get_session(session_id).get_tasks()

    def get_history(self, session_id: str) -> list[Message]:
        return self.get_session(session_id).get_history()

    def get_events(self, session_id: str, since_seq: int = 0) -> list[AgentEvent]:
        return self.get_session(session_id).get_events(since_seq)

    def list_sessions(self) -> list[str]:
        return list(self._sessions.keys())

    # ==================== 生命周期 ====================

    def remove(self, session_id: str) -> bool:
        """删除会话

        Raises:
            SessionBusyError: 会话正在运行
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.is_running:
            raise SessionBusyError(session_id)
        del self._sessions[session_id]
        return True

    def evict(self, keep: str | None = None) -> list[str]:
        """执行淘汰

        Args:
            keep: 本次不淘汰的会话 ID（通常是刚创建的会话）

        Returns:
            被淘汰的会话 ID 列表
        """
        evicted: list[str] = []
        ttl = self.settings.session_idle_ttl
        now = self._clock()

        if ttl > 0:
            for sid, session in list(self._sessions.items()):
                if sid != keep and not session.is_running and now - session.last_active > ttl:
                    del self._sessions[sid]
                    evicted.append(sid)

        if len(self._sessions) > self.settings.max_sessions:
            for sid, session in list(self._sessions.items()):
                if len(self._sessions) <= self.settings.max_sessions:
                    break
                if sid != keep and not session.is_running:
                    del self._sessions[sid]
                    evicted.append(sid)

        if evicted:
            logger.info(f"Evicted {len(evicted)} sessions: {evicted}")
        return evicted

    async def aclose(self) -> None:
        """取消全部运行并释放提供商连接"""
        for session in self._sessions.values():
            session.cancel("registry closed")
        await self.provider.aclose()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
