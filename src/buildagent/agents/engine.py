"""编排引擎

单个会话的控制循环：
- 每轮重建模型可见上下文（系统提示词 + 最近 N 条历史）
- 工具调用按发出顺序执行，每个调用恰好追加一条 tool 消息
- 控制工具（create_tasks / update_task / request_review / final_response）本地处理
- 限流按指数退避重试同一轮，其他提供商失败立即终止
- 所有终止路径都以 complete 或 error 事件结束，不向调用方抛出异常
"""

import asyncio
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from ..core.config import BuildAgentSettings, get_settings
from ..core.exceptions import (
    CancelledRunError,
    DuplicateToolError,
    ProviderError,
    ProviderRateLimitedError,
)
from ..infrastructure.event_bus import AgentEventType
from ..providers.base import ProviderAdapter
from ..tools.registry import ToolRegistry
from ..types import Message, MessageRole, ModelResponse, ToolCall, ToolContext, ToolResult
from .callbacks import NullCallback, StatusCallback
from .control import (
    CONTROL_PARAMS,
    CONTROL_TOOL_NAMES,
    CREATE_TASKS,
    REQUEST_REVIEW,
    UPDATE_TASK,
    control_tool_definitions,
    is_control_tool,
)
from .models import RunResult, SessionStatus
from .prompts import build_system_prompt
from .result_parser import parse_terminal_payload
from .review import ReviewSubroutine

if TYPE_CHECKING:
    from .session import ConversationSession


class CancellationToken:
    """取消令牌

    在每个挂起点（模型调用、工具执行、退避等待）之前检查。
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledRunError(self.reason or "cancelled")

    async def sleep(self, delay: float) -> None:
        """可被取消打断的等待"""
        if delay > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        self.raise_if_cancelled()


class _Terminate(Exception):
    """本轮以 final_response 结束"""

    def __init__(self, message: str, summary: str | None, next_steps: list[str]):
        self.message = message
        self.summary = summary
        self.next_steps = next_steps
        super().__init__(message)


class OrchestrationEngine:
    """编排引擎

    状态机: IDLE -> RUNNING -> (REVIEWING -> RUNNING)* -> COMPLETE，致命错误 -> IDLE。

    Usage:
        engine = OrchestrationEngine(session, provider, registry)
        result = await engine.run("add table X")
    """

    def __init__(
        self,
        session: "ConversationSession",
        provider: ProviderAdapter,
        registry: ToolRegistry,
        settings: BuildAgentSettings | None = None,
        callback: StatusCallback | None = None,
        review: ReviewSubroutine | None = None,
    ):
        """初始化引擎

        Raises:
            DuplicateToolError: 领域工具与控制工具重名
        """
        settings = settings or get_settings()
        for name in CONTROL_TOOL_NAMES:
            if name in registry:
                raise DuplicateToolError(name)

        self.session = session
        self.provider = provider
        self.registry = registry
        self.callback = callback or NullCallback()

        self.max_iterations = settings.max_iterations
        self.max_rate_limit_retries = settings.max_rate_limit_retries
        self.rate_limit_backoff = settings.rate_limit_backoff
        self.history_window = settings.history_window
        self.parallel_tool_calls = settings.parallel_tool_calls
        self.strict_task_updates = settings.strict_task_updates

        self.review = review or ReviewSubroutine(
            provider,
            registry,
            session.events,
            max_files=settings.review_max_files,
            file_chars=settings.review_file_chars,
        )

        self._iteration = 0
        self._review_blocks_completion = False

    # ==================== 主循环 ====================

    async def run(self, user_message: str, cancel_token: CancellationToken | None = None) -> RunResult:
        """执行一次运行

        Args:
            user_message: 用户消息
            cancel_token: 取消令牌（可选）

        Returns:
            RunResult（终止原因通过 status/error 表达，不抛出异常）
        """
        token = cancel_token or CancellationToken()
        bus = self.session.events

        self._iteration = 0
        self._set_status(SessionStatus.RUNNING)
        bus.subscribe_async(None, self.callback.on_event)
        self.session.history.append(Message(role=MessageRole.USER, content=user_message))
        logger.info(f"[{self.session.session_id}] run started: {user_message[:80]!r}")

        context = ToolContext(
            project_id=self.session.project_id,
            domain=self.session.domain,
            session_id=self.session.session_id,
        )
        tools = [*self.registry.definitions(), *control_tool_definitions()]

        try:
            while self._iteration < self.max_iterations:
                self._iteration += 1
                self._review_blocks_completion = False
                await self._emit(
                    AgentEventType.THINKING,
                    {"iteration": self._iteration, "message": f"Iteration {self._iteration}"},
                )

                response = await self._generate(tools, token)

                if response.has_tool_calls:
                    try:
                        await self._handle_tool_calls(response, context, token)
                    except _Terminate as done:
                        await self._complete(done.message, done.summary, done.next_steps)
                        return self._result(message=done.message)
                    continue

                message = self._handle_text(response)
                await self._complete(message)
                return self._result(message=message)

            return await self._fail("Maximum iterations reached without completion")

        except CancelledRunError as e:
            return await self._fail(str(e) or "cancelled")
        except ProviderRateLimitedError as e:
            return await self._fail(f"Rate limit retries exhausted: {e}")
        except ProviderError as e:
            return await self._fail(str(e))
        except asyncio.CancelledError:
            self._set_status(SessionStatus.IDLE)
            bus.emit(AgentEventType.ERROR, {"error": "cancelled", "iteration": self._iteration})
            raise
        except Exception as e:
            logger.exception(f"[{self.session.session_id}] unexpected engine failure: {e}")
            return await self._fail(str(e) or type(e).__name__)
        finally:
            bus.unsubscribe(None, self.callback.on_event)

    async def _generate(self, tools, token: CancellationToken) -> ModelResponse:
        """调用模型，限流时退避重试同一轮（不消耗迭代预算）"""
        attempt = 0
        while True:
            token.raise_if_cancelled()
            try:
                return await self.provider.generate(
                    self.build_context(), tools, on_delta=self.callback.on_delta
                )
            except ProviderRateLimitedError as e:
                attempt += 1
                if attempt > self.max_rate_limit_retries:
                    raise
                delay = (
                    e.retry_after
                    if e.retry_after is not None
                    else self.rate_limit_backoff * 2 ** (attempt - 1)
                )
                logger.warning(
                    f"[{self.session.session_id}] rate limited, retry {attempt}/"
                    f"{self.max_rate_limit_retries} in {delay:.1f}s"
                )
                await self._emit(
                    AgentEventType.THINKING,
                    {
                        "message": "Rate limited, waiting...",
                        "backoff": True,
                        "attempt": attempt,
                        "delay": delay,
                        "iteration": self._iteration,
                    },
                )
                await token.sleep(delay)

    def build_context(self) -> list[Message]:
        """构建模型可见的消息列表

        [系统提示词] + 最近 history_window 条历史；窗口开头的孤立 tool 消息被丢弃。
        完整历史保留在会话中。
        """
        history = self.session.history
        if self.history_window > 0:
            window = history[-self.history_window :]
        else:
            window = list(history)

        start = 0
        while start < len(window) and window[start].role == MessageRole.TOOL:
            start += 1
        window = window[start:]

        system = build_system_prompt(
            self.session.project_id,
            self.registry.generate_descriptions(),
            older_messages=len(history) - len(window),
        )
        return [Message(role=MessageRole.SYSTEM, content=system), *window]

    # ==================== 工具调用 ====================

    async def _handle_tool_calls(
        self,
        response: ModelResponse,
        context: ToolContext,
        token: CancellationToken,
    ) -> None:
        """按发出顺序处理本轮全部工具调用

        Raises:
            _Terminate: 本轮调用了 final_response
        """
        calls = list(response.tool_calls)
        self.session.history.append(
            Message(role=MessageRole.ASSISTANT, content=response.content or "", tool_calls=calls)
        )
        start = len(self.session.history)

        try:
            await self._dispatch_calls(calls, context, token)
        except _Terminate:
            raise
        except BaseException as e:
            if isinstance(e, asyncio.CancelledError):
                reason = "cancelled"
            else:
                reason = str(e) or type(e).__name__
            self._answer_pending(calls, start, f"not executed: {reason}")
            raise

    async def _dispatch_calls(
        self,
        calls: list[ToolCall],
        context: ToolContext,
        token: CancellationToken,
    ) -> None:
        index = 0
        while index < len(calls):
            if self.parallel_tool_calls and not is_control_tool(calls[index].name):
                batch = []
                while index < len(calls) and not is_control_tool(calls[index].name):
                    batch.append(calls[index])
                    index += 1
                await self._run_domain_batch(batch, context, token)
                continue

            call = calls[index]
            index += 1
            await self._emit(
                AgentEventType.TOOL_CALL,
                {"id": call.id, "name": call.name, "arguments": call.arguments},
            )
            token.raise_if_cancelled()

            if is_control_tool(call.name):
                try:
                    result = await self._handle_control(call, context)
                except _Terminate:
                    await self._record_result(call, ToolResult.ok({"delivered": True}))
                    for skipped in calls[index:]:
                        self._append_tool_message(
                            skipped, ToolResult.fail("skipped: final_response already issued")
                        )
                    raise
            else:
                result = await self.registry.execute(call.name, call.arguments, context)

            await self._record_result(call, result)

    def _answer_pending(self, calls: list[ToolCall], start: int, error: str) -> None:
        """本轮被中断时，为尚未得到结果的调用补一条失败的 tool 消息"""
        answered = {
            m.tool_call_id for m in self.session.history[start:] if m.role == MessageRole.TOOL
        }
        for call in calls:
            if call.id not in answered:
                self._append_tool_message(call, ToolResult.fail(error))

    async def _run_domain_batch(
        self,
        batch: list[ToolCall],
        context: ToolContext,
        token: CancellationToken,
    ) -> None:
        """并发执行连续的领域工具调用，事件与结果仍按发出顺序记录"""
        for call in batch:
            await self._emit(
                AgentEventType.TOOL_CALL,
                {"id": call.id, "name": call.name, "arguments": call.arguments},
            )
        token.raise_if_cancelled()

        results = await asyncio.gather(
            *(self.registry.execute(call.name, call.arguments, context) for call in batch)
        )
        for call, result in zip(batch, results):
            await self._record_result(call, result)

    async def _record_result(self, call: ToolCall, result: ToolResult) -> None:
        await self._emit(
            AgentEventType.TOOL_RESULT,
            {
                "id": call.id,
                "name": call.name,
                "success": result.success,
                "result": result.to_dict(),
            },
        )
        self._append_tool_message(call, result)

    def _append_tool_message(self, call: ToolCall, result: ToolResult) -> None:
        self.session.history.append(
            Message(
                role=MessageRole.TOOL,
                content=result.to_json(),
                tool_call_id=call.id,
                name=call.name,
            )
        )

    # ==================== 控制工具 ====================

    async def _handle_control(self, call: ToolCall, context: ToolContext) -> ToolResult:
        try:
            params = self._validate_control(call)
        except ValidationError as e:
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            logger.warning(f"Invalid arguments for {call.name}: {reason}")
            return ToolResult.fail(f"invalid arguments: {reason}")

        if call.name == CREATE_TASKS:
            return await self._create_tasks(params)
        if call.name == UPDATE_TASK:
            return await self._update_task(params)
        if call.name == REQUEST_REVIEW:
            return await self._request_review(params, context)

        if self._review_blocks_completion:
            logger.warning("final_response refused: review requires more work")
            return ToolResult.fail(
                "review requires more work: fix the reported issues before calling final_response"
            )
        raise _Terminate(params.message, params.summary, params.next_steps)

    @staticmethod
    def _validate_control(call: ToolCall) -> BaseModel:
        arguments = call.arguments if isinstance(call.arguments, dict) else {}
        return CONTROL_PARAMS[call.name].model_validate(arguments)

    async def _create_tasks(self, params) -> ToolResult:
        created = self.session.tasks.create(params.tasks)
        for task in created:
            await self._emit(AgentEventType.TASK_UPDATE, {"action": "added", "task": task.to_dict()})
        return ToolResult.ok({"tasks": [task.to_dict() for task in created]})

    async def _update_task(self, params) -> ToolResult:
        tracker = self.session.tasks
        task = tracker.get(params.task_id)
        if task is None:
            logger.warning(f"[{self.session.session_id}] update_task: unknown task {params.task_id}")
            if self.strict_task_updates:
                return ToolResult.fail(f"task not found: {params.task_id}")
            return ToolResult.ok({"task_id": params.task_id, "found": False})

        before = (task.status, task.result)
        tracker.update(params.task_id, params.status, params.result)
        if (task.status, task.result) != before:
            await self._emit(AgentEventType.TASK_UPDATE, {"action": "updated", "task": task.to_dict()})
        return ToolResult.ok({"task": task.to_dict(), "found": True})

    async def _request_review(self, params, context: ToolContext) -> ToolResult:
        self._set_status(SessionStatus.REVIEWING)
        await self._emit(
            AgentEventType.REVIEW,
            {"action": "started", "summary": params.summary, "files": params.files_changed},
        )
        try:
            verdict = await self.review.review(params.summary, params.files_changed, context)
        finally:
            self._set_status(SessionStatus.RUNNING)

        if verdict.requires_more_work:
            self._review_blocks_completion = True
        return ToolResult.ok(verdict.to_dict())

    # ==================== 终止 ====================

    def _handle_text(self, response: ModelResponse) -> str:
        """无工具调用的回复：优先识别旧式 JSON 终止信号，否则视为对话回答"""
        content = response.content or ""
        message = parse_terminal_payload(content)
        if message is not None:
            logger.debug(f"[{self.session.session_id}] legacy JSON final_response")
            return message
        return content

    async def _complete(
        self,
        message: str,
        summary: str | None = None,
        next_steps: list[str] | None = None,
    ) -> None:
        await self._emit(
            AgentEventType.MESSAGE,
            {"message": message, "summary": summary, "next_steps": next_steps or []},
        )
        self.session.history.append(Message(role=MessageRole.ASSISTANT, content=message))
        self._set_status(SessionStatus.COMPLETE)
        await self._emit(
            AgentEventType.COMPLETE,
            {
                "message": message,
                "tasks": self.session.tasks.to_list(),
                "iterations": self._iteration,
            },
        )
        logger.info(f"[{self.session.session_id}] run complete after {self._iteration} iterations")

    async def _fail(self, error: str) -> RunResult:
        logger.error(f"[{self.session.session_id}] run failed: {error}")
        self._set_status(SessionStatus.IDLE)
        await self._emit(AgentEventType.ERROR, {"error": error, "iteration": self._iteration})
        return self._result(error=error)

    def _result(self, message: str | None = None, error: str | None = None) -> RunResult:
        return RunResult(
            status=self.session.status,
            iterations=self._iteration,
            message=message,
            error=error,
        )

    def _set_status(self, status: SessionStatus) -> None:
        self.session.set_status(status)

    async def _emit(self, event_type: AgentEventType, data: dict[str, Any]) -> None:
        await self.session.events.emit_async(event_type, data)
