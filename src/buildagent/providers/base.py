"""模型提供商适配器基类

统一不同 LLM 后端的调用方式：
- 阻塞调用与流式调用都聚合为一个 ModelResponse
- 工具调用标识原样保留，保证结果能回填到正确的调用
- 失败统一分类为「限流」与「其他失败」两类
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from ..core.exceptions import ProviderError, ProviderFailureError, ProviderRateLimitedError
from ..types import DeltaCallback, Message, ModelResponse, TokenDelta, ToolDefinition

RATE_LIMIT_MARKERS = ("rate_limit", "rate limit", "429", "too many requests")


def parse_tool_arguments(raw: str | dict | None, tool_name: str = "") -> dict[str, Any]:
    """解析工具参数

    参数不是合法 JSON 对象时降级为空参数，并记录诊断日志。

    Args:
        raw: 原始参数（JSON 字符串或已解析的字典）
        tool_name: 工具名称（用于日志）

    Returns:
        参数字典
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Failed to parse tool args for {tool_name or '<unknown>'}: {str(raw)[:200]}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Tool args for {tool_name or '<unknown>'} are not an object: {str(raw)[:200]}")
        return {}
    return parsed


def is_rate_limit_error(exc: BaseException) -> bool:
    """判断异常是否为限流

    依次检查 HTTP 状态码与异常消息。
    """
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status == 429:
        return True
    if "RateLimit" in type(exc).__name__:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def retry_after_seconds(exc: BaseException) -> float | None:
    """从响应头提取 retry-after（秒）"""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class ProviderAdapter(ABC):
    """提供商适配器抽象基类

    子类实现 _complete（阻塞）与 _stream（流式）。
    引擎只等待 generate 的最终结果；流式增量通过 on_delta 即发即弃地推送。
    """

    name: str = "base"

    def __init__(
        self,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 16000,
        streaming: bool = False,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.streaming = streaming
        self._pending_deltas: set[asyncio.Task] = set()

    async def generate(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_delta: DeltaCallback | None = None,
        stream: bool | None = None,
    ) -> ModelResponse:
        """调用模型

        Args:
            messages: 模型可见的消息列表（含 system 消息）
            tools: 可用工具描述
            on_delta: 流式增量回调（可选，仅流式模式生效）
            stream: 覆盖适配器的流式设置（None 表示沿用）

        Returns:
            聚合后的 ModelResponse

        Raises:
            ProviderRateLimitedError: 被限流（可重试）
            ProviderFailureError: 其他失败（不可重试）
        """
        use_stream = self.streaming if stream is None else stream
        try:
            if use_stream:
                response = await self._stream(messages, tools, on_delta)
            else:
                response = await self._complete(messages, tools)
        except ProviderError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self.classify_error(e) from e

        logger.debug(
            f"[{self.name}] response: {len(response.content)} chars, "
            f"{len(response.tool_calls)} tool calls"
        )
        return response

    def classify_error(self, exc: Exception) -> ProviderError:
        """将 SDK 异常分类为限流或失败"""
        if is_rate_limit_error(exc):
            return ProviderRateLimitedError(
                str(exc) or "rate limited",
                provider=self.name,
                retry_after=retry_after_seconds(exc),
            )
        return ProviderFailureError(str(exc) or type(exc).__name__, provider=self.name)

    def emit_delta(self, on_delta: DeltaCallback | None, delta: TokenDelta) -> None:
        """即发即弃地推送流式增量，回调异常只记录日志"""
        if on_delta is None:
            return
        try:
            result = on_delta(delta)
        except Exception as e:
            logger.warning(f"[{self.name}] delta callback failed: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending_deltas.add(task)
            task.add_done_callback(self._delta_done)

    def _delta_done(self, task: asyncio.Task) -> None:
        self._pending_deltas.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"[{self.name}] delta callback failed: {task.exception()}")

    @abstractmethod
    async def _complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
    ) -> ModelResponse:
        """单次阻塞调用"""
        ...

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_delta: DeltaCallback | None,
    ) -> ModelResponse:
        """流式调用（默认退化为阻塞调用）"""
        return await self._complete(messages, tools)

    async def aclose(self) -> None:
        """释放底层连接"""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r}, streaming={self.streaming})"
