"""脚本化提供商

按预设脚本依次返回响应或抛出异常，用于离线运行与测试编排循环。
"""

import json
import uuid
from typing import Any

from loguru import logger

from ..types import (
    DeltaCallback,
    Message,
    MessageRole,
    ModelResponse,
    TokenDelta,
    ToolCall,
    ToolDefinition,
)
from .base import ProviderAdapter


def text_response(content: str, thinking: str | None = None) -> ModelResponse:
    """构造纯文本响应"""
    return ModelResponse(content=content, thinking=thinking)


def tool_call_response(*calls: tuple[str, dict[str, Any]] | ToolCall, content: str = "") -> ModelResponse:
    """构造工具调用响应

    Usage:
        tool_call_response(("create_tasks", {"tasks": ["a", "b"]}))
    """
    tool_calls: list[ToolCall] = []
    for call in calls:
        if isinstance(call, ToolCall):
            tool_calls.append(call)
            continue
        name, arguments = call
        tool_calls.append(
            ToolCall(
                id=f"call_{uuid.uuid4().hex[:12]}",
                name=name,
                arguments=arguments,
                raw_arguments=json.dumps(arguments, ensure_ascii=False),
            )
        )
    return ModelResponse(content=content, tool_calls=tool_calls)


class ScriptedProvider(ProviderAdapter):
    """按脚本返回响应的提供商

    脚本项为 ModelResponse 时直接返回，为异常实例时抛出（经过统一分类）。
    脚本耗尽后：repeat_last=True 重复最后一项，否则以 final_response 回显最后一条用户消息。

    Attributes:
        calls: 每次调用收到的消息列表（副本）
    """

    name = "scripted"

    def __init__(
        self,
        script: list[ModelResponse | Exception] | None = None,
        repeat_last: bool = False,
        streaming: bool = False,
        model: str = "scripted",
    ):
        super().__init__(model, streaming=streaming)
        self._script: list[ModelResponse | Exception] = list(script or [])
        self._position = 0
        self.repeat_last = repeat_last
        self.calls: list[list[Message]] = []
        self.tool_names: list[list[str]] = []

    def add(self, *items: ModelResponse | Exception) -> "ScriptedProvider":
        """追加脚本项"""
        self._script.extend(items)
        return self

    @property
    def remaining(self) -> int:
        return max(len(self._script) - self._position, 0)

    def _next(self, messages: list[Message]) -> ModelResponse:
        if self._position < len(self._script):
            item = self._script[self._position]
            self._position += 1
        elif self.repeat_last and self._script:
            item = self._script[-1]
        else:
            item = self._echo(messages)

        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def _echo(messages: list[Message]) -> ModelResponse:
        last_user = next(
            (m.content for m in reversed(messages) if m.role == MessageRole.USER),
            "",
        )
        logger.debug("ScriptedProvider script exhausted, echoing last user message")
        return tool_call_response(("final_response", {"message": last_user}))

    async def _complete(self, messages: list[Message], tools: list[ToolDefinition]) -> ModelResponse:
        self.calls.append(list(messages))
        self.tool_names.append([t.name for t in tools])
        return self._next(messages)

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_delta: DeltaCallback | None,
    ) -> ModelResponse:
        response = await self._complete(messages, tools)
        for word in response.content.split(" "):
            if word:
                self.emit_delta(on_delta, TokenDelta(text=word + " "))
        return response
