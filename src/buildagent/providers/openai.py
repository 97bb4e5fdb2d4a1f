"""OpenAI 兼容提供商适配器

适用于 OpenAI 以及任何 OpenAI 兼容端点（Groq、Ollama、vLLM 等）。
超时通过 SDK 构造参数传入，客户端连接由 SDK 自行管理。
"""

import json
from typing import Any

import httpx
import openai
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
from .base import ProviderAdapter, parse_tool_arguments


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """将内部消息转换为 chat.completions 格式"""
    result: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == MessageRole.TOOL:
            result.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
        elif msg.role == MessageRole.ASSISTANT and msg.tool_calls:
            result.append({
                "role": "assistant",
                "content": msg.content or "",
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": call.raw_arguments
                            if call.raw_arguments is not None
                            else json.dumps(call.arguments, ensure_ascii=False),
                        },
                    }
                    for call in msg.tool_calls
                ],
            })
        else:
            result.append({"role": msg.role.value, "content": msg.content})
    return result


class OpenAIProvider(ProviderAdapter):
    """OpenAI 兼容适配器

    Usage:
        provider = OpenAIProvider(model="llama-3.3-70b-versatile",
                                  api_key=..., base_url="https://api.groq.com/openai/v1")
        response = await provider.generate(messages, tools)
    """

    name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 16000,
        timeout: float = 120.0,
        streaming: bool = False,
        client: openai.AsyncOpenAI | None = None,
    ):
        super().__init__(model, temperature, max_tokens, streaming)
        self._owns_client = client is None
        if client is None:
            client = openai.AsyncOpenAI(
                api_key=api_key or "not-needed",
                base_url=base_url,
                timeout=httpx.Timeout(timeout),
                max_retries=0,
            )
        self._client = client
        logger.debug(f"OpenAIProvider initialized: model={model}, base_url={base_url}")

    def _request_kwargs(self, messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            kwargs["tools"] = [tool.to_openai() for tool in tools]
            kwargs["tool_choice"] = "auto"
        return kwargs

    async def _complete(self, messages: list[Message], tools: list[ToolDefinition]) -> ModelResponse:
        response = await self._client.chat.completions.create(**self._request_kwargs(messages, tools))
        message = response.choices[0].message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_tool_arguments(tc.function.arguments, tc.function.name),
                raw_arguments=tc.function.arguments,
            )
            for tc in (message.tool_calls or [])
        ]
        usage = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
            }
        return ModelResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            thinking=getattr(message, "reasoning", None) or getattr(message, "reasoning_content", None),
            usage=usage,
        )

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_delta: DeltaCallback | None,
    ) -> ModelResponse:
        stream = await self._client.chat.completions.create(
            **self._request_kwargs(messages, tools), stream=True
        )

        content_parts: list[str] = []
        thinking_parts: list[str] = []
        # index -> {"id", "name", "arguments"}
        partial_calls: dict[int, dict[str, str]] = {}

        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            if delta.content:
                content_parts.append(delta.content)
                self.emit_delta(on_delta, TokenDelta(text=delta.content))

            reasoning = getattr(delta, "reasoning", None) or getattr(delta, "reasoning_content", None)
            if reasoning:
                thinking_parts.append(reasoning)
                self.emit_delta(on_delta, TokenDelta(text=reasoning, kind="thinking"))

            for tc in delta.tool_calls or []:
                acc = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    acc["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        acc["name"] += tc.function.name
                    if tc.function.arguments:
                        acc["arguments"] += tc.function.arguments

        tool_calls = [
            ToolCall(
                id=acc["id"],
                name=acc["name"],
                arguments=parse_tool_arguments(acc["arguments"], acc["name"]),
                raw_arguments=acc["arguments"],
            )
            for _, acc in sorted(partial_calls.items())
        ]
        return ModelResponse(
            content="".join(content_parts),
            tool_calls=tool_calls,
            thinking="".join(thinking_parts) or None,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
