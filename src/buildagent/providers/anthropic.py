"""Anthropic 提供商适配器

system 消息单独传递；工具调用以 tool_use / tool_result 内容块往返。
"""

from typing import Any

import anthropic
import httpx
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


def to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
    """转换为 Messages API 格式

    Returns:
        (system 提示词, 消息列表)。连续的 tool 消息合并为同一条 user 消息。
    """
    system_parts: list[str] = []
    result: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == MessageRole.SYSTEM:
            system_parts.append(msg.content)
            continue

        if msg.role == MessageRole.TOOL:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
            }
            last = result[-1] if result else None
            if (
                last is not None
                and last["role"] == "user"
                and isinstance(last["content"], list)
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                result.append({"role": "user", "content": [block]})
            continue

        if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
            content: list[dict[str, Any]] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            result.append({"role": "assistant", "content": content})
            continue

        result.append({"role": msg.role.value, "content": msg.content})

    return "\n\n".join(system_parts), result


def _parse_content_blocks(blocks: list[Any]) -> ModelResponse:
    text_parts: list[str] = []
    thinking_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    for block in blocks:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(block.text)
        elif block_type == "thinking":
            thinking_parts.append(block.thinking)
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=parse_tool_arguments(block.input, block.name),
                )
            )

    return ModelResponse(
        content="".join(text_parts),
        tool_calls=tool_calls,
        thinking="".join(thinking_parts) or None,
    )


class AnthropicProvider(ProviderAdapter):
    """Anthropic Messages API 适配器"""

    name = "anthropic"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 16000,
        timeout: float = 120.0,
        streaming: bool = False,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        super().__init__(model, temperature, max_tokens, streaming)
        self._owns_client = client is None
        if client is None:
            client = anthropic.AsyncAnthropic(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout),
                max_retries=0,
            )
        self._client = client
        logger.debug(f"AnthropicProvider initialized: model={model}")

    def _request_kwargs(self, messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
        system, converted = to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": converted,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [tool.to_anthropic() for tool in tools]
        return kwargs

    async def _complete(self, messages: list[Message], tools: list[ToolDefinition]) -> ModelResponse:
        response = await self._client.messages.create(**self._request_kwargs(messages, tools))
        result = _parse_content_blocks(response.content)
        if response.usage is not None:
            result.usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            }
        return result

    async def _stream(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        on_delta: DeltaCallback | None,
    ) -> ModelResponse:
        async with self._client.messages.stream(**self._request_kwargs(messages, tools)) as stream:
            async for event in stream:
                if event.type != "content_block_delta":
                    continue
                delta = event.delta
                if delta.type == "text_delta":
                    self.emit_delta(on_delta, TokenDelta(text=delta.text))
                elif delta.type == "thinking_delta":
                    self.emit_delta(on_delta, TokenDelta(text=delta.thinking, kind="thinking"))
            final = await stream.get_final_message()
        return _parse_content_blocks(final.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
