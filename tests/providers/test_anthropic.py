"""测试 Anthropic 适配器"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from buildagent.core.exceptions import ProviderRateLimitedError
from buildagent.providers.anthropic import AnthropicProvider, to_anthropic_messages
from buildagent.types import Message, MessageRole, TokenDelta, ToolCall, ToolDefinition


class FakeStream:
    """模拟 messages.stream 返回的异步上下文管理器"""

    def __init__(self, events, final):
        self._events = events
        self._final = final

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self._events:
            yield event

    async def get_final_message(self):
        return self._final


def _blocks():
    return [
        SimpleNamespace(type="thinking", thinking="plan"),
        SimpleNamespace(type="text", text="Reading."),
        SimpleNamespace(type="tool_use", id="toolu_1", name="read_file", input={"file_path": "a"}),
    ]


class TestMessageConversion:
    """消息格式转换测试"""

    def test_system_split_and_tool_results_grouped(self) -> None:
        """测试 system 拆分、连续 tool 结果合并为一条 user 消息"""
        calls = [
            ToolCall(id="t1", name="read_file", arguments={"file_path": "a"}),
            ToolCall(id="t2", name="read_file", arguments={"file_path": "b"}),
        ]
        messages = [
            Message(role=MessageRole.SYSTEM, content="sys"),
            Message(role=MessageRole.USER, content="hi"),
            Message(role=MessageRole.ASSISTANT, content="", tool_calls=calls),
            Message(role=MessageRole.TOOL, content="r1", tool_call_id="t1"),
            Message(role=MessageRole.TOOL, content="r2", tool_call_id="t2"),
        ]
        system, converted = to_anthropic_messages(messages)

        assert system == "sys"
        assert [m["role"] for m in converted] == ["user", "assistant", "user"]
        assert [b["id"] for b in converted[1]["content"]] == ["t1", "t2"]
        assert [b["tool_use_id"] for b in converted[2]["content"]] == ["t1", "t2"]


class TestAnthropicProvider:
    """AnthropicProvider 测试（模拟 SDK 客户端）"""

    @pytest.fixture
    def messages(self) -> list[Message]:
        return [
            Message(role=MessageRole.SYSTEM, content="sys"),
            Message(role=MessageRole.USER, content="hi"),
        ]

    @pytest.mark.asyncio
    async def test_complete(self, messages) -> None:
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=_blocks(),
                usage=SimpleNamespace(input_tokens=3, output_tokens=4),
            )
        )
        provider = AnthropicProvider(model="claude", client=client)
        tools = [ToolDefinition(name="read_file", description="Read")]
        response = await provider.generate(messages, tools)

        assert response.content == "Reading."
        assert response.thinking == "plan"
        assert response.tool_calls[0].id == "toolu_1"
        assert response.tool_calls[0].arguments == {"file_path": "a"}
        assert response.usage == {"prompt_tokens": 3, "completion_tokens": 4}

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["tools"][0]["input_schema"] == {"type": "object", "properties": {}}

    @pytest.mark.asyncio
    async def test_stream(self, messages) -> None:
        """测试流式增量与最终聚合结果"""
        events = [
            SimpleNamespace(type="message_start"),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="thinking_delta", thinking="plan")),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="Reading.")),
        ]
        client = MagicMock()
        client.messages.stream = MagicMock(
            return_value=FakeStream(events, SimpleNamespace(content=_blocks()))
        )
        received: list[TokenDelta] = []
        provider = AnthropicProvider(model="claude", client=client, streaming=True)
        response = await provider.generate(messages, [], on_delta=received.append)

        assert [(d.kind, d.text) for d in received] == [("thinking", "plan"), ("text", "Reading.")]
        assert response.tool_calls[0].name == "read_file"

    @pytest.mark.asyncio
    async def test_rate_limit(self, messages) -> None:
        class RateLimitError(Exception):
            pass

        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=RateLimitError("overloaded"))
        provider = AnthropicProvider(model="claude", client=client)

        with pytest.raises(ProviderRateLimitedError):
            await provider.generate(messages, [])
