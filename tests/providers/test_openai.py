"""测试 OpenAI 兼容适配器"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from buildagent.core.exceptions import ProviderFailureError, ProviderRateLimitedError
from buildagent.providers.openai import OpenAIProvider, to_openai_messages
from buildagent.types import Message, MessageRole, TokenDelta, ToolCall, ToolDefinition


def _completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls, reasoning=None)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
    )


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _chunk(content=None, tool_calls=None, reasoning=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls, reasoning=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def _tc_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


async def _stream(chunks):
    for chunk in chunks:
        yield chunk


class TestMessageConversion:
    """消息格式转换测试"""

    def test_tool_roundtrip_preserves_ids(self) -> None:
        """测试工具调用标识与原始参数原样保留"""
        call = ToolCall(id="call_1", name="read_file", arguments={"file_path": "a"}, raw_arguments='{"file_path":"a"}')
        messages = [
            Message(role=MessageRole.SYSTEM, content="sys"),
            Message(role=MessageRole.USER, content="hi"),
            Message(role=MessageRole.ASSISTANT, content="", tool_calls=[call]),
            Message(role=MessageRole.TOOL, content='{"success": true}', tool_call_id="call_1"),
        ]
        converted = to_openai_messages(messages)

        assert [m["role"] for m in converted] == ["system", "user", "assistant", "tool"]
        assert converted[2]["tool_calls"][0]["id"] == "call_1"
        assert converted[2]["tool_calls"][0]["function"]["arguments"] == '{"file_path":"a"}'
        assert converted[3]["tool_call_id"] == "call_1"


class TestOpenAIProvider:
    """OpenAIProvider 测试（模拟 SDK 客户端）"""

    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        return client

    @pytest.fixture
    def tools(self) -> list[ToolDefinition]:
        return [ToolDefinition(name="read_file", description="Read a file")]

    @pytest.fixture
    def messages(self) -> list[Message]:
        return [Message(role=MessageRole.USER, content="hi")]

    @pytest.mark.asyncio
    async def test_complete_with_tool_calls(self, client, tools, messages) -> None:
        """测试阻塞调用解析工具调用"""
        client.chat.completions.create.return_value = _completion(
            tool_calls=[
                _tool_call("call_a", "read_file", '{"file_path": "x.py"}'),
                _tool_call("call_b", "read_file", "{broken"),
            ]
        )
        provider = OpenAIProvider(model="m", client=client)
        response = await provider.generate(messages, tools)

        assert [c.id for c in response.tool_calls] == ["call_a", "call_b"]
        assert response.tool_calls[0].arguments == {"file_path": "x.py"}
        assert response.tool_calls[1].arguments == {}
        assert response.tool_calls[1].raw_arguments == "{broken"
        assert response.usage == {"prompt_tokens": 10, "completion_tokens": 5}

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["tool_choice"] == "auto"
        assert kwargs["tools"][0]["function"]["name"] == "read_file"

    @pytest.mark.asyncio
    async def test_complete_text_without_tools(self, client, messages) -> None:
        client.chat.completions.create.return_value = _completion(content="hello")
        provider = OpenAIProvider(model="m", client=client)
        response = await provider.generate(messages, [])

        assert response.content == "hello"
        assert not response.has_tool_calls
        assert "tools" not in client.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_stream_aggregates_by_index(self, client, tools, messages) -> None:
        """测试流式调用按 index 聚合工具调用片段"""
        client.chat.completions.create.return_value = _stream([
            _chunk(content="Let me "),
            _chunk(content="look."),
            _chunk(tool_calls=[_tc_delta(0, "call_1", "read_file", '{"file_')]),
            _chunk(tool_calls=[_tc_delta(1, "call_2", "read_file", '{"file_path": "b"}')]),
            _chunk(tool_calls=[_tc_delta(0, arguments='path": "a"}')]),
            SimpleNamespace(choices=[]),
        ])
        received: list[TokenDelta] = []
        provider = OpenAIProvider(model="m", client=client, streaming=True)
        response = await provider.generate(messages, tools, on_delta=received.append)

        assert response.content == "Let me look."
        assert [c.id for c in response.tool_calls] == ["call_1", "call_2"]
        assert response.tool_calls[0].arguments == {"file_path": "a"}
        assert response.tool_calls[1].arguments == {"file_path": "b"}
        assert [d.text for d in received] == ["Let me ", "look."]
        assert client.chat.completions.create.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_rate_limit_classified(self, client, messages) -> None:
        """测试 429 被识别为限流"""
        error = Exception("Error code: 429")
        error.status_code = 429
        client.chat.completions.create.side_effect = error
        provider = OpenAIProvider(model="m", client=client)

        with pytest.raises(ProviderRateLimitedError) as exc_info:
            await provider.generate(messages, [])
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_other_failure_classified(self, client, messages) -> None:
        client.chat.completions.create.side_effect = ConnectionError("connection refused")
        provider = OpenAIProvider(model="m", client=client)

        with pytest.raises(ProviderFailureError):
            await provider.generate(messages, [])
