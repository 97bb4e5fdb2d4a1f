"""通用类型定义

模型提供商、工具注册表与编排引擎之间传递的数据结构。
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable


class MessageRole(str, Enum):
    """消息角色"""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


@dataclass
class ToolCall:
    """模型发起的一次工具调用"""

    id: str
    """调用标识（由提供商生成，必须原样回传）"""
    name: str
    """工具名称"""
    arguments: dict[str, Any] = field(default_factory=dict)
    """解析后的参数"""
    raw_arguments: str | None = None
    """原始参数字符串（解析失败时保留用于诊断）"""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class Message:
    """对话消息

    历史消息只追加不修改，顺序即模型可见的对话顺序。
    """

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    tool_calls: list[ToolCall] = field(default_factory=list)
    """assistant 消息携带的工具调用列表"""
    tool_call_id: str | None = None
    """tool 消息对应的调用标识"""
    name: str | None = None
    """tool 消息对应的工具名称"""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data


@dataclass
class ToolResult:
    """工具执行结果"""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "ToolResult":
        return cls(success=False, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


@dataclass
class ToolContext:
    """工具执行上下文"""

    project_id: str
    domain: str | None = None
    session_id: str | None = None


@dataclass
class ToolDefinition:
    """向模型公布的工具描述"""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai(self) -> dict[str, Any]:
        """OpenAI Function Calling 格式"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> dict[str, Any]:
        """Anthropic tool 格式"""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


@dataclass
class TokenDelta:
    """流式增量"""

    text: str
    kind: str = "text"
    """text 或 thinking"""


DeltaCallback = Callable[[TokenDelta], Awaitable[None] | None]
"""流式增量回调（即发即弃）"""


@dataclass
class ModelResponse:
    """模型单轮响应（流式调用也聚合为一个结果）"""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
