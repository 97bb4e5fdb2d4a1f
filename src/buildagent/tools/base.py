"""工具抽象基类

定义统一的工具接口。工具是带类型标签的执行器：
名称、描述、参数 schema（可由 pydantic 模型生成）与破坏性标记。
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar

from pydantic import BaseModel

from ..infrastructure.security_guard import ArgumentKind
from ..types import ToolContext, ToolDefinition, ToolResult


class Tool(ABC):
    """工具抽象基类

    所有工具必须继承此类并实现 _run 方法。

    类属性:
        params_model: 参数模型（可选），注册表执行前用其校验参数
        destructive: 是否为破坏性操作（执行前进行黑名单检查）
        guarded_arguments: 需要黑名单检查的参数名 -> 参数类别
    """

    params_model: ClassVar[type[BaseModel] | None] = None
    destructive: ClassVar[bool] = False
    guarded_arguments: ClassVar[dict[str, ArgumentKind]] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """工具名称（英文，无特殊字符）"""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """工具描述，供 LLM 理解工具用途"""
        ...

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON Schema 格式的参数定义"""
        if self.params_model is not None:
            schema = self.params_model.model_json_schema()
            schema.pop("title", None)
            return schema
        return {"type": "object", "properties": {}}

    def definition(self) -> ToolDefinition:
        """向模型公布的工具描述"""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate(self, params: dict[str, Any]) -> dict[str, Any]:
        """校验并规范化参数

        Raises:
            pydantic.ValidationError: 参数不符合 params_model
        """
        if self.params_model is None:
            return params
        return self.params_model.model_validate(params).model_dump()

    async def execute(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        """执行工具

        Args:
            context: 工具上下文（项目 ID 等）
            **kwargs: 工具参数

        Returns:
            ToolResult: 执行结果
        """
        try:
            result = await self._run(context, **kwargs)
        except Exception as e:
            return ToolResult.fail(str(e) or type(e).__name__)
        if isinstance(result, ToolResult):
            return result
        return ToolResult.ok(result)

    @abstractmethod
    async def _run(self, context: ToolContext, **kwargs: Any) -> Any:
        """实际执行逻辑（子类实现）"""
        ...

    def to_dict(self) -> dict[str, Any]:
        """转换为字典格式（供工具描述使用）"""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "destructive": self.destructive,
        }


ToolFunc = Callable[..., Awaitable[Any]]


class FunctionTool(Tool):
    """基于函数的工具

    简化工具创建，允许直接传入异步函数 ``func(context, **kwargs)``。
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: ToolFunc,
        parameters: dict[str, Any] | None = None,
        params_model: type[BaseModel] | None = None,
        destructive: bool = False,
        guarded_arguments: dict[str, ArgumentKind] | None = None,
    ):
        self._name = name
        self._description = description
        self._func = func
        self._parameters = parameters
        # 实例级覆盖类属性
        self.params_model = params_model  # type: ignore[misc]
        self.destructive = destructive  # type: ignore[misc]
        self.guarded_arguments = guarded_arguments or {}  # type: ignore[misc]

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        if self._parameters is not None:
            return self._parameters
        return super().parameters

    async def _run(self, context: ToolContext, **kwargs: Any) -> Any:
        return await self._func(context, **kwargs)
