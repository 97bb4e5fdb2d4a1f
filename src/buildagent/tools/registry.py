"""工具注册表

管理工具的注册、查找、描述生成与受保护执行。
执行永远返回 ToolResult，工具异常不会向编排循环传播。
"""

import time
from typing import Any, Iterator

from loguru import logger
from pydantic import ValidationError

from ..core.exceptions import DuplicateToolError, SecurityViolationError, ToolValidationError
from ..infrastructure.security_guard import SecurityGuard, get_security_guard
from ..types import ToolContext, ToolDefinition, ToolResult
from .base import Tool


class ToolRegistry:
    """工具注册表

    启动时校验名称唯一；按名称 O(1) 分派。
    """

    def __init__(
        self,
        tools: list[Tool] | None = None,
        guard: SecurityGuard | None = None,
    ):
        """初始化注册表

        Args:
            tools: 初始工具列表
            guard: 安全守卫（默认使用全局实例）

        Raises:
            DuplicateToolError: 工具名称重复
        """
        self._tools: dict[str, Tool] = {}
        self.guard = guard or get_security_guard()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> "ToolRegistry":
        """注册工具

        Args:
            tool: 工具实例

        Returns:
            self（支持链式调用）

        Raises:
            DuplicateToolError: 名称已存在
        """
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        return self

    def unregister(self, name: str) -> bool:
        """注销工具

        Returns:
            是否成功注销
        """
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def get(self, name: str) -> Tool | None:
        """获取工具，不存在返回 None"""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """列出所有工具"""
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        """列出所有工具名称"""
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        """生成工具描述列表（供提供商适配器使用）"""
        return [tool.definition() for tool in self._tools.values()]

    def generate_descriptions(self) -> str:
        """生成工具简述（供系统提示词使用）"""
        if not self._tools:
            return "(no tools available)"
        return "\n".join(f"- {tool.name}: {tool.description}" for tool in self._tools.values())

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        """执行工具

        未知工具、参数校验失败、命中安全黑名单、执行器异常
        均转换为失败的 ToolResult。

        Args:
            name: 工具名称
            params: 工具参数
            context: 工具上下文

        Returns:
            ToolResult
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.fail(f"unknown tool: {name}")

        try:
            params = self._validate(tool, params)
        except ToolValidationError as e:
            logger.warning(str(e))
            return ToolResult.fail(f"invalid arguments: {e.reason}")

        if tool.destructive:
            try:
                self.guard.check_arguments(name, params, tool.guarded_arguments)
            except SecurityViolationError as e:
                return ToolResult.fail(str(e))

        start = time.perf_counter()
        logger.debug(f"[Tool] Executing {name} args={params}")
        try:
            result = await tool.execute(context, **params)
        except Exception as e:
            logger.exception(f"[Tool] {name} raised: {e}")
            result = ToolResult.fail(str(e) or type(e).__name__)

        duration_ms = (time.perf_counter() - start) * 1000
        if result.success:
            logger.debug(f"[Tool] {name} ok ({duration_ms:.0f}ms)")
        else:
            logger.info(f"[Tool] {name} failed ({duration_ms:.0f}ms): {result.error}")
        return result

    @staticmethod
    def _validate(tool: Tool, params: dict[str, Any]) -> dict[str, Any]:
        try:
            return tool.validate(params)
        except ValidationError as e:
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolValidationError(tool.name, reason) from e

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())
