"""工具层

- Tool / FunctionTool: 工具抽象
- ToolRegistry: 注册、描述生成与受保护执行
- 工作区工具: 项目文件、命令与 SQL
"""

from .base import FunctionTool, Tool
from .registry import ToolRegistry
from .workspace import (
    DeleteFileTool,
    ExecuteSqlTool,
    GetProjectInfoTool,
    ListProjectFilesTool,
    ReadFileTool,
    RunCommandTool,
    WriteFileTool,
    create_default_registry,
    create_workspace_tools,
)

__all__ = [
    "Tool",
    "FunctionTool",
    "ToolRegistry",
    "GetProjectInfoTool",
    "ListProjectFilesTool",
    "ReadFileTool",
    "WriteFileTool",
    "DeleteFileTool",
    "RunCommandTool",
    "ExecuteSqlTool",
    "create_workspace_tools",
    "create_default_registry",
]
