"""项目工作区工具

在 ``workspace_root/<project_id>`` 目录内检查与修改目标项目。
所有路径参数经过 SecurityGuard 越界检查，破坏性工具在执行前经过黑名单检查。
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from loguru import logger
from pydantic import BaseModel, Field

from ..core.config import BuildAgentSettings, get_settings
from ..infrastructure.security_guard import ArgumentKind, SecurityGuard, get_security_guard
from ..types import ToolContext, ToolResult
from .base import Tool
from .registry import ToolRegistry

# 输出截断长度
MAX_STDOUT_CHARS = 30000
MAX_STDERR_CHARS = 10000
MAX_LISTED_FILES = 500
MAX_SQL_ROWS = 100

IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "dist", "build"}


class WorkspaceTool(Tool):
    """工作区工具基类

    负责解析项目根目录与受检路径。
    """

    def __init__(self, workspace_root: Path, guard: SecurityGuard | None = None):
        self.workspace_root = workspace_root
        self.guard = guard or get_security_guard()

    def project_root(self, context: ToolContext) -> Path:
        return self.workspace_root / context.project_id

    def resolve(self, context: ToolContext, relative: str) -> Path:
        """解析工作区内路径（越界时抛出 SecurityViolationError）"""
        return self.guard.check_path(self.name, self.project_root(context), relative)


# ==================== 只读工具 ====================


class GetProjectInfoTool(WorkspaceTool):
    """项目概况"""

    @property
    def name(self) -> str:
        return "get_project_info"

    @property
    def description(self) -> str:
        return (
            "Get information about the current project: id, domain, "
            "top-level entries and file count"
        )

    async def _run(self, context: ToolContext, **kwargs: Any) -> Any:
        root = self.project_root(context)
        if not await aiofiles.os.path.isdir(root):
            return ToolResult.fail(f"project not found: {context.project_id}")

        top_level, file_count = await asyncio.to_thread(_scan_project, root)
        return {
            "project_id": context.project_id,
            "domain": context.domain,
            "top_level": top_level,
            "file_count": file_count,
        }


class ListFilesParams(BaseModel):
    directory: str = Field(default=".", description="Directory relative to the project root")
    pattern: str = Field(default="**/*", description="Glob pattern")


class ListProjectFilesTool(WorkspaceTool):
    """列出项目文件"""

    params_model = ListFilesParams

    @property
    def name(self) -> str:
        return "list_project_files"

    @property
    def description(self) -> str:
        return "List files in the project (optionally under a directory / matching a glob)"

    async def _run(self, context: ToolContext, directory: str = ".", pattern: str = "**/*") -> Any:
        base = self.resolve(context, directory)
        if not await aiofiles.os.path.isdir(base):
            return ToolResult.fail(f"directory not found: {directory}")

        root = self.project_root(context).resolve()
        files = await asyncio.to_thread(_glob_files, root, base, pattern)
        return {
            "count": len(files),
            "files": files[:MAX_LISTED_FILES],
            "truncated": len(files) > MAX_LISTED_FILES,
        }


class ReadFileParams(BaseModel):
    file_path: str = Field(description="File path relative to the project root")
    max_chars: int = Field(default=50000, ge=1, description="Maximum characters to return")


class ReadFileTool(WorkspaceTool):
    """读取文件"""

    params_model = ReadFileParams

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read a text file from the project"

    async def _run(self, context: ToolContext, file_path: str, max_chars: int = 50000) -> Any:
        path = self.resolve(context, file_path)
        if not await aiofiles.os.path.isfile(path):
            return ToolResult.fail(f"file not found: {file_path}")

        async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
            content = await f.read()
        return {
            "path": file_path,
            "content": content[:max_chars],
            "size": len(content),
            "truncated": len(content) > max_chars,
        }


# ==================== 写入工具 ====================


class WriteFileParams(BaseModel):
    file_path: str = Field(description="File path relative to the project root")
    content: str = Field(description="Full file content")


class WriteFileTool(WorkspaceTool):
    """创建或覆盖文件"""

    params_model = WriteFileParams

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Create or overwrite a file in the project"

    async def _run(self, context: ToolContext, file_path: str, content: str) -> Any:
        path = self.resolve(context, file_path)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
        logger.info(f"[{context.project_id}] wrote {file_path} ({len(content)} chars)")
        return {"path": file_path, "chars": len(content)}


class DeleteFileParams(BaseModel):
    file_path: str = Field(description="File path relative to the project root")


class DeleteFileTool(WorkspaceTool):
    """删除文件"""

    params_model = DeleteFileParams
    destructive = True
    guarded_arguments = {"file_path": ArgumentKind.PATH}

    @property
    def name(self) -> str:
        return "delete_file"

    @property
    def description(self) -> str:
        return "Delete a single file from the project"

    async def _run(self, context: ToolContext, file_path: str) -> Any:
        path = self.resolve(context, file_path)
        if not await aiofiles.os.path.isfile(path):
            return ToolResult.fail(f"file not found: {file_path}")
        await aiofiles.os.remove(path)
        logger.info(f"[{context.project_id}] deleted {file_path}")
        return {"path": file_path, "deleted": True}


class RunCommandParams(BaseModel):
    command: str = Field(description="Shell command to run")
    cwd: str = Field(default=".", description="Working directory relative to the project root")
    timeout: float | None = Field(default=None, gt=0, description="Timeout in seconds")


class RunCommandTool(WorkspaceTool):
    """在项目目录中执行 Shell 命令"""

    params_model = RunCommandParams
    destructive = True
    guarded_arguments = {"command": ArgumentKind.COMMAND}

    def __init__(
        self,
        workspace_root: Path,
        guard: SecurityGuard | None = None,
        default_timeout: float = 60.0,
    ):
        super().__init__(workspace_root, guard)
        self.default_timeout = default_timeout

    @property
    def name(self) -> str:
        return "run_command"

    @property
    def description(self) -> str:
        return "Run a shell command inside the project directory (build, test, lint, etc.)"

    async def _run(
        self,
        context: ToolContext,
        command: str,
        cwd: str = ".",
        timeout: float | None = None,
    ) -> Any:
        workdir = self.resolve(context, cwd)
        await aiofiles.os.makedirs(workdir, exist_ok=True)
        timeout = timeout or self.default_timeout

        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.fail(f"command timed out after {timeout:g}s")

        data = {
            "command": command,
            "stdout": stdout.decode("utf-8", errors="replace")[:MAX_STDOUT_CHARS],
            "stderr": stderr.decode("utf-8", errors="replace")[:MAX_STDERR_CHARS],
            "exit_code": process.returncode,
        }
        if process.returncode != 0:
            return ToolResult.fail(f"command exited with code {process.returncode}", data=data)
        return data


class ExecuteSqlParams(BaseModel):
    query: str = Field(description="SQL statement to run against the project database")


class ExecuteSqlTool(WorkspaceTool):
    """在项目 SQLite 数据库上执行 SQL"""

    params_model = ExecuteSqlParams
    destructive = True
    guarded_arguments = {"query": ArgumentKind.SQL}

    DB_FILENAME = "project.db"

    @property
    def name(self) -> str:
        return "execute_sql"

    @property
    def description(self) -> str:
        return "Run a SQL statement on the project database (DROP DATABASE / TRUNCATE are blocked)"

    async def _run(self, context: ToolContext, query: str) -> Any:
        root = self.project_root(context)
        await aiofiles.os.makedirs(root, exist_ok=True)
        return await asyncio.to_thread(_run_sql, root / self.DB_FILENAME, query)


def _run_sql(db_path: Path, query: str) -> dict[str, Any]:
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.execute(query)
        if cursor.description is None:
            conn.commit()
            return {"rowcount": cursor.rowcount}
        columns = [d[0] for d in cursor.description]
        rows = cursor.fetchmany(MAX_SQL_ROWS + 1)
        return {
            "columns": columns,
            "rows": [dict(zip(columns, row)) for row in rows[:MAX_SQL_ROWS]],
            "truncated": len(rows) > MAX_SQL_ROWS,
        }
    finally:
        conn.close()


def _iter_files(root: Path):
    for path in root.rglob("*"):
        if path.is_file() and not (IGNORED_DIRS & set(path.relative_to(root).parts)):
            yield path


def _scan_project(root: Path) -> tuple[list[str], int]:
    top_level = sorted(p.name + ("/" if p.is_dir() else "") for p in root.iterdir())
    return top_level, sum(1 for _ in _iter_files(root))


def _glob_files(root: Path, base: Path, pattern: str) -> list[str]:
    return sorted(
        str(p.relative_to(root))
        for p in base.glob(pattern)
        if p.is_file() and not (IGNORED_DIRS & set(p.relative_to(root).parts))
    )


# ==================== 工厂函数 ====================


def create_workspace_tools(
    settings: BuildAgentSettings | None = None,
    guard: SecurityGuard | None = None,
) -> list[Tool]:
    """创建全部工作区工具"""
    settings = settings or get_settings()
    root = settings.workspace_root
    return [
        GetProjectInfoTool(root, guard),
        ListProjectFilesTool(root, guard),
        ReadFileTool(root, guard),
        WriteFileTool(root, guard),
        DeleteFileTool(root, guard),
        RunCommandTool(root, guard, default_timeout=settings.command_timeout),
        ExecuteSqlTool(root, guard),
    ]


def create_default_registry(
    settings: BuildAgentSettings | None = None,
    guard: SecurityGuard | None = None,
) -> ToolRegistry:
    """创建带全部工作区工具的注册表"""
    guard = guard or get_security_guard()
    return ToolRegistry(create_workspace_tools(settings, guard), guard=guard)
