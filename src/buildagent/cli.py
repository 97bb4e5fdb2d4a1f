"""BuildAgent CLI 入口

提供命令行操作接口：运行构建请求、列出工具、重放事件日志。
"""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="buildagent",
    help="BuildAgent - LLM 驱动的项目构建 Agent",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    """默认只显示 WARNING 及以上日志，verbose 模式下保留 DEBUG 日志"""
    logger.remove()
    if verbose:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/dim]", end="", highlight=False),
            level="WARNING",
            format="{message}\n",
        )


def _build_callback(verbose: bool, stream: bool):
    """构建运行回调：终端显示，verbose 模式下追加结构化日志"""
    from buildagent.agents import CompositeCallback, ConsoleDisplay, LoggingCallback

    display = ConsoleDisplay(console, verbose=verbose, show_deltas=stream)
    if not verbose:
        return display
    return CompositeCallback([display, LoggingCallback()])


@app.command()
def run(
    message: str = typer.Argument(..., help="构建请求（自然语言）"),
    project: str = typer.Option(..., "--project", "-p", help="项目 ID（workspace_root 下的目录名）"),
    session_id: str = typer.Option(None, "--session", "-s", help="会话 ID（默认自动生成）"),
    provider: str = typer.Option(None, "--provider", help="模型提供商: openai, anthropic, scripted"),
    model: str = typer.Option(None, "--model", "-m", help="模型名称"),
    max_iterations: int = typer.Option(None, "--max-iterations", help="最大迭代次数"),
    stream: bool = typer.Option(False, "--stream", help="流式显示模型输出"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细模式：显示完整工具参数和 DEBUG 日志"),
):
    """执行一次构建请求

    示例：
        buildagent run "add a users table" -p demo
        buildagent run "add a users table" -p demo --provider anthropic -m claude-sonnet-4-20250514
    """
    from buildagent.agents import SessionRegistry, render_tasks
    from buildagent.core import BuildAgentError, get_settings
    from buildagent.providers import create_provider
    from buildagent.tools import create_default_registry

    _configure_logging(verbose)

    overrides = {}
    if provider:
        overrides["llm_provider"] = provider
    if model:
        overrides["llm_model_name"] = model
    if max_iterations is not None:
        overrides["max_iterations"] = max_iterations
    if stream:
        overrides["llm_streaming"] = True

    settings = get_settings()
    if overrides:
        settings = settings.model_copy(update=overrides)

    async def run_once():
        registry = SessionRegistry(
            create_provider(settings),
            create_default_registry(settings),
            settings=settings,
            callback=_build_callback(verbose, stream),
        )
        try:
            session, result = await registry.run(project, message, session_id=session_id)
        finally:
            await registry.aclose()
        return session, result

    try:
        session, result = asyncio.run(run_once())
    except BuildAgentError as e:
        console.print(f"[red]错误: {e}[/red]")
        raise typer.Exit(1)

    tasks = session.tasks.to_list()
    if tasks:
        console.print(render_tasks(tasks))
    console.print(f"[dim]session: {session.session_id} | status: {result.status.value}[/dim]")
    if not result.completed:
        raise typer.Exit(1)


@app.command("tools")
def list_tools():
    """列出可用的工作区工具与控制工具"""
    from buildagent.agents import control_tool_definitions
    from buildagent.tools import create_default_registry

    registry = create_default_registry()

    table = Table(title="Tools")
    table.add_column("名称", style="cyan")
    table.add_column("类型")
    table.add_column("描述")

    for tool in registry:
        kind = "[red]destructive[/red]" if tool.destructive else "workspace"
        table.add_row(tool.name, kind, tool.description)
    for definition in control_tool_definitions():
        table.add_row(definition.name, "[magenta]control[/magenta]", definition.description)

    console.print(table)


@app.command("events")
def replay_events(
    file: Path = typer.Argument(..., help="JSONL 事件日志文件"),
    event_type: list[str] = typer.Option(None, "--type", "-t", help="仅显示指定类型（可多次指定）"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="显示工具参数与结果"),
):
    """重放持久化的事件日志"""
    from buildagent.agents import render_event
    from buildagent.infrastructure import AgentEventType, EventBus

    if not file.exists():
        console.print(f"[red]文件不存在: {file}[/red]")
        raise typer.Exit(1)

    try:
        types = [AgentEventType(t) for t in event_type] if event_type else None
    except ValueError as e:
        console.print(f"[red]未知的事件类型: {e}[/red]")
        raise typer.Exit(1)

    events = EventBus.replay_file(file, types)
    for event in events:
        line = render_event(event, verbose=verbose)
        if line is not None:
            console.print(f"[dim]#{event.seq} {event.timestamp:%H:%M:%S}[/dim] ", end="")
            console.print(line)
    console.print(f"[dim]{len(events)} events[/dim]")


if __name__ == "__main__":
    app()
