"""控制台状态显示

简洁的逐行事件输出，只使用 ✓ ✗ ⚠ → 等小巧清晰的符号。
同时用于实时运行与事件日志重放。
"""

import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..infrastructure.event_bus import AgentEvent, AgentEventType
from ..types import TokenDelta


class CleanIcons:
    """简洁图标系统"""

    SUCCESS = "✓"
    ERROR = "✗"
    WARNING = "⚠"
    ARROW = "→"
    THINKING = "⠋"
    TREE_LAST = "└─"


TASK_STATUS_STYLES = {
    "pending": "dim",
    "in_progress": "yellow",
    "completed": "green",
    "failed": "red",
}


def _preview(value: Any, max_len: int = 80) -> str:
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    text = " ".join(text.split())
    return text if len(text) <= max_len else text[:max_len] + "..."


def render_event(event: AgentEvent, verbose: bool = False) -> Text | None:
    """将事件渲染为一行富文本

    Returns:
        富文本，不需要显示的事件返回 None
    """
    data = event.data
    kind = event.event_type

    if kind == AgentEventType.THINKING:
        if data.get("backoff"):
            return Text(
                f"{CleanIcons.WARNING} rate limited, retry {data.get('attempt')} "
                f"in {data.get('delay', 0):.1f}s",
                style="yellow",
            )
        if "iteration" in data and not verbose:
            return None
        return Text(f"{CleanIcons.THINKING} {data.get('message', '')}", style="dim")

    if kind == AgentEventType.TOOL_CALL:
        line = Text(f"{CleanIcons.ARROW} {data.get('name')}", style="cyan")
        if verbose:
            line.append(f" {_preview(data.get('arguments', {}))}", style="dim")
        return line

    if kind == AgentEventType.TOOL_RESULT:
        result = data.get("result", {})
        if data.get("success"):
            line = Text(f"  {CleanIcons.TREE_LAST} {CleanIcons.SUCCESS}", style="green")
            if verbose and "data" in result:
                line.append(f" {_preview(result['data'])}", style="dim")
            return line
        return Text(
            f"  {CleanIcons.TREE_LAST} {CleanIcons.ERROR} {result.get('error', 'failed')}",
            style="red",
        )

    if kind == AgentEventType.TASK_UPDATE:
        task = data.get("task", {})
        style = TASK_STATUS_STYLES.get(task.get("status", ""), "")
        return Text(f"  [{task.get('status')}] {task.get('id')}: {task.get('content')}", style=style)

    if kind == AgentEventType.REVIEW:
        verdict = data.get("verdict")
        if verdict:
            icon = CleanIcons.WARNING if verdict.get("requires_more_work") else CleanIcons.SUCCESS
            return Text(
                f"{icon} review grade {verdict.get('grade')}: {_preview(verdict.get('feedback', ''))}",
                style="magenta",
            )
        if data.get("action") == "started":
            return Text(f"{CleanIcons.ARROW} review requested", style="magenta")
        return None

    if kind == AgentEventType.MESSAGE:
        return Text(str(data.get("message", "")), style="bold")

    if kind == AgentEventType.COMPLETE:
        tasks = data.get("tasks", [])
        done = sum(1 for t in tasks if t.get("status") == "completed")
        return Text(
            f"{CleanIcons.SUCCESS} complete ({data.get('iterations', 0)} iterations, "
            f"{done}/{len(tasks)} tasks)",
            style="bold green",
        )

    if kind == AgentEventType.ERROR:
        return Text(f"{CleanIcons.ERROR} {data.get('error')}", style="bold red")

    return None


def render_tasks(tasks: list[dict[str, Any]]) -> Table:
    """任务表格"""
    table = Table(title="Tasks", show_lines=False)
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("Content")
    table.add_column("Result", style="dim")
    for task in tasks:
        status = task.get("status", "")
        table.add_row(
            task.get("id", ""),
            Text(status, style=TASK_STATUS_STYLES.get(status, "")),
            task.get("content", ""),
            task.get("result") or "",
        )
    return table


class ConsoleDisplay:
    """控制台状态回调

    实现 StatusCallback 协议，逐行打印事件；可选显示流式增量。
    """

    def __init__(
        self,
        console: Console | None = None,
        verbose: bool = False,
        show_deltas: bool = False,
    ):
        self.console = console or Console()
        self.verbose = verbose
        self.show_deltas = show_deltas
        self._streaming = False

    async def on_event(self, event: AgentEvent) -> None:
        line = render_event(event, self.verbose)
        if line is None:
            return
        if self._streaming:
            self.console.print()
            self._streaming = False
        self.console.print(line)

    async def on_delta(self, delta: TokenDelta) -> None:
        if not self.show_deltas:
            return
        self._streaming = True
        style = "dim italic" if delta.kind == "thinking" else "dim"
        self.console.print(delta.text, end="", style=style, highlight=False)
