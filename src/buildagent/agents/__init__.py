"""编排核心

Usage:
    from buildagent.agents import SessionRegistry
    from buildagent.providers import create_provider
    from buildagent.tools import create_default_registry

    registry = SessionRegistry(create_provider(), create_default_registry())
    session, result = await registry.run("my-project", "add table X")
"""

from .callbacks import CompositeCallback, LoggingCallback, NullCallback, StatusCallback
from .control import CONTROL_TOOL_NAMES, control_tool_definitions
from .display import ConsoleDisplay, render_event, render_tasks
from .engine import CancellationToken, OrchestrationEngine
from .models import RunResult, SessionStatus, Task, TaskStatus, Verdict
from .review import ReviewSubroutine
from .session import ConversationSession, SessionRegistry
from .tasks import TaskTracker

__all__ = [
    # 数据模型
    "SessionStatus",
    "TaskStatus",
    "Task",
    "Verdict",
    "RunResult",
    # 编排
    "OrchestrationEngine",
    "CancellationToken",
    "ReviewSubroutine",
    "TaskTracker",
    "CONTROL_TOOL_NAMES",
    "control_tool_definitions",
    # 会话
    "ConversationSession",
    "SessionRegistry",
    # 回调与显示
    "StatusCallback",
    "NullCallback",
    "CompositeCallback",
    "LoggingCallback",
    "ConsoleDisplay",
    "render_event",
    "render_tasks",
]
