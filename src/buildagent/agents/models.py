"""会话数据模型

定义会话状态、任务与审查结论。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """会话状态

    合法转换: idle -> running -> (reviewing -> running)* -> complete，
    任意状态遇到致命错误 -> idle。
    """

    IDLE = "idle"
    RUNNING = "running"
    REVIEWING = "reviewing"
    COMPLETE = "complete"


class TaskStatus(str, Enum):
    """任务状态"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """子任务

    仅通过 create_tasks 创建，仅通过 update_task 修改，从不删除。
    """

    id: str
    content: str
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "status": self.status.value,
        }
        if self.result is not None:
            data["result"] = self.result
        return data


@dataclass
class Verdict:
    """审查结论"""

    approved: bool
    grade: str
    feedback: str = ""
    issues: list[Any] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    must_fix: list[str] = field(default_factory=list)
    message: str | None = None

    @property
    def requires_more_work(self) -> bool:
        """存在必须修复的问题时需要继续工作"""
        return bool(self.must_fix)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Verdict":
        """从模型返回的 JSON 对象构建

        同时兼容 camelCase（mustFix）与 snake_case（must_fix）字段。
        """
        must_fix = data.get("mustFix", data.get("must_fix")) or []
        if isinstance(must_fix, str):
            must_fix = [must_fix]
        suggestions = data.get("suggestions") or []
        if isinstance(suggestions, str):
            suggestions = [suggestions]
        issues = data.get("issues") or []
        if not isinstance(issues, list):
            issues = [issues]
        return cls(
            approved=_as_bool(data.get("approved"), default=not must_fix),
            grade=str(data.get("grade", "?")),
            feedback=str(data.get("feedback", "")),
            issues=issues,
            suggestions=[str(s) for s in suggestions],
            must_fix=[str(m) for m in must_fix],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "approved": self.approved,
            "grade": self.grade,
            "feedback": self.feedback,
            "issues": self.issues,
            "suggestions": self.suggestions,
            "must_fix": self.must_fix,
        }
        if self.requires_more_work:
            data["requires_more_work"] = True
        if self.message:
            data["message"] = self.message
        return data


# 合法状态转换（任意状态 -> IDLE 单独处理）
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.RUNNING}),
    SessionStatus.RUNNING: frozenset({SessionStatus.REVIEWING, SessionStatus.COMPLETE}),
    SessionStatus.REVIEWING: frozenset({SessionStatus.RUNNING}),
    SessionStatus.COMPLETE: frozenset({SessionStatus.RUNNING}),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """判断状态转换是否合法"""
    if target == SessionStatus.IDLE:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def _as_bool(value: Any, default: bool) -> bool:
    """宽松解析模型输出的布尔字段

    字符串按 "true"/"yes"/"1" 判真，其余字符串（含 "false"）为假。
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


@dataclass
class RunResult:
    """单次运行结果"""

    status: SessionStatus
    iterations: int
    message: str | None = None
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == SessionStatus.COMPLETE

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "iterations": self.iterations,
            "message": self.message,
            "error": self.error,
        }
