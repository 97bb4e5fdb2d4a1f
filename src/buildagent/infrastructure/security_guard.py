"""SecurityGuard 安全守卫

破坏性工具执行前的参数校验：危险命令/SQL 模式黑名单与工作区越界检查。
用于拦截模型幻觉或注入产生的破坏性调用。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger

from buildagent.core.exceptions import SecurityViolationError


class ArgumentKind(str, Enum):
    """受检参数类别"""

    COMMAND = "command"
    """Shell 命令"""

    SQL = "sql"
    """SQL 语句"""

    PATH = "path"
    """工作区内的相对路径"""


@dataclass(frozen=True)
class DenyRule:
    """黑名单规则

    Attributes:
        name: 规则名称
        pattern: 正则表达式（忽略大小写）
        kind: 适用的参数类别
    """

    name: str
    pattern: str
    kind: ArgumentKind

    def matches(self, value: str) -> bool:
        return re.search(self.pattern, value, flags=re.IGNORECASE) is not None


# 预定义的危险模式
DEFAULT_DENY_RULES: tuple[DenyRule, ...] = (
    DenyRule(
        "rm_root",
        r"\brm\s+(-{1,2}[\w-]+\s+)+(['\"]?)/[.*]?\2(\s|;|&|\||$)",
        ArgumentKind.COMMAND,
    ),
    DenyRule("mkfs", r"\bmkfs(\.\w+)?\b", ArgumentKind.COMMAND),
    DenyRule("dd_device", r"\bdd\s+if=", ArgumentKind.COMMAND),
    DenyRule("fork_bomb", r":\(\)\s*\{\s*:", ArgumentKind.COMMAND),
    DenyRule("raw_device_write", r">\s*/dev/sd[a-z]", ArgumentKind.COMMAND),
    DenyRule("shutdown", r"\b(shutdown|reboot|halt|poweroff)\b", ArgumentKind.COMMAND),
    DenyRule("chmod_root", r"chmod\s+-R\s+[0-7]{3,4}\s+/(\s|$)", ArgumentKind.COMMAND),
    DenyRule("drop_database", r"^\s*drop\s+database\b", ArgumentKind.SQL),
    DenyRule("truncate", r"^\s*truncate\b", ArgumentKind.SQL),
)


@dataclass
class AuditLogEntry:
    """审计日志条目"""

    tool_name: str
    argument: str
    kind: ArgumentKind
    allowed: bool
    rule: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "timestamp": self.timestamp.isoformat(),
            "tool_name": self.tool_name,
            "argument": self.argument,
            "kind": self.kind.value,
            "allowed": self.allowed,
            "rule": self.rule,
        }

    def to_json(self) -> str:
        """转换为 JSON 字符串"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityGuard:
    """安全守卫

    两层防御：
    1. 模式黑名单 - 命令与 SQL 中的破坏性操作
    2. 目录隔离 - 路径参数不得逃逸项目工作区

    Attributes:
        rules: 黑名单规则
        strict_mode: 严格模式（违规时抛出 SecurityViolationError）
    """

    def __init__(
        self,
        rules: tuple[DenyRule, ...] | list[DenyRule] | None = None,
        strict_mode: bool = True,
    ):
        """初始化安全守卫

        Args:
            rules: 黑名单规则（默认使用 DEFAULT_DENY_RULES）
            strict_mode: 严格模式
        """
        self.rules: list[DenyRule] = list(rules if rules is not None else DEFAULT_DENY_RULES)
        self.strict_mode = strict_mode
        self._audit: list[AuditLogEntry] = []
        self._max_audit = 1000

    def add_rule(self, rule: DenyRule) -> None:
        """追加规则"""
        self.rules.append(rule)

    def find_violation(self, value: str, kind: ArgumentKind) -> DenyRule | None:
        """查找命中的规则

        Args:
            value: 参数值
            kind: 参数类别

        Returns:
            命中的规则，未命中返回 None
        """
        for rule in self.rules:
            if rule.kind == kind and rule.matches(value):
                return rule
        return None

    def check_value(self, tool_name: str, value: str, kind: ArgumentKind) -> bool:
        """检查单个参数值

        Returns:
            是否允许

        Raises:
            SecurityViolationError: 严格模式下命中黑名单
        """
        rule = self.find_violation(value, kind)
        allowed = rule is None
        self._record(tool_name, value, kind, allowed, rule.name if rule else None)

        if not allowed:
            logger.warning(f"Blocked {tool_name}: {kind.value} matches rule '{rule.name}'")
            if self.strict_mode:
                raise SecurityViolationError(
                    f"blocked by security policy: {rule.name}",
                    pattern=rule.pattern,
                )
        return allowed

    def check_path(self, tool_name: str, root: Path, relative: str) -> Path:
        """解析路径并确认其位于 root 之内

        Args:
            tool_name: 工具名称（用于审计）
            root: 项目工作区根目录
            relative: 模型给出的路径

        Returns:
            解析后的绝对路径

        Raises:
            SecurityViolationError: 路径逃逸工作区
        """
        root_resolved = root.resolve()
        candidate = Path(relative)
        target = (candidate if candidate.is_absolute() else root_resolved / candidate).resolve()

        allowed = target == root_resolved or root_resolved in target.parents
        self._record(tool_name, relative, ArgumentKind.PATH, allowed, None if allowed else "path_escape")

        if not allowed:
            logger.warning(f"Blocked {tool_name}: path '{relative}' escapes project root")
            raise SecurityViolationError(
                f"blocked by security policy: path '{relative}' is outside the project"
            )
        return target

    def check_arguments(
        self,
        tool_name: str,
        params: dict[str, Any],
        guarded: dict[str, ArgumentKind],
    ) -> None:
        """按工具声明的受检参数逐一检查

        Args:
            tool_name: 工具名称
            params: 调用参数
            guarded: 参数名 -> 参数类别

        Raises:
            SecurityViolationError: 命中黑名单
        """
        for arg_name, kind in guarded.items():
            value = params.get(arg_name)
            if not isinstance(value, str) or kind == ArgumentKind.PATH:
                continue
            self.check_value(tool_name, value, kind)

    def _record(
        self,
        tool_name: str,
        argument: str,
        kind: ArgumentKind,
        allowed: bool,
        rule: str | None,
    ) -> None:
        self._audit.append(
            AuditLogEntry(
                tool_name=tool_name,
                argument=argument[:200],
                kind=kind,
                allowed=allowed,
                rule=rule,
            )
        )
        if len(self._audit) > self._max_audit:
            self._audit = self._audit[-self._max_audit :]

    def get_audit_log(self, denied_only: bool = False) -> list[AuditLogEntry]:
        """获取审计记录"""
        if denied_only:
            return [e for e in self._audit if not e.allowed]
        return list(self._audit)

    def __repr__(self) -> str:
        return f"SecurityGuard(rules={len(self.rules)}, strict={self.strict_mode})"


# 全局实例（延迟初始化）
_guard: SecurityGuard | None = None


def get_security_guard() -> SecurityGuard:
    """获取全局安全守卫"""
    global _guard
    if _guard is None:
        _guard = SecurityGuard()
    return _guard
