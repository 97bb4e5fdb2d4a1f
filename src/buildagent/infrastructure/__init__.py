"""公共基础设施层

- EventBus: 会话级只追加事件日志
- SecurityGuard: 破坏性参数黑名单与目录隔离
"""

from buildagent.infrastructure.event_bus import AgentEvent, AgentEventType, EventBus
from buildagent.infrastructure.security_guard import (
    ArgumentKind,
    DenyRule,
    SecurityGuard,
    get_security_guard,
)

__all__ = [
    # EventBus
    "AgentEventType",
    "AgentEvent",
    "EventBus",
    # SecurityGuard
    "ArgumentKind",
    "DenyRule",
    "SecurityGuard",
    "get_security_guard",
]
