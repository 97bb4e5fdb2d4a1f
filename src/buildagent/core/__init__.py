"""BuildAgent 核心层

提供全局配置和异常定义。
"""

from .config import BuildAgentSettings, get_settings, reset_settings
from .exceptions import (
    BuildAgentError,
    CancelledRunError,
    ConfigurationError,
    DuplicateToolError,
    ProviderError,
    ProviderFailureError,
    ProviderRateLimitedError,
    SecurityViolationError,
    SessionBusyError,
    SessionNotFoundError,
    ToolError,
    ToolValidationError,
)

__all__ = [
    # Config
    "BuildAgentSettings",
    "get_settings",
    "reset_settings",
    # Exceptions
    "BuildAgentError",
    "ConfigurationError",
    "ProviderError",
    "ProviderRateLimitedError",
    "ProviderFailureError",
    "ToolError",
    "DuplicateToolError",
    "ToolValidationError",
    "SecurityViolationError",
    "SessionNotFoundError",
    "SessionBusyError",
    "CancelledRunError",
]
