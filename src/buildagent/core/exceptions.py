"""BuildAgent 自定义异常类"""


class BuildAgentError(Exception):
    """BuildAgent 基础异常类"""

    pass


class ConfigurationError(BuildAgentError):
    """配置错误"""

    pass


# ==================== 模型提供商 ====================


class ProviderError(BuildAgentError):
    """模型提供商调用错误（基类）"""

    def __init__(self, message: str, provider: str = "unknown"):
        self.provider = provider
        super().__init__(message)


class ProviderRateLimitedError(ProviderError):
    """提供商限流错误（可重试）"""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, provider)


class ProviderFailureError(ProviderError):
    """提供商非限流失败（致命，不重试）"""

    pass


# ==================== 工具 ====================


class ToolError(BuildAgentError):
    """工具错误（基类）"""

    pass


class DuplicateToolError(ToolError):
    """工具名称重复"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"工具 '{name}' 已注册")


class ToolValidationError(ToolError):
    """工具参数校验失败"""

    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"工具 '{tool_name}' 参数无效: {reason}")


class SecurityViolationError(BuildAgentError):
    """安全违规错误（命中危险模式或越界路径）"""

    def __init__(self, reason: str, pattern: str | None = None):
        self.reason = reason
        self.pattern = pattern
        super().__init__(reason)


# ==================== 会话 ====================


class SessionNotFoundError(BuildAgentError):
    """会话不存在错误"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"会话 '{session_id}' 不存在")


class SessionBusyError(BuildAgentError):
    """会话正在运行，无法执行请求的操作"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"会话 '{session_id}' 正在运行")


class CancelledRunError(BuildAgentError):
    """运行被取消"""

    pass
