"""模型提供商

Usage:
    from buildagent.providers import create_provider

    provider = create_provider()                      # 按配置选择
    provider = create_provider(llm_provider="anthropic", llm_model_name="claude-sonnet-4-20250514")
"""

from typing import Any

from loguru import logger

from ..core.config import BuildAgentSettings, get_settings
from ..core.exceptions import ConfigurationError
from .anthropic import AnthropicProvider
from .base import ProviderAdapter, is_rate_limit_error, parse_tool_arguments
from .openai import OpenAIProvider
from .scripted import ScriptedProvider, text_response, tool_call_response

SUPPORTED_PROVIDERS = ("openai", "anthropic", "scripted")


def create_provider(settings: BuildAgentSettings | None = None, **overrides: Any) -> ProviderAdapter:
    """根据配置创建提供商适配器

    Args:
        settings: 配置（默认使用全局配置）
        **overrides: 覆盖配置字段（如 llm_provider、llm_model_name）

    Returns:
        ProviderAdapter 实例

    Raises:
        ConfigurationError: 未知的提供商名称
    """
    settings = settings or get_settings()
    if overrides:
        settings = settings.model_copy(update=overrides)

    provider = settings.llm_provider.lower()
    logger.debug(f"Creating provider: {provider} ({settings.llm_model_name})")

    if provider == "openai":
        return OpenAIProvider(
            model=settings.llm_model_name,
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout,
            streaming=settings.llm_streaming,
        )
    if provider == "anthropic":
        return AnthropicProvider(
            model=settings.llm_model_name,
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout,
            streaming=settings.llm_streaming,
        )
    if provider == "scripted":
        return ScriptedProvider(streaming=settings.llm_streaming)

    raise ConfigurationError(
        f"未知的模型提供商: {settings.llm_provider}（可选: {', '.join(SUPPORTED_PROVIDERS)}）"
    )


__all__ = [
    "ProviderAdapter",
    "OpenAIProvider",
    "AnthropicProvider",
    "ScriptedProvider",
    "create_provider",
    "is_rate_limit_error",
    "parse_tool_arguments",
    "text_response",
    "tool_call_response",
    "SUPPORTED_PROVIDERS",
]
