"""测试提供商工厂"""

import pytest

from buildagent.core.config import BuildAgentSettings
from buildagent.core.exceptions import ConfigurationError
from buildagent.providers import (
    AnthropicProvider,
    OpenAIProvider,
    ScriptedProvider,
    create_provider,
)


class TestCreateProvider:
    """create_provider 测试"""

    @pytest.fixture
    def settings(self) -> BuildAgentSettings:
        return BuildAgentSettings(_env_file=None, llm_api_key="test-key", llm_model_name="m1")

    def test_openai_default(self, settings) -> None:
        provider = create_provider(settings)
        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "m1"

    def test_overrides(self, settings) -> None:
        """测试覆盖字段不修改原配置"""
        provider = create_provider(settings, llm_provider="anthropic", llm_streaming=True)
        assert isinstance(provider, AnthropicProvider)
        assert provider.streaming is True
        assert settings.llm_provider == "openai"

    def test_scripted(self, settings) -> None:
        assert isinstance(create_provider(settings, llm_provider="Scripted"), ScriptedProvider)

    def test_unknown(self, settings) -> None:
        with pytest.raises(ConfigurationError):
            create_provider(settings, llm_provider="nope")

    @pytest.mark.parametrize("name", ["openai", "anthropic"])
    def test_timeout_passed_to_sdk_client(self, settings, name: str) -> None:
        """测试超时经由 SDK 构造参数传入，不另建 HTTP 客户端"""
        provider = create_provider(settings, llm_provider=name, llm_timeout=42.0)
        assert provider._owns_client is True
        assert provider._client.timeout.read == 42.0
        assert provider._client.max_retries == 0

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, settings) -> None:
        """测试外部注入的客户端不由适配器关闭"""
        import openai

        client = openai.AsyncOpenAI(api_key="test-key")
        provider = OpenAIProvider(model="m1", client=client)
        await provider.aclose()
        assert provider._owns_client is False
        assert client.is_closed() is False
        await client.close()
