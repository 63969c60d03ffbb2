"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护模型预设 (registry)。
- 提供两类后端的具体实现 (gemini_client、openai_client)。
- SSE 解码 (sse) 与响应 JSON 解析 (response_parser)。
"""

from typing import Optional

from context_book.config.settings import settings
from context_book.domain.exceptions import ConfigError
from context_book.domain.models import AnalyzeConfig
from context_book.providers.base import ProviderClient, RequestGuard
from context_book.providers.gemini_client import GeminiClient
from context_book.providers.openai_client import OpenAICompatibleClient


def create_provider(config: Optional[AnalyzeConfig] = None) -> ProviderClient:
    """根据配置选择后端，默认取全局配置中的 provider。

    配置不合法（例如 completion 缺少 API Key）时在这里直接抛出 ConfigError，
    不会发生任何网络调用。
    """

    config = (config or settings.to_analyze_config()).validate()
    if config.provider == "structured":
        return GeminiClient(settings)
    if config.provider == "completion":
        return OpenAICompatibleClient(settings)
    raise ConfigError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {config.provider!r}")


__all__ = ["ProviderClient", "RequestGuard", "create_provider"]
