"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

from ai_meetings.providers.base import ProviderError
from ai_meetings.providers.openai_provider import OpenAIProvider
from config.config_loader import ModelConfig


class XAIProvider(OpenAIProvider):
    """xAI Grok provider via OpenAI-compatible API."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for xAI provider")
        super().__init__(config)
