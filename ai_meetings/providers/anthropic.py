"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time
from decimal import Decimal

import anthropic as anthropic_sdk

from ai_meetings.models import ProviderReply
from ai_meetings.providers.base import AIProvider, ProviderError, is_transient_status
from config.config_loader import ModelConfig

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    anthropic_sdk.APIConnectionError,
    anthropic_sdk.RateLimitError,
    anthropic_sdk.InternalServerError,
)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def cost_per_1k(self) -> Decimal:
        return self._config.cost_per_1k

    async def generate(self, prompt: str, max_tokens: int | None = None) -> ProviderReply:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=max_tokens or self._config.max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s", transient=True
            ) from exc
        except _TRANSIENT_ERRORS as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}", transient=True) from exc
        except anthropic_sdk.APIStatusError as exc:
            raise ProviderError(
                self._config.name, f"API call failed: {exc}", transient=is_transient_status(exc.status_code)
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        tokens_used: int | None = None
        if response.usage:
            tokens_used = response.usage.input_tokens + response.usage.output_tokens

        logger.info("%s: %dms, %s tokens", self._config.name, latency_ms, tokens_used)

        return ProviderReply(
            provider=self._config.name,
            model=self._config.model,
            content="\n".join(text_blocks),
            latency_ms=latency_ms,
            tokens_used=tokens_used,
        )
