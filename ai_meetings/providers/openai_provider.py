"""OpenAI provider using openai SDK with native async."""

import asyncio
import logging
import os
import time
from decimal import Decimal

import openai
from openai import AsyncOpenAI

from ai_meetings.models import ProviderReply
from ai_meetings.providers.base import AIProvider, ProviderError, is_transient_status
from config.config_loader import ModelConfig

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK. Also serves OpenAI-compatible endpoints."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

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
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens or self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s", transient=True
            ) from exc
        except _TRANSIENT_ERRORS as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}", transient=True) from exc
        except openai.APIStatusError as exc:
            raise ProviderError(
                self._config.name, f"API call failed: {exc}", transient=is_transient_status(exc.status_code)
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        tokens_used: int | None = None
        if response.usage:
            tokens_used = response.usage.total_tokens

        logger.info("%s: %dms, %s tokens", self._config.name, latency_ms, tokens_used)

        return ProviderReply(
            provider=self._config.name,
            model=self._config.model,
            content=choice.message.content,
            latency_ms=latency_ms,
            tokens_used=tokens_used,
        )
