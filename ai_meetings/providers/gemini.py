"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time
from decimal import Decimal

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from ai_meetings.models import ProviderReply
from ai_meetings.providers.base import AIProvider, ProviderError, is_transient_status
from config.config_loader import ModelConfig

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

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
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=prompt,
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=max_tokens or self._config.max_tokens,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s", transient=True
            ) from exc
        except genai_errors.APIError as exc:
            raise ProviderError(
                self._config.name, f"API call failed: {exc}", transient=is_transient_status(exc.code)
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        tokens_used: int | None = None
        if response.usage_metadata:
            tokens_used = response.usage_metadata.total_token_count

        logger.info("%s: %dms, %s tokens", self._config.name, latency_ms, tokens_used)

        return ProviderReply(
            provider=self._config.name,
            model=self._config.model,
            content=response.text,
            latency_ms=latency_ms,
            tokens_used=tokens_used,
        )
