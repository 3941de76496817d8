"""Single call contract in front of every provider adapter."""

import asyncio
import logging
from collections.abc import Mapping

from ai_meetings.costs import compute_cost
from ai_meetings.models import ProviderResult
from ai_meetings.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SEC = 60.0


class ProviderGateway:
    """Routes a call to the adapter registered under a provider id.

    The executor never sees adapter details: every failure comes back as a
    ProviderError carrying the transient flag, and the cost is computed here
    from the adapter's per-1k rate.
    """

    def __init__(
        self,
        providers: Mapping[str, AIProvider],
        call_timeout_sec: float = DEFAULT_CALL_TIMEOUT_SEC,
    ) -> None:
        self._providers = dict(providers)
        self._call_timeout_sec = call_timeout_sec

    def provider_ids(self) -> list[str]:
        return sorted(self._providers)

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def get(self, provider_id: str) -> AIProvider | None:
        return self._providers.get(provider_id)

    async def call(self, provider_id: str, prompt: str, max_tokens: int | None = None) -> ProviderResult:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderError(provider_id, "Provider not available")

        logger.debug("Dispatching %d-char prompt to %s", len(prompt), provider_id)
        try:
            reply = await asyncio.wait_for(
                provider.generate(prompt, max_tokens=max_tokens),
                timeout=self._call_timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                provider_id, f"Call exceeded {self._call_timeout_sec}s", transient=True
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(provider_id, f"Unexpected error: {exc}") from exc

        tokens_used = reply.tokens_used or 0
        return ProviderResult(
            provider=provider_id,
            model=reply.model,
            content=reply.content,
            tokens_used=tokens_used,
            cost_usd=compute_cost(tokens_used, provider.cost_per_1k()),
            latency_ms=reply.latency_ms,
        )
