"""Provider health checks — ping each adapter before a meeting starts."""

import asyncio
import logging
import time
from dataclasses import dataclass

from ai_meetings.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_PING_MAX_TOKENS = 16
_TIMEOUT_SEC = 15.0


@dataclass(frozen=True)
class HealthStatus:
    provider_id: str
    ok: bool
    error: str = ""
    latency_ms: int | None = None
    transient: bool = False  # a timeout or rate limit, likely to pass on a later try


async def _ping(provider_id: str, provider: AIProvider, timeout_sec: float) -> HealthStatus:
    start = time.monotonic()
    try:
        await asyncio.wait_for(
            provider.generate(_PING_PROMPT, max_tokens=_PING_MAX_TOKENS),
            timeout=timeout_sec,
        )
    except TimeoutError:
        return HealthStatus(provider_id, False, f"No reply within {timeout_sec}s", transient=True)
    except ProviderError as exc:
        logger.debug("Health check failed for %s: %s", provider_id, exc)
        return HealthStatus(provider_id, False, exc.message, transient=exc.transient)
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", provider_id, exc)
        return HealthStatus(provider_id, False, str(exc) or type(exc).__name__)
    return HealthStatus(provider_id, True, latency_ms=int((time.monotonic() - start) * 1000))


async def run_health_checks(
    providers: dict[str, AIProvider],
    timeout_sec: float | None = None,
) -> dict[str, HealthStatus]:
    """Ping all providers in parallel. Never raises; failures are reported per provider."""
    timeout = _TIMEOUT_SEC if timeout_sec is None else timeout_sec
    statuses = await asyncio.gather(*(_ping(pid, p, timeout) for pid, p in providers.items()))
    return {status.provider_id: status for status in statuses}
