"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod
from decimal import Decimal

from ai_meetings.models import ProviderReply

# Request timeout, conflict, rate limiting
_TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})


class ProviderError(Exception):
    """Raised when a provider call fails.

    transient=True marks failures worth retrying (timeouts, rate limits,
    5xx). Everything else (bad credentials, policy rejection, malformed
    request) is permanent.
    """

    def __init__(self, provider_name: str, message: str, *, transient: bool = False) -> None:
        self.provider_name = provider_name
        self.message = message
        self.transient = transient
        super().__init__(f"[{provider_name}] {message}")


def is_transient_status(status_code: int | None) -> bool:
    if status_code is None:
        return False
    return status_code in _TRANSIENT_STATUS_CODES or status_code >= 500


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the provider id (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    def cost_per_1k(self) -> Decimal:
        """Return the USD rate per 1000 tokens."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int | None = None) -> ProviderReply:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            max_tokens: Optional cap overriding the configured max_tokens.

        Returns:
            ProviderReply with content, token usage and latency.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...
