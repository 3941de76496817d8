"""Tests for ai_meetings/providers/gateway.py and provider error classification."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from ai_meetings.providers.base import ProviderError, is_transient_status
from ai_meetings.providers.gateway import ProviderGateway
from tests.conftest import MockProvider, reply


async def test_call_returns_result_with_cost():
    provider = MockProvider("openai", rate=Decimal("0.02"))
    provider.generate = AsyncMock(return_value=reply("openai", "Hello", tokens=1500))
    gateway = ProviderGateway({"openai": provider})

    result = await gateway.call("openai", "Say hello")

    assert result.content == "Hello"
    assert result.tokens_used == 1500
    assert result.cost_usd == Decimal("0.030000")
    assert result.provider == "openai"
    provider.generate.assert_awaited_once_with("Say hello", max_tokens=None)


async def test_missing_usage_counts_as_zero_tokens():
    provider = MockProvider("gemini")
    provider.generate = AsyncMock(return_value=reply("gemini", "Hi", tokens=None))
    result = await ProviderGateway({"gemini": provider}).call("gemini", "prompt")
    assert result.tokens_used == 0
    assert result.cost_usd == Decimal("0")


async def test_unknown_provider_is_permanent():
    gateway = ProviderGateway({})
    with pytest.raises(ProviderError) as excinfo:
        await gateway.call("nope", "prompt")
    assert excinfo.value.transient is False
    assert "not available" in str(excinfo.value)


async def test_provider_error_passes_through():
    provider = MockProvider("claude")
    provider.generate = AsyncMock(side_effect=ProviderError("claude", "rate limited", transient=True))
    with pytest.raises(ProviderError) as excinfo:
        await ProviderGateway({"claude": provider}).call("claude", "prompt")
    assert excinfo.value.transient is True


async def test_unexpected_exception_wrapped_as_permanent():
    provider = MockProvider("claude")
    provider.generate = AsyncMock(side_effect=RuntimeError("boom"))
    with pytest.raises(ProviderError) as excinfo:
        await ProviderGateway({"claude": provider}).call("claude", "prompt")
    assert excinfo.value.transient is False
    assert "boom" in str(excinfo.value)


async def test_timeout_is_transient():
    provider = MockProvider("slow")

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    provider.generate = AsyncMock(side_effect=hang)
    gateway = ProviderGateway({"slow": provider}, call_timeout_sec=0.05)

    with pytest.raises(ProviderError) as excinfo:
        await gateway.call("slow", "prompt")
    assert excinfo.value.transient is True


def test_provider_ids_sorted():
    gateway = ProviderGateway({"b": MockProvider("b"), "a": MockProvider("a")})
    assert gateway.provider_ids() == ["a", "b"]
    assert gateway.has("a")
    assert gateway.get("c") is None


@pytest.mark.parametrize(
    "status, transient",
    [(None, False), (400, False), (401, False), (404, False), (408, True), (429, True), (500, True), (503, True)],
)
def test_is_transient_status(status, transient):
    assert is_transient_status(status) is transient


def test_provider_error_str_includes_provider():
    err = ProviderError("grok", "403 Forbidden")
    assert str(err) == "[grok] 403 Forbidden"
    assert err.message == "403 Forbidden"
    assert err.transient is False
