"""Shared pytest fixtures."""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from ai_meetings.chain import build_chain_definition
from ai_meetings.models import ChainDefinition, ChainStep, MeetingRun, ProviderReply, RunStatus, StepStatus
from ai_meetings.providers.base import AIProvider
from config.config_loader import AppConfig, DefaultsConfig, EngineConfig, ModelConfig, PromptsConfig


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        cost_per_1k=Decimal("0.01"),
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        devils_advocate="Challenge everything.",
        continuation="Keep going.",
        synthesis=(
            "Objective: {objective} ({iterations} iterations, {chain_length} steps)\n"
            "Description: {description}\n"
            "Transcript:\n{full_transcript}\n"
            "Outputs:\n{iteration_outputs}\n"
            "Synthesize:"
        ),
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        iterations=1,
        output_dir=tmp_path / "output",
        synthesis_provider="gemini",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"claude": model_cfg},
        prompts=sample_prompts_config,
        engine=EngineConfig(retry_backoff_sec=[0.0, 0.0]),
        available_providers={"claude"},
    )


@pytest.fixture
def sample_payload() -> dict:
    """A create-run payload in the external camelCase shape."""
    return {
        "name": "Pricing review",
        "description": "Quarterly pricing check",
        "objective": "Decide next year's price tiers",
        "initialPrompt": "Should we add a usage-based tier?",
        "chain": [
            {"step": 1, "providerId": "provider_a", "primaryPersonality": "Analytical"},
            {
                "step": 2,
                "providerId": "provider_b",
                "primaryPersonality": "Strategic",
                "secondaryPersonality": "Relational",
                "isDevilsAdvocate": True,
                "supplementalPrompt": "Mind the churn numbers.",
            },
        ],
        "iterations": 1,
        "synthesisProviderId": "provider_a",
    }


@pytest.fixture
def sample_definition(sample_payload: dict) -> ChainDefinition:
    return build_chain_definition(sample_payload)


@pytest.fixture
def sample_run(sample_definition: ChainDefinition) -> MeetingRun:
    return MeetingRun(
        id="run-1",
        definition=sample_definition,
        status=RunStatus.COMPLETED,
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
        completed_at=datetime(2026, 3, 1, 9, 5, tzinfo=timezone.utc),
        total_cost=Decimal("0.003000"),
    )


def make_step(
    step_number: int,
    *,
    run_id: str = "run-1",
    iteration: int = 1,
    position: int | None = None,
    provider_id: str = "provider_a",
    output: str | None = "Some output",
    status: StepStatus = StepStatus.COMPLETED,
    is_synthesis: bool = False,
    error_reason: str | None = None,
) -> ChainStep:
    completed = status is StepStatus.COMPLETED
    return ChainStep(
        id=f"step-{step_number}",
        run_id=run_id,
        iteration_number=iteration,
        step_number=step_number,
        provider_id=provider_id,
        input_prompt=f"prompt {step_number}",
        status=status,
        chain_position=None if is_synthesis else (position or step_number),
        created_at=datetime(2026, 3, 1, 9, step_number, tzinfo=timezone.utc),
        output_content=output if completed else None,
        tokens_used=100 if completed else None,
        cost_usd=Decimal("0.001000") if completed else None,
        latency_ms=250 if completed else None,
        error_reason=error_reason,
        is_synthesis=is_synthesis,
    )


@pytest.fixture
def sample_steps() -> list[ChainStep]:
    return [
        make_step(1, position=1, provider_id="provider_a", output="Margins look thin."),
        make_step(2, position=2, provider_id="provider_b", output="However, churn is the real risk."),
        make_step(3, provider_id="provider_a", output="## Consensus\nAdd the tier.", is_synthesis=True),
    ]


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(
        self,
        provider_name: str = "mock",
        response_content: str = "Mock response",
        rate: Decimal = Decimal("0.01"),
        tokens: int | None = 10,
    ) -> None:
        self._name = provider_name
        self._response_content = response_content
        self._rate = rate
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ProviderReply(
                provider=provider_name,
                model="mock-model",
                content=response_content,
                latency_ms=100,
                tokens_used=tokens,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    def cost_per_1k(self) -> Decimal:
        return self._rate

    async def generate(self, prompt: str, max_tokens: int | None = None) -> ProviderReply:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return ProviderReply(
            provider=self._name,
            model="mock-model",
            content=self._response_content,
            latency_ms=100,
            tokens_used=10,
        )


def reply(provider: str, content: str, tokens: int | None = 10) -> ProviderReply:
    return ProviderReply(provider=provider, model="mock-model", content=content, latency_ms=100, tokens_used=tokens)


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def two_mock_providers() -> dict[str, MockProvider]:
    return {
        "provider_a": MockProvider("provider_a", "Response from A"),
        "provider_b": MockProvider("provider_b", "Response from B"),
    }
