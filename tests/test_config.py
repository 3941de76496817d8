"""Tests for config/config_loader.py."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    DEFAULT_SYNTHESIS,
    AppConfig,
    EngineConfig,
    ModelConfig,
    PromptsConfig,
    load_config,
)


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "iterations": 2,
            "max_iterations": 4,
            "output_dir": "./output",
            "synthesis_provider": "claude",
            "report_format": "html",
        },
        "engine": {
            "max_retries": 3,
            "retry_backoff_sec": [0.5, 2],
            "call_timeout_sec": 30,
            "retain_finished_runs": 5,
        },
        "inbox": {"dir": "./queue", "archive_dir": "./queue/done"},
        "context": {"root_dir": "./docs"},
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "claude-opus-4-6",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 120,
                "max_tokens": 8192,
                "cost_per_1k": 0.015,
            }
        },
        "prompts": {
            "continuation": "Carry on from the previous step.",
        },
        "personas": {
            "Analytical": "Count everything twice.",
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.iterations == 2
    assert config.defaults.max_iterations == 4
    assert config.defaults.max_chain_length == 5
    assert config.defaults.synthesis_provider == "claude"
    assert config.defaults.report_format == "html"
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    assert "claude" in config.models
    assert isinstance(config.models["claude"], ModelConfig)
    assert config.models["claude"].model == "claude-opus-4-6"


def test_cost_rate_parsed_as_exact_decimal(minimal_settings):
    config = load_config(minimal_settings)
    assert config.models["claude"].cost_per_1k == Decimal("0.015")


def test_negative_cost_rate_rejected(tmp_path: Path):
    settings = {
        "defaults": {"iterations": 1, "output_dir": "./output"},
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "m",
                "api_key_env": "K",
                "timeout_sec": 1,
                "max_tokens": 1,
                "cost_per_1k": "-1",
            }
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    with pytest.raises(ValueError, match="cost_per_1k"):
        load_config(path)


def test_load_config_engine(minimal_settings):
    config = load_config(minimal_settings)
    assert config.engine.max_retries == 3
    assert config.engine.retry_backoff_sec == [0.5, 2.0]
    assert config.engine.call_timeout_sec == 30.0
    assert config.engine.retain_finished_runs == 5
    # Unset keys fall back to the built-in defaults
    assert config.engine.subscriber_queue_size == EngineConfig().subscriber_queue_size


def test_load_config_prompts_override_and_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert config.prompts.continuation == "Carry on from the previous step."
    assert config.prompts.synthesis == DEFAULT_SYNTHESIS


def test_load_config_personas(minimal_settings):
    config = load_config(minimal_settings)
    assert config.prompts.personas == {"Analytical": "Count everything twice."}


def test_load_config_inbox_and_context(minimal_settings):
    config = load_config(minimal_settings)
    assert config.inbox.dir == Path("./queue")
    assert config.inbox.archive_dir == Path("./queue/done")
    assert config.context.root_dir == Path("./docs")


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    config = load_config(minimal_settings)
    assert "claude" in config.available_providers


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_CLAUDE_KEY", raising=False)
    config = load_config(minimal_settings)
    assert "claude" not in config.available_providers


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_model_config_base_url_optional(minimal_settings):
    config = load_config(minimal_settings)
    assert config.models["claude"].base_url is None


def test_optional_sections_default_when_missing(tmp_path: Path):
    """prompts, personas, engine, inbox and context are all optional."""
    settings = {
        "defaults": {"iterations": 1, "output_dir": "./output"},
        "models": {
            "claude": {
                "sdk": "anthropic",
                "model": "claude-opus-4-6",
                "api_key_env": "TEST_KEY",
                "timeout_sec": 60,
                "max_tokens": 4096,
            }
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    config = load_config(path)
    assert config.prompts.personas == {}
    assert config.prompts == PromptsConfig()
    assert config.engine == EngineConfig()
    assert config.defaults.synthesis_provider is None
    assert config.models["claude"].cost_per_1k == Decimal("0.01")


def test_shipped_settings_load():
    config = load_config()
    assert {"openai", "claude", "gemini", "grok"} <= set(config.models)
    assert config.models["grok"].base_url
