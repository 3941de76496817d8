"""Tests for CLI wiring in ai_meetings/cli.py."""

import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

import ai_meetings.cli as cli
from ai_meetings.providers.base import ProviderError
from ai_meetings.providers.openai_provider import OpenAIProvider
from config.config_loader import InboxConfig, ModelConfig
from tests.conftest import MockProvider


@pytest.fixture
def meeting_file(tmp_path: Path) -> Path:
    path = tmp_path / "pricing.md"
    path.write_text(
        textwrap.dedent("""\
            ---
            name: Pricing review
            synthesis_provider: provider_a
            chain:
              - provider: provider_a
                primary: Analytical
              - provider: provider_b
                devils_advocate: true
            ---
            Should we introduce a usage-based tier?
        """),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def patched_cli(monkeypatch, sample_app_config, two_mock_providers):
    monkeypatch.setattr(cli, "load_config", lambda: sample_app_config)
    monkeypatch.setattr(cli, "_build_all_providers", lambda config: dict(two_mock_providers))
    return two_mock_providers


def test_apply_overrides_cli_wins(sample_app_config):
    payload = {"iterations": 2, "synthesisProviderId": "claude"}
    merged = cli._apply_overrides(payload, sample_app_config, iterations=4, synthesizer="openai")
    assert merged["iterations"] == 4
    assert merged["synthesisProviderId"] == "openai"
    assert payload["iterations"] == 2  # input untouched


def test_apply_overrides_falls_back_to_config(sample_app_config):
    merged = cli._apply_overrides({"synthesisProviderId": None}, sample_app_config, None, None)
    assert merged["iterations"] == sample_app_config.defaults.iterations
    assert merged["synthesisProviderId"] == "gemini"


def test_apply_overrides_empty_synthesizer_disables_synthesis(sample_app_config):
    merged = cli._apply_overrides({"synthesisProviderId": "claude"}, sample_app_config, None, "")
    assert merged["synthesisProviderId"] is None


def test_missing_providers(two_mock_providers):
    payload = {
        "chain": [{"providerId": "provider_a"}, {"providerId": "ghost"}],
        "synthesisProviderId": "phantom",
    }
    assert cli._missing_providers(payload, two_mock_providers) == ["ghost", "phantom"]


def test_build_all_providers_skips_unknown_sdk(sample_app_config, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    sample_app_config.models = {
        "openai": ModelConfig("openai", "openai", "gpt-5", "TEST_OPENAI_KEY", 30, 1024),
        "mystery": ModelConfig("mystery", "mystery-sdk", "m-1", "TEST_OPENAI_KEY", 30, 1024),
    }
    sample_app_config.available_providers = {"openai", "mystery"}

    providers = cli._build_all_providers(sample_app_config)

    assert set(providers) == {"openai"}
    assert isinstance(providers["openai"], OpenAIProvider)


def test_check_and_filter_drops_failing_providers(two_mock_providers, monkeypatch):
    two_mock_providers["provider_b"].generate.side_effect = ProviderError("provider_b", "403 Forbidden")
    monkeypatch.setattr(cli.click, "confirm", lambda *args, **kwargs: True)

    working = cli._check_and_filter_providers(two_mock_providers)

    assert set(working) == {"provider_a"}


def test_check_and_filter_exits_when_declined(two_mock_providers, monkeypatch):
    two_mock_providers["provider_b"].generate.side_effect = ProviderError("provider_b", "403 Forbidden")
    monkeypatch.setattr(cli.click, "confirm", lambda *args, **kwargs: False)

    with pytest.raises(SystemExit) as excinfo:
        cli._check_and_filter_providers(two_mock_providers)
    assert excinfo.value.code == 0


def test_cli_runs_meeting_file(patched_cli, meeting_file, sample_app_config, tmp_path):
    output_dir = tmp_path / "reports"
    result = CliRunner().invoke(
        cli.main,
        ["--file", str(meeting_file), "--skip-health-check", "--output", str(output_dir), "--csv"],
    )

    assert result.exit_code == 0, result.output
    assert len(list(output_dir.glob("*_pricing-review.md"))) == 1
    assert len(list(output_dir.glob("*_steps.csv"))) == 1
    # Run records land under <output>/runs/<run_id>/
    assert len(list((output_dir / "runs").glob("*/steps.jsonl"))) == 1
    assert patched_cli["provider_b"].generate.await_count == 1


def test_cli_failed_meeting_exits_nonzero(patched_cli, meeting_file, tmp_path):
    patched_cli["provider_b"].generate.side_effect = ProviderError("provider_b", "401 invalid key")
    result = CliRunner().invoke(
        cli.main, ["--file", str(meeting_file), "--skip-health-check", "--output", str(tmp_path / "out")]
    )
    assert result.exit_code == 1
    # The partial report is still written
    assert len(list((tmp_path / "out").glob("*.md"))) == 1


def test_cli_unknown_provider_exits(patched_cli, meeting_file, tmp_path):
    result = CliRunner().invoke(
        cli.main,
        ["--file", str(meeting_file), "--skip-health-check", "--synthesizer", "ghost", "--output", str(tmp_path)],
    )
    assert result.exit_code == 1
    assert "ghost" in result.output


def test_cli_requires_file_or_inbox(patched_cli):
    result = CliRunner().invoke(cli.main, ["--skip-health-check"])
    assert result.exit_code == 1


def test_cli_inbox_archives_processed_files(patched_cli, meeting_file, sample_app_config, tmp_path):
    inbox = tmp_path / "inbox"
    archive = tmp_path / "archive"
    sample_app_config.inbox = InboxConfig(dir=inbox, archive_dir=archive)
    inbox.mkdir()
    meeting_file.rename(inbox / meeting_file.name)

    result = CliRunner().invoke(
        cli.main, ["--inbox", "--skip-health-check", "--output", str(tmp_path / "out")]
    )

    assert result.exit_code == 0, result.output
    assert list(inbox.glob("*.md")) == []
    archived = list(archive.glob("*.md"))
    assert len(archived) == 1
    assert not archived[0].name.startswith("FAILED_")
    assert len(list((tmp_path / "out").glob("*_pricing.md"))) == 1


def test_cli_inbox_marks_failed_meetings(patched_cli, sample_app_config, tmp_path):
    inbox = tmp_path / "inbox"
    archive = tmp_path / "archive"
    sample_app_config.inbox = InboxConfig(dir=inbox, archive_dir=archive)
    inbox.mkdir()
    (inbox / "broken.md").write_text("---\nchain: []\n---\nNo agents here.", encoding="utf-8")

    result = CliRunner().invoke(cli.main, ["--inbox", "--skip-health-check", "--output", str(tmp_path / "out")])

    assert result.exit_code == 0, result.output
    assert [p.name.startswith("FAILED_") for p in archive.glob("*.md")] == [True]
