"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DEFAULT_DEVILS_ADVOCATE = (
    "DEVIL'S ADVOCATE ROLE: Your primary function is to challenge assumptions, identify potential "
    "flaws, and present counterarguments. Question the premises, point out overlooked risks, and "
    "argue for alternative perspectives. Be constructively critical and thorough in identifying "
    "weaknesses or problems with the proposed ideas."
)

DEFAULT_CONTINUATION = (
    "Please continue working on the task objective, building upon the previous step's output."
)

DEFAULT_SYNTHESIS = (
    "TASK: Synthesize and combine the following outputs from {iterations} iteration(s) of a "
    "{chain_length}-step agent meeting.\n\n"
    "ORIGINAL OBJECTIVE: {objective}\n\n"
    "MEETING DESCRIPTION: {description}\n\n"
    "FULL DISCUSSION:\n{full_transcript}\n\n"
    "ITERATION OUTPUTS TO SYNTHESIZE:\n{iteration_outputs}\n\n"
    "PLEASE PROVIDE:\n"
    "1. A comprehensive synthesis combining insights from all iterations\n"
    "2. Key themes and patterns across iterations\n"
    "3. Final conclusions and recommendations\n"
    "4. Any conflicting viewpoints and their resolution"
)


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    cost_per_1k: Decimal = Decimal("0.01")
    base_url: str | None = None


@dataclass
class PromptsConfig:
    devils_advocate: str = DEFAULT_DEVILS_ADVOCATE
    continuation: str = DEFAULT_CONTINUATION
    synthesis: str = DEFAULT_SYNTHESIS
    personas: dict[str, str] = field(default_factory=dict)  # persona name -> template override


@dataclass
class EngineConfig:
    max_retries: int = 2
    retry_backoff_sec: list[float] = field(default_factory=lambda: [1.0, 3.0])
    call_timeout_sec: float = 60.0
    subscriber_queue_size: int = 100
    heartbeat_sec: float = 15.0
    broadcaster_shards: int = 16
    retain_finished_runs: int = 100


@dataclass
class DefaultsConfig:
    iterations: int
    output_dir: Path
    synthesis_provider: str | None = None
    max_iterations: int = 10
    max_chain_length: int = 5
    report_format: str = "md"


@dataclass
class InboxConfig:
    dir: Path = Path("./inbox")
    archive_dir: Path = Path("./inbox/archive")


@dataclass
class ContextConfig:
    root_dir: Path = Path("./context")


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    engine: EngineConfig = field(default_factory=EngineConfig)
    inbox: InboxConfig = field(default_factory=InboxConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    available_providers: set[str] = field(default_factory=set)


def _parse_rate(provider_name: str, raw: object) -> Decimal:
    # str() first so YAML floats like 0.015 don't carry binary noise into the Decimal
    try:
        rate = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid cost_per_1k for {provider_name}: {raw!r}") from exc
    if rate < 0:
        raise ValueError(f"cost_per_1k must be >= 0 for {provider_name}, got {rate}")
    return rate


def _load_engine(raw: dict) -> EngineConfig:
    base = EngineConfig()
    backoff = raw.get("retry_backoff_sec", base.retry_backoff_sec)
    return EngineConfig(
        max_retries=int(raw.get("max_retries", base.max_retries)),
        retry_backoff_sec=[float(v) for v in backoff],
        call_timeout_sec=float(raw.get("call_timeout_sec", base.call_timeout_sec)),
        subscriber_queue_size=int(raw.get("subscriber_queue_size", base.subscriber_queue_size)),
        heartbeat_sec=float(raw.get("heartbeat_sec", base.heartbeat_sec)),
        broadcaster_shards=int(raw.get("broadcaster_shards", base.broadcaster_shards)),
        retain_finished_runs=int(raw.get("retain_finished_runs", base.retain_finished_runs)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise — callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        iterations=int(defaults_raw["iterations"]),
        output_dir=Path(defaults_raw["output_dir"]),
        synthesis_provider=defaults_raw.get("synthesis_provider"),
        max_iterations=int(defaults_raw.get("max_iterations", 10)),
        max_chain_length=int(defaults_raw.get("max_chain_length", 5)),
        report_format=str(defaults_raw.get("report_format", "md")),
    )

    prompts_raw = raw.get("prompts") or {}
    personas_raw = raw.get("personas") or {}
    prompts = PromptsConfig(
        devils_advocate=prompts_raw.get("devils_advocate", DEFAULT_DEVILS_ADVOCATE),
        continuation=prompts_raw.get("continuation", DEFAULT_CONTINUATION),
        synthesis=prompts_raw.get("synthesis", DEFAULT_SYNTHESIS),
        personas={str(k): str(v) for k, v in personas_raw.items()},
    )

    inbox_raw = raw.get("inbox") or {}
    inbox = InboxConfig(
        dir=Path(inbox_raw.get("dir", "./inbox")),
        archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
    )
    context_raw = raw.get("context") or {}
    context = ContextConfig(root_dir=Path(context_raw.get("root_dir", "./context")))

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            cost_per_1k=_parse_rate(provider_name, model_raw.get("cost_per_1k", "0.01")),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        engine=_load_engine(raw.get("engine") or {}),
        inbox=inbox,
        context=context,
        available_providers=available_providers,
    )
