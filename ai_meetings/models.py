"""Pure dataclasses for meeting runs, chain steps and the cost ledger. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from ai_meetings.personas import Persona


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})


@dataclass(frozen=True)
class AgentStep:
    provider_id: str
    primary_persona: Persona | None = None
    secondary_persona: Persona | None = None
    is_devils_advocate: bool = False
    supplemental_prompt: str = ""


@dataclass(frozen=True)
class ChainDefinition:
    name: str
    objective: str
    initial_prompt: str
    steps: tuple[AgentStep, ...]
    iterations: int = 1
    synthesis_provider_id: str | None = None
    description: str = ""
    selected_folders: tuple[str, ...] = ()


@dataclass
class MeetingRun:
    id: str
    definition: ChainDefinition
    status: RunStatus
    created_at: datetime
    completed_at: datetime | None = None
    total_cost: Decimal = Decimal("0")
    error_reason: str | None = None
    persistence_error: str | None = None  # last sink failure while the run kept going in memory


@dataclass(frozen=True)
class ChainStep:
    id: str
    run_id: str
    iteration_number: int
    step_number: int                 # run-wide sequence, strictly increasing
    provider_id: str
    input_prompt: str
    status: StepStatus
    chain_position: int | None       # 1-based position in the chain, None for synthesis
    created_at: datetime
    output_content: str | None = None
    tokens_used: int | None = None
    cost_usd: Decimal | None = None
    latency_ms: int | None = None
    error_reason: str | None = None
    is_synthesis: bool = False


@dataclass(frozen=True)
class CostLedgerEntry:
    run_id: str
    step_id: str
    cost_usd: Decimal
    created_at: datetime
    provider_id: str = ""


@dataclass(frozen=True)
class ProviderReply:
    provider: str          # "openai", "claude", "gemini", "grok"
    model: str             # actual model string used
    content: str
    latency_ms: int
    tokens_used: int | None


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    model: str
    content: str
    tokens_used: int
    cost_usd: Decimal
    latency_ms: int


@dataclass(frozen=True)
class RunProgress:
    run_id: str
    status: RunStatus
    iteration_number: int
    step_number: int
    steps_completed: int
    total_steps: int
    error_reason: str | None = None


@dataclass
class ContextDocument:
    name: str
    content: str
    metadata: dict = field(default_factory=dict)
