"""Durable step / cost / run records.

Sinks must tolerate retries: a step appended twice under the same id is
folded into one record (last write wins, so the ``running`` row is replaced
by its final version), and cost entries are write-once per step id. Append
ordering within a run is the caller's job.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

from ai_meetings.chain import build_chain_definition, definition_to_payload
from ai_meetings.models import ChainStep, CostLedgerEntry, MeetingRun, RunStatus, StepStatus

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a sink cannot store or read a record."""


class PersistenceSink(ABC):
    @abstractmethod
    def open_run(self, run: MeetingRun) -> None:
        """Store the initial run record."""

    @abstractmethod
    def append_step(self, step: ChainStep) -> None: ...

    @abstractmethod
    def append_cost(self, entry: CostLedgerEntry) -> None: ...

    @abstractmethod
    def finalize_run(self, run: MeetingRun) -> None:
        """Store the run record in its terminal state."""

    @abstractmethod
    def get_run(self, run_id: str) -> MeetingRun | None: ...

    @abstractmethod
    def list_steps(self, run_id: str) -> list[ChainStep]:
        """Steps ordered by (iteration_number, step_number)."""

    @abstractmethod
    def list_costs(self, run_id: str) -> list[CostLedgerEntry]: ...


def _step_key(step: ChainStep) -> tuple[int, int]:
    return step.iteration_number, step.step_number


class InMemorySink(PersistenceSink):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, MeetingRun] = {}
        self._steps: dict[str, dict[str, ChainStep]] = {}
        self._costs: dict[str, dict[str, CostLedgerEntry]] = {}

    def open_run(self, run: MeetingRun) -> None:
        with self._lock:
            self._runs[run.id] = run

    def append_step(self, step: ChainStep) -> None:
        with self._lock:
            self._steps.setdefault(step.run_id, {})[step.id] = step

    def append_cost(self, entry: CostLedgerEntry) -> None:
        with self._lock:
            self._costs.setdefault(entry.run_id, {}).setdefault(entry.step_id, entry)

    def finalize_run(self, run: MeetingRun) -> None:
        with self._lock:
            self._runs[run.id] = run

    def get_run(self, run_id: str) -> MeetingRun | None:
        with self._lock:
            return self._runs.get(run_id)

    def list_steps(self, run_id: str) -> list[ChainStep]:
        with self._lock:
            steps = list(self._steps.get(run_id, {}).values())
        return sorted(steps, key=_step_key)

    def list_costs(self, run_id: str) -> list[CostLedgerEntry]:
        with self._lock:
            return list(self._costs.get(run_id, {}).values())


# --- JSON record conversion ---

def _jsonable(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _parse_dt(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


def _parse_decimal(raw: str | None) -> Decimal | None:
    return Decimal(raw) if raw is not None else None


def run_to_record(run: MeetingRun) -> dict:
    return {
        "id": run.id,
        "status": run.status.value,
        "created_at": run.created_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "total_cost": str(run.total_cost),
        "error_reason": run.error_reason,
        "definition": definition_to_payload(run.definition),
    }


def run_from_record(record: dict) -> MeetingRun:
    return MeetingRun(
        id=record["id"],
        definition=build_chain_definition(record["definition"]),
        status=RunStatus(record["status"]),
        created_at=datetime.fromisoformat(record["created_at"]),
        completed_at=_parse_dt(record.get("completed_at")),
        total_cost=Decimal(record.get("total_cost") or "0"),
        error_reason=record.get("error_reason"),
    )


def step_to_record(step: ChainStep) -> dict:
    return {
        "id": step.id,
        "run_id": step.run_id,
        "iteration_number": step.iteration_number,
        "step_number": step.step_number,
        "chain_position": step.chain_position,
        "provider_id": step.provider_id,
        "input_prompt": step.input_prompt,
        "status": step.status.value,
        "created_at": step.created_at.isoformat(),
        "output_content": step.output_content,
        "tokens_used": step.tokens_used,
        "cost_usd": str(step.cost_usd) if step.cost_usd is not None else None,
        "latency_ms": step.latency_ms,
        "error_reason": step.error_reason,
        "is_synthesis": step.is_synthesis,
    }


def step_from_record(record: dict) -> ChainStep:
    return ChainStep(
        id=record["id"],
        run_id=record["run_id"],
        iteration_number=int(record["iteration_number"]),
        step_number=int(record["step_number"]),
        chain_position=record.get("chain_position"),
        provider_id=record["provider_id"],
        input_prompt=record["input_prompt"],
        status=StepStatus(record["status"]),
        created_at=datetime.fromisoformat(record["created_at"]),
        output_content=record.get("output_content"),
        tokens_used=record.get("tokens_used"),
        cost_usd=_parse_decimal(record.get("cost_usd")),
        latency_ms=record.get("latency_ms"),
        error_reason=record.get("error_reason"),
        is_synthesis=bool(record.get("is_synthesis", False)),
    )


def cost_to_record(entry: CostLedgerEntry) -> dict:
    return {
        "run_id": entry.run_id,
        "step_id": entry.step_id,
        "cost_usd": str(entry.cost_usd),
        "created_at": entry.created_at.isoformat(),
        "provider_id": entry.provider_id,
    }


def cost_from_record(record: dict) -> CostLedgerEntry:
    return CostLedgerEntry(
        run_id=record["run_id"],
        step_id=record["step_id"],
        cost_usd=Decimal(record["cost_usd"]),
        created_at=datetime.fromisoformat(record["created_at"]),
        provider_id=record.get("provider_id", ""),
    )


class JsonlSink(PersistenceSink):
    """File-backed sink: ``<root>/<run_id>/run.json``, ``steps.jsonl``, ``costs.jsonl``.

    JSONL files are append-only; readers fold duplicates with the same
    rules as InMemorySink.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root = Path(root_dir)
        self._lock = threading.Lock()

    def _run_dir(self, run_id: str) -> Path:
        return self._root / run_id

    def _append_line(self, path: Path, record: dict) -> None:
        line = json.dumps(record, default=_jsonable, ensure_ascii=False)
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            raise PersistenceError(f"Cannot append to {path}: {exc}") from exc

    def _read_lines(self, path: Path) -> list[dict]:
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as f:
                return [json.loads(line) for line in f if line.strip()]
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}") from exc

    def _write_run(self, run: MeetingRun) -> None:
        path = self._run_dir(run.id) / "run.json"
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(run_to_record(run), indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc

    def open_run(self, run: MeetingRun) -> None:
        self._write_run(run)

    def append_step(self, step: ChainStep) -> None:
        self._append_line(self._run_dir(step.run_id) / "steps.jsonl", step_to_record(step))

    def append_cost(self, entry: CostLedgerEntry) -> None:
        self._append_line(self._run_dir(entry.run_id) / "costs.jsonl", cost_to_record(entry))

    def finalize_run(self, run: MeetingRun) -> None:
        self._write_run(run)

    def get_run(self, run_id: str) -> MeetingRun | None:
        path = self._run_dir(run_id) / "run.json"
        if not path.exists():
            return None
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read {path}: {exc}") from exc
        return run_from_record(record)

    def list_steps(self, run_id: str) -> list[ChainStep]:
        folded: dict[str, ChainStep] = {}
        for record in self._read_lines(self._run_dir(run_id) / "steps.jsonl"):
            step = step_from_record(record)
            folded[step.id] = step
        return sorted(folded.values(), key=_step_key)

    def list_costs(self, run_id: str) -> list[CostLedgerEntry]:
        folded: dict[str, CostLedgerEntry] = {}
        for record in self._read_lines(self._run_dir(run_id) / "costs.jsonl"):
            entry = cost_from_record(record)
            folded.setdefault(entry.step_id, entry)
        return list(folded.values())
