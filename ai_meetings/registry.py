"""Injectable registry of runs the executor knows about.

Finished runs are kept for a bounded number of later lookups, then evicted;
the persistence sink answers for them after that. A run whose records failed
to persist is never evicted, since the registry holds its only copy.
"""

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from ai_meetings.models import (
    TERMINAL_RUN_STATUSES,
    ChainStep,
    MeetingRun,
    RunProgress,
    RunStatus,
    StepStatus,
)

logger = logging.getLogger(__name__)


class UnknownRunError(KeyError):
    """Raised when a run id is not in the registry."""


@dataclass
class RunRecord:
    run: MeetingRun
    total_steps: int
    steps: list[ChainStep] = field(default_factory=list)  # dispatch order
    iteration_number: int = 0
    step_number: int = 0
    steps_completed: int = 0
    cancel_requested: bool = False
    task: asyncio.Task | None = None  # strong ref keeps the task alive
    inflight: asyncio.Future | None = None


class RunRegistry:
    """All access goes through one lock; readers get copies, never live records."""

    def __init__(self, retain_finished: int = 100) -> None:
        if retain_finished < 0:
            raise ValueError(f"retain_finished must be >= 0, got {retain_finished}")
        self._lock = threading.Lock()
        self._records: dict[str, RunRecord] = {}
        self._retain_finished = retain_finished
        self._finished: deque[str] = deque()

    def _get(self, run_id: str) -> RunRecord:
        try:
            return self._records[run_id]
        except KeyError:
            raise UnknownRunError(run_id) from None

    def add(self, record: RunRecord) -> None:
        with self._lock:
            if record.run.id in self._records:
                raise ValueError(f"Run already registered: {record.run.id}")
            self._records[record.run.id] = record

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._records

    def get_run(self, run_id: str) -> MeetingRun:
        with self._lock:
            return replace(self._get(run_id).run)

    def get_steps(self, run_id: str) -> list[ChainStep]:
        with self._lock:
            return list(self._get(run_id).steps)

    def progress(self, run_id: str) -> RunProgress:
        with self._lock:
            rec = self._get(run_id)
            return RunProgress(
                run_id=run_id,
                status=rec.run.status,
                iteration_number=rec.iteration_number,
                step_number=rec.step_number,
                steps_completed=rec.steps_completed,
                total_steps=rec.total_steps,
                error_reason=rec.run.error_reason,
            )

    def set_task(self, run_id: str, task: asyncio.Task) -> None:
        with self._lock:
            self._get(run_id).task = task

    def set_status(self, run_id: str, status: RunStatus) -> MeetingRun:
        with self._lock:
            rec = self._get(run_id)
            if rec.run.status in TERMINAL_RUN_STATUSES:
                raise ValueError(f"Run {run_id} is already {rec.run.status}")
            rec.run.status = status
            return replace(rec.run)

    def begin_step(self, run_id: str, step: ChainStep) -> None:
        with self._lock:
            rec = self._get(run_id)
            if rec.steps and step.step_number <= rec.steps[-1].step_number:
                raise ValueError(
                    f"Step number {step.step_number} not after {rec.steps[-1].step_number} in run {run_id}"
                )
            rec.steps.append(step)
            rec.iteration_number = step.iteration_number
            rec.step_number = step.step_number

    def finish_step(self, run_id: str, step: ChainStep) -> None:
        """Replace the running record of ``step.id`` with its final version."""
        with self._lock:
            rec = self._get(run_id)
            for index in range(len(rec.steps) - 1, -1, -1):
                if rec.steps[index].id == step.id:
                    rec.steps[index] = step
                    break
            else:
                raise ValueError(f"Step {step.id} was never started in run {run_id}")
            if step.status is StepStatus.COMPLETED:
                rec.steps_completed += 1

    def record_persistence_error(self, run_id: str, message: str) -> None:
        with self._lock:
            self._get(run_id).run.persistence_error = message

    def set_inflight(self, run_id: str, call: asyncio.Future | None) -> None:
        with self._lock:
            self._get(run_id).inflight = call

    def request_cancel(self, run_id: str) -> bool:
        """Flag the run for cancellation and cancel its in-flight call.

        Returns False when the run already finished.
        """
        with self._lock:
            rec = self._get(run_id)
            if rec.run.status in TERMINAL_RUN_STATUSES:
                return False
            rec.cancel_requested = True
            inflight = rec.inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
        return True

    def cancel_requested(self, run_id: str) -> bool:
        with self._lock:
            return self._get(run_id).cancel_requested

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        *,
        total_cost: Decimal,
        completed_at: datetime,
        error_reason: str | None = None,
    ) -> MeetingRun:
        with self._lock:
            rec = self._get(run_id)
            if rec.run.status in TERMINAL_RUN_STATUSES:
                raise ValueError(f"Run {run_id} is already {rec.run.status}")
            rec.run.status = status
            rec.run.total_cost = total_cost
            rec.run.completed_at = completed_at
            rec.run.error_reason = error_reason
            rec.inflight = None
            return replace(rec.run)

    def retire(self, run_id: str) -> list[str]:
        """Queue a finished run for eviction and evict past the retention bound.

        Returns the ids evicted by this call.
        """
        with self._lock:
            rec = self._get(run_id)
            if rec.run.status not in TERMINAL_RUN_STATUSES:
                raise ValueError(f"Run {run_id} is still {rec.run.status}")
            if rec.run.persistence_error is not None:
                logger.warning("Keeping run %s in memory, its records did not persist", run_id)
                return []
            self._finished.append(run_id)
            evicted = []
            while len(self._finished) > self._retain_finished:
                oldest = self._finished.popleft()
                self._records.pop(oldest, None)
                evicted.append(oldest)
        for evicted_id in evicted:
            logger.debug("Evicted finished run %s from the registry", evicted_id)
        return evicted
