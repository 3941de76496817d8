"""Meeting orchestration: runs a chain of agents, iteration by iteration.

Within a run every step waits for the previous one (its prompt carries the
previous output). Separate runs are separate asyncio tasks and proceed
concurrently. Each step dispatch yields a value, ``ProviderResult`` or
``ProviderError``, instead of raising, and observers follow along through
the broadcaster's event stream.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from ai_meetings.broadcaster import EventKind, MoodStateBroadcaster
from ai_meetings.chain import MAX_CHAIN_LENGTH, MAX_ITERATIONS, ValidationError, total_steps, validate_definition
from ai_meetings.context import ContextSource
from ai_meetings.costs import CostAccountant
from ai_meetings.models import (
    ChainDefinition,
    ChainStep,
    CostLedgerEntry,
    MeetingRun,
    ProviderResult,
    RunProgress,
    RunStatus,
    StepStatus,
)
from ai_meetings.mood import AgentStatus, KeywordMoodStrategy, MoodStrategy, MoodTrigger, MoodUpdate
from ai_meetings.persistence import PersistenceError, PersistenceSink
from ai_meetings.prompts import build_step_prompt, build_synthesis_prompt, format_context_documents
from ai_meetings.providers.base import ProviderError
from ai_meetings.providers.gateway import ProviderGateway
from ai_meetings.registry import RunRecord, RunRegistry, UnknownRunError
from config.config_loader import EngineConfig, PromptsConfig

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
SYNTHESIZER_AGENT_ID = "synthesizer"


def agent_id_for(position: int) -> str:
    return f"agent-{position}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunHandle:
    run_id: str
    status: RunStatus
    task: asyncio.Task

    async def wait(self) -> MeetingRun:
        """Wait for the run to reach a terminal state."""
        return await self.task


class SequenceExecutor:
    def __init__(
        self,
        gateway: ProviderGateway,
        sink: PersistenceSink,
        *,
        accountant: CostAccountant | None = None,
        broadcaster: MoodStateBroadcaster | None = None,
        registry: RunRegistry | None = None,
        prompts: PromptsConfig | None = None,
        engine: EngineConfig | None = None,
        mood_strategy: MoodStrategy | None = None,
        context_source: ContextSource | None = None,
        max_chain_length: int = MAX_CHAIN_LENGTH,
        max_iterations: int = MAX_ITERATIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._sink = sink
        self._accountant = accountant or CostAccountant()
        self._broadcaster = broadcaster or MoodStateBroadcaster()
        self._prompts = prompts or PromptsConfig()
        self._engine = engine or EngineConfig()
        self._registry = registry or RunRegistry(self._engine.retain_finished_runs)
        self._mood_strategy = mood_strategy or KeywordMoodStrategy()
        self._context_source = context_source
        self._max_chain_length = max_chain_length
        self._max_iterations = max_iterations
        self._sleep = sleep

    @property
    def accountant(self) -> CostAccountant:
        return self._accountant

    @property
    def broadcaster(self) -> MoodStateBroadcaster:
        return self._broadcaster

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    # --- public contract ---

    def start(self, definition: ChainDefinition) -> RunHandle:
        """Validate, register and launch a run. Must be called from a running event loop.

        Raises:
            ValidationError: before anything is created, if the definition is malformed.
        """
        problems = validate_definition(definition, self._max_chain_length, self._max_iterations)
        if problems:
            raise ValidationError(problems)

        run = MeetingRun(
            id=uuid.uuid4().hex,
            definition=definition,
            status=RunStatus.PENDING,
            created_at=_now(),
        )
        self._registry.add(RunRecord(run=run, total_steps=total_steps(definition)))
        run = self._registry.set_status(run.id, RunStatus.RUNNING)
        self._persist(run.id, self._sink.open_run, run)

        task = asyncio.create_task(self._execute(run.id, definition), name=f"meeting-run-{run.id}")
        self._registry.set_task(run.id, task)
        logger.info(
            "Started run %s (%s): %d step(s) x %d iteration(s)%s",
            run.id,
            definition.name,
            len(definition.steps),
            definition.iterations,
            f" + synthesis via {definition.synthesis_provider_id}" if definition.synthesis_provider_id else "",
        )
        return RunHandle(run_id=run.id, status=run.status, task=task)

    def get_progress(self, run_id: str) -> RunProgress:
        try:
            return self._registry.progress(run_id)
        except UnknownRunError:
            pass
        # Evicted from memory: rebuild from the persisted records
        run = self.get_run(run_id)
        steps = self._sink.list_steps(run_id)
        last = steps[-1] if steps else None
        return RunProgress(
            run_id=run_id,
            status=run.status,
            iteration_number=last.iteration_number if last else 0,
            step_number=last.step_number if last else 0,
            steps_completed=sum(1 for s in steps if s.status is StepStatus.COMPLETED),
            total_steps=total_steps(run.definition),
            error_reason=run.error_reason,
        )

    def get_run(self, run_id: str) -> MeetingRun:
        """Latest run state; ``persistence_error`` is set if the sink failed during the run."""
        try:
            return self._registry.get_run(run_id)
        except UnknownRunError:
            pass
        run = self._sink.get_run(run_id)
        if run is None:
            raise UnknownRunError(run_id)
        return run

    def list_steps(self, run_id: str) -> list[ChainStep]:
        """Steps in step-number order, synthesis last."""
        try:
            return self._registry.get_steps(run_id)
        except UnknownRunError:
            return self._sink.list_steps(run_id)

    def cancel(self, run_id: str) -> bool:
        """Stop dispatching further steps. Returns False if the run already finished."""
        try:
            cancelled = self._registry.request_cancel(run_id)
        except UnknownRunError:
            # Evicted runs are finished; unknown ids still raise
            self.get_run(run_id)
            return False
        if cancelled:
            logger.info("Cancellation requested for run %s", run_id)
        return cancelled

    # --- execution ---

    async def _execute(self, run_id: str, definition: ChainDefinition) -> MeetingRun:
        agents = [agent_id_for(p) for p in range(1, len(definition.steps) + 1)]
        if definition.synthesis_provider_id:
            agents.append(SYNTHESIZER_AGENT_ID)
        self._broadcaster.initialize(run_id, agents)

        try:
            error_reason = await self._run_chain(run_id, definition)
        except Exception as exc:
            logger.exception("Run %s crashed", run_id)
            error_reason = f"Unexpected error: {exc}"
            self._fail_running_steps(run_id, error_reason)
        return self._finish(run_id, error_reason)

    async def _run_chain(self, run_id: str, definition: ChainDefinition) -> str | None:
        """Drive every step. Returns None on success, else the failure reason."""
        document_context = await self._load_context(definition)
        iteration_outputs: list[str] = []
        sequence = 0

        for iteration in range(1, definition.iterations + 1):
            previous_output = ""
            for position, agent in enumerate(definition.steps, start=1):
                if self._registry.cancel_requested(run_id):
                    return CANCELLED
                sequence += 1
                prompt = build_step_prompt(
                    definition,
                    agent,
                    self._prompts,
                    iteration=iteration,
                    position=position,
                    previous_output=previous_output,
                    iteration_outputs=iteration_outputs,
                    document_context=document_context,
                )
                step = await self._run_step(
                    run_id,
                    iteration=iteration,
                    sequence=sequence,
                    position=position,
                    provider_id=agent.provider_id,
                    prompt=prompt,
                    agent_id=agent_id_for(position),
                )
                if step.status is StepStatus.FAILED:
                    return CANCELLED if self._registry.cancel_requested(run_id) else step.error_reason
                previous_output = step.output_content or ""
            iteration_outputs.append(previous_output)
            logger.info("Run %s: iteration %d/%d complete", run_id, iteration, definition.iterations)

        if definition.synthesis_provider_id:
            if self._registry.cancel_requested(run_id):
                return CANCELLED
            sequence += 1
            prompt = build_synthesis_prompt(
                definition,
                self._prompts,
                iteration_outputs=iteration_outputs,
                steps=self._registry.get_steps(run_id),
            )
            step = await self._run_step(
                run_id,
                iteration=definition.iterations,
                sequence=sequence,
                position=None,
                provider_id=definition.synthesis_provider_id,
                prompt=prompt,
                agent_id=SYNTHESIZER_AGENT_ID,
                is_synthesis=True,
            )
            if step.status is StepStatus.FAILED:
                return CANCELLED if self._registry.cancel_requested(run_id) else step.error_reason
        return None

    async def _load_context(self, definition: ChainDefinition) -> str:
        if not definition.selected_folders:
            return ""
        if self._context_source is None:
            logger.warning("Folders selected but no context source configured; continuing without context")
            return ""
        documents = await self._context_source.load(definition.selected_folders)
        return format_context_documents(documents)

    async def _run_step(
        self,
        run_id: str,
        *,
        iteration: int,
        sequence: int,
        position: int | None,
        provider_id: str,
        prompt: str,
        agent_id: str,
        is_synthesis: bool = False,
    ) -> ChainStep:
        step = ChainStep(
            id=uuid.uuid4().hex,
            run_id=run_id,
            iteration_number=iteration,
            step_number=sequence,
            provider_id=provider_id,
            input_prompt=prompt,
            status=StepStatus.RUNNING,
            chain_position=position,
            created_at=_now(),
            is_synthesis=is_synthesis,
        )
        self._registry.begin_step(run_id, step)
        self._persist(run_id, self._sink.append_step, step)
        self._broadcaster.publish(
            run_id,
            MoodUpdate(
                agent_id=agent_id,
                trigger=MoodTrigger.COMPLEXITY_INCREASE if is_synthesis else MoodTrigger.CHALLENGE_PRESENTED,
                status=AgentStatus.SYNTHESIZING if is_synthesis else AgentStatus.THINKING,
            ),
        )

        result = await self._dispatch(run_id, provider_id, prompt)

        if isinstance(result, ProviderError):
            failed = replace(step, status=StepStatus.FAILED, error_reason=str(result))
            self._registry.finish_step(run_id, failed)
            self._persist(run_id, self._sink.append_step, failed)
            self._broadcaster.publish(
                run_id, MoodUpdate(agent_id=agent_id, trigger=MoodTrigger.RESET, status=AgentStatus.OFFLINE)
            )
            logger.error("Run %s step %d (%s) failed: %s", run_id, sequence, provider_id, result)
            return failed

        completed = replace(
            step,
            status=StepStatus.COMPLETED,
            output_content=result.content,
            tokens_used=result.tokens_used,
            cost_usd=result.cost_usd,
            latency_ms=result.latency_ms,
        )
        entry = CostLedgerEntry(
            run_id=run_id,
            step_id=step.id,
            cost_usd=result.cost_usd,
            created_at=_now(),
            provider_id=provider_id,
        )
        self._accountant.record(entry)
        self._registry.finish_step(run_id, completed)
        self._persist(run_id, self._sink.append_step, completed)
        self._persist(run_id, self._sink.append_cost, entry)

        suggestion = self._mood_strategy.suggest(result.content)
        self._broadcaster.publish(
            run_id, MoodUpdate(agent_id=agent_id, trigger=suggestion.trigger, mood=suggestion.mood)
        )
        self._broadcaster.notify(
            run_id,
            EventKind.STEP_COMPLETED,
            {
                "step_id": step.id,
                "agent_id": agent_id,
                "iteration_number": iteration,
                "step_number": sequence,
                "provider_id": provider_id,
                "is_synthesis": is_synthesis,
                "tokens_used": result.tokens_used,
                "cost_usd": str(result.cost_usd),
                "latency_ms": result.latency_ms,
            },
        )
        logger.info(
            "Run %s step %d (%s) completed: %d tokens, $%s, %dms",
            run_id,
            sequence,
            provider_id,
            result.tokens_used,
            result.cost_usd,
            result.latency_ms,
        )
        return completed

    def _backoff(self, attempt: int) -> float:
        delays = self._engine.retry_backoff_sec
        if not delays:
            return 0.0
        return delays[min(attempt - 1, len(delays) - 1)]

    async def _dispatch(self, run_id: str, provider_id: str, prompt: str) -> ProviderResult | ProviderError:
        """Call the provider, retrying transient failures with backoff.

        Never raises ProviderError — returns it once retries are exhausted or
        the failure is permanent.
        """
        attempts = self._engine.max_retries + 1
        for attempt in range(1, attempts + 1):
            call = asyncio.ensure_future(self._gateway.call(provider_id, prompt))
            self._registry.set_inflight(run_id, call)
            try:
                result = await call
                # A reply landing after cancel() is discarded so the completed count stays frozen
                if self._registry.cancel_requested(run_id):
                    return ProviderError(provider_id, CANCELLED)
                return result
            except asyncio.CancelledError:
                # Only swallow the cancellation cancel() propagated into the call itself
                if not (call.cancelled() and self._registry.cancel_requested(run_id)):
                    raise
                return ProviderError(provider_id, CANCELLED)
            except ProviderError as exc:
                if not exc.transient:
                    logger.warning("Provider %s failed permanently: %s", provider_id, exc)
                    return exc
                if attempt == attempts:
                    logger.warning("Provider %s failed after %d attempt(s): %s", provider_id, attempts, exc)
                    return exc
                delay = self._backoff(attempt)
                logger.warning(
                    "Provider %s transient failure (attempt %d/%d), retrying in %.1fs: %s",
                    provider_id,
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
            finally:
                self._registry.set_inflight(run_id, None)

            await self._sleep(delay)
            if self._registry.cancel_requested(run_id):
                return ProviderError(provider_id, CANCELLED)
        raise AssertionError("unreachable")

    def _fail_running_steps(self, run_id: str, error_reason: str) -> None:
        for step in self._registry.get_steps(run_id):
            if step.status is StepStatus.RUNNING:
                failed = replace(step, status=StepStatus.FAILED, error_reason=error_reason)
                self._registry.finish_step(run_id, failed)
                try:
                    self._sink.append_step(failed)
                except Exception as exc:
                    # The sink may be what crashed the run
                    logger.warning("Could not persist failed step %s for run %s: %s", step.id, run_id, exc)
                    self._registry.record_persistence_error(run_id, str(exc))

    def _persist(self, run_id: str, write: Callable, record: object) -> None:
        """Write through the sink; a failure degrades the run instead of aborting it."""
        try:
            write(record)
        except PersistenceError as exc:
            logger.warning("Persistence failed for run %s, continuing in memory: %s", run_id, exc)
            self._registry.record_persistence_error(run_id, str(exc))

    def _finish(self, run_id: str, error_reason: str | None) -> MeetingRun:
        status = RunStatus.FAILED if error_reason else RunStatus.COMPLETED
        run = self._registry.finish_run(
            run_id,
            status,
            total_cost=self._accountant.get_total(run_id),
            completed_at=_now(),
            error_reason=error_reason,
        )
        self._persist(run_id, self._sink.finalize_run, run)
        # Re-read so a finalize failure is visible on the returned run
        run = self._registry.get_run(run_id)
        self._broadcaster.notify(
            run_id,
            EventKind.RUN_FINISHED,
            {"status": run.status.value, "error_reason": run.error_reason, "total_cost": str(run.total_cost)},
        )
        self._broadcaster.release(run_id)
        self._registry.retire(run_id)
        if status is RunStatus.COMPLETED:
            logger.info("Run %s completed, total cost $%s", run_id, run.total_cost)
        else:
            logger.warning("Run %s failed: %s", run_id, error_reason)
        return run
