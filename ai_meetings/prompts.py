"""Prompt assembly for chain steps and the synthesis step."""

from collections.abc import Sequence

from ai_meetings.models import AgentStep, ChainDefinition, ChainStep, ContextDocument, StepStatus
from ai_meetings.personas import persona_clause
from config.config_loader import PromptsConfig


def format_context_documents(documents: Sequence[ContextDocument]) -> str:
    return "\n\n".join(f"--- {doc.name} ---\n{doc.content}" for doc in documents)


def step_instructions(agent: AgentStep, prompts: PromptsConfig) -> str:
    """Persona clause, devil's-advocate clause and supplemental prompt, space-joined."""
    parts = [
        persona_clause(agent.primary_persona, agent.secondary_persona, prompts.personas),
        prompts.devils_advocate if agent.is_devils_advocate else "",
        agent.supplemental_prompt,
    ]
    return " ".join(p.strip() for p in parts if p.strip())


def build_step_prompt(
    definition: ChainDefinition,
    agent: AgentStep,
    prompts: PromptsConfig,
    *,
    iteration: int,
    position: int,
    previous_output: str,
    iteration_outputs: Sequence[str],
    document_context: str = "",
) -> str:
    """Build the prompt for one chain step.

    The first step of an iteration gets the initial prompt (plus every
    earlier iteration's final output from iteration 2 on); later steps get
    the previous step's output from the same iteration.
    """
    sections: list[str] = []
    if document_context:
        sections.append(document_context)
    sections.append(f"TASK OBJECTIVE: {definition.objective}")
    if definition.iterations > 1:
        sections.append(f"ITERATION: {iteration} of {definition.iterations}")

    instructions = step_instructions(agent, prompts)
    if instructions:
        sections.append(f"INSTRUCTIONS FOR THIS STEP: {instructions}")

    if position == 1:
        opening = f"INITIAL PROMPT: {definition.initial_prompt}"
        if iteration > 1 and iteration_outputs:
            earlier = "\n\n".join(
                f"Iteration {index}: {output}" for index, output in enumerate(iteration_outputs, start=1)
            )
            opening += f"\n\nPREVIOUS ITERATION RESULTS:\n{earlier}"
        sections.append(opening)
    else:
        sections.append(f"PREVIOUS STEP OUTPUT: {previous_output}\n\n{prompts.continuation}")

    return "\n\n".join(sections)


def _format_transcript(steps: Sequence[ChainStep]) -> str:
    parts: list[str] = []
    current_iteration: int | None = None
    for step in steps:
        if step.is_synthesis or step.status is not StepStatus.COMPLETED:
            continue
        if step.iteration_number != current_iteration:
            current_iteration = step.iteration_number
            parts.append(f"### Iteration {current_iteration}")
        parts.append(f"**Step {step.chain_position} ({step.provider_id})**\n{step.output_content}")
    return "\n\n".join(parts)


def build_synthesis_prompt(
    definition: ChainDefinition,
    prompts: PromptsConfig,
    *,
    iteration_outputs: Sequence[str],
    steps: Sequence[ChainStep],
) -> str:
    outputs = "\n".join(
        f"\n--- ITERATION {index} FINAL OUTPUT ---\n{output}"
        for index, output in enumerate(iteration_outputs, start=1)
    )
    return prompts.synthesis.format(
        iterations=definition.iterations,
        chain_length=len(definition.steps),
        objective=definition.objective,
        description=definition.description or "N/A",
        full_transcript=_format_transcript(steps),
        iteration_outputs=outputs,
    )
