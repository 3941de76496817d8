"""Chain definition parsing and validation.

The create-run payload uses the external camelCase shape::

    {name, description, objective, initialPrompt,
     chain: [{step, providerId, primaryPersonality, secondaryPersonality,
              isDevilsAdvocate, supplementalPrompt}],
     iterations, synthesisProviderId, selectedFolders}

Everything is checked before a run exists, so an unknown persona or an
out-of-range iteration count never reaches the executor.
"""

from collections.abc import Mapping

from ai_meetings.models import AgentStep, ChainDefinition
from ai_meetings.personas import Persona

MAX_CHAIN_LENGTH = 5
MAX_ITERATIONS = 10


class ValidationError(ValueError):
    """Raised when a chain definition is malformed. Carries every problem found."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid chain definition: " + "; ".join(self.problems))


def _parse_persona(raw: object, label: str, problems: list[str]) -> Persona | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return Persona.parse(str(raw))
    except ValueError:
        problems.append(f"{label}: unknown persona {raw!r}")
        return None


def _step_order(index: int, raw: object) -> int:
    if isinstance(raw, Mapping):
        try:
            return int(raw.get("step", index + 1))
        except (TypeError, ValueError):
            pass
    return index + 1


def _parse_flag(raw: object, label: str, problems: list[str]) -> bool:
    if raw is None:
        return False
    if not isinstance(raw, bool):
        problems.append(f"{label}: isDevilsAdvocate must be true or false, got {raw!r}")
        return False
    return raw


def _parse_iterations(raw: object, problems: list[str]) -> int:
    # bool is an int subclass; 2.9 must not silently become 2
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw)
        except ValueError:
            pass
    problems.append(f"iterations must be an integer, got {raw!r}")
    return 0


def _parse_step(index: int, raw: Mapping, problems: list[str]) -> AgentStep:
    label = f"chain[{index}]"
    return AgentStep(
        provider_id=str(raw.get("providerId") or "").strip(),
        primary_persona=_parse_persona(raw.get("primaryPersonality"), label, problems),
        secondary_persona=_parse_persona(raw.get("secondaryPersonality"), label, problems),
        is_devils_advocate=_parse_flag(raw.get("isDevilsAdvocate"), label, problems),
        supplemental_prompt=str(raw.get("supplementalPrompt") or ""),
    )


def validate_definition(
    definition: ChainDefinition,
    max_chain_length: int = MAX_CHAIN_LENGTH,
    max_iterations: int = MAX_ITERATIONS,
) -> list[str]:
    """Return a list of problems; empty when the definition is runnable."""
    problems: list[str] = []
    if not definition.name.strip():
        problems.append("name is required")
    if not definition.objective.strip():
        problems.append("objective is required")
    if not definition.initial_prompt.strip():
        problems.append("initialPrompt is required")

    if not 1 <= len(definition.steps) <= max_chain_length:
        problems.append(f"chain must have 1-{max_chain_length} steps, got {len(definition.steps)}")
    if not 1 <= definition.iterations <= max_iterations:
        problems.append(f"iterations must be 1-{max_iterations}, got {definition.iterations}")

    for index, step in enumerate(definition.steps):
        label = f"chain[{index}]"
        if not step.provider_id.strip():
            problems.append(f"{label}: providerId is required")
        for persona in (step.primary_persona, step.secondary_persona):
            if persona is not None and not isinstance(persona, Persona):
                problems.append(f"{label}: unknown persona {persona!r}")
        if step.secondary_persona is not None:
            if step.primary_persona is None:
                problems.append(f"{label}: secondary persona requires a primary persona")
            elif step.secondary_persona == step.primary_persona:
                problems.append(f"{label}: secondary persona must differ from primary persona")

    if definition.synthesis_provider_id is not None and not definition.synthesis_provider_id.strip():
        problems.append("synthesisProviderId must not be blank")
    return problems


def build_chain_definition(
    payload: Mapping,
    max_chain_length: int = MAX_CHAIN_LENGTH,
    max_iterations: int = MAX_ITERATIONS,
) -> ChainDefinition:
    """Parse and validate a create-run payload.

    Raises:
        ValidationError: listing every problem, including unknown personas.
    """
    problems: list[str] = []

    raw_chain = payload.get("chain") or []
    if not isinstance(raw_chain, list):
        raise ValidationError(["chain must be a list"])
    # Honour explicit "step" ordering when the client sends it
    ordered = sorted(enumerate(raw_chain), key=lambda item: _step_order(*item))
    steps: list[AgentStep] = []
    for index, raw_step in ordered:
        if not isinstance(raw_step, Mapping):
            problems.append(f"chain[{index}] must be a mapping")
            continue
        steps.append(_parse_step(index, raw_step, problems))

    iterations = _parse_iterations(payload.get("iterations", 1), problems)

    synthesis = payload.get("synthesisProviderId")
    definition = ChainDefinition(
        name=str(payload.get("name") or ""),
        description=str(payload.get("description") or ""),
        objective=str(payload.get("objective") or ""),
        initial_prompt=str(payload.get("initialPrompt") or ""),
        steps=tuple(steps),
        iterations=iterations,
        synthesis_provider_id=str(synthesis) if synthesis else None,
        selected_folders=tuple(str(f) for f in payload.get("selectedFolders") or ()),
    )

    problems.extend(validate_definition(definition, max_chain_length, max_iterations))
    if problems:
        raise ValidationError(problems)
    return definition


def definition_to_payload(definition: ChainDefinition) -> dict:
    """Inverse of build_chain_definition, used for persistence and JSON export."""
    return {
        "name": definition.name,
        "description": definition.description,
        "objective": definition.objective,
        "initialPrompt": definition.initial_prompt,
        "chain": [
            {
                "step": position,
                "providerId": step.provider_id,
                "primaryPersonality": step.primary_persona.value if step.primary_persona else None,
                "secondaryPersonality": step.secondary_persona.value if step.secondary_persona else None,
                "isDevilsAdvocate": step.is_devils_advocate,
                "supplementalPrompt": step.supplemental_prompt,
            }
            for position, step in enumerate(definition.steps, start=1)
        ],
        "iterations": definition.iterations,
        "synthesisProviderId": definition.synthesis_provider_id,
        "selectedFolders": list(definition.selected_folders),
    }


def total_steps(definition: ChainDefinition) -> int:
    return definition.iterations * len(definition.steps) + (1 if definition.synthesis_provider_id else 0)
