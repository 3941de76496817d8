"""HBDI thinking-style personas and the prompt clause they contribute."""

from collections.abc import Mapping
from enum import StrEnum


class Persona(StrEnum):
    ANALYTICAL = "Analytical"
    PRACTICAL = "Practical"
    RELATIONAL = "Relational"
    EXPERIMENTAL = "Experimental"
    STRATEGIC = "Strategic"
    EXPRESSIVE = "Expressive"
    SAFEKEEPING = "Safekeeping"
    ORGANIZING = "Organizing"

    @classmethod
    def parse(cls, value: str) -> "Persona":
        """Case-insensitive lookup. Raises ValueError for unknown names."""
        wanted = value.strip().lower()
        for persona in cls:
            if persona.value.lower() == wanted:
                return persona
        raise ValueError(f"Unknown persona: {value!r}")


PERSONA_TEMPLATES: dict[Persona, str] = {
    Persona.ANALYTICAL: (
        "Approach this with logical, data-driven thinking. Focus on facts, numbers, and "
        'quantitative analysis. Ask "what" questions and seek concrete evidence. Prioritize '
        "accuracy, precision, and rational evaluation."
    ),
    Persona.PRACTICAL: (
        "Take a systematic, organized approach. Focus on step-by-step processes, implementation "
        'details, and practical execution. Ask "how" questions and emphasize structure, planning, '
        "and proven methods."
    ),
    Persona.RELATIONAL: (
        "Consider the human and interpersonal aspects. Focus on people impacts, team dynamics, and "
        'emotional considerations. Ask "who" questions and prioritize collaboration, communication, '
        "and stakeholder needs."
    ),
    Persona.EXPERIMENTAL: (
        "Think holistically and creatively. Focus on big-picture connections, innovative "
        'possibilities, and creative solutions. Ask "what if" questions and emphasize synthesis, '
        "intuition, and breakthrough thinking."
    ),
    Persona.STRATEGIC: (
        "Focus on future possibilities and long-term vision. Consider strategic implications, "
        'trends, and conceptual frameworks. Ask "why" questions and emphasize forward-thinking, '
        "possibilities, and strategic positioning."
    ),
    Persona.EXPRESSIVE: (
        "Bring creativity and communication focus. Emphasize storytelling, visual thinking, and "
        "expressive communication. Focus on how ideas can be communicated effectively and "
        "creatively presented."
    ),
    Persona.SAFEKEEPING: (
        "Prioritize risk management and stability. Focus on potential problems, conservative "
        "approaches, and proven methods. Emphasize caution, quality control, and maintaining "
        "established standards."
    ),
    Persona.ORGANIZING: (
        "Focus on systems, procedures, and administrative excellence. Emphasize detailed planning, "
        "resource management, and operational efficiency. Prioritize order, control, and "
        "systematic approaches."
    ),
}


def persona_template(persona: Persona, overrides: Mapping[str, str] | None = None) -> str:
    if overrides and persona.value in overrides:
        return overrides[persona.value]
    return PERSONA_TEMPLATES[persona]


def persona_clause(
    primary: Persona | None,
    secondary: Persona | None = None,
    overrides: Mapping[str, str] | None = None,
) -> str:
    """Build the THINKING STYLE clause. Empty string when no primary persona is set."""
    if primary is None:
        return ""
    clause = f"THINKING STYLE: {persona_template(primary, overrides)}"
    if secondary is not None:
        clause += (
            f" Additionally, incorporate {secondary.value.lower()} thinking by: "
            f"{persona_template(secondary, overrides).lower()}"
        )
    return clause
