"""Tests for ai_meetings/prompts.py."""

from ai_meetings.models import ContextDocument, StepStatus
from ai_meetings.prompts import build_step_prompt, build_synthesis_prompt, format_context_documents, step_instructions
from tests.conftest import make_step


def test_first_step_prompt_single_iteration(sample_definition, sample_prompts_config):
    prompt = build_step_prompt(
        sample_definition,
        sample_definition.steps[0],
        sample_prompts_config,
        iteration=1,
        position=1,
        previous_output="",
        iteration_outputs=[],
    )
    assert prompt.startswith("TASK OBJECTIVE: Decide next year's price tiers")
    assert "ITERATION:" not in prompt
    assert "INSTRUCTIONS FOR THIS STEP: THINKING STYLE:" in prompt
    assert prompt.endswith("INITIAL PROMPT: Should we add a usage-based tier?")


def test_later_step_prompt_uses_continuation(sample_definition, sample_prompts_config):
    prompt = build_step_prompt(
        sample_definition,
        sample_definition.steps[1],
        sample_prompts_config,
        iteration=1,
        position=2,
        previous_output="Margins look thin.",
        iteration_outputs=[],
    )
    assert prompt.endswith("PREVIOUS STEP OUTPUT: Margins look thin.\n\nKeep going.")
    assert "INITIAL PROMPT" not in prompt


def test_step_instructions_order(sample_definition, sample_prompts_config):
    instructions = step_instructions(sample_definition.steps[1], sample_prompts_config)
    persona_at = instructions.index("THINKING STYLE:")
    devil_at = instructions.index("Challenge everything.")
    extra_at = instructions.index("Mind the churn numbers.")
    assert persona_at < devil_at < extra_at


def test_format_context_documents():
    block = format_context_documents([ContextDocument("a.md", "Alpha"), ContextDocument("b.txt", "Beta")])
    assert block == "--- a.md ---\nAlpha\n\n--- b.txt ---\nBeta"


def test_synthesis_prompt_skips_failed_steps(sample_definition, sample_prompts_config):
    steps = [
        make_step(1, position=1, output="Kept output"),
        make_step(2, position=2, status=StepStatus.FAILED, error_reason="boom"),
    ]
    prompt = build_synthesis_prompt(
        sample_definition, sample_prompts_config, iteration_outputs=["Kept output"], steps=steps
    )
    assert "### Iteration 1" in prompt
    assert "**Step 1 (provider_a)**\nKept output" in prompt
    assert "Step 2" not in prompt
    assert "--- ITERATION 1 FINAL OUTPUT ---\nKept output" in prompt
    assert "Description: Quarterly pricing check" in prompt
