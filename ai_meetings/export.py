"""Rich console output and report export (markdown, html, json, csv) for meeting runs."""

import csv
import html
import io
import json
import logging
import re
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from ai_meetings.chain import definition_to_payload
from ai_meetings.models import ChainStep, MeetingRun
from ai_meetings.persistence import step_to_record

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

REPORT_FORMATS = {"md": "md", "markdown": "md", "html": "html", "json": "json"}

CSV_COLUMNS = [
    "Iteration",
    "Step Number",
    "Provider",
    "Input Prompt",
    "Output Content",
    "Tokens Used",
    "Cost",
    "Response Time (ms)",
    "Is Synthesis",
    "Status",
]


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _money(value: Decimal | None) -> str:
    return f"${(value or Decimal('0')):.4f}"


def _completed_label(run: MeetingRun) -> str:
    return run.completed_at.strftime("%Y-%m-%d %H:%M:%S") if run.completed_at else "N/A"


def agent_title(run: MeetingRun, step: ChainStep) -> str:
    """e.g. ``Agent 2: claude [DEVIL'S ADVOCATE] (Analytical + Strategic)``."""
    if step.is_synthesis:
        return f"Synthesis: {step.provider_id}"
    title = f"Agent {step.chain_position}: {step.provider_id}"
    if step.chain_position is None or not 1 <= step.chain_position <= len(run.definition.steps):
        return title
    agent = run.definition.steps[step.chain_position - 1]
    if agent.is_devils_advocate:
        title += " [DEVIL'S ADVOCATE]"
    if agent.primary_persona:
        title += f" ({agent.primary_persona.value}"
        if agent.secondary_persona:
            title += f" + {agent.secondary_persona.value}"
        title += ")"
    return title


def _split(steps: Sequence[ChainStep]) -> tuple[list[ChainStep], ChainStep | None]:
    agent_steps = sorted((s for s in steps if not s.is_synthesis), key=lambda s: s.step_number)
    synthesis = next((s for s in steps if s.is_synthesis and s.output_content), None)
    return agent_steps, synthesis


def _by_iteration(agent_steps: Sequence[ChainStep]) -> dict[int, list[ChainStep]]:
    grouped: dict[int, list[ChainStep]] = {}
    for step in agent_steps:
        grouped.setdefault(step.iteration_number, []).append(step)
    return grouped


# --- console ---

def _response_preview(content: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_step_summary(run: MeetingRun, steps: Sequence[ChainStep]) -> None:
    """Print a brief per-iteration summary of step outputs to the console."""
    agent_steps, _ = _split(steps)
    for iteration, iteration_steps in _by_iteration(agent_steps).items():
        console.print(Rule(f"[bold cyan]Iteration {iteration}[/bold cyan]"))
        for step in iteration_steps:
            body = _response_preview(step.output_content) if step.output_content else f"[red]{step.error_reason}[/red]"
            latency = f"{step.latency_ms}ms" if step.latency_ms is not None else step.status.value
            console.print(
                Panel(
                    body,
                    title=f"[bold]{agent_title(run, step)}[/bold]",
                    subtitle=latency,
                    border_style="dim",
                )
            )


def print_synthesis(run: MeetingRun, steps: Sequence[ChainStep]) -> None:
    """Print the synthesis (if any) and run totals using Rich markdown."""
    _, synthesis = _split(steps)
    console.print(Rule("[bold green]Meeting Synthesis[/bold green]"))
    console.print(
        Text(
            f"Status: {run.status.value} | "
            f"Iterations: {run.definition.iterations} | "
            f"Total cost: {_money(run.total_cost)}"
            + (f" | Error: {run.error_reason}" if run.error_reason else ""),
            style="dim",
        )
    )
    if synthesis is not None:
        console.print(Text(f"Synthesized by: {synthesis.provider_id}", style="dim"))
        console.print(Markdown(synthesis.output_content or ""))


# --- reports ---

def render_markdown_report(run: MeetingRun, steps: Sequence[ChainStep]) -> str:
    definition = run.definition
    agent_steps, synthesis = _split(steps)
    lines: list[str] = [
        "# AI Meeting Synthesis Report",
        "",
        f"**Meeting:** {definition.name}",
        f"**Description:** {definition.description or 'N/A'}",
        f"**Objective:** {definition.objective}",
        f"**Status:** {run.status.value}",
        f"**Completed:** {_completed_label(run)}",
        f"**Total Cost:** {_money(run.total_cost)}",
        "",
        "## Initial Prompt",
        "",
        definition.initial_prompt,
        "",
    ]
    if run.error_reason:
        lines += [f"> **Run failed:** {run.error_reason}", ""]

    for iteration, iteration_steps in _by_iteration(agent_steps).items():
        lines += [f"## Iteration {iteration} - Agent Discussions", ""]
        for step in iteration_steps:
            lines += [f"### {agent_title(run, step)}", ""]
            lines += [step.output_content or f"*Failed: {step.error_reason}*", ""]
            lines += [
                f"*Tokens: {step.tokens_used or 0} | Cost: {_money(step.cost_usd)} | "
                f"Response time: {step.latency_ms or 0}ms*",
                "",
            ]

    if synthesis is not None:
        lines += [
            "## Final Synthesis Report",
            "",
            f"**Generated by:** {synthesis.provider_id}",
            "",
            synthesis.output_content or "",
            "",
            "### Synthesis Statistics",
            "",
            f"- **Synthesis Tokens:** {synthesis.tokens_used or 0}",
            f"- **Synthesis Cost:** {_money(synthesis.cost_usd)}",
            f"- **Synthesis Response Time:** {synthesis.latency_ms or 0}ms",
            "",
        ]
    return "\n".join(lines)


def render_html_report(run: MeetingRun, steps: Sequence[ChainStep]) -> str:
    definition = run.definition
    agent_steps, synthesis = _split(steps)
    esc = html.escape
    parts: list[str] = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="UTF-8">',
        f"<title>AI Meeting Synthesis Report - {esc(definition.name)}</title>",
        "<style>",
        "body { font-family: system-ui, sans-serif; max-width: 960px; margin: 2rem auto; line-height: 1.5; }",
        "pre { white-space: pre-wrap; background: #f6f8fa; padding: 1rem; border-radius: 6px; }",
        ".synthesis-report { background: #eef2ff; padding: 1.5rem; border-radius: 12px; margin: 2rem 0; }",
        ".meta { color: #555; font-size: 0.9rem; }",
        "</style>",
        "</head>",
        "<body>",
        "<h1>AI Meeting Synthesis Report</h1>",
        f"<p><strong>Name:</strong> {esc(definition.name)}</p>",
        f"<p><strong>Description:</strong> {esc(definition.description or 'N/A')}</p>",
        f"<p><strong>Objective:</strong> {esc(definition.objective)}</p>",
        f"<p><strong>Status:</strong> {esc(run.status.value)}</p>",
        f"<p><strong>Completed:</strong> {esc(_completed_label(run))}</p>",
        f"<p><strong>Total Cost:</strong> {esc(_money(run.total_cost))}</p>",
        "<h2>Initial Discussion Topic</h2>",
        f"<pre>{esc(definition.initial_prompt)}</pre>",
    ]
    if run.error_reason:
        parts.append(f"<p><strong>Run failed:</strong> {esc(run.error_reason)}</p>")

    for iteration, iteration_steps in _by_iteration(agent_steps).items():
        parts.append(f"<h2>Iteration {iteration} - Agent Discussions</h2>")
        for step in iteration_steps:
            parts.append(f"<h3>{esc(agent_title(run, step))}</h3>")
            parts.append(f"<pre>{esc(step.output_content or f'Failed: {step.error_reason}')}</pre>")
            parts.append(
                f'<p class="meta">Tokens: {step.tokens_used or 0} | Cost: {esc(_money(step.cost_usd))} | '
                f"Response time: {step.latency_ms or 0}ms</p>"
            )

    if synthesis is not None:
        parts += [
            '<div class="synthesis-report">',
            "<h2>Final Synthesis Report</h2>",
            f"<p><strong>Generated by:</strong> {esc(synthesis.provider_id)}</p>",
            f"<pre>{esc(synthesis.output_content or '')}</pre>",
            f'<p class="meta">Synthesis Tokens: {synthesis.tokens_used or 0} | '
            f"Synthesis Cost: {esc(_money(synthesis.cost_usd))} | "
            f"Synthesis Response Time: {synthesis.latency_ms or 0}ms</p>",
            "</div>",
        ]
    parts += ["</body>", "</html>"]
    return "\n".join(parts)


def render_json_report(run: MeetingRun, steps: Sequence[ChainStep]) -> str:
    agent_steps, synthesis = _split(steps)
    report = {
        "meeting": {
            **definition_to_payload(run.definition),
            "id": run.id,
            "status": run.status.value,
            "totalCost": str(run.total_cost),
            "createdAt": run.created_at.isoformat(),
            "completedAt": run.completed_at.isoformat() if run.completed_at else None,
            "errorReason": run.error_reason,
        },
        "agentDiscussions": [
            {**step_to_record(step), "title": agent_title(run, step)} for step in agent_steps
        ],
        "synthesis": step_to_record(synthesis) if synthesis is not None else None,
    }
    return json.dumps(report, indent=2, ensure_ascii=False)


def render_steps_csv(steps: Sequence[ChainStep]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for step in sorted(steps, key=lambda s: s.step_number):
        writer.writerow(
            [
                step.iteration_number,
                step.step_number,
                step.provider_id,
                step.input_prompt,
                step.output_content or "",
                step.tokens_used or 0,
                step.cost_usd if step.cost_usd is not None else 0,
                step.latency_ms or 0,
                "Yes" if step.is_synthesis else "No",
                step.status.value,
            ]
        )
    return buffer.getvalue()


_RENDERERS = {
    "md": render_markdown_report,
    "html": render_html_report,
    "json": render_json_report,
}


def _stem(run: MeetingRun, slug_override: str | None) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(run.definition.name)
    return f"{timestamp}_{slug}"


def save_report(
    run: MeetingRun,
    steps: Sequence[ChainStep],
    output_dir: Path,
    fmt: str = "md",
    slug_override: str | None = None,
) -> Path:
    """Render the report in ``fmt`` and write it under output_dir.

    Raises:
        ValueError: for an unknown format.
    """
    ext = REPORT_FORMATS.get(fmt.lower())
    if ext is None:
        raise ValueError(f"Unknown report format: {fmt!r} (expected one of {sorted(REPORT_FORMATS)})")
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"{_stem(run, slug_override)}.{ext}"
    filepath.write_text(_RENDERERS[ext](run, steps), encoding="utf-8")
    logger.info("Report saved to: %s", filepath)
    return filepath


def save_steps_csv(
    run: MeetingRun,
    steps: Sequence[ChainStep],
    output_dir: Path,
    slug_override: str | None = None,
) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"{_stem(run, slug_override)}_steps.csv"
    filepath.write_text(render_steps_csv(steps), encoding="utf-8")
    logger.info("Step log saved to: %s", filepath)
    return filepath
