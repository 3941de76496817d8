"""Click CLI — orchestrates config loading, provider selection, meeting run, and export."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn

from ai_meetings.broadcaster import EventKind, MoodStateBroadcaster, Subscription
from ai_meetings.chain import ValidationError, build_chain_definition
from ai_meetings.context import FolderContextSource
from ai_meetings.costs import CostAccountant
from ai_meetings.executor import SequenceExecutor
from ai_meetings.export import REPORT_FORMATS, print_step_summary, print_synthesis, save_report, save_steps_csv
from ai_meetings.healthcheck import run_health_checks
from ai_meetings.inbox import archive_file, ensure_dirs, load_meeting_file, scan_inbox
from ai_meetings.models import MeetingRun, RunStatus
from ai_meetings.persistence import JsonlSink
from ai_meetings.providers.anthropic import AnthropicProvider
from ai_meetings.providers.base import AIProvider
from ai_meetings.providers.gateway import ProviderGateway
from ai_meetings.providers.gemini import GeminiProvider
from ai_meetings.providers.openai_provider import OpenAIProvider
from ai_meetings.providers.xai import XAIProvider
from config.config_loader import AppConfig, load_config

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Keyed by the "sdk" field of a model entry in settings.yaml
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google-genai": GeminiProvider,
    "xai": XAIProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by provider id."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logging.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logging.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _check_and_filter_providers(all_providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results = asyncio.run(run_health_checks(all_providers))

    failed_names: list[str] = []
    for name in sorted(results):
        status = results[name]
        if status.ok:
            console.print(f"  [green]OK  [/green] {name} [dim]{status.latency_ms}ms[/dim]")
        else:
            short_err = status.error.splitlines()[0][:120] if status.error else "unknown error"
            hint = " [dim](transient, may pass on retry)[/dim]" if status.transient else ""
            console.print(f"  [red]FAIL[/red] {name}: {short_err}{hint}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(
        f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}"
    )
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _apply_overrides(
    payload: dict,
    config: AppConfig,
    iterations: int | None,
    synthesizer: str | None,
) -> dict:
    """CLI flag > meeting file > config default."""
    merged = dict(payload)
    if iterations is not None:
        merged["iterations"] = iterations
    elif "iterations" not in merged:
        merged["iterations"] = config.defaults.iterations
    if synthesizer is not None:
        merged["synthesisProviderId"] = synthesizer or None
    elif not merged.get("synthesisProviderId"):
        merged["synthesisProviderId"] = config.defaults.synthesis_provider
    return merged


def _missing_providers(payload: dict, all_providers: dict[str, AIProvider]) -> list[str]:
    wanted = [step.get("providerId", "") for step in payload.get("chain") or [] if isinstance(step, dict)]
    if payload.get("synthesisProviderId"):
        wanted.append(payload["synthesisProviderId"])
    return sorted({w for w in wanted if w and w not in all_providers})


def _build_executor(config: AppConfig, all_providers: dict[str, AIProvider], output_dir: Path) -> SequenceExecutor:
    engine = config.engine
    return SequenceExecutor(
        gateway=ProviderGateway(all_providers, call_timeout_sec=engine.call_timeout_sec),
        sink=JsonlSink(output_dir / "runs"),
        accountant=CostAccountant(),
        broadcaster=MoodStateBroadcaster(
            queue_size=engine.subscriber_queue_size,
            heartbeat_sec=engine.heartbeat_sec,
            shards=engine.broadcaster_shards,
        ),
        prompts=config.prompts,
        engine=engine,
        context_source=FolderContextSource(config.context.root_dir),
        max_chain_length=config.defaults.max_chain_length,
        max_iterations=config.defaults.max_iterations,
    )


async def _observe(
    subscription: Subscription,
    progress: Progress,
    task_id: TaskID,
    show_moods: bool,
) -> None:
    """Drive the progress bar (and optional mood feed) from the meeting's event stream."""
    async for event in subscription:
        if event.kind is EventKind.STEP_COMPLETED:
            info = event.payload
            label = "synthesis" if info["is_synthesis"] else f"iteration {info['iteration_number']}"
            progress.advance(task_id)
            progress.print(
                f"[green]OK[/green] Step {info['step_number']} ({info['provider_id']}, {label}) "
                f"{info['latency_ms']}ms ${info['cost_usd']}"
            )
        elif event.kind is EventKind.MOOD_UPDATE and show_moods:
            mood = event.payload
            progress.print(
                f"[magenta]{mood.agent_id}[/magenta] {mood.mood.value} "
                f"({mood.intensity:.2f}) [dim]{mood.status.value}[/dim]"
            )
        elif event.kind is EventKind.RUN_FINISHED:
            return


async def _run_meeting(
    payload: dict,
    config: AppConfig,
    all_providers: dict[str, AIProvider],
    output_dir: Path,
    report_format: str,
    write_csv: bool,
    watch_moods: bool,
    slug_override: str | None = None,
) -> tuple[MeetingRun, Path]:
    """Run a single meeting and return the finished run and the saved report path.

    Raises:
        ValidationError: if the meeting definition is malformed.
    """
    definition = build_chain_definition(
        payload,
        max_chain_length=config.defaults.max_chain_length,
        max_iterations=config.defaults.max_iterations,
    )
    executor = _build_executor(config, all_providers, output_dir)

    chain_label = " -> ".join(step.provider_id for step in definition.steps)
    console.print(f"\n[bold cyan]AI Meeting[/bold cyan] — {definition.name}")
    console.print(f"Chain: {chain_label}  x{definition.iterations} iteration(s)")
    console.print(f"Synthesis: {definition.synthesis_provider_id or 'none'}")
    console.print(
        f"Objective: [italic]{definition.objective[:80]}{'...' if len(definition.objective) > 80 else ''}[/italic]\n"
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        handle = executor.start(definition)
        # The run task has not been scheduled yet, so this subscription sees every event
        subscription = executor.broadcaster.subscribe(handle.run_id)
        task_id = progress.add_task("Running meeting...", total=executor.get_progress(handle.run_id).total_steps)
        observer = asyncio.create_task(_observe(subscription, progress, task_id, watch_moods))
        try:
            run = await handle.wait()
            await observer
        finally:
            subscription.close()

    steps = executor.list_steps(run.id)
    print_step_summary(run, steps)
    print_synthesis(run, steps)

    if run.persistence_error:
        console.print(f"[yellow]Warning:[/yellow] run records incomplete: {run.persistence_error}")

    saved_path = save_report(run, steps, output_dir, report_format, slug_override=slug_override)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    if write_csv:
        csv_path = save_steps_csv(run, steps, output_dir, slug_override=slug_override)
        console.print(f"[dim]Step log: {csv_path}[/dim]")
    return run, saved_path


async def _run_inbox(
    config: AppConfig,
    all_providers: dict[str, AIProvider],
    inbox_dir: Path,
    archive_dir: Path,
    iterations_cli: int | None,
    synthesizer_cli: str | None,
    output_dir: Path,
    report_format: str,
    write_csv: bool,
    watch_moods: bool,
) -> None:
    """Process all meeting .md files in the inbox folder.

    Precedence for per-file settings: CLI flag > frontmatter > config default.
    """
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No files in inbox.")
        return

    for file_path in files:
        try:
            payload = _apply_overrides(load_meeting_file(file_path), config, iterations_cli, synthesizer_cli)
            missing = _missing_providers(payload, all_providers)
            if missing:
                raise ValueError(f"Providers not available: {', '.join(missing)}")
            run, saved = await _run_meeting(
                payload,
                config,
                all_providers,
                output_dir,
                report_format,
                write_csv,
                watch_moods,
                slug_override=file_path.stem,
            )
            failed = run.status is not RunStatus.COMPLETED
            archived = archive_file(file_path, archive_dir, failed=failed)
            click.echo(f"Processed: {file_path.name} -> {saved} [{run.status.value}] (archived: {archived.name})")
        except Exception as e:
            logger.error("Failed: %s -- %s", file_path.name, e)
            archive_file(file_path, archive_dir, failed=True)


@click.command()
@click.option("--file", "meeting_file", type=click.Path(exists=True), help="Meeting definition (.md with frontmatter)")
@click.option("--iterations", default=None, type=int, help="Number of iterations (default: file, then config)")
@click.option("--synthesizer", default=None, help="Synthesis provider id; pass '' to disable synthesis")
@click.option("--format", "report_format", default=None, type=click.Choice(sorted(REPORT_FORMATS)),
              help="Report format (default: from config)")
@click.option("--csv", "write_csv", is_flag=True, default=False, help="Also write the raw step log as CSV")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--watch-moods", is_flag=True, default=False, help="Print live agent mood changes")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--inbox", "use_inbox", is_flag=True, default=False,
              help="Process all meeting .md files in inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    meeting_file: str | None,
    iterations: int | None,
    synthesizer: str | None,
    report_format: str | None,
    write_csv: bool,
    output_path: str | None,
    watch_moods: bool,
    verbose: bool,
    use_inbox: bool,
    inbox_dir_override: str | None,
    skip_health_check: bool,
) -> None:
    """AI Meetings -- run a chain of persona agents over a shared discussion.

    \b
    Examples:
      ai-meetings --file meeting.md
      ai-meetings --file meeting.md --iterations 3 --synthesizer gemini
      ai-meetings --file meeting.md --format html --csv --watch-moods
      ai-meetings --inbox
      ai-meetings --inbox --inbox-dir ./my_queue
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so model responses containing
    # Unicode chars don't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    effective_format = report_format or config.defaults.report_format

    all_providers = _build_all_providers(config)

    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(all_providers)

    if use_inbox:
        inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir
        asyncio.run(
            _run_inbox(
                config=config,
                all_providers=all_providers,
                inbox_dir=inbox_dir,
                archive_dir=config.inbox.archive_dir,
                iterations_cli=iterations,
                synthesizer_cli=synthesizer,
                output_dir=effective_output,
                report_format=effective_format,
                write_csv=write_csv,
                watch_moods=watch_moods,
            )
        )
        return

    if not meeting_file:
        console.print("[bold red]Error:[/bold red] Provide --file or --inbox.")
        sys.exit(1)

    payload = _apply_overrides(load_meeting_file(Path(meeting_file)), config, iterations, synthesizer)
    missing = _missing_providers(payload, all_providers)
    if missing:
        console.print(f"[bold red]Error:[/bold red] Providers not available: {', '.join(missing)}")
        sys.exit(1)

    try:
        run, _ = asyncio.run(
            _run_meeting(
                payload,
                config,
                all_providers,
                effective_output,
                effective_format,
                write_csv,
                watch_moods,
            )
        )
    except ValidationError as exc:
        console.print("[bold red]Invalid meeting:[/bold red]")
        for problem in exc.problems:
            console.print(f"  - {problem}")
        sys.exit(1)

    if run.status is not RunStatus.COMPLETED:
        console.print(f"[bold red]Meeting failed:[/bold red] {run.error_reason}")
        sys.exit(1)


if __name__ == "__main__":
    main()
