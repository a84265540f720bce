"""Command-line interface for crewpilot.

Commands:
    watch        Poll runner panes, notify on transitions, persist state
    check        One-shot classification of every runner pane
    monitor      Heartbeat monitor with stuck and dead alerts
    search       Search the project's memory files
    resume       Reattach or relaunch the Team Lead session
    send-answer  Answer a runner's question
    serve        Serve the JSON API
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from crewpilot import __version__
from crewpilot.app import create_app
from crewpilot.backends import get_tmux_backend
from crewpilot.exceptions import CrewpilotError, SearchIndexError, SetupError
from crewpilot.models.config import AppConfig, NotifyMethod
from crewpilot.models.recovery import Recommendation, RecoveryAnalysis
from crewpilot.models.runner import RunnerState
from crewpilot.models.search import SearchResult
from crewpilot.services.config_service import ConfigService
from crewpilot.services.monitor_loop import HeartbeatMonitor, MonitorCycle
from crewpilot.services.question_extractor import extract_question
from crewpilot.services.resume_analyzer import ResumeFlow
from crewpilot.services.search_engine import SearchEngine, tokenize_query
from crewpilot.services.watch_loop import RunnerObservation, WatchLoop, classify_panes
from crewpilot.workspace import (
    format_timestamp,
    get_session_name,
    read_runner_pane_id,
    require_team_config,
    resolve_project_name,
)

logger = logging.getLogger(__name__)

console = Console()

STATE_LABELS = {
    RunnerState.WORKING: "[blue]● Working[/blue]",
    RunnerState.IDLE: "[yellow]○ Idle[/yellow]",
    RunnerState.QUESTION: "[magenta]? Question[/magenta]",
    RunnerState.ERROR: "[red]✖ Error[/red]",
    RunnerState.STOPPED: "[dim]■ Stopped[/dim]",
    RunnerState.UNKNOWN: "[dim]? Unknown[/dim]",
}

STATE_ICONS = {
    RunnerState.WORKING: "[blue]●[/blue]",
    RunnerState.IDLE: "[yellow]○[/yellow]",
    RunnerState.QUESTION: "[magenta]?[/magenta]",
    RunnerState.ERROR: "[red]✖[/red]",
    RunnerState.STOPPED: "[dim]■[/dim]",
    RunnerState.UNKNOWN: "[dim]?[/dim]",
}

LOW_CONFIDENCE = 0.7


class CrewpilotGroup(click.Group):
    """Click group that reports CrewpilotError without a traceback."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except CrewpilotError as e:
            console.print(f"[red]✗ {escape(e.message)}[/red]")
            if e.hint:
                console.print(f"[dim]Run [bold]{escape(e.hint)}[/bold] to fix this.[/dim]")
            ctx.exit(1)


def _configure_logging(verbose: bool) -> None:
    debug = verbose or bool(os.environ.get("CREWPILOT_DEBUG"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _project(ctx: click.Context) -> Path:
    return ctx.obj["project_dir"]


def _config(ctx: click.Context) -> AppConfig:
    return ctx.obj["config"]


def _require_session(project_dir: Path, backend) -> tuple[str, str]:
    """Resolve the project's session and make sure it is running.

    Returns:
        Tuple of (project_name, session_name).
    """
    require_team_config(project_dir)
    project_name = resolve_project_name(project_dir)
    session_name = get_session_name(project_name)
    if not backend.session_exists(session_name):
        raise SetupError(f'Session "{session_name}" is not active', hint="crewpilot resume")
    return project_name, session_name


def format_state(observation: RunnerObservation, now: datetime | None = None) -> str:
    """Render a runner state as a colored label with qualifiers."""
    output = STATE_LABELS[observation.state]
    if observation.confidence < LOW_CONFIDENCE:
        output += f" [dim](~{round(observation.confidence * 100)}%)[/dim]"
    if observation.idle_since is not None:
        now = now or datetime.now(observation.idle_since.tzinfo)
        minutes = int((now - observation.idle_since).total_seconds() // 60)
        if minutes >= 1:
            output += f" [dim]({minutes}m idle)[/dim]"
    return output


def _print_observation(observation: RunnerObservation, show_change: bool = False) -> None:
    change = ""
    if show_change and observation.changed and observation.previous_state is not None:
        change = f" [dim](was {observation.previous_state.value})[/dim]"
    console.print(f"{format_state(observation)} [dim]{observation.pane_id}[/dim]{change}")
    if observation.detail:
        console.print(f"  [dim]{escape(observation.detail)}[/dim]")
    if observation.state == RunnerState.QUESTION:
        question = extract_question(observation.content)
        if question is not None:
            console.print(f"  [magenta]{escape(question.text)}[/magenta]")
            for number, option in enumerate(question.options, start=1):
                console.print(f"    {number}. {escape(option)}")


@click.group(cls=CrewpilotGroup)
@click.version_option(__version__, prog_name="crewpilot")
@click.option(
    "--project-dir",
    "-C",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Project root containing .team-config/",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, project_dir: Path, verbose: bool):
    """Supervise AI runner panes in a tmux session."""
    _configure_logging(verbose)
    project_dir = project_dir.resolve()
    ctx.ensure_object(dict)
    ctx.obj["project_dir"] = project_dir
    ctx.obj["config"] = ConfigService.for_project(project_dir).get_config()


# =============================================================================
# watch / check
# =============================================================================


@cli.command()
@click.option(
    "--interval", type=click.FloatRange(min=0, max=3600, min_open=True), default=None, help="Seconds between polls"
)
@click.option(
    "--notify",
    type=click.Choice([m.value for m in NotifyMethod]),
    default=None,
    help="Notification sink(s)",
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Notification log file")
@click.option("--once", is_flag=True, help="Poll once and exit")
@click.option(
    "--rate-limit", type=click.FloatRange(min=0, max=1440), default=None, help="Minutes between identical alerts"
)
@click.pass_context
def watch(ctx, interval, notify, log_file, once, rate_limit):
    """Watch runners and notify on important state changes."""
    project_dir = _project(ctx)
    config = _config(ctx)
    backend = get_tmux_backend()
    project_name, session_name = _require_session(project_dir, backend)

    overrides = {
        "poll_interval": interval,
        "notify": NotifyMethod(notify) if notify else None,
        "log_file": log_file,
        "rate_limit_minutes": rate_limit,
    }
    watch_config = config.watch.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    loop = WatchLoop(
        project_dir,
        session_name,
        backend,
        config=watch_config,
        notification_config=config.notifications,
    )

    console.print(f"\n[bold]── Crewpilot Watch: {escape(project_name)} ──[/bold]\n")
    console.print(f"[dim]Session: {session_name}[/dim]")
    console.print(f"[dim]Poll interval: {watch_config.poll_interval:g}s[/dim]")
    console.print(f"[dim]Notifications: {watch_config.notify.value}[/dim]")
    console.print(f"[dim]Rate limit: {watch_config.rate_limit_minutes:g}m between same alerts[/dim]")
    if watch_config.notify.uses_log:
        console.print(f"[dim]Log file: {loop.log_file}[/dim]")
    if not once:
        console.print("[dim]\nPress Ctrl+C to stop watching\n[/dim]")

    def show(observations: list[RunnerObservation]) -> None:
        console.print(f"[dim]{format_timestamp()}[/dim]")
        if not observations:
            console.print("[yellow]⚠ No active panes found in session.[/yellow]")
        for observation in observations:
            _print_observation(observation, show_change=True)
        console.print("[dim]" + "─" * 40 + "[/dim]")

    try:
        loop.run(once=once, on_cycle=show)
    except KeyboardInterrupt:
        console.print("\n[dim]Watch stopped.[/dim]")


@cli.command()
@click.pass_context
def check(ctx):
    """Show the current state of every runner pane."""
    project_dir = _project(ctx)
    config = _config(ctx)
    backend = get_tmux_backend()
    _, session_name = _require_session(project_dir, backend)

    observations = classify_panes(backend, session_name, config.watch.capture_lines)

    console.print("\n[bold]── Runner Status ──[/bold]\n")
    if not observations:
        console.print("[yellow]⚠ No active panes found.[/yellow]")
        return

    table = Table()
    table.add_column("Pane", style="cyan")
    table.add_column("State")
    table.add_column("Confidence", justify="right")
    table.add_column("Detail", style="dim")
    for observation in observations:
        table.add_row(
            observation.pane_id,
            STATE_LABELS[observation.state],
            f"{observation.confidence:.2f}",
            escape(observation.detail),
        )
    console.print(table)

    for observation in observations:
        if observation.state == RunnerState.QUESTION:
            _print_observation(observation)


# =============================================================================
# monitor
# =============================================================================


@cli.command()
@click.option(
    "--interval",
    type=click.FloatRange(min=0, max=3600, min_open=True),
    default=None,
    help="Seconds between heartbeat checks",
)
@click.option(
    "--notify",
    type=click.Choice([m.value for m in NotifyMethod]),
    default=None,
    help="Notification sink(s)",
)
@click.option("--once", is_flag=True, help="Check once and exit")
@click.pass_context
def monitor(ctx, interval, notify, once):
    """Record heartbeats and alert on stuck or dead runners."""
    project_dir = _project(ctx)
    config = _config(ctx)
    require_team_config(project_dir)
    project_name = resolve_project_name(project_dir)
    session_name = get_session_name(project_name)

    overrides = {"interval": interval, "notify": NotifyMethod(notify) if notify else None}
    monitor_config = config.monitor.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    heartbeat = HeartbeatMonitor(
        project_dir,
        session_name,
        get_tmux_backend(),
        config=monitor_config,
        notification_config=config.notifications,
    )

    console.print("\n[bold]── Crewpilot Monitor ──[/bold]\n")
    console.print(f"[dim]Project: {escape(project_name)}[/dim]")
    console.print(f"[dim]Session: {session_name}[/dim]")
    console.print(f"[dim]Check interval: {monitor_config.interval:g}s[/dim]")
    console.print(f"[dim]Log file: {heartbeat.heartbeat_log.path}[/dim]")
    if not once:
        console.print("[dim]\nPress Ctrl+C to stop monitoring\n[/dim]")

    def show(cycle: MonitorCycle) -> None:
        stamp = format_timestamp()
        if not cycle.session_alive:
            console.print(f'[yellow][{stamp}] Session "{session_name}" not active[/yellow]')
            return
        if not cycle.panes:
            console.print(f"[yellow][{stamp}] No panes found in session[/yellow]")
        for pane in cycle.panes:
            for kind in pane.recovered:
                console.print(f"[green][{stamp}] {pane.pane_id} recovered from {kind.value} state[/green]")
            for kind, reason in pane.alerts:
                console.print(f"[red][{stamp}] ⚠ {pane.pane_id} {kind.value}: {escape(reason)}[/red]")
            change = f" [dim]({pane.consecutive_no_change}x no change)[/dim]" if pane.consecutive_no_change else ""
            console.print(f"[{stamp}] {STATE_ICONS[pane.state]} {pane.pane_id}: {pane.state.value}{change}")

    try:
        heartbeat.run(once=once, on_cycle=show)
    except KeyboardInterrupt:
        console.print("\n[dim]Monitor stopped.[/dim]")


# =============================================================================
# search
# =============================================================================


def highlight_terms(line: str, query: str, case_sensitive: bool = False) -> str:
    """Wrap query words in a line with rich highlight markup."""
    words = sorted(tokenize_query(query, case_sensitive=True), key=len, reverse=True)
    if not words:
        return escape(line)
    flags = 0 if case_sensitive else re.IGNORECASE
    pattern = re.compile("|".join(re.escape(word) for word in words), flags)

    parts = []
    last = 0
    for match in pattern.finditer(line):
        parts.append(escape(line[last : match.start()]))
        parts.append(f"[yellow]{escape(match.group(0))}[/yellow]")
        last = match.end()
    parts.append(escape(line[last:]))
    return "".join(parts)


def _print_result(result: SearchResult, project_dir: Path, query: str, case_sensitive: bool, context: int) -> None:
    try:
        relative = Path(result.document).relative_to(project_dir)
    except ValueError:
        relative = Path(result.document)

    count = len(result.matches)
    console.print(
        f"\n[cyan]{relative}[/cyan] [dim](score: {result.aggregate_score}, "
        f"{count} match{'es' if count != 1 else ''})[/dim]"
    )
    for match in result.matches:
        start = match.line_number - min(context, match.line_number - 1)
        for offset, line in enumerate(match.context_text.split("\n")):
            number = start + offset
            if number == match.line_number:
                console.print(f"[green]>[/green] [dim]{number:>4}[/dim] │ {highlight_terms(line, query, case_sensitive)}")
            else:
                console.print(f"  [dim]{number:>4} │ {escape(line)}[/dim]")
        if count > 1:
            console.print("[dim]  ...[/dim]")


@cli.command()
@click.argument("query", nargs=-1)
@click.option("--rebuild-index", is_flag=True, help="Rebuild memory-index.json before searching")
@click.option("--limit", type=click.IntRange(min=1, max=1000), default=None, help="Maximum documents shown")
@click.option("--case-sensitive", is_flag=True, help="Match case exactly")
@click.option("--fuzzy", is_flag=True, help="Allow approximate matches")
@click.pass_context
def search(ctx, query, rebuild_index, limit, case_sensitive, fuzzy):
    """Search the project's memory files."""
    project_dir = _project(ctx)
    config = _config(ctx)
    require_team_config(project_dir)

    query_text = " ".join(query)
    engine = SearchEngine(project_dir, config.search)

    if rebuild_index:
        console.print("[blue]Rebuilding memory index...[/blue]")
        try:
            engine.build_index()
            console.print("[green]✓ Index rebuilt[/green]")
        except SearchIndexError as e:
            console.print(f"[yellow]⚠ Could not rebuild index: {escape(e.message)}[/yellow]")
            console.print("[dim]Continuing with search anyway...[/dim]")

    response = engine.search(query_text, limit=limit, case_sensitive=case_sensitive, fuzzy=fuzzy)
    if not response.ok:
        console.print(f"[yellow]{escape(response.error)}[/yellow]")
        console.print('[dim]Usage: crewpilot search "authentication patterns"[/dim]')
        return

    console.print(f'\n[blue]Searching for: "{escape(response.query)}"[/blue]')
    if fuzzy:
        console.print("[dim](fuzzy matching enabled)[/dim]")
    console.print("[dim]" + "─" * 50 + "[/dim]")

    if response.documents_searched == 0:
        console.print("[yellow]\n⚠ No memory files found to search.[/yellow]")
        console.print("[dim]Your .team-config/ directory may be empty.[/dim]")
        return

    if not response.results:
        console.print("[yellow]\n✗ No results found.[/yellow]")
        console.print("[dim]\nSuggestions:[/dim]")
        console.print("[dim]  • Try different keywords or synonyms[/dim]")
        console.print("[dim]  • Use shorter, more general terms[/dim]")
        console.print('[dim]  • Enable fuzzy matching: crewpilot search "term" --fuzzy[/dim]')
        return

    total = response.total_results
    matches = response.total_matches
    console.print(
        f"[green]\n✓ Found {total} file{'s' if total != 1 else ''} "
        f"with {matches} match{'es' if matches != 1 else ''}[/green]"
    )
    if total > len(response.results):
        console.print(f"[dim](showing top {len(response.results)} files)[/dim]")

    for result in response.results:
        _print_result(result, project_dir, response.query, case_sensitive, config.search.context_lines)

    if total < 3 and not fuzzy and len(response.query) > 4:
        console.print("[dim]\n💡 Tip: Try --fuzzy flag for approximate matching[/dim]")
    if total > 10 and not rebuild_index:
        console.print("[dim]💡 Tip: Use --rebuild-index for faster searches[/dim]")


# =============================================================================
# resume / send-answer
# =============================================================================


def _print_analysis(analysis: RecoveryAnalysis) -> None:
    colors = {
        Recommendation.CONTINUE: "green",
        Recommendation.FRESH: "blue",
        Recommendation.REVIEW: "yellow",
    }
    color = colors[analysis.recommendation]

    console.print("\n[bold]── Session Recovery ──[/bold]")
    console.print(f"[dim]State snapshot: {'yes' if analysis.has_state_snapshot else 'no'}[/dim]")
    console.print(f"[dim]Recovery instructions: {'yes' if analysis.has_recovery_instructions else 'no'}[/dim]")
    console.print(f"[dim]Progress artifacts: {'yes' if analysis.has_external_progress_artifact else 'no'}[/dim]")
    if analysis.snapshot_age_hours is not None:
        console.print(f"[dim]Snapshot age: {analysis.snapshot_age_hours:.1f}h[/dim]")
    console.print(f"Recommendation: [{color}]{analysis.recommendation.value}[/{color}]")
    for warning in analysis.warnings:
        console.print(f"[yellow]⚠ {escape(warning)}[/yellow]")


@cli.command()
@click.option("--fresh", is_flag=True, help="Start a new conversation instead of continuing")
@click.option("--auto", "auto", is_flag=True, help="No prompts; follow the recommendation")
@click.option("--no-attach", is_flag=True, help="Do not attach to the session afterwards")
@click.pass_context
def resume(ctx, fresh, auto, no_attach):
    """Resume the Team Lead session after a crash or restart."""
    config = _config(ctx)

    def confirm(message: str) -> bool:
        console.print(f"[yellow]{escape(message)}[/yellow]")
        return Confirm.ask("Continue?", default=True, console=console)

    flow = ResumeFlow(_project(ctx), get_tmux_backend(), config=config.resume, confirm=confirm)
    outcome = flow.run(fresh=fresh, auto=auto, no_attach=no_attach, on_analysis=_print_analysis)

    if outcome.action == "attached":
        console.print(f'[green]Session "{outcome.session_name}" is alive.[/green]')
    elif outcome.action == "aborted":
        console.print("[dim]Aborted.[/dim]")
    else:
        console.print(f"[green]\nCrewpilot resumed! Session: {outcome.session_name}[/green]")
        mode = "fresh start with recovery" if outcome.fresh else "continuing last conversation"
        console.print(f"[dim]Mode: {mode}[/dim]")


@cli.command("send-answer")
@click.option("--option", "option", type=click.IntRange(min=1), default=None, help="Numbered option to select")
@click.option("--text", "text", type=str, default=None, help="Free-text answer to type")
@click.pass_context
def send_answer(ctx, option, text):
    """Answer the runner's pending question."""
    if option is not None and text is not None:
        raise click.UsageError("Specify only one of --option or --text, not both.")
    if option is None and text is None:
        raise click.UsageError("Specify --option or --text to send input to the Runner.")

    project_dir = _project(ctx)
    require_team_config(project_dir)
    pane_id = read_runner_pane_id(project_dir)
    if pane_id is None:
        raise SetupError("No runner pane recorded in runner-pane-id.txt; no active runner")

    backend = get_tmux_backend()
    if option is not None:
        console.print(f"[blue]Selecting option {option} in pane {pane_id}...[/blue]")
        backend.send_option(pane_id, option)
        console.print("[green]Option selected.[/green]")
    else:
        console.print(f"[blue]Sending text to pane {pane_id}...[/blue]")
        backend.send_text_input(pane_id, text)
        console.print("[green]Text sent.[/green]")


# =============================================================================
# serve
# =============================================================================


@cli.command()
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Port to listen on")
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.pass_context
def serve(ctx, port, host):
    """Serve runner state, recovery analysis and search as JSON."""
    project_dir = _project(ctx)
    require_team_config(project_dir)
    app = create_app(project_dir)
    port = port or _config(ctx).dashboard.port

    console.print(f"[green]Serving crewpilot API on http://{host}:{port}/api[/green]")
    app.run(host=host, port=port, threaded=True)


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
