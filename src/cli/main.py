"""
Typer CLI for the adaptive SQL tutor.

Commands:
    tutor replay EVENTS_JSON      - Decision trace for one strategy
    tutor compare EVENTS_JSON     - Decision counts per strategy (descriptive only)
    tutor coverage EVENTS_JSON    - Concept coverage for one learner
    tutor validate EVENTS_JSON    - Check every event in a file
    tutor strategies              - Strategy thresholds
    tutor db init                 - Create the state tables

Usage:
    tutor --help
    tutor replay events.json --strategy adaptive-high
    tutor replay events.json --checksum
    tutor compare events.json -s hint-only -s adaptive-medium
    tutor coverage events.json --learner learner-1
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.tutoring.concepts import CONCEPTS
from src.tutoring.coverage import CoverageWeights, build_profile, get_coverage_stats
from src.tutoring.errors import ValidationError
from src.tutoring.events import order_events, parse_event, parse_events
from src.tutoring.replay import (
    compare_strategies,
    replay_decision_trace,
    replay_document,
    trace_checksum,
)
from src.tutoring.strategies import Strategy

app = typer.Typer(
    name="tutor",
    help="Adaptive SQL tutor: hint ladder, escalation policy, coverage and decision replay",
    no_args_is_help=True,
)
db_app = typer.Typer(help="State database commands", no_args_is_help=True)
app.add_typer(db_app, name="db")

console = Console()

DECISION_STYLES = {
    "show_hint": "cyan",
    "show_explanation": "magenta",
    "continue": "dim",
    "no_intervention": "green",
}


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )


def _load_raw_events(path: Path) -> list[dict[str, Any]]:
    """Read a JSON list of events, or an object with an `events` list."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        rprint(f"[red]Error:[/red] cannot read {path}: {e}")
        raise typer.Exit(code=1)

    if isinstance(data, dict):
        data = data.get("events")
    if not isinstance(data, list):
        rprint(f"[red]Error:[/red] {path} must contain a list of events")
        raise typer.Exit(code=1)
    return data


def _load_events(path: Path):
    raw = _load_raw_events(path)
    try:
        return parse_events(raw)
    except ValidationError as e:
        rprint(f"[red]Invalid event:[/red] {e}")
        raise typer.Exit(code=1)


def _parse_strategy(value: str) -> Strategy:
    try:
        return Strategy.parse(value)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Adaptive SQL tutor.

    Replays and inspects learner event logs. Comparisons describe what each
    strategy would decide; they make no claim about learning outcomes.
    """
    _configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command("replay")
def replay_cmd(
    events_file: Path = typer.Argument(..., help="JSON file with interaction events"),
    strategy: str | None = typer.Option(None, "--strategy", "-s", help="Strategy to replay under"),
    checksum: bool = typer.Option(False, "--checksum", help="Print only the trace checksum"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the trace JSON here"),
) -> None:
    """
    Replay an event log under one strategy.

    Prints one row per event with the decision and the rule that fired.
    """
    chosen = _parse_strategy(strategy or get_settings().default_strategy)
    events = _load_events(events_file)
    trace = replay_decision_trace(events, chosen)

    if checksum:
        rprint(trace_checksum(trace))
        return

    if output:
        document = replay_document(events, chosen)
        output.write_text(
            json.dumps(document, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
        rprint(f"[green]OK[/green] Wrote {len(trace)} decisions to {output}")
        return

    table = Table(title=f"Decision trace: {chosen.value}")
    table.add_column("#", justify="right")
    table.add_column("Event", style="cyan")
    table.add_column("Type")
    table.add_column("Problem")
    table.add_column("Decision")
    table.add_column("Rule")
    table.add_column("Errors", justify="right")
    table.add_column("Help #", justify="right")

    for entry in trace:
        style = DECISION_STYLES.get(entry.decision.value, "")
        table.add_row(
            str(entry.index),
            entry.event_id,
            entry.event_type,
            entry.problem_id,
            f"[{style}]{entry.decision.value}[/{style}]" if style else entry.decision.value,
            entry.rule_fired,
            str(entry.error_count),
            str(entry.help_request_index or ""),
        )

    console.print(table)
    rprint(f"[dim]checksum {trace_checksum(trace)}[/dim]")


@app.command("compare")
def compare_cmd(
    events_file: Path = typer.Argument(..., help="JSON file with interaction events"),
    strategies: list[str] | None = typer.Option(
        None, "--strategy", "-s", help="Strategies to compare (default: all)"
    ),
) -> None:
    """
    Count decisions per strategy over the same events.

    Describes policy behaviour only.
    """
    chosen = [_parse_strategy(s) for s in strategies] if strategies else list(Strategy)
    results = compare_strategies(_load_events(events_file), chosen)

    table = Table(title="Strategy comparison")
    table.add_column("Strategy", style="cyan")
    table.add_column("Thresholds")
    table.add_column("Decisions", justify="right")
    table.add_column("Hints", justify="right")
    table.add_column("Explanations", justify="right")
    table.add_column("Note recs", justify="right")
    table.add_column("Checksum", style="dim")

    for result in results:
        thresholds = result.strategy.thresholds.to_dict()
        table.add_row(
            result.strategy.value,
            f"{thresholds['escalate']} / {thresholds['aggregate']}",
            str(result.total_decisions),
            str(result.hint_count),
            str(result.explanation_count),
            str(result.note_recommendations),
            result.checksum[:12],
        )

    console.print(table)
    rprint("[dim]Counts describe what each policy would do; they do not measure learning.[/dim]")


@app.command("coverage")
def coverage_cmd(
    events_file: Path = typer.Argument(..., help="JSON file with interaction events"),
    learner: str = typer.Option(..., "--learner", "-l", help="Learner id"),
) -> None:
    """Fold a learner's events into concept coverage evidence."""
    events = [e for e in order_events(_load_events(events_file)) if e.learner_id == learner]
    if not events:
        rprint(f"[yellow]No events for learner {learner}[/yellow]")
        raise typer.Exit(code=1)

    weights = CoverageWeights.from_settings()
    profile = build_profile(learner, events, weights)
    stats = get_coverage_stats(profile, mastery_threshold=weights.mastery_threshold)

    table = Table(title=f"Concept coverage: {learner}")
    table.add_column("Concept", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Confidence")
    table.add_column("Evidence", justify="right")
    table.add_column("Streak", justify="right")

    for concept in CONCEPTS:
        evidence = profile.evidence_for(concept.id)
        if evidence is None:
            table.add_row(concept.name, "0", "low", "0", "-")
            continue
        mastered = evidence.score >= weights.mastery_threshold
        score = f"[green]{evidence.score}[/green]" if mastered else str(evidence.score)
        table.add_row(
            concept.name,
            score,
            evidence.confidence.value,
            str(evidence.evidence_counts.volume),
            f"+{evidence.streak_correct}" if evidence.streak_correct else f"-{evidence.streak_incorrect}",
        )

    console.print(table)
    summary = (
        f"Covered: {stats.covered_count}/{stats.total_concepts} "
        f"({stats.coverage_percentage:.1f}%)\n"
        f"Average score: {stats.average_score:.1f}\n"
        f"Confidence: "
        + ", ".join(f"{tier} {count}" for tier, count in stats.by_confidence.items())
        + f"\nInteractions: {profile.interaction_count}"
    )
    console.print(Panel(summary, title="[bold]Coverage[/bold]", border_style="blue"))


@app.command("validate")
def validate_cmd(
    events_file: Path = typer.Argument(..., help="JSON file with interaction events"),
) -> None:
    """Validate every event in a file and report the invalid ones."""
    raw = _load_raw_events(events_file)
    failures: list[tuple[int, str, str]] = []
    for position, item in enumerate(raw, start=1):
        try:
            parse_event(item)
        except ValidationError as e:
            event_id = item.get("id", "?") if isinstance(item, dict) else "?"
            failures.append((position, str(event_id), str(e)))

    if not failures:
        rprint(f"[green]OK[/green] {len(raw)} events valid")
        return

    table = Table(title=f"{len(failures)} invalid of {len(raw)} events")
    table.add_column("#", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Problem", style="red")
    for position, event_id, problem in failures:
        table.add_row(str(position), event_id, problem)
    console.print(table)
    raise typer.Exit(code=1)


@app.command("strategies")
def strategies_cmd() -> None:
    """Show escalation and note thresholds per strategy."""
    table = Table(title="Strategies")
    table.add_column("Strategy", style="cyan")
    table.add_column("Escalate after errors", justify="right")
    table.add_column("Recommend note after errors", justify="right")
    table.add_column("Auto-escalation")

    for strategy in Strategy:
        thresholds = strategy.thresholds.to_dict()
        table.add_row(
            strategy.value,
            str(thresholds["escalate"]),
            str(thresholds["aggregate"]),
            "yes" if strategy.auto_escalation_enabled else "no",
        )
    console.print(table)


@db_app.command("init")
def db_init(
    url: str | None = typer.Option(None, "--url", help="Database URL (default: settings.database_url)"),
) -> None:
    """
    Create the key-value state table.

    Safe to run multiple times (idempotent).
    """
    from src.db.database import create_state_engine, init_db

    logger.info("Initializing database tables...")
    init_db(create_state_engine(url))
    rprint("[green]OK[/green] Database initialized")


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
