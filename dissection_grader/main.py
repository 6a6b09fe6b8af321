"""
Dissection Grader CLI Application.

Provides a command-line interface for grading lab attempts, applying
instructor overrides and inspecting grade passback.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dissection_grader.config import get_settings
from dissection_grader.db.database import get_session_factory, init_db
from dissection_grader.grading.engine import GradingEngine
from dissection_grader.grading.errors import GradingError
from dissection_grader.grading.overrides import OverrideHandler
from dissection_grader.logging_setup import configure_logging
from dissection_grader.models import GradeResult, MatchType, ScoreUpdate, SyncStatus
from dissection_grader.passback import (
    DatabaseDeliveryQueue,
    PassbackEnqueuer,
    RetryPolicy,
    SyncLogRecorder,
)
from dissection_grader.rubric import (
    RubricParseError,
    RubricParser,
    RubricValidator,
)

# Create Typer app
app = typer.Typer(
    name="dissection-grader",
    help="Automated grading and grade passback for dissection labs",
    add_completion=False,
)

console = Console()


@app.callback()
def main(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    configure_logging(log_level or get_settings().log_level)


def _enqueuer() -> PassbackEnqueuer:
    """Enqueuer backed by the durable database queue."""
    policy = RetryPolicy.from_settings(get_settings())
    session_factory = get_session_factory()
    return PassbackEnqueuer(
        session_factory,
        DatabaseDeliveryQueue(session_factory, retention=policy),
        policy,
    )


def _points(value: str) -> Decimal:
    try:
        points = Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"Not a number: {value}")
    if not points.is_finite():
        raise typer.BadParameter(f"Not a finite number: {value}")
    return points


def _fail(label: str, error: Exception) -> NoReturn:
    console.print(f"[red]{label}:[/red] {error}")
    raise typer.Exit(1)


@app.command("init-db")
def init_db_command() -> None:
    """Create all database tables."""
    init_db()
    console.print("[green]✓ Database ready[/green]")


@app.command()
def submit(
    attempt_id: Annotated[str, typer.Argument(help="Attempt to submit")],
) -> None:
    """Mark an attempt as submitted."""
    engine = GradingEngine(get_session_factory(), _enqueuer())
    try:
        submitted_at = engine.submit_attempt(attempt_id)
    except GradingError as e:
        _fail("Submit Error", e)
    console.print(f"[green]✓ Attempt {attempt_id} submitted at {submitted_at:%Y-%m-%d %H:%M:%S} UTC[/green]")


@app.command()
def grade(
    attempt_id: Annotated[str, typer.Argument(help="Attempt to grade")],
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show per-structure results"),
    ] = False,
) -> None:
    """
    Grade a submitted attempt.

    The grade is stored and a passback job is queued for the grade book.
    """
    engine = GradingEngine(get_session_factory(), _enqueuer())
    try:
        result = engine.grade_attempt(attempt_id)
    except GradingError as e:
        _fail("Grading Error", e)
    except RubricParseError as e:
        _fail("Rubric Parse Error", e)

    _display_results(result, verbose)


@app.command()
def override(
    attempt_id: Annotated[str, typer.Argument(help="Attempt under review")],
    response_id: Annotated[str, typer.Argument(help="Structure response to override")],
    points: Annotated[str, typer.Argument(help="Points to award")],
    feedback: Annotated[
        Optional[str],
        typer.Option("--feedback", help="Instructor feedback for the attempt"),
    ] = None,
) -> None:
    """Override one structure's points and recalculate the attempt total."""
    handler = OverrideHandler(get_session_factory(), _enqueuer())
    try:
        update = handler.apply_override(attempt_id, response_id, _points(points), feedback)
    except GradingError as e:
        _fail("Override Error", e)

    _display_update(update, "Override Applied")


@app.command()
def override_total(
    attempt_id: Annotated[str, typer.Argument(help="Attempt under review")],
    total: Annotated[str, typer.Argument(help="New total score")],
) -> None:
    """Replace an attempt's total score."""
    handler = OverrideHandler(get_session_factory())
    try:
        update = handler.override_attempt_total(attempt_id, _points(total))
    except GradingError as e:
        _fail("Override Error", e)

    _display_update(update, "Total Overridden")


@app.command()
def recalculate(
    attempt_id: Annotated[str, typer.Argument(help="Attempt to recalculate")],
) -> None:
    """Recalculate an attempt's total from recorded and overridden points."""
    handler = OverrideHandler(get_session_factory())
    try:
        update = handler.recalculate_attempt_score(attempt_id)
    except GradingError as e:
        _fail("Recalculation Error", e)

    _display_update(update, "Recalculated")


@app.command()
def sync_lab(
    lab_id: Annotated[str, typer.Argument(help="Lab whose graded attempts should be synced")],
) -> None:
    """Queue grade passback for every graded attempt of a lab."""
    try:
        bulk = _enqueuer().enqueue_lab(lab_id)
    except GradingError as e:
        _fail("Sync Error", e)

    console.print(f"Queued [bold]{bulk.enqueued}/{bulk.total}[/bold] grade syncs for lab {lab_id}")
    for failure in bulk.failures:
        console.print(f"  [yellow]⚠ {failure.error}[/yellow]")
    if bulk.failures:
        raise typer.Exit(1)


@app.command()
def report_sync(
    attempt_id: Annotated[str, typer.Argument(help="Attempt that was delivered")],
    status: Annotated[SyncStatus, typer.Argument(help="Delivery outcome")],
    reason: Annotated[
        Optional[str],
        typer.Option("--reason", help="Why delivery was skipped"),
    ] = None,
    error: Annotated[
        Optional[str],
        typer.Option("--error", help="Transport or unexpected failure"),
    ] = None,
    detail: Annotated[
        Optional[str],
        typer.Option("--detail", help="Additional JSON object to record"),
    ] = None,
) -> None:
    """Record the outcome of one grade-book delivery attempt."""
    response: dict = {}
    if detail:
        try:
            response = json.loads(detail)
        except json.JSONDecodeError as e:
            _fail("Invalid Detail", e)
        if not isinstance(response, dict):
            _fail("Invalid Detail", ValueError("--detail must be a JSON object"))
    if reason:
        response["reason"] = reason
    if error:
        response["error"] = error

    recorder = SyncLogRecorder(get_session_factory())
    try:
        entry = recorder.record(attempt_id, status, response)
    except GradingError as e:
        _fail("Sync Report Error", e)

    console.print(f"[green]✓ Recorded {entry.canvas_status.value} for attempt {attempt_id}[/green]")


@app.command()
def sync_logs(
    attempt_id: Annotated[str, typer.Argument(help="Attempt to inspect")],
) -> None:
    """Show an attempt's delivery history, newest first."""
    entries = SyncLogRecorder(get_session_factory()).list_for_attempt(attempt_id)
    if not entries:
        console.print(f"[dim]No deliveries recorded for attempt {attempt_id}[/dim]")
        return

    table = Table(title=f"Grade Sync History: {attempt_id}")
    table.add_column("Synced At (UTC)")
    table.add_column("Status")
    table.add_column("Detail")

    colors = {
        SyncStatus.SUCCESS: "green",
        SyncStatus.FAILED: "red",
        SyncStatus.SKIPPED: "yellow",
        SyncStatus.ERROR: "red",
    }
    for entry in entries:
        color = colors[entry.canvas_status]
        table.add_row(
            f"{entry.synced_at:%Y-%m-%d %H:%M:%S}",
            f"[{color}]{entry.canvas_status.value}[/{color}]",
            json.dumps(entry.canvas_response) if entry.canvas_response else "",
        )

    console.print(table)


@app.command()
def queue_status() -> None:
    """Show passback queue health."""
    settings = get_settings()
    queue = DatabaseDeliveryQueue(get_session_factory())
    counts = queue.counts()

    table = Table(title=f"Queue: {queue.name}")
    table.add_column("State", style="cyan")
    table.add_column("Jobs", justify="right")
    for state, count in counts.items():
        table.add_row(state, str(count))

    console.print(table)
    console.print(
        f"[dim]Retry policy: {settings.passback_max_attempts} attempts, "
        f"exponential backoff from {settings.passback_backoff_seconds:g}s[/dim]"
    )


@app.command()
def validate_rubric(
    rubric_file: Annotated[Path, typer.Argument(help="Path to the rubric JSON file")],
    structures: Annotated[
        Optional[list[str]],
        typer.Option("--structure", "-s", help="Structure id assigned to the lab (repeatable)"),
    ] = None,
    categories: Annotated[
        Optional[list[str]],
        typer.Option("--category", "-c", help="Category used by the lab (repeatable)"),
    ] = None,
) -> None:
    """
    Validate a rubric file without grading anything.

    Structure and category checks run only when those options are given.
    """
    if not rubric_file.exists():
        console.print(f"[red]Error:[/red] File not found: {rubric_file}")
        raise typer.Exit(1)

    try:
        rubric = RubricParser().parse_file(rubric_file)
    except RubricParseError as e:
        _fail("Rubric Parse Error", e)

    table = Table(title="Rubric Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Hint penalty", f"{rubric.hint_penalty_percent}% per hint")
    table.add_row("Fuzzy matching", "on" if rubric.fuzzy_match_enabled else "off")
    table.add_row("Partial credit", "on" if rubric.partial_credit_enabled else "off")
    table.add_row("Fuzzy minimum length", str(rubric.fuzzy_min_length))
    table.add_row("Structures with aliases", str(len(rubric.accepted_aliases)))
    weights = ", ".join(f"{c}={w}" for c, w in (rubric.category_weights or {}).items())
    table.add_row("Category weights", weights or "none (flat)")
    console.print(table)

    validator = RubricValidator()
    is_valid, issues = validator.validate(rubric, structures, categories)
    if is_valid:
        console.print("\n[green]✓ Rubric is valid[/green]")
    else:
        console.print("\n[yellow]⚠ Validation issues found:[/yellow]")
        for issue in issues:
            console.print(f"  • {issue}")
        raise typer.Exit(1)


def _display_update(update: ScoreUpdate, title: str) -> None:
    console.print(
        Panel(
            f"[bold]{update.total_score}[/bold] ({update.percentage}%)",
            title=f"{title}: {update.attempt_id}",
        )
    )


def _display_results(result: GradeResult, verbose: bool = False) -> None:
    """Display grading results in a formatted table."""

    # Score summary
    score_color = "green" if result.percentage >= 70 else "yellow" if result.percentage >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{result.total_score} / {result.max_points}[/bold] "
            f"({result.percentage}%)[/{score_color}]\n"
            f"{result.correct_count}/{len(result.structure_results)} structures identified",
            title="Final Score",
        )
    )

    if verbose:
        table = Table(title="Structure Breakdown")
        table.add_column("Structure", style="cyan")
        table.add_column("Answer")
        table.add_column("Match")
        table.add_column("Hints", justify="right")
        table.add_column("Points", justify="right")

        for sr in result.structure_results:
            match = "[red]none[/red]" if sr.match_type is MatchType.NONE else sr.match_type.value
            table.add_row(
                sr.structure_name,
                sr.student_answer or "[dim]-[/dim]",
                match,
                str(sr.hints_used),
                f"{sr.points_earned}/{sr.points_possible}",
            )

        console.print(table)


if __name__ == "__main__":
    app()
