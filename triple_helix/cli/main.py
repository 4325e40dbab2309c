"""
Typer CLI for the Triple-Helix scheduler.

Commands:
    helix status                 - Active tube, ready stitch, points, sync status
    helix tube [N]               - Positions of tube N (default: active tube)
    helix complete CORRECT TOTAL - Record a drill for the ready stitch
    helix session                - Start a new session (reset session points)
    helix sync                   - Push state to the remote now
    helix login USER_ID          - Switch to an authenticated user
    helix seed --yes             - Replace the state with a fresh seed
    helix backup                 - Show the pending backup record, if any

Usage:
    helix --help
    helix complete 20 20
    HELIX_SYNC_ENABLED=true helix sync
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import Settings, get_settings
from triple_helix.content.manifest import ContentManifest
from triple_helix.engine import TripleHelixEngine
from triple_helix.errors import TripleHelixError
from triple_helix.persistence.identity import new_anonymous_id
from triple_helix.persistence.local_store import LocalStateStore
from triple_helix.persistence.remote import RemoteStateClient
from triple_helix.persistence.sync_manager import RetryPolicy, SyncManager

T = TypeVar("T")

app = typer.Typer(
    help="Triple-Helix: position-based spaced repetition over three tubes",
    no_args_is_help=True,
)
console = Console()

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"


# ========================================
# Wiring
# ========================================


def build_sync_manager(settings: Settings) -> SyncManager:
    """Local store, optional remote client and retry policy from settings."""
    local = LocalStateStore(settings.state_db_path)
    remote = None
    if settings.remote_configured:
        remote = RemoteStateClient(
            base_url=settings.sync_base_url,
            api_key=settings.sync_api_key,
            endpoint=settings.sync_state_endpoint,
            timeout_seconds=settings.sync_timeout_seconds,
        )
    policy = RetryPolicy(
        max_attempts=settings.sync_max_attempts,
        backoff_base_seconds=settings.sync_backoff_base_seconds,
        backoff_max_seconds=settings.sync_backoff_max_seconds,
        timeout_seconds=settings.sync_timeout_seconds,
    )
    return SyncManager(local, remote, policy)


def load_manifest(settings: Settings) -> ContentManifest:
    if settings.content_manifest_path:
        return ContentManifest.load(settings.content_manifest_path.expanduser())
    return ContentManifest.generated(settings.stitches_per_tube)


async def open_engine(settings: Settings) -> TripleHelixEngine:
    """Open the engine for the identity last used on this device."""
    sync = build_sync_manager(settings)
    user_id = sync.local.load_active_identity() or new_anonymous_id()
    return await TripleHelixEngine.open(
        user_id,
        sync,
        manifest=load_manifest(settings),
        settle_seconds=settings.rotation_settle_seconds,
        seed_skip_number=settings.seed_skip_number,
    )


def _run(action: Callable[[TripleHelixEngine], Awaitable[T]]) -> T:
    settings = get_settings()

    async def runner() -> T:
        engine = await open_engine(settings)
        try:
            return await action(engine)
        finally:
            await engine.aclose()

    try:
        return asyncio.run(runner())
    except TripleHelixError as e:
        console.print(f"[red]✗ {type(e).__name__}:[/red] {e}")
        raise typer.Exit(code=1)


# ========================================
# Commands
# ========================================


@app.command("status")
def status() -> None:
    """Show the active tube, its ready stitch and per-tube integrity."""

    async def action(engine: TripleHelixEngine) -> None:
        state = engine.get_state()
        current = engine.get_current_stitch()

        rprint(f"[bold]User:[/bold] {state.user_id}")
        rprint(f"[bold]Active tube:[/bold] {state.active_tube_number}  [dim](cycle {state.cycle_count})[/dim]")
        if current:
            rprint(
                f"[bold]Ready stitch:[/bold] [cyan]{current.stitch_id}[/cyan] "
                f"(skip {current.skip_number}, {current.distractor_level.value})"
            )
        else:
            rprint("[yellow]⚠[/yellow] Active tube is empty")
        rprint(f"[bold]Points:[/bold] session {state.points.session}, lifetime {state.points.lifetime}")
        rprint(f"[bold]Sync:[/bold] {engine.sync.status.value}")

        table = Table(title="Tubes", show_header=True)
        table.add_column("Tube", style="cyan", justify="right")
        table.add_column("Thread", style="dim")
        table.add_column("Ready", style="green")
        table.add_column("Stitches", justify="right")
        table.add_column("Last Pos", justify="right")
        table.add_column("OK", justify="center")

        for summary in engine.describe():
            table.add_row(
                str(summary.tube_number),
                summary.thread_id or "-",
                summary.active_stitch_id or "-",
                str(summary.stitch_count),
                "-" if summary.highest_position is None else str(summary.highest_position),
                "[green]✓[/green]" if summary.is_consistent else f"[red]✗ {summary.problem}[/red]",
            )
        console.print(table)

    _run(action)


@app.command("tube")
def tube(
    number: int = typer.Argument(None, help="Tube number (1-3); defaults to the active tube"),
    limit: int = typer.Option(25, "--limit", "-n", help="Maximum positions to show"),
) -> None:
    """List the positioned stitches of a tube."""

    async def action(engine: TripleHelixEngine) -> None:
        tube_number = number or engine.get_active_tube_number()
        stitches = engine.get_stitches_for_tube(tube_number)

        table = Table(title=f"Tube {tube_number} ({len(stitches)} stitches)", show_header=True)
        table.add_column("Pos", justify="right", style="cyan")
        table.add_column("Stitch", style="white")
        table.add_column("Skip", justify="right", style="green")
        table.add_column("Level", justify="center")
        table.add_column("Perfect", justify="right")
        table.add_column("Last Completed", style="dim")

        for view in stitches[:limit]:
            table.add_row(
                str(view.position),
                view.stitch_id,
                str(view.skip_number),
                view.distractor_level.value,
                str(view.perfect_completions),
                view.last_completed_at.strftime("%Y-%m-%d %H:%M") if view.last_completed_at else "-",
            )
        console.print(table)

    try:
        _run(action)
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


@app.command("complete")
def complete(
    correct: int = typer.Argument(..., help="Correct answers"),
    total: int = typer.Argument(..., help="Questions in the drill"),
    stitch_id: str = typer.Option(None, "--stitch", "-s", help="Stitch id (default: ready stitch)"),
    thread_id: str = typer.Option(None, "--thread", "-t", help="Thread id (default: active tube's thread)"),
) -> None:
    """Record a finished drill for the ready stitch of the active tube."""

    async def action(engine: TripleHelixEngine) -> None:
        current = engine.get_current_stitch()
        target_stitch = stitch_id or (current.stitch_id if current else "")
        target_thread = thread_id or (current.thread_id if current else None) or (
            f"thread-T{engine.get_active_tube_number()}-001"
        )

        result = await engine.complete_stitch(target_thread, target_stitch, correct, total)

        verdict = "[green]perfect[/green]" if result.was_perfect else "[yellow]partial[/yellow]"
        rprint(
            f"[bold]✓[/bold] Tube {result.tube_number}: {result.stitch_id} {verdict} "
            f"→ skip {result.new_skip_number}, position {result.new_position}"
        )
        rprint(f"  +{result.points_awarded} points")
        rprint(
            f"  Now on tube {result.active_tube_number}: "
            f"[cyan]{result.active_stitch_id or '(empty)'}[/cyan]"
        )

    _run(action)


@app.command("session")
def new_session() -> None:
    """Start a new session (reset session points)."""

    async def action(engine: TripleHelixEngine) -> None:
        engine.begin_session()
        rprint("[green]✓[/green] Session points reset")

    _run(action)


@app.command("sync")
def sync() -> None:
    """Push the current state to the remote now."""

    async def action(engine: TripleHelixEngine) -> bool:
        if engine.sync.remote is None:
            rprint("[yellow]⚠[/yellow] Remote sync is not enabled (set HELIX_SYNC_ENABLED=true)")
            return False
        outcome = await engine.sync_now()
        if outcome.success:
            rprint(f"[green]✓[/green] Synced after {outcome.attempts} attempt(s)")
            return True
        rprint(f"[red]✗[/red] Sync failed after {outcome.attempts} attempt(s): {outcome.error}")
        if outcome.backup_timestamp:
            rprint(f"  Backup written at {outcome.backup_timestamp.isoformat()}")
        return False

    if not _run(action):
        raise typer.Exit(code=1)


@app.command("login")
def login(user_id: str = typer.Argument(..., help="Authenticated user id")) -> None:
    """Switch to an authenticated user, migrating anonymous progress once."""

    async def action(engine: TripleHelixEngine) -> None:
        previous = engine.user_id
        state = await engine.authenticate(user_id)
        rprint(f"[green]✓[/green] Logged in as [bold]{state.user_id}[/bold] (was {previous})")
        rprint(f"  Active tube {state.active_tube_number}, lifetime points {state.points.lifetime}")

    _run(action)


@app.command("seed")
def seed(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Replace the current state with a freshly seeded one."""
    if not yes:
        typer.confirm("This discards all scheduling progress. Continue?", abort=True)

    async def action(engine: TripleHelixEngine) -> None:
        state = engine.reseed()
        counts = ", ".join(f"tube {n}: {len(t.positions)}" for n, t in sorted(state.tubes.items()))
        rprint(f"[green]✓[/green] Reseeded {state.user_id} ({counts})")

    _run(action)


@app.command("backup")
def backup() -> None:
    """Show the backup record left by a failed sync."""

    async def action(engine: TripleHelixEngine) -> None:
        record = engine.sync.local.load_backup(engine.user_id)
        if record is None:
            rprint("[green]✓[/green] No pending backup")
            return
        stamp, state = record
        rprint(f"[yellow]Backup[/yellow] written {stamp.isoformat()}")
        rprint(f"  State last updated {state.last_updated.isoformat()}, active tube {state.active_tube_number}")

    _run(action)


def main() -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT)
    app()


if __name__ == "__main__":
    main()
