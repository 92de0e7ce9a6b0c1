"""
Command Line Interface for Decision Miner.
"""

import asyncio
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.audit_service import AuditService
from ..db.base import get_session_local, init_database
from ..db.models import RepositoryModel
from ..errors import PipelineError
from ..extract.governor import ExtractionGovernor
from ..logging_config import configure_logging
from ..sync.orchestrator import SyncOrchestrator

app = typer.Typer(help="Decision Miner - mine architectural decisions from merged PRs")
console = Console()

STATUS_EMOJI = {
    "idle": "⚪",
    "syncing": "🟡",
    "success": "🟢",
    "partial": "🟠",
    "error": "🔴",
}


def _orchestrator() -> SyncOrchestrator:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    return SyncOrchestrator(get_session_local(), settings=settings)


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode with reload"),
):
    """Start the HTTP API."""
    settings = get_settings()
    rprint(Panel.fit("⛏️ Starting Decision Miner", style="bold blue"))
    uvicorn.run(
        "decision_miner.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command()
def init_db():
    """Create all database tables."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    init_database()
    console.print("✅ Database initialized")


@app.command()
def track(
    full_name: str = typer.Argument(..., help="Repository as owner/name"),
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    github_id: Optional[int] = typer.Option(None, help="Numeric GitHub repository id"),
    branch: str = typer.Option("main", help="Default branch"),
):
    """Register a repository for syncing."""
    if "/" not in full_name:
        console.print("❌ Repository must be given as owner/name")
        raise typer.Exit(code=1)

    db = get_session_local()()
    try:
        existing = (
            db.query(RepositoryModel)
            .filter(RepositoryModel.user_id == user, RepositoryModel.full_name == full_name)
            .first()
        )
        if existing:
            console.print(f"ℹ️ Already tracked: {full_name} ({existing.id})")
            return
        repo = RepositoryModel(
            user_id=user, full_name=full_name, github_id=github_id, default_branch=branch
        )
        db.add(repo)
        db.flush()
        AuditService(db).log_create(
            "Repository", repo.id, {"full_name": full_name},
            actor_kind="human", actor_id=user,
        )
        db.commit()
        console.print(f"✅ Tracking {full_name} as {repo.id}")
    finally:
        db.close()


@app.command()
def sync(
    repo_id: str = typer.Argument(..., help="Repository id or numeric GitHub id"),
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
):
    """Run one sync in the foreground."""
    orchestrator = _orchestrator()
    try:
        result = asyncio.run(orchestrator.trigger_sync(repo_id, user))
    except PipelineError as e:
        console.print(f"❌ {e.code}: {e.message}")
        raise typer.Exit(code=1)

    if result.already_running:
        console.print(f"🟡 A sync is already running ({result.sync_run_id})")
        raise typer.Exit(code=2)

    emoji = STATUS_EMOJI.get(result.status, "❓")
    console.print(f"{emoji} Sync {result.sync_run_id} finished: {result.status}")
    console.print(
        f"Fetched: {result.fetched_count}, new candidates: {result.candidates_created}"
    )
    if result.error_message:
        console.print(f"Error: {result.error_message}")
    if result.status == "error":
        raise typer.Exit(code=1)


@app.command()
def status(
    repo_id: str = typer.Argument(..., help="Repository id or numeric GitHub id"),
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    logs: bool = typer.Option(False, help="Show the run log"),
):
    """Show the latest sync run of a repository."""
    orchestrator = _orchestrator()
    try:
        data = orchestrator.get_sync_status(repo_id, user)
    except PipelineError as e:
        console.print(f"❌ {e.code}: {e.message}")
        raise typer.Exit(code=1)

    run = data["sync_run"]
    if not data["has_sync"]:
        console.print("No sync has run for this repository")
        return

    table = Table(title=f"Sync {run['id']}", show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"{STATUS_EMOJI.get(run['status'], '❓')} {run['status']}")
    table.add_row("Phase", run["phase"])
    table.add_row("Started", run["started_at"] or "")
    table.add_row("Completed", run["completed_at"] or "")
    table.add_row("Fetched", str(run["fetched_count"]))
    table.add_row("Sieved in/out", f"{run['sieved_in_count']}/{run['sieved_out_count']}")
    table.add_row("Candidates created", str(run["candidates_created"]))
    if run["reason_code"]:
        table.add_row("Reason", run["reason_code"])
    if run["error_message"]:
        table.add_row("Error", run["error_message"])
    console.print(table)

    if logs:
        for entry in run["logs"]:
            console.print(f"[dim]{entry['ts']}[/dim] {entry['level']:<7} {entry['message']}")


@app.command()
def reconcile(
    max_minutes: Optional[int] = typer.Option(
        None, help="Age after which a running sync is considered stale"
    ),
):
    """Mark stale 'syncing' runs as errors."""
    from datetime import timedelta

    orchestrator = _orchestrator()
    max_duration = timedelta(minutes=max_minutes) if max_minutes is not None else None
    count = orchestrator.reconcile_stale_runs(max_duration)
    console.print(f"✅ Reconciled {count} stale sync run(s)")


@app.command()
def costs(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
):
    """Show extraction spend per repository."""
    db = get_session_local()()
    try:
        stats = ExtractionGovernor.from_settings(db, get_settings()).get_user_cost_stats(user)
    finally:
        db.close()

    table = Table(title="Extraction Costs", show_header=True, header_style="bold cyan")
    table.add_column("Repository", style="yellow")
    table.add_column("Calls", style="blue")
    table.add_column("Cost (USD)", style="green")
    for row in stats.repo_breakdown:
        table.add_row(row["repo_name"], str(row["extractions"]), f"{row['cost']:.4f}")
    table.add_row("Total", str(stats.total_extractions), f"{stats.total_cost:.4f}", style="bold")
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Decision Miner v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
