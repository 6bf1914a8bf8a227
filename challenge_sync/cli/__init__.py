"""
Command Line Interface for Challenge Sync.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.services import IssueService, ScheduledEventService
from ..errors import ProcessorError
from ..log_config import setup_logging

app = typer.Typer(help="Challenge Sync - issue tracker to challenge platform synchronization")
console = Console()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run in development mode"),
):
    """Start the event intake API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit("🔄 Starting Challenge Sync intake API", style="bold blue"))
    console.print(f"🚀 Listening on http://{host}:{port}")
    uvicorn.run(
        "challenge_sync.main:app",
        host=host,
        port=port,
        reload=dev,
        log_level="debug" if dev else "info",
    )


@app.command()
def worker(
    poll_interval: Optional[float] = typer.Option(None, help="Seconds between poll cycles"),
    claim_limit: Optional[int] = typer.Option(None, help="Events to claim per poll cycle"),
):
    """Run the event worker until interrupted."""
    from ..worker import run_worker

    rprint(Panel.fit("⚙️ Starting Challenge Sync worker", style="bold blue"))
    try:
        run_worker(poll_interval=poll_interval, claim_limit=claim_limit)
    except KeyboardInterrupt:
        console.print("\n👋 Worker stopped")


@app.command()
def init_db():
    """Create the database tables."""
    setup_logging(json_output=False)
    asyncio.run(init_database())
    console.print("✅ Database initialized")


@app.command()
def process(
    event_file: Path = typer.Argument(..., help="JSON file holding one issue event"),
):
    """Process one issue event immediately, bypassing the queue."""
    from ..core.issue_processor import build_processor
    from ..integrations.challenge_platform import ChallengePlatformClient

    setup_logging(json_output=False)
    try:
        payload = json.loads(event_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"❌ Could not read event: {e}")
        raise typer.Exit(code=1)

    async def run():
        settings = get_settings()
        platform = ChallengePlatformClient(settings)
        db = get_session_local()()
        try:
            await build_processor(db, platform, settings=settings).process(payload)
        finally:
            db.close()
            await platform.close()

    try:
        asyncio.run(run())
    except ProcessorError as e:
        console.print(f"❌ [{e.status_code}] {e.code}: {e.message}")
        raise typer.Exit(code=1)
    console.print("✅ Event processed")


@app.command()
def issues(
    status: Optional[str] = typer.Option(None, help="Only issues in this status"),
    project_id: Optional[str] = typer.Option(None, help="Only issues of this project"),
    limit: int = typer.Option(50, help="Maximum rows to show"),
):
    """List tracked issues."""
    db = get_session_local()()
    try:
        issue_service = IssueService(db)
        if project_id:
            rows = issue_service.find_by_project(project_id, status=status, limit=limit)
        else:
            rows = issue_service.list_issues(status=status, limit=limit)

        if not rows:
            console.print("No issues tracked")
            return

        table = Table(title="Tracked Issues", show_header=True, header_style="bold cyan")
        table.add_column("Issue", style="yellow")
        table.add_column("Title")
        table.add_column("Prize", style="green")
        table.add_column("Assignee", style="blue")
        table.add_column("Status", style="magenta")
        table.add_column("Challenge")

        for row in rows:
            prizes = row.prizes or []
            table.add_row(
                f"{row.provider}#{row.number}",
                row.title[:50] + "..." if len(row.title) > 50 else row.title,
                f"${prizes[0]}" if prizes else "-",
                row.assignee or "-",
                row.status,
                row.challenge_uuid or "-",
            )

        console.print(table)
    finally:
        db.close()


@app.command()
def pending(key: Optional[str] = typer.Option(None, help="Only events for this issue key")):
    """List events waiting for (re)delivery."""
    db = get_session_local()()
    try:
        rows = ScheduledEventService(db).get_pending(key)
        if not rows:
            console.print("No pending events")
            return

        table = Table(title="Pending Events", show_header=True, header_style="bold cyan")
        table.add_column("Key", style="yellow")
        table.add_column("Event", style="green")
        table.add_column("Retry", style="blue")
        table.add_column("Due")

        for row in rows:
            table.add_row(
                row.key,
                row.payload.get("eventType", "?"),
                str(row.payload.get("retryCount", 0)),
                row.due_at.isoformat(),
            )

        console.print(table)
    finally:
        db.close()


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Challenge Sync v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
