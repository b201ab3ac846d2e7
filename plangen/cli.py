"""Developer CLI for plangen.

Offline tools: recover JSON from a saved model response, create the job table,
and inspect a job record.
"""

import asyncio
import json
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from plangen.config.settings import settings
from plangen.core.logger import setup_logger
from plangen.errors import MalformedResponseError
from plangen.llm.response_parser import recover_json

console = Console()

app = typer.Typer(
    name="plangen",
    help="plangen developer CLI - response repair and job inspection",
    add_completion=False,
)


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    setup_logger(level="DEBUG" if debug else settings.log_level, log_file=log_file)


@app.command()
def repair(
    file: Path = typer.Argument(..., help="Raw model output ('-' reads stdin)"),
    compact: bool = typer.Option(False, "--compact", help="Print the recovered JSON without formatting"),
) -> None:
    """Recover the JSON object from a saved model response."""
    raw = sys.stdin.read() if str(file) == "-" else file.read_text(encoding="utf-8")

    try:
        recovered = recover_json(raw)
    except MalformedResponseError as e:
        table = Table(show_header=False, box=None)
        table.add_row("offset", str(e.offset))
        table.add_row("path", str(e.path))
        table.add_row("depth", str(e.depth))
        table.add_row("context", repr(e.context))
        console.print(Panel(table, title=Text("Could not recover JSON", style="bold red"), border_style="red"))
        raise typer.Exit(1) from e

    if compact:
        typer.echo(json.dumps(recovered.data, separators=(",", ":")))
    else:
        console.print(JSON(json.dumps(recovered.data)))

    style = "green" if recovered.strategy in {"balanced", "direct"} else "yellow"
    console.print(
        f"[{style}]strategy={recovered.strategy} discarded_chars={recovered.discarded_chars}[/{style}]",
        highlight=False,
    )


@app.command()
def init_db() -> None:
    """Create the generation_jobs table in DATABASE_URL."""
    from plangen.db.session import init_db as create_tables

    create_tables()
    console.print(Panel(Text("Job tables ready", style="bold green"), border_style="green"))


@app.command()
def job_status(job_id: int = typer.Argument(..., help="Job ID")) -> None:
    """Show a job record from the SQL job store."""
    from plangen.jobs.sql_store import SqlJobStore

    job = asyncio.run(SqlJobStore().get(job_id))
    if job is None:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Job {job.id}", show_header=False)
    rows = [
        ("kind", str(job.kind)),
        ("subject", job.subject.key),
        ("status", str(job.status)),
        ("current_step", job.current_step or "-"),
        ("error_message", job.error_message or "-"),
        ("result_id", str(job.result_id) if job.result_id is not None else "-"),
        ("cancel_reason", job.cancel_reason or "-"),
        ("created_at", job.created_at.isoformat()),
        ("started_at", job.started_at.isoformat() if job.started_at else "-"),
        ("completed_at", job.completed_at.isoformat() if job.completed_at else "-"),
        ("updated_at", job.updated_at.isoformat()),
    ]
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)


if __name__ == "__main__":
    app()
