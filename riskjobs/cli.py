"""Risk Jobs CLI - operate the job engine against the configured database"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import UUID

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from riskjobs.config.logging import setup_logging
from riskjobs.config.settings import settings
from riskjobs.v1.core.exceptions import RiskJobsException
from riskjobs.v1.jobs.engine import JobEngine, build_engine
from riskjobs.v1.jobs.models import Job, JobStatus
from riskjobs.worker import handle_event

console = Console()

app = typer.Typer(
    name="riskjobs",
    help="Risk assessment job engine CLI",
    rich_markup_mode="rich",
)

T = TypeVar("T")

STATUS_STYLES = {
    JobStatus.PENDING.value: "yellow",
    JobStatus.PROCESSING.value: "blue",
    JobStatus.COMPLETED.value: "green",
    JobStatus.FAILED.value: "red",
}


def _run(action: Callable[[JobEngine], Awaitable[T]]) -> T:
    async def runner() -> T:
        engine = build_engine(settings)
        try:
            return await action(engine)
        finally:
            await engine.close()

    setup_logging()
    return asyncio.run(runner())


def create_job_table(job: Job) -> Table:
    """Create a formatted table for a single job"""
    table = Table(title=f"Job {job.id}", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    style = STATUS_STYLES.get(job.status, "white")
    table.add_row("Type", job.type)
    table.add_row("Status", f"[{style}]{job.status}[/{style}]")
    table.add_row("Attempts", f"{job.attempts}/{job.max_attempts}")
    table.add_row("Owner", job.created_by_id)
    table.add_row("Created", job.created_at.isoformat())
    table.add_row("Started", job.started_at.isoformat() if job.started_at else "-")
    table.add_row("Completed", job.completed_at.isoformat() if job.completed_at else "-")
    if job.error:
        table.add_row("Error", f"[red]{job.error}[/red]")
    if job.result is not None:
        table.add_row("Result", str(job.result))

    return table


@app.command()
def process(job_id: str = typer.Argument(..., help="Job to process")):
    """Run one processing attempt for a job, as the remote worker would"""
    result = _run(lambda engine: handle_event(engine.processor, {"jobId": job_id}))

    if not result.success:
        console.print(Panel(f"[red]{result.error}[/red]", title="Processing Failed"))
        raise typer.Exit(1)

    console.print(f"[green]✓ Job {result.job_id} processed[/green]")


@app.command()
def show(
    job_id: UUID = typer.Argument(..., help="Job to show"),
    user: str = typer.Option(..., "--user", "-u", help="Requesting user id"),
):
    """Show a job owned by the given user"""
    try:
        job = _run(lambda engine: engine.dispatcher.find_one(job_id, user))
    except RiskJobsException as e:
        console.print(Panel(f"[red]{e.message}[/red]", title="Lookup Failed"))
        raise typer.Exit(1)

    console.print(create_job_table(job))


@app.command()
def redispatch(
    limit: int = typer.Option(100, "--limit", "-l", help="Maximum jobs to route"),
):
    """Route idle pending jobs that still have attempts left"""
    job_ids = _run(lambda engine: engine.dispatcher.redispatch_pending(limit=limit))

    if not job_ids:
        console.print("[blue]ℹ No pending jobs to redispatch[/blue]")
        return

    console.print(f"[green]✓ Redispatched {len(job_ids)} job(s)[/green]")
    for job_id in job_ids:
        console.print(f"  • [cyan]{job_id}[/cyan]")


if __name__ == "__main__":
    app()
