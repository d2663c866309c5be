"""
CLI: ``lvstore job``: inspect and stop jobs.
"""

from __future__ import annotations

import typer

from lvstore.cli.utils import console, fail, open_repository, output_entities, output_entity
from lvstore.core.models import JobStatus

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List jobs, optionally filtered by status."""
    try:
        repo = open_repository(database)
        jobs = repo.get_all_jobs(JobStatus(status.upper()) if status else None)
    except ValueError as exc:
        raise fail(exc) from exc
    output_entities(jobs, as_json=json_out, title="Jobs")


@app.command("show")
def show_job(
    job_id: int = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a job record."""
    try:
        job = open_repository(database).get_job(job_id)
    except Exception as exc:
        raise fail(exc) from exc
    output_entity(job, as_json=json_out, title=f"Job: {job_id}")


@app.command("tasks")
def job_tasks(
    job_id: int = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the tasks of a job."""
    try:
        repo = open_repository(database)
        repo.get_job(job_id)
        tasks = repo.get_all_tasks_by_job(job_id)
    except Exception as exc:
        raise fail(exc) from exc
    output_entities(tasks, as_json=json_out, title=f"Tasks of job {job_id}")


@app.command("stop")
def stop_job(
    job_id: int = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Ask a running job to cancel.

    The controller driving the job notices the request at its next poll
    and cancels the job's unfinished tasks.
    """
    try:
        job = open_repository(database).update_job(job_id, status=JobStatus.CANCEL_REQUESTED)
    except Exception as exc:
        raise fail(exc) from exc
    console.print(f"[yellow]Cancel requested[/yellow] for job {job.job_id} ({job.job_type.value})")
