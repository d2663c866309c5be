"""
CLI: ``lvstore recover`` and ``lvstore merge``: run fracture jobs.

Both commands drive the job from this process and block until it
finishes; the storage nodes must be running ``lvstore node start``.
"""

from __future__ import annotations

import typer

from lvstore.cli.utils import console, err_console, fail, open_repository, output_entity
from lvstore.core.models import Job, JobStatus


def _report(job: Job, json_out: bool) -> None:
    output_entity(job, as_json=json_out, title=f"Job: {job.job_id}")
    if job.status != JobStatus.DONE:
        err_console.print(f"[bold red]Job {job.job_id} finished {job.status.value}[/bold red]")
        raise typer.Exit(code=1)


def recover(
    fracture_id: int = typer.Argument(..., help="Fracture whose replica is damaged"),
    damaged_scheme_id: int = typer.Argument(..., help="Scheme of the damaged replica"),
    source: int | None = typer.Option(
        None, "--source", "-s", help="Scheme to recover from (default: best healthy replica)",
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Recover a damaged replica of a fracture.

    A buddy replica of the same group is used directly; a replica of another
    group is repartitioned first.

    Example::

        lvstore recover 7 2 --source 1
    """
    from lvstore.jobs import (
        RecoverFractureJobParameters,
        create_recovery_controller,
        find_recovery_source,
    )

    try:
        repo = open_repository(database)
        source_scheme_id = (
            source if source is not None
            else find_recovery_source(repo, fracture_id, damaged_scheme_id)
        )
        params = RecoverFractureJobParameters(
            fracture_id=fracture_id,
            damaged_scheme_id=damaged_scheme_id,
            source_scheme_id=source_scheme_id,
        )
        controller = create_recovery_controller(repo, params)
        console.print(
            f"[bold]Recovering[/bold] fracture {fracture_id} scheme {damaged_scheme_id} "
            f"from scheme {source_scheme_id} ({controller.job_type.value})"
        )
        job = controller.start_sync(params)
    except Exception as exc:
        raise fail(exc) from exc
    _report(job, json_out)


def merge(
    fracture_ids: list[int] = typer.Argument(..., help="Fractures to merge (two or more)"),
    keep: bool = typer.Option(False, "--keep", help="Keep the merged fractures and their files"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Merge fractures of one table into a new fracture."""
    from lvstore.jobs import MergeFractureJobController, MergeFractureJobParameters

    try:
        repo = open_repository(database)
        params = MergeFractureJobParameters(fracture_ids=fracture_ids, drop_merged=not keep)
        job = MergeFractureJobController(repo).start_sync(params)
    except Exception as exc:
        raise fail(exc) from exc
    _report(job, json_out)
