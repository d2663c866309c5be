"""
Root Typer application for the lvstore CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="lvstore",
    help="lvstore: job orchestration and partition recovery for a columnar store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from lvstore import __version__

        typer.echo(f"lvstore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """lvstore CLI. Run storage nodes, recover and merge fractures, inspect jobs."""


# ── Sub-command registration ─────────────────────────────────────────────

from lvstore.cli.fracture import merge, recover  # noqa: E402
from lvstore.cli.job import app as job_app  # noqa: E402
from lvstore.cli.node import app as node_app  # noqa: E402

app.add_typer(node_app, name="node", help="Storage node worker.")
app.add_typer(job_app, name="job", help="Job inspection and cancellation.")
app.command("recover")(recover)
app.command("merge")(merge)
