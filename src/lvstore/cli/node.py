"""
CLI: ``lvstore node``: run a data-node task worker.
"""

from __future__ import annotations

from pathlib import Path

import typer

from lvstore.cli.utils import console, fail, open_repository

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    node_id: int = typer.Option(..., "--node-id", "-n", help="Rack node id this process serves"),
    database: str | None = typer.Option(None, "--database", "-d", help="Repository URL"),
    root_dir: Path | None = typer.Option(None, "--root-dir", help="Cluster data directory"),
    tmp_dir: Path | None = typer.Option(None, "--tmp-dir", help="Cluster scratch directory"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent task threads"),
    poll_interval_ms: int | None = typer.Option(None, "--poll-interval-ms", help="Milliseconds between polls"),
) -> None:
    """Start the task worker of one storage node.

    Every node of the cluster lives under ``ROOT_DIR/nodeN`` and
    ``TMP_DIR/nodeN`` on this host, so tasks can read other nodes' files.

    Example::

        lvstore node start --node-id 1 --database sqlite:///cluster.db
    """
    from lvstore.core.settings import get_settings
    from lvstore.storage.transport import LocalNodeTransport
    from lvstore.tasks.context import DataEngineContext
    from lvstore.tasks.worker import DataTaskWorker

    settings = get_settings()
    root = root_dir or settings.root_dir
    tmp = tmp_dir or settings.tmp_dir
    try:
        repo = open_repository(database)
        node_ids = [n.node_id for n in repo.get_all_rack_nodes()]
        transport = LocalNodeTransport.for_cluster(node_ids, root, tmp)
        dirs = transport.directories(node_id)
        context = DataEngineContext(
            node_id=node_id,
            root_dir=dirs.root_dir,
            tmp_dir=dirs.tmp_dir,
            repository=repo,
            transport=transport,
            settings=settings,
        )
        worker = DataTaskWorker(context, poll_interval_ms=poll_interval_ms, max_workers=workers)
    except Exception as exc:
        raise fail(exc) from exc

    console.print(
        f"[bold green]Starting lvstore node {node_id}[/bold green] "
        f"(threads={workers or settings.node_task_workers}, root={dirs.root_dir})"
    )
    try:
        worker.start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Node worker stopped by user[/yellow]")
    finally:
        worker.shutdown(wait=True)
