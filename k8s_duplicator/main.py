"""
k8s-duplicator - CLI Entry Point

Usage:
    k8s-duplicator run
    k8s-duplicator reconcile [--dry-run]
    k8s-duplicator status [--json]
    k8s-duplicator health [--json]
    k8s-duplicator metrics [--format prometheus|json]
"""

from __future__ import annotations

# Load .env file FIRST, before any other imports that might read env vars
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import signal
import threading
from typing import List, Optional

import click

from .cli.ops import get_settings, get_store, health, metrics_cmd, status
from .engine.reconcile import Reconciler
from .errors import ListingError, ReconcileFailed
from .logging_config import setup_logging
from .observability.health import HealthChecker
from .observability.server import BackgroundServer, create_metrics_app, create_probe_app
from .scheduling.controller import Controller
from .scheduling.workqueue import WorkQueue

# Initialize logging
setup_logging()


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML settings file",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[Path]) -> None:
    """k8s-duplicator - Mirror annotated Secrets into every namespace."""
    ctx.ensure_object(dict)
    if config_file is not None:
        ctx.obj["config_file"] = config_file


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the controller until SIGINT/SIGTERM."""
    settings = get_settings(ctx)
    store = get_store(ctx)

    reconciler = Reconciler(store)
    queue: WorkQueue = WorkQueue(
        base_delay=settings.backoff_base_seconds,
        max_delay=settings.backoff_max_seconds,
    )
    controller = Controller(
        store,
        reconciler=reconciler,
        workers=settings.workers,
        resync_period=settings.resync_period_seconds,
        queue=queue,
    )

    shutdown = threading.Event()
    lost_lease = threading.Event()

    elector = None
    if settings.leader_elect:
        from .scheduling.leader import LeaderElector

        def _on_stopped() -> None:
            lost_lease.set()
            shutdown.set()

        elector = LeaderElector(settings, on_started=controller.start, on_stopped=_on_stopped)

    checker = HealthChecker(
        store,
        reconciler=reconciler,
        queue=queue,
        elector=elector,
        resync_period_seconds=settings.resync_period_seconds,
    )

    servers: List[BackgroundServer] = [
        BackgroundServer(create_probe_app(checker), settings.probe_bind_address, "probes")
    ]
    if settings.metrics_enabled:
        servers.append(
            BackgroundServer(create_metrics_app(), settings.metrics_bind_address, "metrics")
        )
    for server in servers:
        server.start()

    def _handle_signal(signum, frame) -> None:
        click.echo(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    if elector is not None:
        threading.Thread(
            target=elector.run, name="duplicator-leader-election", daemon=True
        ).start()
    else:
        controller.start()

    while not shutdown.wait(1):
        pass

    controller.stop()
    for server in servers:
        server.stop()

    if lost_lease.is_set():
        raise SystemExit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report writes without issuing them")
@click.pass_context
def reconcile(ctx: click.Context, dry_run: bool) -> None:
    """Run a single full reconcile cycle."""
    store = get_store(ctx)
    reconciler = Reconciler(store, dry_run=dry_run)

    click.echo("Running reconcile...")
    try:
        result = reconciler.reconcile()
    except ListingError as e:
        click.secho(f"✗ {e}", fg="red", err=True)
        raise SystemExit(1)
    except ReconcileFailed as e:
        result = e.result
        _print_result(result)
        click.echo()
        for failure in result.failures:
            click.secho(f"  ✗ {failure.operation} {failure.key}: {failure.message}", fg="red")
        raise SystemExit(1)

    _print_result(result)
    if dry_run:
        click.secho("\n(Dry run - no changes written)", fg="cyan")
    else:
        click.secho("\n✓ Cluster converged", fg="green")


def _print_result(result) -> None:
    click.echo("")
    click.echo(f"  Reconcile ID: {result.reconcile_id}")
    click.echo(f"  Sources:      {result.sources}")
    click.echo(f"  Duplicates:   {result.duplicates}")
    click.echo(f"  Namespaces:   {result.eligible_namespaces}")
    for label, keys in (("Created", result.created), ("Updated", result.updated), ("Deleted", result.deleted)):
        click.echo(f"  {label + ':':13} {len(keys)}")
        for key in keys:
            click.echo(f"    - {key}")


cli.add_command(status)
cli.add_command(health)
cli.add_command(metrics_cmd)


if __name__ == "__main__":
    cli()
