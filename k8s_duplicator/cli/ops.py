"""
CLI ops commands - health, metrics, status.

Usage:
    k8s-duplicator health [--json]
    k8s-duplicator metrics [--format prometheus|json]
    k8s-duplicator status [--json]

Commands find their settings and store on the Click context. Tests
inject an ``InMemoryStore`` through ``obj={"store": ...}``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import click

from ..config.loader import ControllerSettings, load_settings
from ..errors import ConfigurationError, StoreError
from ..models.objects import PROVENANCE_ANNOTATION
from ..store.base import ObjectStore


def get_settings(ctx: click.Context) -> ControllerSettings:
    """Load and validate settings once per invocation."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        try:
            settings = load_settings(obj.get("config_file"))
            settings.validate()
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        obj["settings"] = settings
    return obj["settings"]


def get_store(ctx: click.Context) -> ObjectStore:
    """Build the Kubernetes store unless one was injected."""
    obj = ctx.ensure_object(dict)
    if "store" not in obj:
        from ..store.kube import KubernetesStore

        settings = get_settings(ctx)
        try:
            obj["store"] = KubernetesStore.from_settings(settings)
        except Exception as e:
            raise click.ClickException(f"Could not configure Kubernetes client: {e}") from e
    return obj["store"]


@click.command("health")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Check cluster connectivity."""
    from ..observability.health import HealthChecker, HealthStatus

    settings = get_settings(ctx)
    checker = HealthChecker(get_store(ctx), resync_period_seconds=settings.resync_period_seconds)
    result = checker.check()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.status == HealthStatus.UNHEALTHY:
            raise SystemExit(1)
        return

    status_colors = {
        HealthStatus.HEALTHY: ("✅", "green"),
        HealthStatus.DEGRADED: ("⚠️", "yellow"),
        HealthStatus.UNHEALTHY: ("❌", "red"),
    }
    icon, color = status_colors.get(result.status, ("❓", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {result.status.value.upper()}", fg=color, bold=True)
    click.echo()

    click.echo("Components:")
    for component in result.components:
        c_icon, c_color = status_colors.get(component.status, ("❓", "white"))
        click.echo(f"  {c_icon} ", nl=False)
        click.secho(f"{component.name}", fg=c_color, bold=True, nl=False)
        click.echo(f": {component.message}")
        if component.latency_ms:
            click.echo(f"      Latency: {component.latency_ms:.1f}ms")

    click.echo()

    if result.status == HealthStatus.UNHEALTHY:
        raise SystemExit(1)


@click.command("metrics")
@click.option("--format", "output_format", type=click.Choice(["prometheus", "json"]), default="prometheus")
def metrics_cmd(output_format: str) -> None:
    """
    Export this process's metrics.

    A fresh CLI process has run no cycles, so counters read zero. Scrape
    the running controller's /metrics endpoint (DUPLICATOR_METRICS_ADDRESS)
    for live values.
    """
    from ..observability.metrics import metrics

    if output_format == "json":
        click.echo(json.dumps(metrics.export_json(), indent=2))
    else:
        click.echo(metrics.export_prometheus(), nl=False)


@click.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """List sources, managed duplicates and orphans."""
    from ..engine.classify import partition

    store = get_store(ctx)
    try:
        inventory = partition(store.list_secrets())
    except StoreError as e:
        raise click.ClickException(f"Listing secrets failed: {e}") from e

    source_keys = {s.key for s in inventory.sources}
    copies: Dict[str, List[str]] = {key: [] for key in source_keys}
    orphans: List[Dict[str, Any]] = []
    for duplicate in inventory.duplicates:
        source_key = duplicate.annotation(PROVENANCE_ANNOTATION)
        if source_key in copies:
            copies[source_key].append(duplicate.namespace)
        else:
            orphans.append({"secret": duplicate.key, "source": source_key})

    if as_json:
        click.echo(json.dumps({
            "sources": [
                {"secret": key, "duplicates": sorted(namespaces)}
                for key, namespaces in sorted(copies.items())
            ],
            "orphans": orphans,
        }, indent=2))
        return

    click.echo()
    click.echo(f"📋 Sources: {len(source_keys)}")
    click.echo()
    for key, namespaces in sorted(copies.items()):
        click.secho(f"  {key}", bold=True, nl=False)
        click.echo(f"  → {len(namespaces)} duplicate(s)")
    if orphans:
        click.echo()
        click.secho(f"⚠️  Orphaned duplicates: {len(orphans)}", fg="yellow")
        for orphan in orphans:
            click.echo(f"  {orphan['secret']} (source {orphan['source']} is gone)")
    click.echo()
