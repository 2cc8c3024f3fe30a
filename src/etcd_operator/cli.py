"""Command-line interface for the etcd operator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from etcd_operator.config import Settings
from etcd_operator.core import ReconciliationController
from etcd_operator.exceptions import ClusterSpecError, PlatformError
from etcd_operator.resources import builders
from etcd_operator.resources.platform import KubernetesPlatformClient
from etcd_operator.runtime import OperatorManager
from etcd_operator.schemas import EtcdCluster, validate_cluster_spec
from etcd_operator.utils.logging import setup_logging
from etcd_operator.utils.metrics import OperatorMetrics

console = Console()


def _load_cluster(path: Path) -> EtcdCluster:
    try:
        return EtcdCluster.from_yaml(path)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]✗[/red] Could not read {path}: {escape(str(e))}")
        raise SystemExit(1)


@click.group()
def cli() -> None:
    """Manage etcd clusters on Kubernetes."""
    pass


@cli.command()
@click.option("--namespace", "-n", default=None, help="Only watch this namespace")
@click.option("--workers", "-w", type=int, default=None, help="Number of reconcile workers")
@click.option("--no-api", is_flag=True, help="Do not serve health and metrics endpoints")
def run(namespace: Optional[str], workers: Optional[int], no_api: bool) -> None:
    """Run the operator until interrupted."""
    settings = Settings()
    if namespace:
        settings.kubernetes.namespace = namespace
    if workers:
        settings.reconcile.workers = workers
    setup_logging(
        settings.logging.level,
        settings.logging.format,
        Path(settings.logging.file_path) if settings.logging.file_path else None,
    )

    async def _run() -> None:
        platform = await KubernetesPlatformClient.connect(settings.kubernetes)
        metrics = OperatorMetrics()
        controller = ReconciliationController.build(
            platform,
            reconcile_settings=settings.reconcile,
            etcd_settings=settings.etcd,
            metrics=metrics,
        )
        manager = OperatorManager(controller, platform, settings, metrics=metrics)
        try:
            await manager.run(serve_api=not no_api)
        finally:
            await platform.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, path_type=Path))
def validate(manifest: Path) -> None:
    """Validate an EtcdCluster manifest."""
    cluster = _load_cluster(manifest)
    try:
        validate_cluster_spec(cluster.spec)
    except ClusterSpecError as e:
        console.print(f"[red]✗[/red] {e.reason}: {escape(e.message)}")
        raise SystemExit(1)

    console.print("[green]✓[/green] Manifest is valid")
    table = Table(title=f"EtcdCluster {cluster.key}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("size", str(cluster.spec.size))
    table.add_row("version", cluster.spec.version)
    table.add_row("image", cluster.spec.image)
    table.add_row("storage", cluster.spec.storage.size)
    table.add_row("storageClassName", cluster.spec.storage.storage_class_name or "(default)")
    console.print(table)


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, path_type=Path))
@click.option("--replicas", "-r", type=int, default=None, help="Replica count (defaults to spec size)")
@click.option("--domain", default="cluster.local", show_default=True, help="Cluster DNS domain")
def render(manifest: Path, replicas: Optional[int], domain: str) -> None:
    """Print the child resources for a manifest as YAML."""
    cluster = _load_cluster(manifest)
    count = cluster.spec.size if replicas is None else replicas
    documents = [
        builders.build_config_map(cluster, domain),
        builders.build_peer_service(cluster),
        builders.build_client_service(cluster),
        builders.build_statefulset(cluster, count, domain),
    ]
    click.echo(yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False))


@cli.command()
@click.option("--namespace", "-n", default=None, help="Namespace to list (default: all)")
def status(namespace: Optional[str]) -> None:
    """Show managed clusters."""
    settings = Settings()

    async def _status() -> list[EtcdCluster]:
        platform = await KubernetesPlatformClient.connect(settings.kubernetes)
        try:
            return await platform.list_clusters(namespace)
        finally:
            await platform.close()

    try:
        clusters = asyncio.run(_status())
    except PlatformError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise SystemExit(1)

    table = Table(title="etcd clusters")
    table.add_column("Namespace", style="cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Phase", style="magenta")
    table.add_column("Ready", justify="right")
    table.add_column("Version")
    for cluster in clusters:
        table.add_row(
            cluster.namespace,
            cluster.name,
            cluster.phase.value,
            f"{cluster.status.ready_replicas}/{cluster.spec.size}",
            cluster.spec.version,
        )
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
