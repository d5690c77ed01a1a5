"""hcon release - Drive Helm releases, one operation or one reconcile pass at a time."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from helm_conductor.cli.options import (
    ContextOption,
    KubeconfigOption,
    MockOption,
    NamespaceOption,
    OutputOption,
    parse_pairs,
    print_result,
)
from helm_conductor.core.chart_loader import ChartLoader
from helm_conductor.core.helm_executor import HelmExecutor
from helm_conductor.core.k8s_client import ClusterClients, K8sClient, KubeStore
from helm_conductor.core.release_reconciler import ReleaseReconciler
from helm_conductor.core.storage import S3Storage
from helm_conductor.errors import ExecError
from helm_conductor.output.formatters import output_release_status

app = typer.Typer(no_args_is_help=True)
console = Console()
err_console = Console(stderr=True)


def _chart_name(chart: Path) -> str:
    name = chart.name
    for suffix in (".tgz", ".tar.gz"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _executor(
    name: str,
    namespace: str,
    kubeconfig: Optional[Path],
    mock: bool,
    dry_run: bool = False,
    labels: Optional[List[str]] = None,
    annotations: Optional[List[str]] = None,
) -> HelmExecutor:
    return HelmExecutor(
        kubeconfig.read_text(encoding="utf-8") if kubeconfig else "",
        namespace,
        name,
        mock=mock,
        dry_run=dry_run,
        labels=parse_pairs(labels),
        annotations=parse_pairs(annotations),
    )


def _deploy(
    upgrade: bool,
    name: str,
    chart: Path,
    namespace: str,
    values: Optional[Path],
    kubeconfig: Optional[Path],
    mock: bool,
    dry_run: bool,
    labels: Optional[List[str]],
    annotations: Optional[List[str]],
) -> None:
    if not chart.is_file():
        err_console.print(f"[red]Chart archive {chart} does not exist.[/red]")
        raise typer.Exit(code=1)
    executor = _executor(name, namespace, kubeconfig, mock, dry_run, labels, annotations)
    values_text = values.read_text(encoding="utf-8") if values else ""
    try:
        if upgrade:
            result = executor.upgrade(_chart_name(chart), chart.read_bytes(), values_text)
        else:
            result = executor.install(_chart_name(chart), chart.read_bytes(), values_text)
    except ExecError as e:
        err_console.print(f"[red]helm {'upgrade' if upgrade else 'install'} failed:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(result.message or f"[green]Release {name} deployed.[/green]")


@app.command("install")
def install(
    name: str = typer.Argument(help="Release name"),
    chart: Path = typer.Argument(help="Chart archive (.tgz)"),
    namespace: str = NamespaceOption,
    values: Optional[Path] = typer.Option(None, "--values", "-f", help="Values file"),
    kubeconfig: Optional[Path] = KubeconfigOption,
    mock: bool = MockOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate the install"),
    label: Optional[List[str]] = typer.Option(None, "--label", "-l", help="key=value label added to every rendered resource"),
    annotation: Optional[List[str]] = typer.Option(None, "--annotation", help="key=value annotation added to every rendered resource"),
) -> None:
    """Install a chart archive as a new release."""
    _deploy(False, name, chart, namespace, values, kubeconfig, mock, dry_run, label, annotation)


@app.command("upgrade")
def upgrade(
    name: str = typer.Argument(help="Release name"),
    chart: Path = typer.Argument(help="Chart archive (.tgz)"),
    namespace: str = NamespaceOption,
    values: Optional[Path] = typer.Option(None, "--values", "-f", help="Values file"),
    kubeconfig: Optional[Path] = KubeconfigOption,
    mock: bool = MockOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate the upgrade"),
    label: Optional[List[str]] = typer.Option(None, "--label", "-l", help="key=value label added to every rendered resource"),
    annotation: Optional[List[str]] = typer.Option(None, "--annotation", help="key=value annotation added to every rendered resource"),
) -> None:
    """Upgrade an existing release to a chart archive."""
    _deploy(True, name, chart, namespace, values, kubeconfig, mock, dry_run, label, annotation)


@app.command("uninstall")
def uninstall(
    name: str = typer.Argument(help="Release name"),
    namespace: str = NamespaceOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    mock: bool = MockOption,
) -> None:
    """Uninstall a release; an already removed release is not an error."""
    try:
        _executor(name, namespace, kubeconfig, mock).uninstall()
    except ExecError as e:
        err_console.print(f"[red]helm uninstall failed:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]Release {name} uninstalled.[/green]")


@app.command("status")
def status(
    name: str = typer.Argument(help="Release name"),
    namespace: str = NamespaceOption,
    kubeconfig: Optional[Path] = KubeconfigOption,
    mock: bool = MockOption,
    output: str = OutputOption,
) -> None:
    """Show the status helm reports for a release."""
    try:
        data = _executor(name, namespace, kubeconfig, mock).status()
    except ExecError as e:
        err_console.print(f"[red]helm status failed:[/red] {e}")
        raise typer.Exit(code=1)
    output_release_status(name, namespace, data, output)


@app.command("reconcile")
def reconcile(
    name: str = typer.Argument(help="Release object name"),
    context: Optional[str] = ContextOption,
    mock: bool = MockOption,
    s3_bucket: Optional[str] = typer.Option(None, "--s3-bucket", help="Bucket holding app-store chart archives"),
    s3_endpoint: Optional[str] = typer.Option(None, "--s3-endpoint", help="S3 compatible endpoint URL"),
) -> None:
    """Run one state-machine pass for a release object stored in the cluster."""
    k8s = K8sClient(context=context)
    storage = S3Storage(s3_bucket, endpoint=s3_endpoint) if s3_bucket else None
    reconciler = ReleaseReconciler(
        KubeStore(k8s),
        ChartLoader(),
        storage=storage,
        cluster_clients=ClusterClients(k8s),
        helm_mock=mock,
    )
    result = reconciler.reconcile(name)
    print_result(err_console if result.error is not None else console, "release", name, result)
