"""hcon repo - Synchronize chart repositories."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from helm_conductor.cli.options import ContextOption, OutputOption, print_result
from helm_conductor.core.chart_loader import ChartLoader
from helm_conductor.core.k8s_client import K8sClient, KubeStore
from helm_conductor.core.repo_syncer import RepoIndexSyncer
from helm_conductor.core.store import InMemoryStore
from helm_conductor.errors import HelmConductorError
from helm_conductor.models import SyncState
from helm_conductor.models.repo import Credential, Repository
from helm_conductor.output.formatters import output_applications
from helm_conductor.utils.encoding import decode_snapshot

app = typer.Typer(no_args_is_help=True)
console = Console(stderr=True)

_LOCAL_REPO = "local"


def _read_snapshot_file(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="ascii").strip()


@app.command("sync")
def sync(
    url: str = typer.Argument(help="Repository URL (http, https or s3)"),
    snapshot: Path = typer.Option(..., "--snapshot", "-s", help="File holding the encoded snapshot; created if missing"),
    username: Optional[str] = typer.Option(None, "--username", help="Basic auth user or S3 access key id"),
    password: Optional[str] = typer.Option(None, "--password", help="Basic auth password or S3 secret key"),
    insecure: bool = typer.Option(False, "--insecure", help="Skip TLS certificate verification"),
    output: str = OutputOption,
) -> None:
    """Fetch the repository index and merge it into the stored snapshot."""
    store = InMemoryStore()
    repo = Repository(
        name=_LOCAL_REPO,
        url=url,
        credential=Credential(
            username=username or "",
            password=password or "",
            insecure_skip_tls_verify=insecure,
        ),
    )
    repo.status.data = _read_snapshot_file(snapshot)
    store.create_repo(repo)

    with console.status("[bold cyan]Syncing repository…"):
        result = RepoIndexSyncer(store, ChartLoader()).reconcile(_LOCAL_REPO)
    if result.error is not None:
        console.print(f"[red]Sync failed:[/red] {result.error}")
        raise typer.Exit(code=1)

    synced = store.get_repo(_LOCAL_REPO)
    last = synced.status.sync_state[0]
    if last.state is SyncState.FAILED:
        console.print(f"[red]Sync failed:[/red] {last.message}")
        raise typer.Exit(code=1)

    snapshot.write_text(synced.status.data + "\n", encoding="ascii")
    output_applications(decode_snapshot(synced.status.data), output, history=synced.status.sync_state)


@app.command("apps")
def apps(
    snapshot: Path = typer.Argument(help="File holding the encoded snapshot"),
    output: str = OutputOption,
) -> None:
    """List the applications of a stored snapshot."""
    if not snapshot.exists():
        console.print(f"[red]Snapshot file {snapshot} does not exist.[/red]")
        raise typer.Exit(code=1)
    try:
        decoded = decode_snapshot(_read_snapshot_file(snapshot))
    except HelmConductorError as e:
        console.print(f"[red]Cannot read snapshot:[/red] {e}")
        raise typer.Exit(code=1)
    if decoded.is_empty():
        console.print("[dim]No applications found.[/dim]")
        return
    output_applications(decoded, output)


@app.command("reconcile")
def reconcile(
    name: str = typer.Argument(help="Repository object name"),
    context: Optional[str] = ContextOption,
) -> None:
    """Run one sync pass for a repository object stored in the cluster."""
    store = KubeStore(K8sClient(context=context))
    with console.status(f"[bold cyan]Reconciling repository {name}…"):
        result = RepoIndexSyncer(store, ChartLoader()).reconcile(name)
    print_result(console, "repository", name, result)
