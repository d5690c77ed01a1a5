"""Rich table builders for each command."""

from __future__ import annotations

from rich.panel import Panel
from rich.table import Table

from helm_conductor.models import format_time
from helm_conductor.models.repo import SyncEntry
from helm_conductor.models.snapshot import Snapshot
from helm_conductor.output.themes import styled_result
from helm_conductor.utils.version_compare import latest_version


def application_table(snapshot: Snapshot, title: str = "Applications") -> Table:
    table = Table(title=title, expand=True, show_lines=False)
    table.add_column("Application", style="bold white", no_wrap=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Latest", style="magenta")
    table.add_column("Latest ID", style="dim", no_wrap=True)
    table.add_column("Versions", justify="right")
    table.add_column("Description", max_width=50)

    for name in sorted(snapshot.applications):
        app = snapshot.applications[name]
        latest = latest_version(app.versions)
        table.add_row(
            name,
            app.application_id,
            latest.version_name if latest else "-",
            latest.version_id if latest else "-",
            str(len(app.versions)),
            app.description or "-",
        )
    return table


def sync_history_table(history: list[SyncEntry]) -> Table:
    table = Table(title="Sync History", expand=False)
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Message", max_width=80)
    for entry in history:
        table.add_row(format_time(entry.sync_time), styled_result(entry.state), entry.message or "-")
    return table


def release_status_panel(name: str, namespace: str, status: dict) -> Panel:
    info = status.get("info", {}) or {}
    chart = ((status.get("chart") or {}).get("metadata") or {})

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Release", name)
    table.add_row("Namespace", namespace)
    table.add_row("Status", info.get("status", "-") or "-")
    table.add_row("Revision", str(status.get("version", "-")))
    if chart:
        table.add_row("Chart", f"{chart.get('name', '')}-{chart.get('version', '')}")
        table.add_row("App Version", chart.get("appVersion", "") or "-")
    table.add_row("Last Deployed", info.get("last_deployed", "") or "-")
    if info.get("description"):
        table.add_row("Description", info["description"])

    return Panel(table, title=f"[bold]Release: {name}[/bold]", border_style="blue")
