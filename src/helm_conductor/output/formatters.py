"""Table / JSON / YAML output dispatch."""

from __future__ import annotations

import json
from typing import Any

import yaml
from rich.console import Console

from helm_conductor.models import format_time
from helm_conductor.models.repo import SyncEntry
from helm_conductor.models.snapshot import Snapshot
from helm_conductor.utils.version_compare import latest_version

console = Console()


def _applications_to_list(snapshot: Snapshot) -> list[dict[str, Any]]:
    out = []
    for name in sorted(snapshot.applications):
        app = snapshot.applications[name]
        latest = latest_version(app.versions)
        out.append({
            "name": name,
            "application_id": app.application_id,
            "latest_version": latest.version if latest else None,
            "versions": [
                {"version_id": v.version_id, "version": v.version, "app_version": v.app_version}
                for v in app.versions
            ],
        })
    return out


def _history_to_list(history: list[SyncEntry]) -> list[dict[str, Any]]:
    return [
        {"state": e.state.value, "message": e.message, "sync_time": format_time(e.sync_time)}
        for e in history
    ]


def output_applications(snapshot: Snapshot, fmt: str, history: list[SyncEntry] | None = None) -> None:
    if fmt == "json":
        data: dict[str, Any] = {"applications": _applications_to_list(snapshot)}
        if history is not None:
            data["sync_history"] = _history_to_list(history)
        console.print_json(json.dumps(data, indent=2))
    elif fmt == "yaml":
        data = {"applications": _applications_to_list(snapshot)}
        if history is not None:
            data["sync_history"] = _history_to_list(history)
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        from helm_conductor.output.tables import application_table, sync_history_table
        console.print(application_table(snapshot))
        if history:
            console.print(sync_history_table(history))


def output_release_status(name: str, namespace: str, status: dict, fmt: str) -> None:
    if fmt == "json":
        console.print_json(json.dumps(status, indent=2, default=str))
    elif fmt == "yaml":
        console.print(yaml.dump(status, default_flow_style=False))
    else:
        from helm_conductor.output.tables import release_status_panel
        console.print(release_status_panel(name, namespace, status))
