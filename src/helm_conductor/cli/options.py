"""Shared CLI options."""

from __future__ import annotations

import typer

OutputOption = typer.Option("table", "--output", "-o", help="Output format: table, json, yaml")
NamespaceOption = typer.Option(..., "--namespace", "-n", help="Kubernetes namespace of the release")
KubeconfigOption = typer.Option(None, "--kubeconfig", help="Kubeconfig file of the target cluster (default: local context)")
MockOption = typer.Option(False, "--mock", help="Run against the built-in helm stand-in instead of the real binary")
ContextOption = typer.Option(None, "--context", help="Kubernetes context of the platform cluster")


def parse_pairs(pairs: list[str] | None) -> dict[str, str]:
    """Turn ``key=value`` strings into a dict."""
    out: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}")
        out[key.strip()] = value.strip()
    return out


def print_result(console, kind: str, name: str, result) -> None:
    """Report one reconcile pass and exit non-zero when it failed."""
    if result.error is not None:
        console.print(f"[red]Reconcile {kind} {name} failed:[/red] {result.error}")
        raise typer.Exit(code=1)
    if result.requeue:
        console.print(f"[green]{kind.capitalize()} {name} reconciled[/green], next pass in {result.requeue_after:.0f}s")
    else:
        console.print(f"[green]{kind.capitalize()} {name} reconciled.[/green]")
