"""CLI commands for manifest inspection."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from lavs.cli.common import build_dispatcher
from lavs.errors import LAVSError
from lavs.manifest.loader import MANIFEST_FILENAME, ManifestLoader

console = Console()


def show_manifest(
    agent_id: str,
    config_path: str | None = None,
    agents_dir: list[str] | None = None,
) -> None:
    """Print an agent's manifest summary and endpoint table."""
    dispatcher = build_dispatcher(config_path, agents_dir)
    try:
        manifest = dispatcher.get_manifest(agent_id)
    except LAVSError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None

    console.print(f"\n[bold cyan]{manifest.name}[/bold cyan] v{manifest.version} (LAVS {manifest.lavs})")
    if manifest.description:
        console.print(f"  {manifest.description}")

    table = Table(title="Endpoints")
    table.add_column("ID", style="cyan")
    table.add_column("Method")
    table.add_column("Handler")
    table.add_column("Description", style="dim")

    for endpoint in manifest.endpoints:
        table.add_row(
            endpoint.id,
            endpoint.method,
            endpoint.handler.type,
            endpoint.description or "-",
        )

    console.print(table)


def validate_manifest(path: str) -> None:
    """Load a manifest file (or an agent directory's manifest) and report problems."""
    target = Path(path).expanduser()
    if target.is_dir():
        target = target / MANIFEST_FILENAME

    try:
        manifest = ManifestLoader().load(target)
    except LAVSError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(1) from None

    console.print(
        f"[green]✓[/green] {target}: '{manifest.name}' with {len(manifest.endpoints)} endpoints"
    )
