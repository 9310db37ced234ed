"""CLI commands that run endpoints."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from lavs.cli.common import build_dispatcher
from lavs.dispatcher import Dispatcher
from lavs.errors import LAVSError
from lavs.protocol import RPCResponse
from lavs.tools import ToolGenerator

console = Console()

TOOL_FORMATS = ("table", "openai", "anthropic")


def call_command(
    agent_id: str,
    endpoint_id: str,
    input_json: str | None = None,
    config_path: str | None = None,
    agents_dir: list[str] | None = None,
) -> None:
    """Call one endpoint and print the JSON-RPC response."""
    data: Any = None
    if input_json:
        try:
            data = json.loads(input_json)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid --input JSON: {e}[/red]")
            raise typer.Exit(1) from None

    dispatcher = build_dispatcher(config_path, agents_dir)
    status, response = asyncio.run(_dispatch(dispatcher, agent_id, endpoint_id, data))

    console.print_json(json.dumps(response.to_wire(), default=str))
    if not response.is_success():
        console.print(f"[dim]HTTP status {status}[/dim]")
        raise typer.Exit(1)


async def _dispatch(
    dispatcher: Dispatcher, agent_id: str, endpoint_id: str, data: Any
) -> tuple[int, RPCResponse]:
    async with dispatcher:
        return await dispatcher.dispatch(agent_id, endpoint_id, data)


def tools_command(
    agent_id: str,
    output_format: str = "table",
    config_path: str | None = None,
    agents_dir: list[str] | None = None,
) -> None:
    """Print the tools generated for an agent."""
    if output_format not in TOOL_FORMATS:
        console.print(f"[red]Unknown format '{output_format}' (use {', '.join(TOOL_FORMATS)})[/red]")
        raise typer.Exit(1)

    generator = ToolGenerator(build_dispatcher(config_path, agents_dir))
    try:
        tools = generator.generate_tools(agent_id)
    except LAVSError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1) from None

    if output_format == "openai":
        console.print_json(json.dumps([t.definition.to_openai_format() for t in tools]))
        return
    if output_format == "anthropic":
        console.print_json(json.dumps([t.definition.to_anthropic_format() for t in tools]))
        return

    if not tools:
        console.print(f"[dim]Agent '{agent_id}' exposes no tools.[/dim]")
        return

    table = Table(title=f"Tools for {agent_id}")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Parameters", style="green")
    for tool in tools:
        params = tool.definition.input_schema.get("properties", {})
        table.add_row(tool.name, tool.definition.description, ", ".join(params) or "-")
    console.print(table)
