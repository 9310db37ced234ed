"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from lavs import __version__

app = typer.Typer(
    name="lavs",
    help="LAVS - Run agent-declared endpoints under a sandbox policy",
    no_args_is_help=True,
)

console = Console()

CONFIG_HELP = "Path to config file (default: ~/.lavs/lavs.yaml)"
AGENTS_DIR_HELP = "Agent search path (repeatable, overrides config)"


@app.command()
def version():
    """Show lavs version."""
    console.print(f"lavs version {__version__}")


manifest_app = typer.Typer(help="Inspect and validate agent manifests")
app.add_typer(manifest_app, name="manifest")


@manifest_app.command("show")
def manifest_show(
    agent_id: str = typer.Argument(..., help="Agent id"),
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    agents_dir: list[str] = typer.Option(None, "--agents-dir", "-a", help=AGENTS_DIR_HELP),
):
    """Show an agent's manifest and endpoints."""
    from lavs.cli.manifest_cmd import show_manifest

    show_manifest(agent_id, config_path=config_path, agents_dir=agents_dir)


@manifest_app.command("validate")
def manifest_validate(
    path: str = typer.Argument(..., help="Manifest file or agent directory"),
):
    """Check a manifest file for structural errors."""
    from lavs.cli.manifest_cmd import validate_manifest

    validate_manifest(path)


@app.command()
def call(
    agent_id: str = typer.Argument(..., help="Agent id"),
    endpoint_id: str = typer.Argument(..., help="Endpoint id"),
    input_json: str = typer.Option(None, "--input", "-i", help="Call input as JSON"),
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    agents_dir: list[str] = typer.Option(None, "--agents-dir", "-a", help=AGENTS_DIR_HELP),
):
    """Call an endpoint and print the JSON-RPC response."""
    from lavs.cli.call_cmd import call_command

    call_command(
        agent_id,
        endpoint_id,
        input_json=input_json,
        config_path=config_path,
        agents_dir=agents_dir,
    )


@app.command()
def tools(
    agent_id: str = typer.Argument(..., help="Agent id"),
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, openai, anthropic)",
    ),
    config_path: str = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    agents_dir: list[str] = typer.Option(None, "--agents-dir", "-a", help=AGENTS_DIR_HELP),
):
    """List the LLM tools generated from an agent's endpoints."""
    from lavs.cli.call_cmd import tools_command

    tools_command(
        agent_id,
        output_format=output_format,
        config_path=config_path,
        agents_dir=agents_dir,
    )


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
