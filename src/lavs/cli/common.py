"""Helpers shared by CLI commands."""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from lavs.config.loader import ConfigError, load_config
from lavs.config.schema import LAVSConfig
from lavs.dispatcher import Dispatcher

console = Console()


def load_cli_config(config_path: str | None, agents_dir: list[str] | None) -> LAVSConfig:
    """Load configuration, apply CLI overrides and set up logging."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None

    if agents_dir:
        config.agents.search_paths = list(agents_dir)

    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def build_dispatcher(config_path: str | None, agents_dir: list[str] | None) -> Dispatcher:
    return Dispatcher.from_config(load_cli_config(config_path, agents_dir))
